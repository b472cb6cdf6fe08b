"""
Logging utilities for the POS printer agent.

- JobContextFilter attaches a job_id (or "-") to every record so formatters can
  reference %(job_id)s even for records logged outside a job
- JsonFormatter emits structured logs when POSPRINTER_JSON_LOGS=true
- configure_logging() initializes root logging with journald or console
- cloud_logging_handler() adds Google Cloud Logging when a project and key are configured
"""

from __future__ import annotations

import logging
import os
from typing import Optional, Union

SERVICE_NAME = "pos-printer"


class JobContextFilter(logging.Filter):
    """
    Ensure job_id and service are present on every record.
    Callers pass the job id with `extra={"job_id": ...}`.
    """

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        if not hasattr(record, "job_id"):
            record.job_id = "-"
        record.service = SERVICE_NAME
        return True


class JsonFormatter(logging.Formatter):
    """
    Minimal JSON formatter that includes timestamp, level, message, service and job_id.
    """

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        from json import dumps

        base = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "msg": record.getMessage(),
            "service": getattr(record, "service", SERVICE_NAME),
            "job_id": getattr(record, "job_id", "-"),
        }
        if record.exc_info:
            base["exc"] = self.formatException(record.exc_info)
        return dumps(base, ensure_ascii=False, default=str)


def _resolve_level(level: Optional[Union[str, int]]) -> int:
    if level is None:
        level = os.environ.get("POSPRINTER_LOG_LEVEL", "INFO")
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def cloud_logging_handler(project_id: str, key_path: str) -> logging.Handler:
    """
    Build a google-cloud-logging handler authenticated with a service account
    key file. Requires the `gcp` extra.
    """
    import google.cloud.logging
    from google.cloud.logging.handlers import CloudLoggingHandler

    client = google.cloud.logging.Client.from_service_account_json(key_path, project=project_id)
    return CloudLoggingHandler(client, name=SERVICE_NAME)


def configure_logging(level: Optional[Union[str, int]] = None, cloud: bool = True) -> logging.Logger:
    """
    Configure root logging for the agent.

    Behavior:
    - Sets the root level from `level`, else POSPRINTER_LOG_LEVEL, else INFO
    - Clears any existing handlers to avoid duplicates on repeated calls
    - Chooses JSON or plain formatter based on POSPRINTER_JSON_LOGS
    - Prefer systemd's JournalHandler, fallback to StreamHandler
    - Also ship to Google Cloud Logging when GOOGLE_PROJECT_ID and GCP_KEY_PATH are set
      (skipped with cloud=False)
    - Adds JobContextFilter so formatters can reference %(job_id)s

    Returns the configured root logger.
    """
    root = logging.getLogger()
    root.setLevel(_resolve_level(level))
    root.handlers = []

    json_logs = os.environ.get("POSPRINTER_JSON_LOGS", "false").lower() in ("1", "true", "yes")
    formatter: logging.Formatter
    if json_logs:
        formatter = JsonFormatter()
    else:
        formatter = logging.Formatter("[%(asctime)s] %(levelname)s %(job_id)s %(message)s", "%Y-%m-%d %H:%M:%S")

    try:
        from systemd.journal import JournalHandler  # type: ignore

        handler: logging.Handler = JournalHandler(SYSLOG_IDENTIFIER=SERVICE_NAME)
    except Exception:
        handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    handler.addFilter(JobContextFilter())
    root.addHandler(handler)

    project_id = os.environ.get("GOOGLE_PROJECT_ID")
    key_path = os.environ.get("GCP_KEY_PATH")
    if cloud and project_id and key_path:
        try:
            cloud_handler = cloud_logging_handler(project_id, key_path)
        except Exception as e:
            root.warning(f"Google Cloud Logging disabled: {e}")
        else:
            cloud_handler.addFilter(JobContextFilter())
            root.addHandler(cloud_handler)

    # The realtime client logs every heartbeat at INFO
    logging.getLogger("realtime").setLevel(max(root.level, logging.WARNING))
    logging.getLogger("httpx").setLevel(max(root.level, logging.WARNING))

    return root


__all__ = ["JobContextFilter", "JsonFormatter", "SERVICE_NAME", "cloud_logging_handler", "configure_logging"]
