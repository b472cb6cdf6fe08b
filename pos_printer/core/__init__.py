"""
Core utilities for the POS printer agent.

This package groups helpers used across the agent:
- config: paths, JSON and .env loading, defaults and environment overrides
- logging: job-aware logging filter/formatters and root logger config
- errors: the exception hierarchy
- models/schemas: the Job model and the receipt payload shape check

Exports are explicit to keep static analyzers (e.g., Pyright) happy.
"""

from .config import (
    DEFAULTS,
    default_config_path,
    get_config_path,
    load_config,
    load_env_file,
    parse_usb_id,
    require_ledger_credentials,
    resolve_config,
)
from .errors import (
    ConfigError,
    DeliveryError,
    HardwareTimeout,
    JobValidationError,
    LedgerError,
    PrinterAgentError,
    PrinterConnectionError,
    SubmitError,
    SubscriptionError,
)
from .logging import (
    JobContextFilter,
    JsonFormatter,
    configure_logging,
)
from .models import Job, JobStatus
from .schemas import ReceiptPayload, is_valid_payload, validate_payload

__all__ = [
    # config
    "DEFAULTS",
    "default_config_path",
    "get_config_path",
    "load_config",
    "load_env_file",
    "parse_usb_id",
    "require_ledger_credentials",
    "resolve_config",
    # errors
    "ConfigError",
    "DeliveryError",
    "HardwareTimeout",
    "JobValidationError",
    "LedgerError",
    "PrinterAgentError",
    "PrinterConnectionError",
    "SubmitError",
    "SubscriptionError",
    # logging
    "configure_logging",
    "JobContextFilter",
    "JsonFormatter",
    # models
    "Job",
    "JobStatus",
    "ReceiptPayload",
    "is_valid_payload",
    "validate_payload",
]
