"""
Config utilities for the POS printer agent.

Responsibilities:
- Resolve the config path with environment and XDG support
- Load the JSON config file and an optional .env file
- Merge built-in defaults, the JSON file and environment overrides into the
  effective configuration used to build the agent
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import find_dotenv, load_dotenv

from pos_printer.core.errors import ConfigError

DEFAULTS: Dict[str, Any] = {
    # Printer identity and layout
    "usb_vendor_id": "0x0493",
    "usb_product_id": "0x8760",
    "printer_profile": None,
    "printer_encoding": "CP850",
    "receipt_width": 48,
    "receipt_double_width": 24,
    "receipt_footer": "Gracias por su compra",
    "receipt_credit": None,
    # Delivery
    "printer_timeout_seconds": 8.0,
    "max_attempts": 3,
    "retry_backoff_base": 1.0,
    "connect_grace_seconds": 5.0,
    "hotplug_poll_seconds": 1.0,
    # Queue
    "queue_max_length": 300,
    "queue_concurrency": 1,
    "inter_job_pause_seconds": 0.5,
    # Intake
    "supabase_url": None,
    "supabase_key": None,
    "jobs_table": "print_jobs",
    "jobs_schema": "public",
    "realtime_channel": "print_jobs_realtime",
    "pending_page_size": 100,
    "listener_backoff_base": 1.0,
    "listener_backoff_max": 60.0,
    "watchdog_interval_seconds": 60.0,
    # Process
    "log_level": "INFO",
    "health_host": "127.0.0.1",
    "health_port": None,
    "shutdown_grace_seconds": 1.0,
}

# config key -> environment variable
ENV_OVERRIDES: Dict[str, str] = {
    "supabase_url": "SUPABASE_URL",
    "supabase_key": "SUPABASE_KEY",
    "log_level": "POSPRINTER_LOG_LEVEL",
    "usb_vendor_id": "POSPRINTER_USB_VENDOR_ID",
    "usb_product_id": "POSPRINTER_USB_PRODUCT_ID",
    "health_port": "POSPRINTER_HEALTH_PORT",
}


def default_config_path() -> str:
    """
    Resolve the default config path using:
    1) $XDG_CONFIG_HOME/posprinter/config.json
    2) ~/.config/posprinter/config.json
    """
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return str(Path(xdg) / "posprinter" / "config.json")
    return str(Path.home() / ".config" / "posprinter" / "config.json")


def get_config_path() -> str:
    """
    Return the config path honoring POSPRINTER_CONFIG_PATH override.
    """
    return os.environ.get("POSPRINTER_CONFIG_PATH", default_config_path())


def load_config(path: Optional[str] = None) -> Optional[dict[str, Any]]:
    """
    Load the JSON config if it exists; return None if missing.

    Raises:
        json.JSONDecodeError if the file exists but contains invalid JSON.
        OSError for I/O errors other than missing file.
    """
    cfg_path = Path(path or get_config_path())
    if not cfg_path.exists():
        return None
    with cfg_path.open("r", encoding="utf-8") as f:
        return json.load(f)


def parse_usb_id(value: Any) -> int:
    """
    Accept a USB vendor/product id as an int or a hex string ("0x0493" or "0493").
    """
    if isinstance(value, bool):
        raise ConfigError("Invalid USB id", {"value": value})
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip(), 16)
    except ValueError as e:
        raise ConfigError("Invalid USB id", {"value": value}) from e


def load_env_file(path: Optional[str] = None) -> Optional[str]:
    """
    Load KEY=VALUE pairs from a .env file into the environment. Variables that
    are already set win over the file.

    The file is `path`, else $POSPRINTER_ENV_FILE, else the nearest .env from the
    working directory upward. Returns the loaded path, or None if there is none.
    """
    env_path = path or os.environ.get("POSPRINTER_ENV_FILE") or find_dotenv(usecwd=True)
    if not env_path or not Path(env_path).is_file():
        return None
    load_dotenv(env_path, override=False)
    return str(env_path)


def resolve_config(path: Optional[str] = None, env_file: Optional[str] = None) -> Dict[str, Any]:
    """
    Build the effective configuration: DEFAULTS <- JSON file <- environment
    (including a .env file, see load_env_file).
    Raises ConfigError when the file holds something other than a JSON object.
    """
    cfg: Dict[str, Any] = dict(DEFAULTS)
    try:
        file_cfg = load_config(path)
    except json.JSONDecodeError as e:
        raise ConfigError("Config file is not valid JSON", {"path": path or get_config_path()}) from e
    if file_cfg is not None:
        if not isinstance(file_cfg, dict):
            raise ConfigError("Config file must contain a JSON object", {"path": path or get_config_path()})
        cfg.update(file_cfg)

    load_env_file(env_file)
    for key, env_name in ENV_OVERRIDES.items():
        val = os.environ.get(env_name)
        if val:
            cfg[key] = val

    if cfg.get("health_port") not in (None, ""):
        try:
            cfg["health_port"] = int(cfg["health_port"])
        except (TypeError, ValueError) as e:
            raise ConfigError("Invalid health port", {"value": cfg["health_port"]}) from e
    else:
        cfg["health_port"] = None

    cfg["usb_vendor_id"] = parse_usb_id(cfg["usb_vendor_id"])
    cfg["usb_product_id"] = parse_usb_id(cfg["usb_product_id"])
    return cfg


def require_ledger_credentials(cfg: Dict[str, Any]) -> tuple[str, str]:
    """
    Return (url, key) for the ledger or raise ConfigError if either is missing.
    """
    url = cfg.get("supabase_url")
    key = cfg.get("supabase_key")
    missing = [name for name, v in (("SUPABASE_URL", url), ("SUPABASE_KEY", key)) if not v]
    if missing:
        raise ConfigError("Ledger credentials are not configured", {"missing": missing})
    return str(url), str(key)


__all__ = [
    "DEFAULTS",
    "ENV_OVERRIDES",
    "default_config_path",
    "get_config_path",
    "load_env_file",
    "load_config",
    "parse_usb_id",
    "require_ledger_credentials",
    "resolve_config",
]
