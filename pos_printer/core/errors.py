"""
Exceptions for the POS printer agent.

Exception hierarchy:
    PrinterAgentError (base)
    ├── ConfigError              - missing/invalid configuration (startup failure)
    ├── DeliveryError            - a single job could not be printed
    │   ├── JobValidationError   - malformed payload (terminal, never retried)
    │   ├── PrinterConnectionError - device absent or open failed
    │   ├── SubmitError          - writing commands to the device failed
    │   └── HardwareTimeout      - device accepted data but never completed
    ├── LedgerError              - read/write against the remote job ledger failed
    └── SubscriptionError        - realtime feed disconnected, errored or timed out

Usage:
    DeliveryError subclasses other than JobValidationError are retried by the
    delivery executor. LedgerError on a status write is logged and never blocks
    the queue. SubscriptionError drives the resubscribe backoff.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class PrinterAgentError(Exception):
    """
    Base exception for all agent errors.
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigError(PrinterAgentError):
    """Configuration is missing a required value or contains an invalid one."""


class DeliveryError(PrinterAgentError):
    """
    A job could not be delivered to the printer.

    `retryable` tells the delivery executor whether another attempt can help.
    """

    retryable = True


class JobValidationError(DeliveryError):
    """The job payload does not have the minimal receipt shape."""

    retryable = False


class PrinterConnectionError(DeliveryError):
    """The USB device is absent or could not be opened."""

    def __init__(self, message: str = "Printer connection failed", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)


class SubmitError(DeliveryError):
    """Writing the command stream to the device failed."""


class HardwareTimeout(DeliveryError):
    """The device never finished the command stream (buffer or cutter stuck)."""

    def __init__(self, timeout: float):
        super().__init__(
            "Printer hardware timeout (buffer stuck)",
            {"timeout_seconds": timeout},
        )
        self.timeout = timeout


class LedgerError(PrinterAgentError):
    """A read or write against the job ledger failed."""


class SubscriptionError(PrinterAgentError):
    """The realtime feed reported a disconnect, an error or a timeout."""

    def __init__(self, status: str, cause: Optional[BaseException] = None):
        details: Dict[str, Any] = {"status": status}
        if cause is not None:
            details["cause"] = str(cause)
        super().__init__(f"Realtime subscription {status.lower()}", details)
        self.status = status


__all__ = [
    "ConfigError",
    "DeliveryError",
    "HardwareTimeout",
    "JobValidationError",
    "LedgerError",
    "PrinterAgentError",
    "PrinterConnectionError",
    "SubmitError",
    "SubscriptionError",
]
