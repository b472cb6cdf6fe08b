"""
Printing subsystem for the POS printer agent.

This package groups printing-related functionality:

- render: receipt payload -> ESC/POS command list
- hotplug: USB attach/detach detection
- connection: printer handle lifecycle
- delivery: one job through render + printer with timeout and retries
- worker: bounded print queue and the per-job handler

For convenience, common names are re-exported for easy import.
"""

from .connection import ConnectionManager, ConnectionState, PrinterConnection, escpos_usb_factory
from .delivery import DeliveryExecutor, DeliveryResult
from .hotplug import ATTACH, DETACH, HotplugEvent, HotplugMonitor
from .render import Command, draw_row, format_currency, format_phone, render_receipt, sample_payload
from .worker import PrintQueue, make_job_handler

__all__ = [
    "ATTACH",
    "Command",
    "ConnectionManager",
    "ConnectionState",
    "DETACH",
    "DeliveryExecutor",
    "DeliveryResult",
    "HotplugEvent",
    "HotplugMonitor",
    "PrintQueue",
    "PrinterConnection",
    "draw_row",
    "escpos_usb_factory",
    "format_currency",
    "format_phone",
    "make_job_handler",
    "render_receipt",
    "sample_payload",
]
