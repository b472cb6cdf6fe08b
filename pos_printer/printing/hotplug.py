"""
USB hot-plug detection for the managed printer.

pyusb has no portable attach/detach callbacks, so the monitor periodically
enumerates the bus for the configured vendor/product identity and emits a
HotplugEvent on every presence transition. Events go onto an asyncio.Queue
that the connection manager consumes on the event loop.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional

import usb.core

logger = logging.getLogger(__name__)

ATTACH = "attach"
DETACH = "detach"


@dataclass(frozen=True)
class HotplugEvent:
    kind: str  # ATTACH or DETACH
    vendor_id: int
    product_id: int

    def matches(self, vendor_id: int, product_id: int) -> bool:
        return self.vendor_id == vendor_id and self.product_id == product_id


def usb_device_present(vendor_id: int, product_id: int) -> bool:
    """Blocking pyusb enumeration; run it through asyncio.to_thread."""
    return usb.core.find(idVendor=vendor_id, idProduct=product_id) is not None


class HotplugMonitor:
    """
    Polls for the printer and reports attach/detach transitions.

    The first scan only records the initial presence; events start with the
    first change after that.
    """

    def __init__(
        self,
        vendor_id: int,
        product_id: int,
        events: "asyncio.Queue[HotplugEvent]",
        poll_interval: float = 1.0,
        is_present: Optional[Callable[[int, int], bool]] = None,
    ):
        self.vendor_id = vendor_id
        self.product_id = product_id
        self.events = events
        self.poll_interval = poll_interval
        self._is_present = is_present or usb_device_present
        self._present: Optional[bool] = None

    @property
    def present(self) -> Optional[bool]:
        return self._present

    async def scan(self) -> Optional[HotplugEvent]:
        """Check presence once; enqueue and return an event if presence changed."""
        present = await asyncio.to_thread(self._is_present, self.vendor_id, self.product_id)
        previous, self._present = self._present, present
        if previous is None or previous == present:
            return None
        event = HotplugEvent(ATTACH if present else DETACH, self.vendor_id, self.product_id)
        self.events.put_nowait(event)
        return event

    async def run(self) -> None:
        """Scan forever. A missing libusb backend disables monitoring."""
        logger.info(f"Hot-plug monitor watching {self.vendor_id:04x}:{self.product_id:04x} every {self.poll_interval:.1f}s")
        while True:
            try:
                await self.scan()
            except usb.core.NoBackendError:
                logger.warning("No libusb backend available; hot-plug monitoring disabled")
                return
            except Exception as e:
                logger.warning(f"Hot-plug scan failed: {e}")
            await asyncio.sleep(self.poll_interval)


__all__ = ["ATTACH", "DETACH", "HotplugEvent", "HotplugMonitor", "usb_device_present"]
