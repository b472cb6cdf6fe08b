"""
Printer connection lifecycle for the POS printer agent.

The ConnectionManager owns the single USB printer handle:
- acquire() returns the ready handle, joins an open already in progress, or
  opens the device (python-escpos Usb) off the event loop
- teardown()/release() drop the handle; always idempotent
- hot-plug events (see hotplug.py) force a teardown on detach and trigger a
  background reconnect on attach

A PrinterConnection is only borrowed by the delivery executor for a single
submit; once torn down it refuses further commands with SubmitError.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set

from pos_printer.core.errors import PrinterConnectionError, SubmitError
from pos_printer.printing.hotplug import ATTACH, DETACH, HotplugEvent
from pos_printer.printing.render import Command

logger = logging.getLogger(__name__)

PrinterFactory = Callable[[int, int], Any]


class ConnectionState(str, Enum):
    ABSENT = "absent"
    OPENING = "opening"
    READY = "ready"


def escpos_usb_factory(profile: Optional[str] = None, encoding: Optional[str] = None) -> PrinterFactory:
    """
    Build a blocking factory that opens the python-escpos USB printer for a
    vendor/product pair. Raises whatever python-escpos/pyusb raise when the
    device is missing or busy.
    """

    def _open(vendor_id: int, product_id: int):
        from escpos.printer import Usb

        printer = Usb(vendor_id, product_id, profile=profile) if profile else Usb(vendor_id, product_id)
        printer.open()
        if encoding:
            printer.charcode(encoding)
        return printer

    return _open


class PrinterConnection:
    """
    An open printer handle. Commands are applied in a worker thread; a handle
    closed mid-stream stops at the next command.
    """

    def __init__(self, printer: Any):
        self.printer = printer
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _apply(self, commands: List[Command]) -> None:
        for cmd in commands:
            if self._closed:
                raise SubmitError("Printer handle was closed during submit")
            getattr(self.printer, cmd.name)(*cmd.args, **cmd.kwargs)

    async def submit(self, commands: Iterable[Command]) -> None:
        """
        Send the command stream to the device.

        Raises:
            SubmitError for any failure, including a handle that is (or becomes) invalid.
        """
        if self._closed:
            raise SubmitError("Printer handle is closed")
        try:
            await asyncio.to_thread(self._apply, list(commands))
        except SubmitError:
            raise
        except Exception as e:
            raise SubmitError(f"Printer write failed: {e}", {"error_type": type(e).__name__}) from e

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self.printer.close()
        except Exception as e:
            # Closing a device that was already unplugged raises from pyusb
            logger.debug(f"Printer close raised (ignored): {e}")


class ConnectionManager:
    """
    Owns the lifecycle of the single printer connection for one vendor/product identity.

    Parameters:
    - vendor_id/product_id: the managed USB identity
    - factory: blocking callable (vendor_id, product_id) -> printer; defaults to python-escpos Usb
    - grace_period: how long acquire() waits for an open already in progress before opening itself
    """

    def __init__(
        self,
        vendor_id: int,
        product_id: int,
        factory: Optional[PrinterFactory] = None,
        grace_period: float = 5.0,
    ):
        self.vendor_id = vendor_id
        self.product_id = product_id
        self.grace_period = grace_period
        self._factory = factory or escpos_usb_factory()
        self._conn: Optional[PrinterConnection] = None
        self._opening: Optional[asyncio.Future] = None
        # Bumped on every teardown; an open started under an older generation is discarded
        self._generation = 0
        self._tasks: Set[asyncio.Task] = set()
        self.opens = 0
        self.open_failures = 0
        self.teardowns = 0

    @property
    def state(self) -> ConnectionState:
        if self._conn is not None and not self._conn.closed:
            return ConnectionState.READY
        if self._opening is not None:
            return ConnectionState.OPENING
        return ConnectionState.ABSENT

    def is_ready(self) -> bool:
        return self.state is ConnectionState.READY

    @property
    def identity(self) -> str:
        return f"{self.vendor_id:04x}:{self.product_id:04x}"

    async def acquire(self) -> PrinterConnection:
        """
        Return a ready connection, opening the device if needed.

        Concurrent callers share a single physical open: while one is in
        progress, others wait up to `grace_period` for its outcome (same handle
        or same error) before falling back to an open of their own.

        Raises:
            PrinterConnectionError if the device cannot be opened.
        """
        if self._conn is not None and not self._conn.closed:
            return self._conn

        pending = self._opening
        if pending is not None:
            try:
                return await asyncio.wait_for(asyncio.shield(pending), self.grace_period)
            except asyncio.TimeoutError:
                logger.warning(f"Printer open still in progress after {self.grace_period:.1f}s; opening again")
            if self._conn is not None and not self._conn.closed:
                return self._conn

        return await self._open()

    async def _open(self) -> PrinterConnection:
        loop = asyncio.get_running_loop()
        opening: asyncio.Future = loop.create_future()
        self._opening = opening
        generation = self._generation
        self.opens += 1
        try:
            try:
                printer = await asyncio.to_thread(self._factory, self.vendor_id, self.product_id)
            except Exception as e:
                self.open_failures += 1
                err = PrinterConnectionError(
                    f"Printer open failed: {e}",
                    {"device": self.identity, "error_type": type(e).__name__},
                )
                self._resolve(opening, error=err)
                raise err from e

            if generation != self._generation:
                # Detached (or torn down) while the open was running
                PrinterConnection(printer).close()
                self.open_failures += 1
                err = PrinterConnectionError("Printer was detached while opening", {"device": self.identity})
                self._resolve(opening, error=err)
                raise err

            if self._conn is not None and not self._conn.closed:
                # A concurrent open won the race; keep a single handle
                PrinterConnection(printer).close()
                self._resolve(opening, result=self._conn)
                return self._conn

            conn = PrinterConnection(printer)
            self._conn = conn
            self._resolve(opening, result=conn)
            logger.info(f"Printer connected (USB {self.identity})")
            return conn
        finally:
            if not opening.done():
                self._resolve(opening, error=PrinterConnectionError("Printer open was cancelled"))
            if self._opening is opening:
                self._opening = None

    @staticmethod
    def _resolve(
        fut: asyncio.Future,
        result: Optional[PrinterConnection] = None,
        error: Optional[BaseException] = None,
    ) -> None:
        if fut.done():
            return
        if error is not None:
            fut.set_exception(error)
            # Mark retrieved: waiters are optional
            fut.exception()
        else:
            fut.set_result(result)

    def teardown(self, reason: str = "") -> None:
        """
        Drop the current connection (if any) and invalidate any open in progress.
        Safe to call any number of times.
        """
        self._generation += 1
        conn, self._conn = self._conn, None
        if conn is None or conn.closed:
            return
        self.teardowns += 1
        logger.warning(f"Printer connection torn down{': ' + reason if reason else ''}")
        conn.close()

    def release(self) -> None:
        self.teardown("released")

    def handle_hotplug(self, event: HotplugEvent) -> None:
        if not event.matches(self.vendor_id, self.product_id):
            return
        if event.kind == DETACH:
            logger.warning("Printer USB detached -> cleaning connection")
            self.teardown("usb detached")
        elif event.kind == ATTACH:
            logger.info("Printer USB attached -> attempting quick reconnect")
            task = asyncio.get_running_loop().create_task(self._reconnect())
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _reconnect(self) -> None:
        try:
            await self.acquire()
        except PrinterConnectionError as e:
            logger.warning(f"Reconnect on attach failed: {e}")

    async def watch(self, events: "asyncio.Queue[HotplugEvent]") -> None:
        """Consume hot-plug events forever."""
        while True:
            event = await events.get()
            try:
                self.handle_hotplug(event)
            except Exception:
                logger.exception("Hot-plug handler failed")
            finally:
                events.task_done()

    async def close(self) -> None:
        """Cancel background reconnects and release the device."""
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self.release()

    def status(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "device": self.identity,
            "opens": self.opens,
            "open_failures": self.open_failures,
            "teardowns": self.teardowns,
        }


__all__ = [
    "ConnectionManager",
    "ConnectionState",
    "PrinterConnection",
    "PrinterFactory",
    "escpos_usb_factory",
]
