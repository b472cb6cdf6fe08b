"""
Process wiring for the POS printer agent.

PrinterAgent owns one instance of every component (connection manager,
hot-plug monitor, delivery executor, print queue, intake controller) and runs
them on a single asyncio loop until SIGINT/SIGTERM. Unanticipated errors
reported to the loop are logged and the process exits with status 1 after a
short grace delay, leaving recovery to the service manager's restart policy.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from functools import partial
from typing import Any, Dict, List, Mapping, Optional, Sequence

from pos_printer.core.config import require_ledger_credentials, resolve_config
from pos_printer.core.errors import ConfigError
from pos_printer.core.logging import configure_logging
from pos_printer.intake import IntakeController
from pos_printer.ledger.client import Ledger, SupabaseLedger, create_supabase_client
from pos_printer.ledger.realtime import RealtimeFeed, SubscriptionState, SupabaseFeed
from pos_printer.printing.connection import ConnectionManager, PrinterFactory, escpos_usb_factory
from pos_printer.printing.delivery import DeliveryExecutor
from pos_printer.printing.hotplug import HotplugEvent, HotplugMonitor
from pos_printer.printing.render import render_receipt, sample_payload
from pos_printer.printing.worker import PrintQueue, make_job_handler

logger = logging.getLogger(__name__)


def build_connections(cfg: Mapping[str, Any], factory: Optional[PrinterFactory] = None) -> ConnectionManager:
    return ConnectionManager(
        int(cfg["usb_vendor_id"]),
        int(cfg["usb_product_id"]),
        factory=factory or escpos_usb_factory(cfg.get("printer_profile"), cfg.get("printer_encoding")),
        grace_period=float(cfg["connect_grace_seconds"]),
    )


def build_executor(cfg: Mapping[str, Any], connections: ConnectionManager) -> DeliveryExecutor:
    render = partial(
        render_receipt,
        width=int(cfg["receipt_width"]),
        double_width=int(cfg["receipt_double_width"]),
        footer=cfg.get("receipt_footer"),
        credit=cfg.get("receipt_credit"),
    )
    return DeliveryExecutor(
        connections,
        render=render,
        max_attempts=int(cfg["max_attempts"]),
        backoff_base=float(cfg["retry_backoff_base"]),
        hardware_timeout=float(cfg["printer_timeout_seconds"]),
    )


class PrinterAgent:
    def __init__(
        self,
        cfg: Mapping[str, Any],
        ledger: Ledger,
        feed: RealtimeFeed,
        printer_factory: Optional[PrinterFactory] = None,
    ):
        self.cfg = dict(cfg)
        self.connections = build_connections(cfg, printer_factory)
        self.executor = build_executor(cfg, self.connections)
        self.queue = PrintQueue(
            make_job_handler(self.executor, ledger),
            concurrency=int(cfg["queue_concurrency"]),
            max_length=int(cfg["queue_max_length"]),
            inter_job_pause=float(cfg["inter_job_pause_seconds"]),
        )
        self.intake = IntakeController(
            self.queue,
            ledger,
            feed,
            page_size=int(cfg["pending_page_size"]),
            backoff_base=float(cfg["listener_backoff_base"]),
            backoff_max=float(cfg["listener_backoff_max"]),
            watchdog_interval=float(cfg["watchdog_interval_seconds"]),
        )
        self.hotplug_events: "asyncio.Queue[HotplugEvent]" = asyncio.Queue()
        self.hotplug = HotplugMonitor(
            self.connections.vendor_id,
            self.connections.product_id,
            self.hotplug_events,
            poll_interval=float(cfg["hotplug_poll_seconds"]),
        )
        self.shutdown_grace = float(cfg["shutdown_grace_seconds"])
        self.exit_code = 0
        self._stop = asyncio.Event()
        self._tasks: List[asyncio.Task] = []

    async def run(self) -> int:
        """Run until stopped; returns the process exit code."""
        loop = asyncio.get_running_loop()
        self._install_handlers(loop)
        logger.info("Printer agent starting")
        self._tasks = [
            loop.create_task(self.connections.watch(self.hotplug_events), name="hotplug-events"),
            loop.create_task(self.hotplug.run(), name="hotplug-monitor"),
        ]
        try:
            await self.intake.start()
            await self._stop.wait()
        finally:
            await self.shutdown()
        return self.exit_code

    def request_stop(self) -> None:
        self._stop.set()

    async def shutdown(self) -> None:
        logger.info("Service shutting down - cleaning resources")
        await self.intake.stop()
        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        await self.queue.stop()
        await self.connections.close()

    def _install_handlers(self, loop: asyncio.AbstractEventLoop) -> None:
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_stop)
            except (NotImplementedError, RuntimeError):
                # Not supported on this platform/thread; KeyboardInterrupt still stops asyncio.run
                pass
        loop.set_exception_handler(self._on_uncaught)

    def _on_uncaught(self, loop: asyncio.AbstractEventLoop, context: Dict[str, Any]) -> None:
        exc = context.get("exception")
        if exc is None:
            # Diagnostics such as "Task was destroyed but it is pending" carry no error
            logger.warning(f"Event loop: {context.get('message')}")
            return
        logger.error(f"Uncaught exception: {context.get('message')}", exc_info=exc)
        self.connections.release()
        if self.exit_code == 0:
            self.exit_code = 1
            loop.call_later(self.shutdown_grace, self.request_stop)

    def status(self) -> Dict[str, Any]:
        intake = self.intake.status()
        printer = self.connections.status()
        printer_ok = self.connections.is_ready() or self.hotplug.present is True
        subscribed = intake["subscription"] == SubscriptionState.SUBSCRIBED.value
        result: Dict[str, Any] = {
            "status": "ok" if subscribed and printer_ok else "degraded",
            "printer_ok": printer_ok,
            "printer": printer,
            "queue": self.queue.status(),
            "intake": intake,
        }
        if not subscribed:
            result["reason"] = "realtime_not_subscribed"
        elif not printer_ok:
            result["reason"] = "printer_unavailable"
        return result


async def run_agent(cfg: Mapping[str, Any]) -> int:
    from pos_printer.web.health import start_health_server

    url, key = require_ledger_credentials(cfg)
    client = await create_supabase_client(url, key)
    ledger = SupabaseLedger(client, table=cfg["jobs_table"])
    feed = SupabaseFeed(
        client,
        table=cfg["jobs_table"],
        schema=cfg["jobs_schema"],
        channel_name=cfg["realtime_channel"],
    )
    agent = PrinterAgent(cfg, ledger, feed)
    server = None
    if cfg.get("health_port"):
        server = start_health_server(agent, str(cfg["health_host"]), int(cfg["health_port"]))
    try:
        return await agent.run()
    finally:
        if server is not None:
            server.shutdown()


async def run_test_print(cfg: Mapping[str, Any], factory: Optional[PrinterFactory] = None) -> int:
    """Print the sample receipt once, without touching the ledger."""
    connections = build_connections(cfg, factory)
    executor = build_executor(cfg, connections)
    try:
        result = await executor.deliver("test-print", sample_payload())
    finally:
        connections.release()
    if result.ok:
        logger.info(f"Test print succeeded after {result.attempts} attempt(s)")
        return 0
    logger.error(f"Test print failed: {result.error}")
    return 1


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Print ledger receipt jobs on a USB ESC/POS thermal printer",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--config", default=None, help="Path to config.json (default: $POSPRINTER_CONFIG_PATH or XDG)")
    parser.add_argument("--env-file", default=None, help="Path to a .env file (default: $POSPRINTER_ENV_FILE or ./.env)")
    parser.add_argument("--health-port", type=int, default=None, help="Serve /healthz on this port")
    parser.add_argument("--test-print", action="store_true", help="Print a sample receipt and exit")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging("DEBUG" if args.debug else None, cloud=False)
    try:
        cfg = resolve_config(args.config, env_file=args.env_file)
    except ConfigError as e:
        logger.error(f"Invalid configuration: {e}")
        return 2
    if args.health_port is not None:
        cfg["health_port"] = args.health_port
    # Again, now that .env values (log level, Cloud Logging credentials) are loaded
    configure_logging("DEBUG" if args.debug else cfg.get("log_level"))

    try:
        if args.test_print:
            return asyncio.run(run_test_print(cfg))
        return asyncio.run(run_agent(cfg))
    except ConfigError as e:
        logger.error(f"Invalid configuration: {e}")
        return 2
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    sys.exit(main())
