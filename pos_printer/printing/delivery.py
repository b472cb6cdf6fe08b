"""
Delivery executor: drives one job through render + printer with a hardware
timeout and bounded retries.

Each attempt is exactly one physical print: acquire the connection, render,
submit racing the timeout. A failed attempt tears the connection down (it is
no longer trusted), waits `backoff_base * 2**attempt` and tries again, up to
`max_attempts` attempts in total. Nothing is sent to the printer after a
failure (no cleanup feed or cut).
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional

from pos_printer.core.errors import DeliveryError, HardwareTimeout, JobValidationError, SubmitError
from pos_printer.core.schemas import validate_payload
from pos_printer.printing.connection import ConnectionManager
from pos_printer.printing.render import Command, render_receipt

logger = logging.getLogger(__name__)

Renderer = Callable[[Mapping[str, Any]], List[Command]]
Sleeper = Callable[[float], Awaitable[Any]]


@dataclass
class DeliveryResult:
    job_id: Any
    ok: bool
    attempts: int
    error: Optional[DeliveryError] = None


class DeliveryExecutor:
    def __init__(
        self,
        connections: ConnectionManager,
        render: Renderer = render_receipt,
        max_attempts: int = 3,
        backoff_base: float = 1.0,
        hardware_timeout: float = 8.0,
        sleep: Sleeper = asyncio.sleep,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.connections = connections
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self.hardware_timeout = hardware_timeout
        self._render = render
        self._sleep = sleep

    def backoff_delay(self, attempt: int) -> float:
        """Delay after the failed 0-based `attempt`, before the next one."""
        return self.backoff_base * (2**attempt)

    async def deliver(self, job_id: Any, payload: Any, attempt: int = 0) -> DeliveryResult:
        """
        Print one job. Never raises for delivery failures: the outcome (and the
        last error, if any) is returned in a DeliveryResult.
        """
        log_extra = {"job_id": job_id}
        try:
            validate_payload(payload)
        except JobValidationError as e:
            logger.error(f"Job payload rejected: {e}", extra=log_extra)
            return DeliveryResult(job_id, ok=False, attempts=0, error=e)

        attempts = 0
        last_error: Optional[DeliveryError] = None
        while attempt < self.max_attempts:
            attempts += 1
            try:
                await self._attempt(payload)
                logger.info("Print success", extra=log_extra)
                return DeliveryResult(job_id, ok=True, attempts=attempts)
            except DeliveryError as e:
                last_error = e
            except Exception as e:
                last_error = SubmitError(f"Unexpected print failure: {e}", {"error_type": type(e).__name__})
            logger.error(
                f"Print failed (attempt {attempt + 1}/{self.max_attempts}): {last_error}",
                extra=log_extra,
            )
            if not last_error.retryable:
                break
            self.connections.teardown("print attempt failed")
            if attempt + 1 >= self.max_attempts:
                break
            delay = self.backoff_delay(attempt)
            logger.info(f"Retrying in {delay:.1f}s", extra=log_extra)
            await self._sleep(delay)
            attempt += 1

        return DeliveryResult(job_id, ok=False, attempts=attempts, error=last_error)

    async def _attempt(self, payload: Mapping[str, Any]) -> None:
        conn = await self.connections.acquire()
        try:
            commands = self._render(payload)
        except Exception as e:
            raise JobValidationError(f"Receipt could not be rendered: {e}") from e
        try:
            await asyncio.wait_for(conn.submit(commands), self.hardware_timeout)
        except asyncio.TimeoutError as e:
            raise HardwareTimeout(self.hardware_timeout) from e


__all__ = ["DeliveryExecutor", "DeliveryResult"]
