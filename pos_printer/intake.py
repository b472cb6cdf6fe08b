"""
Job intake for the POS printer agent.

Two producers feed the print queue through the same add_job() gate:
- push: realtime INSERT notifications on the jobs table
- pull: reconciliation sweeps of every still-pending row, run at startup,
  after each successful (re)subscription and on every watchdog tick

The controller also owns the realtime subscription state machine:

    idle -> joining -> subscribed
              |            |
              +--> closed/errored --(backoff)--> joining

Realtime callbacks only enqueue IntakeEvents; a single consumer task applies
them in order on the event loop. Status callbacks from a superseded
subscription are ignored by generation number.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from pos_printer.core.errors import LedgerError, SubscriptionError
from pos_printer.core.models import Job, JobStatus
from pos_printer.core.schemas import is_valid_payload
from pos_printer.ledger.client import Ledger, mark_status
from pos_printer.ledger.realtime import SUBSCRIBE_STATUSES, RealtimeFeed, Subscription, SubscriptionState
from pos_printer.printing.worker import PrintQueue

logger = logging.getLogger(__name__)

Sleeper = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True)
class InsertEvent:
    row: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class StatusEvent:
    generation: int
    status: str
    error: Optional[BaseException] = None


IntakeEvent = Union[InsertEvent, StatusEvent]


class IntakeController:
    def __init__(
        self,
        queue: PrintQueue,
        ledger: Ledger,
        feed: RealtimeFeed,
        page_size: int = 100,
        backoff_base: float = 1.0,
        backoff_max: float = 60.0,
        watchdog_interval: float = 60.0,
        sleep: Sleeper = asyncio.sleep,
    ):
        self.queue = queue
        self.ledger = ledger
        self.feed = feed
        self.page_size = page_size
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.watchdog_interval = watchdog_interval
        self._sleep = sleep
        self.events: "asyncio.Queue[IntakeEvent]" = asyncio.Queue()
        self._state = SubscriptionState.IDLE
        self._subscription: Optional[Subscription] = None
        self._generation = 0
        self._resubscribe_task: Optional[asyncio.Task] = None
        self._tasks: List[asyncio.Task] = []
        self.retry_count = 0
        self.reconciliations = 0

    # ------------------------------------------------------------------ intake

    async def add_job(self, job_id: Any, payload: Any) -> bool:
        """
        Single gate for both intake paths. Returns True when the job was queued.

        Invalid payloads and queue-full rejections are marked `error` in the
        ledger; a job that is already queued or printing is a no-op.
        """
        extra = {"job_id": job_id}
        if job_id is None:
            logger.warning("Ledger row without id ignored")
            return False
        if not is_valid_payload(payload):
            logger.warning("Invalid payload received - marking job error", extra=extra)
            await mark_status(self.ledger, job_id, JobStatus.ERROR)
            return False
        if self.queue.contains(job_id):
            logger.debug("Job already queued or printing - ignoring", extra=extra)
            return False
        if self.queue.push(Job(job_id, payload)):
            logger.info(f"Job added to queue (queue size {self.queue.size()})", extra=extra)
            return True
        await mark_status(self.ledger, job_id, JobStatus.ERROR)
        return False

    async def reconcile(self) -> int:
        """
        Pull every pending row (oldest first, one page) through add_job().
        Returns how many were queued; ledger failures are logged, not raised.
        """
        mark = self.queue.completion_mark()
        try:
            jobs = await self.ledger.select_pending(self.page_size)
        except LedgerError as e:
            logger.error(f"Failed to fetch pending print jobs: {e}")
            return 0
        self.reconciliations += 1
        # Rows finished while the select was in flight are stale in this snapshot
        finished = self.queue.completed_since(mark)
        if jobs:
            logger.info(f"Recovered {len(jobs)} pending jobs")
        added = 0
        for job in jobs:
            if job.id in finished:
                logger.debug("Job finished during reconciliation - skipping", extra={"job_id": job.id})
                continue
            if await self.add_job(job.id, job.payload):
                added += 1
        return added

    # ------------------------------------------------------------ subscription

    @property
    def state(self) -> SubscriptionState:
        return self._state

    def observed_state(self) -> SubscriptionState:
        """
        The controller's state, downgraded when the live subscription object
        reports it is closed or errored without ever calling back.
        """
        if self._subscription is not None and self._state in (SubscriptionState.JOINING, SubscriptionState.SUBSCRIBED):
            try:
                live = self._subscription.state
            except Exception:
                return self._state
            if live in (SubscriptionState.CLOSED, SubscriptionState.ERRORED):
                return live
        return self._state

    def backoff_delay(self, counter: int) -> float:
        return min(self.backoff_base * (2 ** max(0, counter - 1)), self.backoff_max)

    async def subscribe(self, force: bool = False) -> None:
        """
        Create a fresh subscription, releasing the current one first.
        Without `force`, a subscription that is joining or subscribed is kept.
        """
        if not force and self._state in (SubscriptionState.JOINING, SubscriptionState.SUBSCRIBED):
            return
        self._cancel_resubscribe()
        self._generation += 1
        generation = self._generation
        await self._release_current()
        self._state = SubscriptionState.JOINING
        logger.info("Starting realtime listener")
        try:
            sub = await self.feed.open(
                on_insert=self._on_insert,
                on_status=lambda status, err=None: self._on_status(generation, status, err),
            )
        except Exception as e:
            logger.error(f"Failed to setup realtime listener: {e}")
            if generation == self._generation:
                await self._fail(SubscriptionError("SETUP_FAILED", e))
            return
        if generation != self._generation:
            # Superseded (failed or forced) while the channel was joining
            await self._release(sub)
            return
        self._subscription = sub

    def _on_insert(self, row: Dict[str, Any]) -> None:
        self.events.put_nowait(InsertEvent(row))

    def _on_status(self, generation: int, status: str, error: Optional[BaseException] = None) -> None:
        self.events.put_nowait(StatusEvent(generation, status, error))

    async def handle_event(self, event: IntakeEvent) -> None:
        if isinstance(event, InsertEvent):
            row = event.row
            if row.get("status") == JobStatus.PENDING.value:
                await self.add_job(row.get("id"), row.get("payload"))
            return

        if event.generation != self._generation:
            logger.debug(f"Ignoring status {event.status} from superseded subscription")
            return
        state = SUBSCRIBE_STATUSES.get(event.status)
        if state is SubscriptionState.SUBSCRIBED:
            self._state = SubscriptionState.SUBSCRIBED
            self.retry_count = 0
            logger.info("Realtime connected")
            await self.reconcile()
        elif state in (SubscriptionState.CLOSED, SubscriptionState.ERRORED):
            logger.warning(f"Realtime channel status: {event.status}")
            await self._fail(SubscriptionError(event.status, event.error), state)
        else:
            logger.info(f"Channel event: {event.status}")

    async def _fail(self, error: SubscriptionError, state: SubscriptionState = SubscriptionState.ERRORED) -> None:
        self._state = state
        # Later callbacks from the failed subscription are stale
        self._generation += 1
        await self._release_current()
        self.retry_count += 1
        delay = self.backoff_delay(self.retry_count)
        logger.warning(f"{error}; resubscribing in {delay:.1f}s (retry {self.retry_count})")
        self._cancel_resubscribe()
        self._resubscribe_task = asyncio.get_running_loop().create_task(self._resubscribe_after(delay))

    async def _resubscribe_after(self, delay: float) -> None:
        await self._sleep(delay)
        await self.subscribe()

    def _cancel_resubscribe(self) -> None:
        task, self._resubscribe_task = self._resubscribe_task, None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    async def _release_current(self) -> None:
        sub, self._subscription = self._subscription, None
        if sub is not None:
            await self._release(sub)

    async def _release(self, sub: Subscription) -> None:
        try:
            await self.feed.release(sub)
        except Exception as e:
            logger.warning(f"Failed to remove previous channel: {e}")

    # ---------------------------------------------------------------- watchdog

    async def watchdog_tick(self) -> None:
        """
        Force a fresh subscription unless subscribed, then always reconcile.
        """
        state = self.observed_state()
        if state is not SubscriptionState.SUBSCRIBED:
            logger.warning(f"Watchdog: restarting listener (state {state.value})")
            await self.subscribe(force=True)
        await self.reconcile()

    async def _watchdog(self) -> None:
        while True:
            await asyncio.sleep(self.watchdog_interval)
            try:
                await self.watchdog_tick()
            except Exception:
                logger.exception("Watchdog error")

    async def _consume(self) -> None:
        while True:
            event = await self.events.get()
            try:
                await self.handle_event(event)
            except Exception:
                logger.exception("Realtime event handling failed")
            finally:
                self.events.task_done()

    # --------------------------------------------------------------- lifecycle

    async def start(self) -> None:
        """Reconcile once, subscribe, then keep the watchdog running."""
        loop = asyncio.get_running_loop()
        self._tasks.append(loop.create_task(self._consume(), name="intake-events"))
        await self.reconcile()
        await self.subscribe()
        self._tasks.append(loop.create_task(self._watchdog(), name="intake-watchdog"))

    async def stop(self) -> None:
        self._cancel_resubscribe()
        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        self._generation += 1
        await self._release_current()
        self._state = SubscriptionState.IDLE

    def status(self) -> Dict[str, Any]:
        return {
            "subscription": self.observed_state().value,
            "retry_count": self.retry_count,
            "reconciliations": self.reconciliations,
            "pending_events": self.events.qsize(),
        }


__all__ = ["InsertEvent", "IntakeController", "IntakeEvent", "StatusEvent"]
