"""
Work queue and job handler for the POS printer agent.

This module owns:
- PrintQueue: a bounded, deduplicating FIFO consumed by at most `concurrency`
  asyncio tasks, with a deliberate pause between consecutive jobs
- make_job_handler(): the per-job step that delivers a job and writes its
  terminal status back to the ledger

It is transport-agnostic: jobs can come from the realtime feed, a
reconciliation pull or the --test-print command.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, Optional, Set, Tuple

from pos_printer.core.models import Job, JobStatus
from pos_printer.ledger.client import Ledger, mark_status
from pos_printer.printing.delivery import DeliveryExecutor

logger = logging.getLogger(__name__)

JobHandler = Callable[[Job], Awaitable[Any]]
Sleeper = Callable[[float], Awaitable[Any]]

QUEUE_MAX_LENGTH = 300


class PrintQueue:
    """
    Bounded FIFO of jobs awaiting delivery.

    A job id is "known" while it is queued or being handled; pushes of a
    known id are rejected so the push and pull intake paths cannot print the
    same row twice.
    """

    def __init__(
        self,
        handler: JobHandler,
        concurrency: int = 1,
        max_length: int = QUEUE_MAX_LENGTH,
        inter_job_pause: float = 0.5,
        sleep: Sleeper = asyncio.sleep,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self.concurrency = concurrency
        self.max_length = max_length
        self.inter_job_pause = inter_job_pause
        self._handler = handler
        self._sleep = sleep
        self._queue: Deque[Job] = deque()
        self._queued_ids: Set[Any] = set()
        self._active_ids: Set[Any] = set()
        # (sequence, job id) of the latest completions, newest last
        self._completed: Deque[Tuple[int, Any]] = deque(maxlen=max(max_length, 1) * 2)
        self._running = 0
        self._tasks: Set[asyncio.Task] = set()
        self._idle = asyncio.Event()
        self._idle.set()
        self.processed = 0

    def size(self) -> int:
        return len(self._queue)

    @property
    def running(self) -> int:
        return self._running

    def contains(self, job_id: Any) -> bool:
        return job_id in self._queued_ids or job_id in self._active_ids

    def completion_mark(self) -> int:
        """Sequence number of the latest finished job; pair with completed_since()."""
        return self.processed

    def completed_since(self, mark: int) -> Set[Any]:
        """
        Ids of jobs that finished after `mark`. Callers holding a ledger snapshot
        taken after the mark use this to drop rows that were printed meanwhile.
        """
        return {job_id for seq, job_id in self._completed if seq > mark}

    def push(self, job: Job) -> bool:
        """
        Enqueue a job. Returns False (and leaves the queue untouched) when the
        queue is full or the job id is already queued or in flight.
        """
        if len(self._queue) >= self.max_length:
            logger.warning("Queue full - rejecting job", extra={"job_id": job.id})
            return False
        if self.contains(job.id):
            logger.warning("Duplicate job detected - skipping enqueue", extra={"job_id": job.id})
            return False
        self._queue.append(job)
        self._queued_ids.add(job.id)
        self._idle.clear()
        asyncio.get_running_loop().call_soon(self._next)
        return True

    def _next(self) -> None:
        while self._running < self.concurrency and self._queue:
            job = self._queue.popleft()
            self._queued_ids.discard(job.id)
            self._active_ids.add(job.id)
            self._running += 1
            task = asyncio.get_running_loop().create_task(self._run(job))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        if self._running == 0 and not self._queue:
            self._idle.set()

    async def _run(self, job: Job) -> None:
        try:
            try:
                await self._handler(job)
            except Exception as e:
                logger.exception(f"Error processing job from queue: {e}", extra={"job_id": job.id})
            finally:
                self._active_ids.discard(job.id)
                self.processed += 1
                self._completed.append((self.processed, job.id))
            if self.inter_job_pause > 0:
                await self._sleep(self.inter_job_pause)
        finally:
            self._running -= 1
            self._next()

    async def join(self) -> None:
        """Wait until nothing is queued or running."""
        await self._idle.wait()

    async def stop(self) -> None:
        """Cancel in-flight work; used at process shutdown only."""
        self._queue.clear()
        self._queued_ids.clear()
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    def status(self) -> Dict[str, Any]:
        return {
            "queue_size": self.size(),
            "running": self._running,
            "concurrency": self.concurrency,
            "max_length": self.max_length,
            "processed": self.processed,
        }


def make_job_handler(executor: DeliveryExecutor, ledger: Optional[Ledger]) -> JobHandler:
    """
    Build the queue handler: deliver the job, then record `printed` or `error`
    in the ledger (best effort; a failed write never blocks the queue).
    """

    async def _handle(job: Job) -> None:
        result = await executor.deliver(job.id, job.payload)
        status = JobStatus.PRINTED if result.ok else JobStatus.ERROR
        if not result.ok:
            logger.error(f"Job processing failed: {result.error}", extra={"job_id": job.id})
        if ledger is not None:
            await mark_status(ledger, job.id, status)

    return _handle


__all__ = ["JobHandler", "PrintQueue", "QUEUE_MAX_LENGTH", "make_job_handler"]
