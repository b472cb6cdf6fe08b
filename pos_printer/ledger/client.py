"""
Job ledger access (Supabase `print_jobs` table).

The ledger is a thin data layer: read pending rows in creation order, write
terminal statuses. No business logic lives here.
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional, Protocol

from pos_printer.core.errors import LedgerError
from pos_printer.core.models import Job, JobStatus

logger = logging.getLogger(__name__)


class Ledger(Protocol):
    async def select_pending(self, limit: int) -> List[Job]: ...

    async def update_status(self, job_id: Any, status: JobStatus) -> None: ...


async def create_supabase_client(url: str, key: str):
    """
    Create the async Supabase client used by both the ledger and the realtime feed.
    The agent runs unattended with a service key, so no auth session is kept.
    """
    from supabase import acreate_client
    from supabase.lib.client_options import AsyncClientOptions

    options = AsyncClientOptions(auto_refresh_token=False, persist_session=False)
    return await acreate_client(url, key, options=options)


class SupabaseLedger:
    def __init__(self, client: Any, table: str = "print_jobs"):
        self.client = client
        self.table = table

    async def select_pending(self, limit: int = 100) -> List[Job]:
        """
        Return up to `limit` pending rows, oldest first.

        Raises:
            LedgerError on any query failure.
        """
        try:
            resp = await (
                self.client.table(self.table)
                .select("*")
                .eq("status", JobStatus.PENDING.value)
                .order("created_at", desc=False)
                .limit(limit)
                .execute()
            )
        except Exception as e:
            raise LedgerError("Failed to fetch pending print jobs", {"error": str(e)}) from e
        return [Job.from_row(row) for row in (resp.data or [])]

    async def update_status(self, job_id: Any, status: JobStatus) -> None:
        """
        Write a terminal status. Writing the same status twice is harmless.

        Raises:
            ValueError if `status` is not terminal; LedgerError on write failure.
        """
        status = JobStatus(status)
        if not status.terminal:
            raise ValueError(f"Refusing to write non-terminal status {status.value!r}")
        try:
            await self.client.table(self.table).update({"status": status.value}).eq("id", job_id).execute()
        except Exception as e:
            raise LedgerError("Failed to update print job status", {"job_id": job_id, "status": status.value}) from e


async def mark_status(ledger: Ledger, job_id: Any, status: JobStatus) -> bool:
    """
    Best-effort terminal status write. Failures are logged and reported as False;
    the row stays pending and the next reconciliation pull picks it up again.
    """
    try:
        await ledger.update_status(job_id, status)
    except LedgerError as e:
        logger.error(f"Status write failed ({status.value}): {e}", extra={"job_id": job_id})
        return False
    logger.info(f"Job marked {status.value}", extra={"job_id": job_id})
    return True


__all__ = ["Ledger", "SupabaseLedger", "create_supabase_client", "mark_status"]
