"""
Job model shared by the intake, queue and ledger layers.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional


class JobStatus(str, Enum):
    PENDING = "pending"
    PRINTED = "printed"
    ERROR = "error"

    @property
    def terminal(self) -> bool:
        return self is not JobStatus.PENDING


@dataclass
class Job:
    """
    A ledger row awaiting (or done with) printing. `id` is the dedup identity;
    `payload` is the receipt data, opaque to everything except the render stage.
    """

    id: Any
    payload: Any
    status: JobStatus = JobStatus.PENDING
    created_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Job":
        """
        Build a Job from a ledger row. Unknown statuses are kept as pending so
        the shape check, not the model, decides what happens to them.
        """
        try:
            status = JobStatus(str(row.get("status", "pending")))
        except ValueError:
            status = JobStatus.PENDING
        return cls(
            id=row.get("id"),
            payload=row.get("payload"),
            status=status,
            created_at=row.get("created_at"),
        )


__all__ = ["Job", "JobStatus"]
