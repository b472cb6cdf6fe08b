"""
Realtime feed of ledger insertions (Supabase Realtime postgres_changes).

The realtime library reports through synchronous callbacks; the feed only
normalizes what it hands over (the inserted row, an upper-case status string)
so the intake controller can turn them into queue events.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional, Protocol

logger = logging.getLogger(__name__)

InsertCallback = Callable[[Dict[str, Any]], None]
StatusCallback = Callable[[str, Optional[BaseException]], None]


class SubscriptionState(str, Enum):
    IDLE = "idle"
    JOINING = "joining"
    SUBSCRIBED = "subscribed"
    CLOSED = "closed"
    ERRORED = "errored"


# subscribe() callback statuses
SUBSCRIBE_STATUSES: Dict[str, SubscriptionState] = {
    "SUBSCRIBED": SubscriptionState.SUBSCRIBED,
    "CLOSED": SubscriptionState.CLOSED,
    "CHANNEL_ERROR": SubscriptionState.ERRORED,
    "TIMED_OUT": SubscriptionState.ERRORED,
}

# channel.state values
CHANNEL_STATES: Dict[str, SubscriptionState] = {
    "joined": SubscriptionState.SUBSCRIBED,
    "joining": SubscriptionState.JOINING,
    "closed": SubscriptionState.CLOSED,
    "errored": SubscriptionState.ERRORED,
    "leaving": SubscriptionState.CLOSED,
}


def normalize_status(status: Any) -> str:
    return str(getattr(status, "value", status)).upper()


def extract_record(payload: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Pull the inserted row out of a postgres_changes payload. Accepts the
    realtime-py shape ({"data": {"record": ...}}) and the flat {"new": ...} shape.
    """
    data = payload.get("data")
    if isinstance(data, Mapping) and isinstance(data.get("record"), Mapping):
        return dict(data["record"])
    for key in ("record", "new"):
        if isinstance(payload.get(key), Mapping):
            return dict(payload[key])
    return {}


class Subscription(Protocol):
    @property
    def state(self) -> SubscriptionState: ...


class RealtimeFeed(Protocol):
    async def open(self, on_insert: InsertCallback, on_status: StatusCallback) -> Subscription: ...

    async def release(self, subscription: Subscription) -> None: ...


class SupabaseSubscription:
    def __init__(self, channel: Any):
        self.channel = channel

    @property
    def state(self) -> SubscriptionState:
        raw = str(getattr(self.channel.state, "value", self.channel.state)).lower()
        return CHANNEL_STATES.get(raw, SubscriptionState.JOINING)


class SupabaseFeed:
    def __init__(
        self,
        client: Any,
        table: str = "print_jobs",
        schema: str = "public",
        channel_name: str = "print_jobs_realtime",
    ):
        self.client = client
        self.table = table
        self.schema = schema
        self.channel_name = channel_name

    async def open(self, on_insert: InsertCallback, on_status: StatusCallback) -> SupabaseSubscription:
        channel = self.client.channel(self.channel_name)
        channel.on_postgres_changes(
            "INSERT",
            schema=self.schema,
            table=self.table,
            callback=lambda payload: on_insert(extract_record(payload)),
        )
        try:
            await channel.subscribe(lambda status, err=None: on_status(normalize_status(status), err))
        except BaseException:
            # Cancelled or failed mid-join: the channel is already registered on the client
            await self.client.remove_channel(channel)
            raise
        return SupabaseSubscription(channel)

    async def release(self, subscription: Subscription) -> None:
        channel = getattr(subscription, "channel", None)
        if channel is not None:
            await self.client.remove_channel(channel)


__all__ = [
    "CHANNEL_STATES",
    "InsertCallback",
    "RealtimeFeed",
    "SUBSCRIBE_STATUSES",
    "StatusCallback",
    "Subscription",
    "SubscriptionState",
    "SupabaseFeed",
    "SupabaseSubscription",
    "extract_record",
    "normalize_status",
]
