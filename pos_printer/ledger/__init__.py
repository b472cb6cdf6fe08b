"""
Ledger access for the POS printer agent.

- client: pending-row queries and terminal status writes
- realtime: the insert notification feed and its subscription states
"""

from .client import Ledger, SupabaseLedger, create_supabase_client, mark_status
from .realtime import (
    RealtimeFeed,
    Subscription,
    SubscriptionState,
    SupabaseFeed,
    extract_record,
)

__all__ = [
    "Ledger",
    "RealtimeFeed",
    "Subscription",
    "SubscriptionState",
    "SupabaseFeed",
    "SupabaseLedger",
    "create_supabase_client",
    "extract_record",
    "mark_status",
]
