# Ensure the repository root is on sys.path so `pos_printer` can be imported in tests.

import asyncio
import copy
import sys
import time
from pathlib import Path
from typing import Any, Dict, List, Optional


def _ensure_repo_root_on_syspath() -> None:
    # This file lives at: <repo_root>/tests/conftest.py
    # We want to add <repo_root> to sys.path (if not already present).
    here = Path(__file__).resolve()
    repo_root = here.parent.parent
    repo_str = str(repo_root)
    if repo_str not in sys.path:
        sys.path.insert(0, repo_str)


_ensure_repo_root_on_syspath()

import pytest

from pos_printer.core.config import DEFAULTS
from pos_printer.core.errors import LedgerError
from pos_printer.core.models import Job, JobStatus
from pos_printer.ledger.realtime import SUBSCRIBE_STATUSES, SubscriptionState

VENDOR = 0x0493
PRODUCT = 0x8760


class PrinterLog:
    """
    Shared record of everything the fake USB printers saw.

    - fail_opens: number of upcoming opens that raise
    - fail_submits: number of upcoming command streams that fail at the cut
    - open_delay / hang_seconds: blocking delays (run in worker threads)
    A "submit attempt" is counted when the stream reaches cut(), the last command.
    """

    def __init__(self, fail_opens: int = 0, fail_submits: int = 0, open_delay: float = 0.0, hang_seconds: float = 0.0):
        self.fail_opens = fail_opens
        self.fail_submits = fail_submits
        self.open_delay = open_delay
        self.hang_seconds = hang_seconds
        self.open_attempts = 0
        self.opens = 0
        self.closes = 0
        self.submit_attempts = 0
        self.printed = 0
        self.calls: List[tuple] = []
        self.printers: List["FakePrinter"] = []

    def factory(self, vendor_id: int, product_id: int) -> "FakePrinter":
        self.open_attempts += 1
        if self.open_delay:
            time.sleep(self.open_delay)
        if self.fail_opens > 0:
            self.fail_opens -= 1
            raise OSError("USB device not found")
        self.opens += 1
        printer = FakePrinter(self)
        self.printers.append(printer)
        return printer


class FakePrinter:
    def __init__(self, log: PrinterLog):
        self.log = log
        self.closed = False

    def set(self, **kwargs):
        self.log.calls.append(("set", kwargs))

    def text(self, txt: str):
        self.log.calls.append(("text", txt))

    def ln(self, count: int = 1):
        self.log.calls.append(("ln", count))

    def cut(self):
        self.log.submit_attempts += 1
        if self.log.hang_seconds:
            time.sleep(self.log.hang_seconds)
        if self.log.fail_submits > 0:
            self.log.fail_submits -= 1
            raise OSError("USB write failed")
        self.log.calls.append(("cut",))
        self.log.printed += 1

    def close(self):
        self.log.closes += 1
        self.closed = True


class FakeLedger:
    def __init__(self):
        self.rows: Dict[Any, Dict[str, Any]] = {}
        self.writes: List[tuple] = []
        self.selects = 0
        self.fail_select = False
        self.fail_update = False

    def add(self, job_id: Any, payload: Any, status: str = "pending", created_at: Optional[str] = None) -> None:
        created_at = created_at or f"2024-01-01T00:00:{len(self.rows):02d}Z"
        self.rows[job_id] = {"id": job_id, "payload": payload, "status": status, "created_at": created_at}

    def status_of(self, job_id: Any) -> str:
        return self.rows[job_id]["status"]

    async def select_pending(self, limit: int) -> List[Job]:
        self.selects += 1
        if self.fail_select:
            raise LedgerError("select failed")
        pending = [r for r in self.rows.values() if r["status"] == "pending"]
        pending.sort(key=lambda r: r["created_at"])
        return [Job.from_row(r) for r in pending[:limit]]

    async def update_status(self, job_id: Any, status: JobStatus) -> None:
        status = JobStatus(status)
        if self.fail_update:
            raise LedgerError("update failed", {"job_id": job_id})
        self.writes.append((job_id, status.value))
        if job_id in self.rows:
            self.rows[job_id]["status"] = status.value


class FakeSubscription:
    def __init__(self, on_insert, on_status):
        self.on_insert = on_insert
        self.on_status = on_status
        self.live_state = SubscriptionState.JOINING
        self.released = False

    @property
    def state(self) -> SubscriptionState:
        return self.live_state

    def emit_status(self, status: str, err: Optional[BaseException] = None) -> None:
        self.live_state = SUBSCRIBE_STATUSES.get(status, self.live_state)
        self.on_status(status, err)

    def emit_insert(self, row: Dict[str, Any]) -> None:
        self.on_insert(row)


class FakeFeed:
    def __init__(self):
        self.subscriptions: List[FakeSubscription] = []
        self.released: List[FakeSubscription] = []
        self.fail_opens = 0

    @property
    def current(self) -> FakeSubscription:
        return self.subscriptions[-1]

    async def open(self, on_insert, on_status) -> FakeSubscription:
        if self.fail_opens > 0:
            self.fail_opens -= 1
            raise ConnectionError("websocket refused")
        sub = FakeSubscription(on_insert, on_status)
        self.subscriptions.append(sub)
        return sub

    async def release(self, subscription: FakeSubscription) -> None:
        subscription.released = True
        subscription.live_state = SubscriptionState.CLOSED
        self.released.append(subscription)


class SleepRecorder:
    """Stand-in for asyncio.sleep that records delays and only yields."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


async def wait_until(predicate, timeout: float = 2.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached before timeout")
        await asyncio.sleep(0.005)


def make_payload(total: Any = 15000, **overrides: Any) -> Dict[str, Any]:
    payload = {
        "company": {"name": "Tienda Uno", "nit": "900123456-7", "phone": "3001234567"},
        "invoice": {"number": "F-100", "cashier": "ana", "date": "2024-05-01", "time": "10:30"},
        "customer": {"name": "Carlos Perez", "id_number": "1020304050"},
        "items": [
            {"description": "Cafe", "qty": 2, "price": 2500},
            {"description": "Pan", "qty": 1, "price": 10000},
        ],
        "totals": {"subtotal": 15000, "discount": 0, "total": total},
        "payments": [{"method": "cash", "amount": 20000}],
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def payload() -> Dict[str, Any]:
    return make_payload()


@pytest.fixture
def printer_log() -> PrinterLog:
    return PrinterLog()


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def feed() -> FakeFeed:
    return FakeFeed()


@pytest.fixture
def sleeps() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def until():
    return wait_until


@pytest.fixture
def agent_cfg() -> Dict[str, Any]:
    cfg = copy.deepcopy(DEFAULTS)
    cfg.update(
        {
            "usb_vendor_id": VENDOR,
            "usb_product_id": PRODUCT,
            "inter_job_pause_seconds": 0,
            "retry_backoff_base": 0.01,
            "printer_timeout_seconds": 1.0,
            "connect_grace_seconds": 1.0,
            "listener_backoff_base": 0.01,
            "watchdog_interval_seconds": 3600,
        }
    )
    return cfg
