# conftest.py
# Shared fixtures for the pos_sync test-suite: a temporary local store, a controllable clock,
# a manual scheduler for debounce timers and an in-memory stand-in for the POS server.
#
# Imports
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional
#
# Third-Party Imports
import pytest
#
# Local Imports
from pos_sync.DB.POS_DB import POSDatabase
from pos_sync.Sync.models import EntityKind
from pos_sync.Sync.network_monitor import NetworkMonitor
from pos_sync.Sync.service import SyncService
from pos_sync.pos_api.schemas import BillSnapshot, CategorySnapshot, ItemSnapshot, SyncResponse
#
#######################################################################################################################
#
# Helpers:

SERVER_TS = "2024-05-01T12:30:00Z"


class FakeClock:
    """Returns a fixed start time, advancing by `step` on every call so timestamps stay unique."""

    def __init__(self, start: datetime = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc),
                 step: timedelta = timedelta(seconds=1)):
        self.now = start
        self.step = step

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + self.step
        return current


class _ManualHandle:
    def __init__(self, when: float, callback):
        self.when = when
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class ManualScheduler:
    """Deterministic replacement for `AsyncioScheduler`; time only moves on `advance`."""

    def __init__(self):
        self.time = 0.0
        self.handles: List[_ManualHandle] = []

    def call_later(self, delay: float, callback) -> _ManualHandle:
        handle = _ManualHandle(self.time + delay, callback)
        self.handles.append(handle)
        return handle

    @property
    def pending(self) -> List[_ManualHandle]:
        return [h for h in self.handles if not h.cancelled]

    def advance(self, seconds: float):
        self.time += seconds
        due = [h for h in self.handles if not h.cancelled and h.when <= self.time]
        self.handles = [h for h in self.handles if h not in due]
        for handle in sorted(due, key=lambda h: h.when):
            handle.callback()


class FakePOSClient:
    """
    In-memory POS server. Records every batch it receives and answers with snapshots of
    the created/updated entities. Set `failures[kind]` to an exception to make that kind fail.
    """

    def __init__(self, token: Optional[str] = "test-token"):
        self.base_url = "http://pos.test"
        self.token = token
        self.calls: List[Dict[str, Any]] = []
        self.failures: Dict[str, Exception] = {}
        self.remote_catalog: Dict[str, list] = {"category": [], "item": []}
        self.closed = False

    @property
    def has_session(self) -> bool:
        return bool(self.token)

    def set_token(self, token):
        self.token = token

    async def sync_batch(self, kind: str, operations: List[Dict[str, Any]], device_id: str) -> SyncResponse:
        self.calls.append({"kind": kind, "operations": operations, "device_id": device_id})
        if kind in self.failures:
            raise self.failures[kind]
        snapshots = []
        for op in operations:
            if op["operation"] == "delete":
                continue
            if kind == "category":
                snapshots.append(CategorySnapshot(id=op["id"], updated_at=SERVER_TS))
            elif kind == "item":
                snapshots.append(ItemSnapshot(id=op["id"], last_updated=SERVER_TS, image_url=f"https://cdn.test/{op['id']}.png"))
            else:
                snapshots.append(BillSnapshot(id=op["id"], bill_number=f"B-{len(self.calls):04d}", updated_at=SERVER_TS))
        counts = {
            "synced": len(operations),
            "created": sum(1 for op in operations if op["operation"] == "create"),
            "updated": sum(1 for op in operations if op["operation"] == "update"),
            "deleted": sum(1 for op in operations if op["operation"] == "delete"),
        }
        return SyncResponse(**counts, **{SyncResponse.SNAPSHOT_KEYS[kind]: snapshots})

    async def fetch_all(self, kind: str) -> list:
        if kind in self.failures:
            raise self.failures[kind]
        return list(self.remote_catalog[kind])

    async def close(self):
        self.closed = True

    def calls_for(self, kind: str) -> List[Dict[str, Any]]:
        return [c for c in self.calls if c["kind"] == kind]


def insert_local_row(db: POSDatabase, kind: EntityKind, entity_id: str, **fields):
    """Writes a minimal local entity row, as the app's screens would before enqueueing."""
    now = db.utc_now_iso()
    row = {"id": entity_id, "created_at": now, "updated_at": now}
    if kind is EntityKind.BILL:
        row.update({"items": [], "total_amount": 0.0})
    else:
        row["name"] = f"{kind.value} {entity_id}"
    row.update(fields)
    db.insert_row(kind.table, row)


#
# Fixtures:

@pytest.fixture
def db_path(tmp_path) -> Path:
    return tmp_path / "pos_local.sqlite"


@pytest.fixture
def db(db_path):
    database = POSDatabase(db_path)
    yield database
    database.close_connection()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def fake_client():
    return FakePOSClient()


@pytest.fixture
def network(scheduler):
    return NetworkMonitor(initial_online=True, debounce_seconds=1.0, scheduler=scheduler)


@pytest.fixture
def service(db, fake_client, network, clock):
    # Long post-enqueue delay so the timer never fires unless a test waits for it.
    return SyncService(db, fake_client, network, device_id="device-test", clock=clock, enqueue_sync_delay=60.0)


@pytest.fixture
def add_local_row(db):
    def _add(kind: EntityKind, entity_id: str, **fields):
        insert_local_row(db, kind, entity_id, **fields)
    return _add

#
# End of conftest.py
#######################################################################################################################
