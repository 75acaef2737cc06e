# test_sync_history.py
#
#
# Imports
from datetime import datetime, timedelta, timezone
#
# Third-Party Imports
import pytest
#
# Local Imports
from pos_sync.Sync.exceptions import StorageFailure
from pos_sync.Sync.models import EntityKind, SyncPassRecord, to_iso
from pos_sync.Sync.sync_history import SyncHistoryLog
#
#######################################################################################################################
#
# Functions:

BASE = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)


def _record(n: int, bills: int = 1) -> SyncPassRecord:
    when = BASE + timedelta(minutes=n)
    return SyncPassRecord(id=to_iso(when), occurred_at=when,
                          counts={EntityKind.CATEGORY: 0, EntityKind.ITEM: n, EntityKind.BILL: bills})


def test_empty_log(db):
    log = SyncHistoryLog(db)
    assert log.list() == []
    assert log.last_successful_sync() is None


def test_list_is_newest_first(db):
    log = SyncHistoryLog(db)
    for n in range(3):
        log.append(_record(n))
    assert [r.id for r in log.list()] == [_record(2).id, _record(1).id, _record(0).id]


def test_log_keeps_twenty_newest(db):
    log = SyncHistoryLog(db)
    for n in range(25):
        log.append(_record(n))
    records = log.list()
    assert len(records) == 20
    assert records[0].id == _record(24).id
    assert records[-1].id == _record(5).id


def test_custom_bound(db):
    log = SyncHistoryLog(db, max_entries=2)
    for n in range(4):
        log.append(_record(n))
    assert [r.counts[EntityKind.ITEM] for r in log.list()] == [3, 2]


def test_bound_above_cap_is_clamped(db):
    log = SyncHistoryLog(db, max_entries=50)
    assert log.max_entries == SyncHistoryLog.MAX_ENTRIES
    for n in range(25):
        log.append(_record(n))
    assert len(log.list()) == 20


def test_invalid_bound():
    with pytest.raises(ValueError):
        SyncHistoryLog(db=None, max_entries=0)


def test_counts_round_trip_including_zeros(db):
    log = SyncHistoryLog(db)
    log.append(_record(4, bills=0))
    stored = log.list()[0]
    assert stored.counts == {EntityKind.CATEGORY: 0, EntityKind.ITEM: 4, EntityKind.BILL: 0}
    assert stored.display_counts() == [{"name": "Items", "count": 4}]
    assert stored.occurred_at == BASE + timedelta(minutes=4)


def test_passes_with_same_start_time_are_both_kept(db):
    log = SyncHistoryLog(db)
    log.append(_record(1))
    log.append(_record(1, bills=2))
    records = log.list()
    assert [r.id for r in records] == [_record(1).id, _record(1).id]
    assert [r.counts[EntityKind.BILL] for r in records] == [2, 1]


def test_write_failure_is_a_storage_failure(db):
    log = SyncHistoryLog(db)
    db.execute_query("DROP TABLE sync_history")
    with pytest.raises(StorageFailure):
        log.append(_record(1))


def test_last_successful_sync_round_trip(db):
    log = SyncHistoryLog(db)
    log.set_last_successful_sync(BASE)
    assert log.last_successful_sync() == BASE

#
# End of test_sync_history.py
########################################################################################################################
