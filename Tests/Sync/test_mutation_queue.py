# test_mutation_queue.py
#
#
# Imports
from datetime import timedelta
#
# Third-Party Imports
import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st
#
# Local Imports
from pos_sync.DB.POS_DB import InputError, POSDatabase
from pos_sync.Sync.models import (CreateOperation, DeleteOperation, EntityKind, OperationType, UpdateOperation,
                                  utc_now)
from pos_sync.Sync.mutation_queue import MutationQueue
#
#######################################################################################################################
#
# Functions:

settings.register_profile(
    "db_friendly",
    deadline=1000,
    suppress_health_check=[
        HealthCheck.too_slow,
        HealthCheck.function_scoped_fixture,
    ]
)
settings.load_profile("db_friendly")


@pytest.fixture
def queue(db, clock):
    return MutationQueue(db, clock=clock)


class TestEnqueue:
    def test_enqueue_returns_typed_operation(self, queue):
        op = queue.enqueue(OperationType.CREATE, EntityKind.BILL, "bill-1", {"id": "bill-1", "total_amount": 12.5})
        assert isinstance(op, CreateOperation)
        assert op.id is not None
        assert op.kind is EntityKind.BILL
        assert op.payload == {"id": "bill-1", "total_amount": 12.5}
        assert op.retry_count == 0
        assert op.synced is False

    def test_delete_drops_payload(self, queue):
        op = queue.enqueue(OperationType.DELETE, EntityKind.ITEM, "item-1", {"ignored": True})
        assert isinstance(op, DeleteOperation)
        assert op.payload is None
        assert op.to_wire() == {"operation": "delete", "id": "item-1", "timestamp": op.to_wire()["timestamp"]}

    def test_create_requires_payload(self, queue):
        with pytest.raises(InputError):
            queue.enqueue(OperationType.CREATE, EntityKind.CATEGORY, "cat-1")

    @pytest.mark.parametrize("payload", [["bad"], "name=Drinks", 42])
    def test_create_rejects_non_object_payload(self, queue, payload):
        with pytest.raises(InputError):
            queue.enqueue(OperationType.CREATE, EntityKind.CATEGORY, "cat-1", payload)
        assert queue.pending_count() == 0

    def test_update_requires_entity_id(self, queue):
        with pytest.raises(InputError):
            queue.enqueue(OperationType.UPDATE, EntityKind.CATEGORY, "", {"name": "x"})

    def test_wire_entry_for_update(self, queue):
        op = queue.enqueue(OperationType.UPDATE, EntityKind.CATEGORY, "cat-1", {"name": "Snacks"})
        wire = op.to_wire()
        assert wire["operation"] == "update"
        assert wire["id"] == "cat-1"
        assert wire["data"] == {"name": "Snacks"}
        assert wire["timestamp"] == "2024-05-01T12:00:00.000000Z"

    def test_enqueue_survives_restart(self, db_path, clock):
        first_db = POSDatabase(db_path)
        MutationQueue(first_db, clock=clock).enqueue(OperationType.CREATE, EntityKind.BILL, "bill-1", {"id": "bill-1"})
        first_db.close_connection()

        reopened = POSDatabase(db_path)
        try:
            pending = MutationQueue(reopened, clock=clock).pending_for(EntityKind.BILL)
            assert [op.entity_id for op in pending] == ["bill-1"]
            assert pending[0].payload == {"id": "bill-1"}
        finally:
            reopened.close_connection()


class TestOrderingAndCounts:
    def test_pending_is_ordered_by_enqueue_time(self, queue):
        queue.enqueue(OperationType.CREATE, EntityKind.ITEM, "item-1", {"name": "a"})
        queue.enqueue(OperationType.UPDATE, EntityKind.ITEM, "item-1", {"name": "b"})
        queue.enqueue(OperationType.DELETE, EntityKind.ITEM, "item-1")
        pending = queue.pending_for(EntityKind.ITEM)
        assert [type(op) for op in pending] == [CreateOperation, UpdateOperation, DeleteOperation]

    def test_same_timestamp_falls_back_to_queue_id(self, db, clock):
        clock.step = timedelta(0)
        queue = MutationQueue(db, clock=clock)
        first = queue.enqueue(OperationType.UPDATE, EntityKind.ITEM, "item-1", {"name": "a"})
        second = queue.enqueue(OperationType.DELETE, EntityKind.ITEM, "item-1")
        assert [op.id for op in queue.pending_for(EntityKind.ITEM)] == [first.id, second.id]

    def test_pending_is_filtered_by_kind(self, queue):
        queue.enqueue(OperationType.CREATE, EntityKind.ITEM, "item-1", {"name": "a"})
        queue.enqueue(OperationType.CREATE, EntityKind.CATEGORY, "cat-1", {"name": "c"})
        assert [op.entity_id for op in queue.pending_for(EntityKind.CATEGORY)] == ["cat-1"]
        assert queue.pending_count() == 2
        assert queue.pending_count(EntityKind.ITEM) == 1
        assert queue.pending_count(EntityKind.BILL) == 0


class TestBookkeeping:
    def test_mark_synced_is_idempotent(self, queue):
        op = queue.enqueue(OperationType.CREATE, EntityKind.BILL, "bill-1", {"id": "bill-1"})
        queue.mark_synced(op.id)
        first = queue.get(op.id)
        queue.mark_synced(op.id)
        second = queue.get(op.id)
        assert first.synced and second.synced
        assert first.synced_at == second.synced_at
        assert queue.pending_count() == 0

    def test_record_failure_increments_and_keeps_pending(self, queue):
        op = queue.enqueue(OperationType.CREATE, EntityKind.ITEM, "item-1", {"name": "a"})
        queue.record_failure(op.id, "timeout")
        queue.record_failure(op.id, "HTTP 500")
        stored = queue.get(op.id)
        assert stored.retry_count == 2
        assert stored.last_error == "HTTP 500"
        assert not stored.synced
        assert [o.id for o in queue.failed_operations()] == [op.id]

    def test_record_failure_ignored_once_synced(self, queue):
        op = queue.enqueue(OperationType.CREATE, EntityKind.ITEM, "item-1", {"name": "a"})
        queue.mark_synced(op.id)
        queue.record_failure(op.id, "late error")
        assert queue.get(op.id).retry_count == 0

    def test_has_pending_respects_exclusions(self, queue):
        op = queue.enqueue(OperationType.UPDATE, EntityKind.CATEGORY, "cat-1", {"name": "a"})
        assert queue.has_pending(EntityKind.CATEGORY, "cat-1")
        assert not queue.has_pending(EntityKind.CATEGORY, "cat-1", exclude_ids=[op.id])
        assert not queue.has_pending(EntityKind.ITEM, "cat-1")

    def test_prune_only_removes_old_synced_rows(self, queue):
        done = queue.enqueue(OperationType.CREATE, EntityKind.BILL, "bill-1", {"id": "bill-1"})
        waiting = queue.enqueue(OperationType.CREATE, EntityKind.BILL, "bill-2", {"id": "bill-2"})
        queue.mark_synced(done.id)

        assert queue.prune_synced(utc_now() - timedelta(days=1)) == 0
        assert queue.prune_synced(utc_now() + timedelta(days=1)) == 1
        assert queue.get(done.id) is None
        assert queue.get(waiting.id) is not None


@given(st.lists(st.tuples(st.sampled_from(list(OperationType)), st.sampled_from(["a", "b", "c"])),
                min_size=1, max_size=15))
def test_pending_preserves_enqueue_order(db, clock, ops):
    db.execute_query("DELETE FROM sync_queue")
    queue = MutationQueue(db, clock=clock)
    enqueued = [queue.enqueue(op_type, EntityKind.ITEM, entity_id, {"id": entity_id}) for op_type, entity_id in ops]

    pending = queue.pending_for(EntityKind.ITEM)
    assert [op.id for op in pending] == [op.id for op in enqueued]
    for entity_id in {"a", "b", "c"}:
        expected = [op.operation_type for op in enqueued if op.entity_id == entity_id]
        assert [op.operation_type for op in pending if op.entity_id == entity_id] == expected

#
# End of test_mutation_queue.py
########################################################################################################################
