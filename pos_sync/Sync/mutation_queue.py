# mutation_queue.py
# Description: Durable FIFO of local mutations awaiting upload, stored in the `sync_queue` table.
#
# Imports
import json
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional
#
# Third-Party Imports
from loguru import logger
#
# Local Imports
from ..DB.POS_DB import InputError, POSDatabase, POSDatabaseError
from ..Metrics.metrics_logger import log_counter
from .exceptions import StorageFailure
from .models import EntityKind, MutationOperation, OperationType, to_iso, utc_now
#
########################################################################################################################
#
# Classes and Functions:


class MutationQueue:
    """
    Append-only log of pending local changes.

    Every write commits before returning, so a queued operation survives a process
    restart. Rows are flipped to synced, never removed, except by `prune_synced`.
    """

    def __init__(self, db: POSDatabase, clock: Callable[[], datetime] = utc_now):
        self.db = db
        self._clock = clock

    def enqueue(self, operation_type: OperationType, kind: EntityKind, entity_id: str,
                payload: Optional[Dict[str, Any]] = None) -> MutationOperation:
        """
        Durably records one local mutation.

        Args:
            operation_type: Create, Update or Delete.
            kind: Entity kind the mutation applies to.
            entity_id: Identifier of the mutated entity.
            payload: Full entity data. Required for Create/Update, dropped for Delete.

        Returns:
            The stored operation, including its queue id.

        Raises:
            InputError: If a Create/Update payload is missing or not an object, or the entity id is empty.
            StorageFailure: If the row cannot be written.
        """
        if not entity_id:
            raise InputError("entity_id is required to queue a mutation.")
        if operation_type is OperationType.DELETE:
            payload = None
        elif payload is None:
            raise InputError(f"{operation_type.value} of {kind.value} '{entity_id}' requires a payload.")
        elif not isinstance(payload, dict):
            raise InputError(f"{operation_type.value} of {kind.value} '{entity_id}' needs an object payload, "
                             f"got {type(payload).__name__}.")

        enqueued_at = to_iso(self._clock())
        data = json.dumps(payload) if payload is not None else None
        try:
            cursor = self.db.execute_query(
                "INSERT INTO sync_queue (operation_type, entity_type, entity_id, data, enqueued_at, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (operation_type.value, kind.value, entity_id, data, enqueued_at, self.db.utc_now_iso()),
            )
            row_id = cursor.lastrowid
        except POSDatabaseError as e:
            raise StorageFailure(f"Failed to queue {operation_type.value} for {kind.value} '{entity_id}': {e}") from e

        logger.debug(f"Queued {operation_type.value} for {kind.value} '{entity_id}' as op #{row_id}")
        log_counter("sync_queue_enqueued", labels={"kind": kind.value, "operation": operation_type.value})
        return self.get(row_id)

    def get(self, operation_id: int) -> Optional[MutationOperation]:
        rows = self._select("SELECT * FROM sync_queue WHERE id = ?", (operation_id,))
        return rows[0] if rows else None

    def pending_for(self, kind: EntityKind) -> List[MutationOperation]:
        """Unsynced operations of one kind, oldest first (ties broken by queue id)."""
        return self._select(
            "SELECT * FROM sync_queue WHERE entity_type = ? AND synced = 0 ORDER BY enqueued_at ASC, id ASC",
            (kind.value,),
        )

    def pending_count(self, kind: Optional[EntityKind] = None) -> int:
        if kind is None:
            sql, params = "SELECT COUNT(*) AS n FROM sync_queue WHERE synced = 0", ()
        else:
            sql, params = "SELECT COUNT(*) AS n FROM sync_queue WHERE synced = 0 AND entity_type = ?", (kind.value,)
        try:
            return self.db.execute_query(sql, params).fetchone()['n']
        except POSDatabaseError as e:
            raise StorageFailure(f"Failed to count pending operations: {e}") from e

    def has_pending(self, kind: EntityKind, entity_id: str, exclude_ids: Iterable[int] = ()) -> bool:
        """True if an unsynced operation for this entity exists outside `exclude_ids`."""
        excluded = list(exclude_ids)
        sql = "SELECT 1 FROM sync_queue WHERE entity_type = ? AND entity_id = ? AND synced = 0"
        params: List[Any] = [kind.value, entity_id]
        if excluded:
            sql += f" AND id NOT IN ({', '.join('?' for _ in excluded)})"
            params.extend(excluded)
        try:
            return self.db.execute_query(sql + " LIMIT 1", tuple(params)).fetchone() is not None
        except POSDatabaseError as e:
            raise StorageFailure(f"Failed to look up pending operations for {kind.value} '{entity_id}': {e}") from e

    def mark_synced(self, operation_id: int) -> None:
        """Flips one operation to synced. Marking an already-synced operation is a no-op."""
        self.mark_batch_synced([operation_id])

    def mark_batch_synced(self, operation_ids: Iterable[int]) -> int:
        """
        Flips many operations to synced in one statement.

        Joins the caller's transaction when one is open. Returns the number of rows that changed.
        """
        ids = list(operation_ids)
        if not ids:
            return 0
        placeholders = ', '.join('?' for _ in ids)
        try:
            cursor = self.db.execute_query(
                f"UPDATE sync_queue SET synced = 1, synced_at = ? WHERE synced = 0 AND id IN ({placeholders})",
                (self.db.utc_now_iso(), *ids),
            )
        except POSDatabaseError as e:
            raise StorageFailure(f"Failed to mark operations synced: {e}") from e
        return cursor.rowcount

    def record_failure(self, operation_id: int, message: str) -> None:
        """Increments the retry counter and stores the error. Ignored for synced operations."""
        self.record_batch_failure([operation_id], message)

    def record_batch_failure(self, operation_ids: Iterable[int], message: str) -> int:
        ids = list(operation_ids)
        if not ids:
            return 0
        placeholders = ', '.join('?' for _ in ids)
        try:
            cursor = self.db.execute_query(
                f"UPDATE sync_queue SET retry_count = retry_count + 1, last_error = ? "
                f"WHERE synced = 0 AND id IN ({placeholders})",
                (message, *ids),
            )
        except POSDatabaseError as e:
            raise StorageFailure(f"Failed to record failure for operations {ids}: {e}") from e
        return cursor.rowcount

    def failed_operations(self, kind: Optional[EntityKind] = None, min_retry_count: int = 1) -> List[MutationOperation]:
        """Unsynced operations that have failed at least `min_retry_count` times."""
        sql = "SELECT * FROM sync_queue WHERE synced = 0 AND retry_count >= ?"
        params: List[Any] = [min_retry_count]
        if kind is not None:
            sql += " AND entity_type = ?"
            params.append(kind.value)
        return self._select(sql + " ORDER BY retry_count DESC, enqueued_at ASC, id ASC", tuple(params))

    def prune_synced(self, older_than: datetime) -> int:
        """Deletes synced operations whose `synced_at` is before `older_than`. Unsynced rows are never touched."""
        try:
            cursor = self.db.execute_query(
                "DELETE FROM sync_queue WHERE synced = 1 AND synced_at IS NOT NULL AND synced_at < ?",
                (to_iso(older_than),),
            )
        except POSDatabaseError as e:
            raise StorageFailure(f"Failed to prune synced operations: {e}") from e
        if cursor.rowcount:
            logger.info(f"Pruned {cursor.rowcount} synced operations older than {to_iso(older_than)}")
        return cursor.rowcount

    def _select(self, sql: str, params: tuple) -> List[MutationOperation]:
        try:
            rows = self.db.execute_query(sql, params).fetchall()
        except POSDatabaseError as e:
            raise StorageFailure(f"Failed to read sync queue: {e}") from e
        return [MutationOperation.from_row(dict(row)) for row in rows]

#
# End of mutation_queue.py
########################################################################################################################
