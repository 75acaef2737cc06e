# reconciler.py
# Description: Per-kind upload of queued mutations and write-back of server-derived fields.
#
# Imports
import asyncio
import time
from typing import Any, ClassVar, Dict, Iterable, List
#
# Third-Party Imports
from loguru import logger
from pydantic import ValidationError
#
# Local Imports
from ..DB.POS_DB import POSDatabase, POSDatabaseError
from ..Metrics.metrics_logger import log_counter, log_histogram
from ..pos_api.client import POSAPIClient
from ..pos_api.exceptions import APIConnectionError, APIRequestError, APIResponseError, AuthenticationError
from ..pos_api.schemas import SyncResponse
from .exceptions import RemoteRejected, StorageFailure, TransportFailure, Unauthorized
from .models import EntityKind, KindSyncResult, MutationOperation, SyncErrorKind
from .mutation_queue import MutationQueue
from .network_monitor import NetworkMonitor
#
########################################################################################################################
#
# Classes and Functions:


class EntityReconciler:
    """
    Uploads every pending operation of one entity kind as a single ordered batch.

    On success the whole batch is marked synced and the returned snapshots are applied
    in one local transaction. On failure every operation in the batch gets its retry
    counter bumped and nothing else changes. Only `StorageFailure` is raised; remote
    problems come back as a failed `KindSyncResult`.
    """
    kind: ClassVar[EntityKind]

    def __init__(self, db: POSDatabase, queue: MutationQueue, client: POSAPIClient,
                 network: NetworkMonitor, device_id: str, timeout: float = 30.0):
        self.db = db
        self.queue = queue
        self.client = client
        self.network = network
        self.device_id = device_id
        self.timeout = timeout

    async def sync_kind(self) -> KindSyncResult:
        if not self.network.currently_online():
            return KindSyncResult(self.kind, success=False, error=SyncErrorKind.OFFLINE, message="Device is offline")

        operations = self.queue.pending_for(self.kind)
        if not operations:
            logger.debug(f"No pending {self.kind.plural} to sync")
            return KindSyncResult(self.kind, success=True, synced=0)

        batch_ids = [op.id for op in operations]
        start_time = time.perf_counter()
        try:
            response = await self._send_batch(operations)
        except Unauthorized as e:
            logger.warning(f"{self.kind.label} sync refused: {e}")
            log_counter("sync_kind_failure", labels={"kind": self.kind.value, "error": SyncErrorKind.UNAUTHORIZED.value})
            return KindSyncResult(self.kind, success=False, error=SyncErrorKind.UNAUTHORIZED, message=str(e))
        except (RemoteRejected, TransportFailure) as e:
            error_kind = SyncErrorKind.from_exception(e)
            logger.error(f"{self.kind.label} sync failed ({error_kind.value}) for {len(batch_ids)} operation(s): {e}")
            self.queue.record_batch_failure(batch_ids, str(e))
            log_counter("sync_kind_failure", labels={"kind": self.kind.value, "error": error_kind.value})
            return KindSyncResult(self.kind, success=False, error=error_kind, message=str(e))

        try:
            with self.db.transaction():
                self.queue.mark_batch_synced(batch_ids)
                applied = self.apply_snapshots(response.snapshots_for(self.kind.value), batch_ids)
        except POSDatabaseError as e:
            raise StorageFailure(f"Failed to commit {self.kind.value} sync results: {e}") from e

        duration = time.perf_counter() - start_time
        logger.info(f"Synced {len(batch_ids)} {self.kind.plural} "
                    f"(server: created={response.created}, updated={response.updated}, deleted={response.deleted}; "
                    f"{applied} snapshot(s) applied) in {duration:.3f}s")
        log_counter("sync_kind_operations_synced", value=len(batch_ids), labels={"kind": self.kind.value})
        log_histogram("sync_kind_duration_seconds", duration, labels={"kind": self.kind.value})
        return KindSyncResult(self.kind, success=True, synced=len(batch_ids))

    async def _send_batch(self, operations: List[MutationOperation]) -> SyncResponse:
        """Calls the remote with a timeout and translates client errors into the sync taxonomy."""
        if not self.client.has_session:
            raise Unauthorized("No session token")
        batch = [op.to_wire() for op in operations]
        try:
            return await asyncio.wait_for(
                self.client.sync_batch(self.kind.value, batch, self.device_id),
                timeout=self.timeout,
            )
        except AuthenticationError as e:
            raise Unauthorized(str(e)) from e
        except APIRequestError as e:
            raise RemoteRejected(str(e), status_code=e.status_code, response_data=e.response_data) from e
        except (APIConnectionError, APIResponseError) as e:
            raise TransportFailure(str(e)) from e
        except asyncio.TimeoutError as e:
            raise TransportFailure(f"{self.kind.label} sync timed out after {self.timeout}s") from e
        except ValidationError as e:
            # The request schema refused a queued entry.
            raise RemoteRejected(f"{self.kind.label} batch failed request validation: {e}") from e
        except Exception as e:
            logger.exception(f"Unexpected error while sending {self.kind.value} batch: {e}")
            raise TransportFailure(f"{self.kind.label} sync failed unexpectedly: {e}") from e

    def apply_snapshots(self, snapshots: Iterable[Any], batch_ids: List[int]) -> int:
        """
        Writes server-derived fields onto local rows. Must run inside the caller's transaction.

        A row is only stamped `is_synced` when no other pending operation for it remains.
        Snapshots for rows that no longer exist locally are skipped.
        """
        applied = 0
        for snapshot in snapshots:
            if self.db.get_row(self.kind.table, snapshot.id) is None:
                logger.debug(f"Skipping snapshot for missing local {self.kind.value} '{snapshot.id}'")
                continue
            fields = self.snapshot_fields(snapshot)
            if not self.queue.has_pending(self.kind, snapshot.id, exclude_ids=batch_ids):
                fields["is_synced"] = True
            self.db.update_row(self.kind.table, snapshot.id, fields)
            applied += 1
        return applied

    def snapshot_fields(self, snapshot) -> Dict[str, Any]:
        return {k: v for k, v in snapshot.server_fields().items() if v is not None}


class CategoryReconciler(EntityReconciler):
    kind = EntityKind.CATEGORY


class ItemReconciler(EntityReconciler):
    kind = EntityKind.ITEM

    def snapshot_fields(self, snapshot) -> Dict[str, Any]:
        fields = super().snapshot_fields(snapshot)
        # The server may drop an image; a null image_url is authoritative for items.
        fields["image_url"] = snapshot.image_url
        return fields


class BillReconciler(EntityReconciler):
    kind = EntityKind.BILL


RECONCILER_CLASSES = {
    EntityKind.CATEGORY: CategoryReconciler,
    EntityKind.ITEM: ItemReconciler,
    EntityKind.BILL: BillReconciler,
}


def build_reconcilers(db: POSDatabase, queue: MutationQueue, client: POSAPIClient, network: NetworkMonitor,
                      device_id: str, timeout: float = 30.0) -> Dict[EntityKind, EntityReconciler]:
    """One reconciler per kind, keyed in sync order."""
    return {
        kind: RECONCILER_CLASSES[kind](db, queue, client, network, device_id, timeout=timeout)
        for kind in EntityKind.sync_order()
    }

#
# End of reconciler.py
########################################################################################################################
