# bootstrap.py
# Description: First-run download of the server catalog (categories, then items) into the local store.
#
# Imports
import asyncio
from datetime import datetime
from typing import Any, Callable, Dict, List
#
# Third-Party Imports
from loguru import logger
#
# Local Imports
from ..DB.POS_DB import POSDatabase, POSDatabaseError
from ..Metrics.metrics_logger import log_counter, timeit
from ..pos_api.client import POSAPIClient
from ..pos_api.exceptions import APIConnectionError, APIRequestError, APIResponseError, AuthenticationError
from .exceptions import StorageFailure
from .models import BootstrapResult, EntityKind, SyncErrorKind, SyncPassRecord, to_iso, utc_now
from .mutation_queue import MutationQueue
from .network_monitor import NetworkMonitor
from .sync_history import SyncHistoryLog
#
########################################################################################################################
#
# Classes and Functions:

BOOTSTRAP_KINDS = (EntityKind.CATEGORY, EntityKind.ITEM)


class InitialBootstrap:
    """
    Populates empty catalog tables from the server.

    Downloaded rows are stored as already synced and never produce queue entries.
    Rows with pending local mutations are left alone so unsent edits are not overwritten.
    Running it again converges to the same local state.
    """

    def __init__(self, db: POSDatabase, queue: MutationQueue, client: POSAPIClient, network: NetworkMonitor,
                 history: SyncHistoryLog, clock: Callable[[], datetime] = utc_now, timeout: float = 60.0):
        self.db = db
        self.queue = queue
        self.client = client
        self.network = network
        self.history = history
        self._clock = clock
        self.timeout = timeout

    def needs_bootstrap(self) -> List[EntityKind]:
        """Catalog kinds whose local table is empty."""
        try:
            return [kind for kind in BOOTSTRAP_KINDS if self.db.count_rows(kind.table) == 0]
        except POSDatabaseError as e:
            raise StorageFailure(f"Failed to inspect local catalog: {e}") from e

    @timeit(metric_name="bootstrap_duration_seconds")
    async def run(self) -> BootstrapResult:
        """
        Downloads all categories then all items and upserts them locally.

        Returns:
            BootstrapResult: Per-kind download counts, or the failure kind.

        Raises:
            StorageFailure: If the local store cannot be written.
        """
        if not self.network.currently_online():
            return BootstrapResult(False, error=SyncErrorKind.OFFLINE, message="Device is offline")
        if not self.client.has_session:
            return BootstrapResult(False, error=SyncErrorKind.UNAUTHORIZED, message="No session token")

        started_at = self._clock()
        logger.info("=== Starting initial sync ===")
        try:
            categories = await asyncio.wait_for(self.client.fetch_all(EntityKind.CATEGORY.value), timeout=self.timeout)
            items = await asyncio.wait_for(self.client.fetch_all(EntityKind.ITEM.value), timeout=self.timeout)
        except AuthenticationError as e:
            logger.warning(f"Initial sync refused: {e}")
            return BootstrapResult(False, error=SyncErrorKind.UNAUTHORIZED, message=str(e))
        except APIRequestError as e:
            logger.error(f"Initial sync rejected: {e}")
            return BootstrapResult(False, error=SyncErrorKind.REMOTE_REJECTED, message=str(e))
        except (APIConnectionError, APIResponseError, asyncio.TimeoutError) as e:
            message = str(e) or f"Timed out after {self.timeout}s"
            logger.error(f"Initial sync failed: {message}")
            return BootstrapResult(False, error=SyncErrorKind.TRANSPORT_FAILURE, message=message)

        skipped: List[str] = []
        try:
            with self.db.transaction():
                category_count = self._store(EntityKind.CATEGORY, categories, skipped)
                item_count = self._store(EntityKind.ITEM, items, skipped)
        except POSDatabaseError as e:
            raise StorageFailure(f"Failed to store downloaded catalog: {e}") from e

        counts = {EntityKind.CATEGORY: category_count, EntityKind.ITEM: item_count, EntityKind.BILL: 0}
        result = BootstrapResult(True, counts=counts, skipped=skipped)
        if category_count + item_count > 0:
            record = SyncPassRecord(id=to_iso(started_at), occurred_at=started_at, counts=counts)
            self.history.append(record)
            self.history.set_last_successful_sync(started_at)
            result.record = record

        logger.info(f"Initial sync complete: {category_count} categories, {item_count} items"
                    + (f", {len(skipped)} skipped with pending local changes" if skipped else ""))
        log_counter("bootstrap_rows_downloaded", value=category_count, labels={"kind": EntityKind.CATEGORY.value})
        log_counter("bootstrap_rows_downloaded", value=item_count, labels={"kind": EntityKind.ITEM.value})
        return result

    def _store(self, kind: EntityKind, snapshots: List[Any], skipped: List[str]) -> int:
        stored = 0
        now = self.db.utc_now_iso()
        for snapshot in snapshots:
            if self.queue.has_pending(kind, snapshot.id):
                skipped.append(f"{kind.value}:{snapshot.id}")
                continue
            row: Dict[str, Any] = snapshot.local_row()
            row["is_synced"] = True
            row["created_at"] = row.get("created_at") or now
            row["updated_at"] = row.get("updated_at") or now
            self.db.upsert_row(kind.table, row)
            if kind is EntityKind.ITEM:
                self._replace_item_categories(snapshot.id, snapshot.category_ids, now)
            stored += 1
        return stored

    def _replace_item_categories(self, item_id: str, category_ids: List[str], now: str):
        self.db.delete_rows("item_categories", {"item_id": item_id})
        for category_id in dict.fromkeys(category_ids):
            self.db.insert_row("item_categories", {"item_id": item_id, "category_id": category_id, "created_at": now})

#
# End of bootstrap.py
########################################################################################################################
