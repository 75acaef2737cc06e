# service.py
# Description: Public entry point of the sync engine, wiring queue, monitor, reconcilers and history together.
#
# Imports
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional
#
# Third-Party Imports
from loguru import logger
#
# Local Imports
from .. import config
from ..DB.POS_DB import POSDatabase, POSDatabaseError
from ..Metrics.metrics_logger import log_gauge
from ..pos_api.client import POSAPIClient
from .bootstrap import InitialBootstrap
from .exceptions import StorageFailure
from .models import (BootstrapResult, EntityKind, FullSyncResult, MutationOperation, OperationType, SyncPassRecord,
                     utc_now)
from .mutation_queue import MutationQueue
from .network_monitor import NetworkMonitor
from .orchestrator import SyncOrchestrator
from .reconciler import build_reconcilers
from .sync_history import SyncHistoryLog
#
########################################################################################################################
#
# Classes and Functions:

DEVICE_ID_STATE_KEY = "device_id"


def resolve_device_id(db: POSDatabase, configured: Optional[str] = None) -> str:
    """
    Returns the persistent device id, generating one on first use.

    A configured id wins and is persisted so later runs without configuration keep it.
    """
    try:
        stored = db.get_state(DEVICE_ID_STATE_KEY)
        if configured:
            if stored != configured:
                db.set_state(DEVICE_ID_STATE_KEY, configured)
            return configured
        if stored:
            return stored
        device_id = f"device-{uuid.uuid4()}"
        db.set_state(DEVICE_ID_STATE_KEY, device_id)
        logger.info(f"Generated device id {device_id}")
        return device_id
    except POSDatabaseError as e:
        raise StorageFailure(f"Failed to resolve device id: {e}") from e


class SyncService:
    """
    Facade used by the rest of the application.

    Mutations are queued with `enqueue`; while online a short timer starts a pass so the
    change goes out promptly. Reconnects are handled by the network monitor's debounced
    trigger. `sync_now` is the manual "sync" button and supersedes both timers.
    """

    def __init__(self,
                 db: POSDatabase,
                 client: POSAPIClient,
                 network: NetworkMonitor,
                 device_id: str,
                 clock: Callable[[], datetime] = utc_now,
                 enqueue_sync_delay: float = 0.5,
                 remote_timeout: float = 30.0,
                 history_max_entries: int = SyncHistoryLog.MAX_ENTRIES,
                 queue_retention_days: int = 30):
        self.db = db
        self.client = client
        self.network = network
        self.device_id = device_id
        self.enqueue_sync_delay = enqueue_sync_delay
        self.queue_retention_days = queue_retention_days
        self._clock = clock

        self.queue = MutationQueue(db, clock=clock)
        self.history_log = SyncHistoryLog(db, max_entries=history_max_entries)
        self.reconcilers = build_reconcilers(db, self.queue, client, network, device_id, timeout=remote_timeout)
        self.orchestrator = SyncOrchestrator(
            network,
            self.reconcilers,
            self.history_log,
            session_check=lambda: self.client.has_session,
            clock=clock,
            on_success=self._after_successful_pass,
        )
        self.bootstrap = InitialBootstrap(db, self.queue, client, network, self.history_log, clock=clock,
                                          timeout=remote_timeout)
        self.network.set_reconnect_handler(self.orchestrator.start_background_sync)

    # --- Mutations ---
    def enqueue(self, operation_type: OperationType, kind: EntityKind, entity_id: str,
                payload: Optional[Dict[str, Any]] = None) -> MutationOperation:
        """Queues a local change durably; schedules a prompt pass when online."""
        operation = self.queue.enqueue(operation_type, kind, entity_id, payload)
        if self.network.currently_online():
            self.orchestrator.schedule_sync(self.enqueue_sync_delay)
        return operation

    # --- Passes ---
    async def run_full_sync(self) -> FullSyncResult:
        return await self.orchestrator.run_full_sync()

    async def sync_now(self) -> FullSyncResult:
        """Manual sync: drops the pending reconnect and post-enqueue timers, then runs a pass."""
        self.network.cancel_pending_trigger()
        self.orchestrator.cancel_scheduled_sync()
        return await self.orchestrator.run_full_sync()

    async def bootstrap_if_needed(self) -> Optional[BootstrapResult]:
        """Runs the initial download when the catalog is empty. Returns None when nothing was needed."""
        missing = self.bootstrap.needs_bootstrap()
        if not missing:
            return None
        logger.info(f"Local catalog empty for: {', '.join(k.plural for k in missing)}; running initial sync")
        return await self.bootstrap.run()

    async def wait_idle(self):
        await self.orchestrator.wait_idle()

    def _after_successful_pass(self, result: FullSyncResult):
        if self.queue_retention_days > 0:
            self.queue.prune_synced(self._clock() - timedelta(days=self.queue_retention_days))
        log_gauge("sync_queue_pending", self.queue.pending_count())

    # --- Queries ---
    def history(self) -> List[SyncPassRecord]:
        return self.history_log.list()

    def pending_count(self, kind: Optional[EntityKind] = None) -> int:
        return self.queue.pending_count(kind)

    def last_successful_sync(self) -> Optional[datetime]:
        return self.history_log.last_successful_sync()

    def failed_operations(self, kind: Optional[EntityKind] = None) -> List[MutationOperation]:
        return self.queue.failed_operations(kind)

    def set_session_token(self, token: Optional[str]):
        self.client.set_token(token)

    async def close(self):
        """Cancels timers, waits for running passes and releases the HTTP client and DB connection."""
        self.network.cancel_pending_trigger()
        self.orchestrator.cancel_scheduled_sync()
        await self.orchestrator.wait_idle()
        await self.client.close()
        self.db.close_connection()


def create_sync_service(settings: Optional[Dict[str, Any]] = None,
                        db: Optional[POSDatabase] = None,
                        client: Optional[POSAPIClient] = None,
                        network: Optional[NetworkMonitor] = None,
                        clock: Callable[[], datetime] = utc_now,
                        initial_online: bool = False) -> SyncService:
    """
    Builds a `SyncService` from configuration. Any collaborator passed in is used as-is.
    """
    settings = settings if settings is not None else config.load_settings()
    api_settings = config.get_api_settings(settings)
    sync_settings = config.get_sync_settings(settings)

    if db is None:
        db = POSDatabase(config.get_db_path(settings))
    if client is None:
        client = POSAPIClient(api_settings["base_url"], token=api_settings["token"],
                              timeout=api_settings["request_timeout"])
    if network is None:
        network = NetworkMonitor(
            initial_online=initial_online,
            debounce_seconds=sync_settings["reconnect_debounce_seconds"],
            check_url=api_settings["connectivity_check_url"],
        )

    device_id = resolve_device_id(db, sync_settings["device_id"])
    logger.info(f"Sync service ready for device {device_id} against {client.base_url}")
    return SyncService(
        db,
        client,
        network,
        device_id,
        clock=clock,
        enqueue_sync_delay=sync_settings["enqueue_sync_delay_seconds"],
        remote_timeout=sync_settings["remote_timeout_seconds"],
        history_max_entries=sync_settings["history_max_entries"],
        queue_retention_days=sync_settings["queue_retention_days"],
    )

#
# End of service.py
########################################################################################################################
