# orchestrator.py
# Description: Runs full sync passes (Category → Item → Bill), coalescing overlapping requests.
#
# Imports
import asyncio
import dataclasses
import time
from datetime import datetime
from typing import Callable, Dict, Optional, Set
#
# Third-Party Imports
from loguru import logger
#
# Local Imports
from ..Metrics.metrics_logger import log_counter, log_histogram
from .models import (EntityKind, FullSyncResult, KindSyncResult, SyncErrorKind, SyncPassRecord, SyncPassStatus,
                     to_iso, utc_now)
from .network_monitor import NetworkMonitor
from .reconciler import EntityReconciler
from .sync_history import SyncHistoryLog
#
########################################################################################################################
#
# Classes and Functions:


class SyncOrchestrator:
    """
    Sequences the per-kind reconcilers into one pass and decides when a pass counts as a success.

    At most one pass runs at a time. A caller arriving while a pass is in flight gets that
    pass's result (flagged `coalesced`) and one follow-up pass is queued to pick up whatever
    was enqueued in the meantime.
    """

    def __init__(self,
                 network: NetworkMonitor,
                 reconcilers: Dict[EntityKind, EntityReconciler],
                 history: SyncHistoryLog,
                 session_check: Callable[[], bool],
                 clock: Callable[[], datetime] = utc_now,
                 on_success: Optional[Callable[[FullSyncResult], None]] = None):
        self.network = network
        self.reconcilers = reconcilers
        self.history = history
        self._session_check = session_check
        self._clock = clock
        self._on_success = on_success
        self._current: Optional[asyncio.Future] = None
        self._driver: Optional[asyncio.Task] = None
        self._follow_up_requested = False
        self._scheduled_handle: Optional[asyncio.TimerHandle] = None
        self._background: Set[asyncio.Task] = set()

    @property
    def in_flight(self) -> bool:
        return self._current is not None

    async def run_full_sync(self) -> FullSyncResult:
        """
        Runs one full pass, or joins the pass already in flight.

        Raises:
            StorageFailure: If the local store fails mid-pass.
        """
        if self._current is not None:
            logger.debug("Sync pass already in flight; joining it and requesting a follow-up pass")
            self._follow_up_requested = True
            result = await asyncio.shield(self._current)
            return dataclasses.replace(result, coalesced=True)

        future = self._new_pass_future()
        self._driver = asyncio.ensure_future(self._drive())
        return await asyncio.shield(future)

    def _new_pass_future(self) -> asyncio.Future:
        future = asyncio.get_running_loop().create_future()
        # Mark exceptions as retrieved for passes nobody awaits (follow-ups).
        future.add_done_callback(lambda f: f.cancelled() or f.exception())
        self._current = future
        return future

    async def _drive(self):
        try:
            while True:
                future = self._current
                try:
                    result = await self._run_pass()
                except asyncio.CancelledError:
                    future.cancel()
                    raise
                except Exception as e:
                    self._follow_up_requested = False
                    future.set_exception(e)
                    return
                future.set_result(result)
                if not self._follow_up_requested:
                    return
                self._follow_up_requested = False
                logger.debug("Starting follow-up sync pass")
                self._new_pass_future()
        finally:
            self._current = None

    async def _run_pass(self) -> FullSyncResult:
        started_at = self._clock()
        start_time = time.perf_counter()

        if not self.network.currently_online():
            logger.info("Offline - skipping sync")
            log_counter("sync_pass", labels={"status": SyncPassStatus.SKIPPED_OFFLINE.value})
            return FullSyncResult(SyncPassStatus.SKIPPED_OFFLINE)
        if not self._session_check():
            logger.warning("No valid session - skipping sync")
            log_counter("sync_pass", labels={"status": SyncPassStatus.UNAUTHORIZED.value})
            return FullSyncResult(SyncPassStatus.UNAUTHORIZED)

        logger.info("=== Starting full sync ===")
        per_kind: Dict[EntityKind, KindSyncResult] = {}
        halted = False
        for kind, reconciler in self.reconcilers.items():
            result = await reconciler.sync_kind()
            per_kind[kind] = result
            if result.error is SyncErrorKind.UNAUTHORIZED:
                logger.warning(f"Unauthorized while syncing {kind.plural}; halting pass")
                halted = True
                break

        success = not halted and all(r.success for r in per_kind.values())
        if success:
            status = SyncPassStatus.COMPLETED
        elif halted:
            status = SyncPassStatus.UNAUTHORIZED
        else:
            status = SyncPassStatus.FAILED
        sync_result = FullSyncResult(status, per_kind=per_kind)

        summary = ", ".join(f"{kind.label}: {r.synced}" for kind, r in per_kind.items())
        logger.info(f"=== Sync {status.value} === {summary}")

        if success and sync_result.total_synced > 0:
            record = SyncPassRecord(
                id=to_iso(started_at),
                occurred_at=started_at,
                counts={kind: sync_result.per_kind_counts.get(kind, 0) for kind in EntityKind.sync_order()},
            )
            self.history.append(record)
            self.history.set_last_successful_sync(started_at)
            sync_result.record = record

        if success and self._on_success is not None:
            self._on_success(sync_result)

        log_counter("sync_pass", labels={"status": status.value})
        log_histogram("sync_pass_duration_seconds", time.perf_counter() - start_time, labels={"status": status.value})
        return sync_result

    # --- Timers ---
    def schedule_sync(self, delay: float) -> bool:
        """
        Arms a one-shot timer that runs a full pass after `delay` seconds.

        An already armed timer is kept. Returns False when there is no running event loop.
        """
        if self._scheduled_handle is not None:
            return True
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; post-enqueue sync not scheduled")
            return False
        self._scheduled_handle = loop.call_later(delay, self._fire_scheduled)
        return True

    def cancel_scheduled_sync(self) -> bool:
        handle, self._scheduled_handle = self._scheduled_handle, None
        if handle is None:
            return False
        handle.cancel()
        return True

    def _fire_scheduled(self):
        self._scheduled_handle = None
        self.start_background_sync()

    def start_background_sync(self) -> asyncio.Task:
        """Runs `run_full_sync` as a tracked task; failures are logged."""
        task = asyncio.ensure_future(self.run_full_sync())
        self._background.add(task)
        task.add_done_callback(self._background_done)
        return task

    def _background_done(self, task: asyncio.Task):
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Background sync pass failed: {exc}")

    async def wait_idle(self):
        """Waits until no pass is running and no background pass is pending."""
        while True:
            pending = [t for t in [self._driver, *self._background] if t is not None and not t.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

#
# End of orchestrator.py
########################################################################################################################
