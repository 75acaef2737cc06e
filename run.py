# run.py
# Description: Entry point for the POS sync engine. Loads configuration, sets up logging, bootstraps an empty
#  catalog and runs one manual sync pass, or keeps watching connectivity with `--watch`.
#
# Imports
import argparse
import asyncio
import sys
from typing import List, Optional
#
# 3rd-party Libraries
from loguru import logger
#
# Local Imports
from pos_sync import config
from pos_sync.Metrics.logger_config import setup_logger
from pos_sync.Sync.exceptions import StorageFailure
from pos_sync.Sync.service import SyncService, create_sync_service
#
#######################################################################################################################
#
# Functions:


def configure_logging(settings: dict):
    log_paths = config.get_log_file_paths(settings)
    setup_logger(
        log_level=config.get_setting("logging", "log_level", "INFO"),
        app_log_path=log_paths["app"],
        metrics_log_path=log_paths["metrics"],
    )




async def bootstrap_catalog(service: SyncService):
    result = await service.bootstrap_if_needed()
    if result is not None and not result.success:
        logger.error(f"Initial sync failed ({result.error.value}): {result.message}")


async def run_once() -> int:
    settings = config.load_settings()
    configure_logging(settings)

    service = create_sync_service(settings)
    try:
        online = await service.network.check_connectivity()
        if not online:
            logger.warning(f"Server unreachable; {service.pending_count()} operation(s) stay queued")
            return 1

        await bootstrap_catalog(service)

        result = await service.sync_now()
        for kind, kind_result in result.per_kind.items():
            state = "ok" if kind_result.success else f"failed ({kind_result.error.value})"
            logger.info(f"{kind.label}: {kind_result.synced} synced, {state}")
        logger.info(f"Pending operations: {service.pending_count()}; last successful sync: {service.last_successful_sync()}")
        return 0 if result.success else 2
    except StorageFailure as e:
        logger.critical(f"Local store failure: {e}")
        return 3
    finally:
        await service.close()


async def watch_and_sync(service: SyncService, poll_seconds: float):
    """
    Polls connectivity until cancelled.

    Each offline to online transition starts a pass after the monitor's debounce. The
    catalog download runs once, the first time the server is reachable.
    """
    first_online = asyncio.Event()
    unsubscribe = service.network.add_listener(lambda online: first_online.set() if online else None)
    watcher = asyncio.create_task(service.network.watch(poll_seconds))
    try:
        if not service.network.currently_online():
            await first_online.wait()
        unsubscribe()
        await bootstrap_catalog(service)
        await watcher
    finally:
        unsubscribe()
        watcher.cancel()


async def run_watch(poll_seconds: Optional[float] = None) -> int:
    settings = config.load_settings()
    configure_logging(settings)
    interval = poll_seconds or config.get_sync_settings(settings)["connectivity_poll_seconds"]

    service = create_sync_service(settings)
    try:
        await watch_and_sync(service, interval)
        return 0
    except StorageFailure as e:
        logger.critical(f"Local store failure: {e}")
        return 3
    finally:
        await service.close()


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="pos-sync", description="Push queued POS changes to the server.")
    parser.add_argument("--watch", action="store_true",
                        help="Keep running and sync whenever the server becomes reachable again.")
    parser.add_argument("--poll-seconds", type=float, default=None,
                        help="Connectivity poll interval for --watch (default: sync.connectivity_poll_seconds).")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    if args.watch:
        try:
            return asyncio.run(run_watch(args.poll_seconds))
        except KeyboardInterrupt:
            logger.info("Stopped watching")
            return 0
    return asyncio.run(run_once())


if __name__ == "__main__":
    sys.exit(main())

#
# End of run.py
#######################################################################################################################
