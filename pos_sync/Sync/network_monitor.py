# network_monitor.py
# Description: Tracks online/offline state and fires a debounced reconnect trigger.
#
# Imports
import asyncio
import inspect
from typing import Any, Awaitable, Callable, List, Optional, Set, Union
#
# Third-Party Imports
import httpx
from loguru import logger
#
# Local Imports
from ..Metrics.metrics_logger import log_counter
#
########################################################################################################################
#
# Classes and Functions:

ReconnectHandler = Callable[[], Union[None, Awaitable[Any]]]
ConnectivityListener = Callable[[bool], None]


class AsyncioScheduler:
    """Schedules callbacks on the running asyncio loop. Returned handles expose `cancel()`."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    def call_later(self, delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        loop = self._loop or asyncio.get_running_loop()
        return loop.call_later(delay, callback)


class NetworkMonitor:
    """
    Holds the current connectivity state and turns offline→online transitions into
    one debounced call of the reconnect handler.

    Platform connectivity events are fed in through `update`. Rapid flapping inside the
    debounce window collapses to a single trigger; going offline cancels a pending one.
    """

    def __init__(self,
                 initial_online: bool = False,
                 debounce_seconds: float = 1.0,
                 scheduler=None,
                 check_url: Optional[str] = None,
                 check_timeout: float = 5.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self._online = initial_online
        self.debounce_seconds = debounce_seconds
        self._scheduler = scheduler or AsyncioScheduler()
        self.check_url = check_url
        self.check_timeout = check_timeout
        self._transport = transport
        self._listeners: List[ConnectivityListener] = []
        self._reconnect_handler: Optional[ReconnectHandler] = None
        self._pending_handle = None
        self._tasks: Set[asyncio.Task] = set()

    def currently_online(self) -> bool:
        return self._online

    @property
    def trigger_pending(self) -> bool:
        return self._pending_handle is not None

    def add_listener(self, callback: ConnectivityListener) -> Callable[[], None]:
        """Registers a change listener. Returns a function that unregisters it."""
        self._listeners.append(callback)

        def _remove():
            if callback in self._listeners:
                self._listeners.remove(callback)
        return _remove

    def set_reconnect_handler(self, handler: Optional[ReconnectHandler]):
        self._reconnect_handler = handler

    def update(self, is_connected: bool):
        """Applies a platform connectivity signal."""
        is_connected = bool(is_connected)
        was_online = self._online
        if is_connected == was_online:
            return
        self._online = is_connected
        logger.info(f"Network state changed: {'online' if is_connected else 'offline'}")
        log_counter("network_state_change", labels={"online": is_connected})

        if is_connected:
            self.cancel_pending_trigger()
            self._pending_handle = self._scheduler.call_later(self.debounce_seconds, self._fire_reconnect)
        else:
            self.cancel_pending_trigger()

        for listener in list(self._listeners):
            try:
                listener(is_connected)
            except Exception as e:
                logger.error(f"Connectivity listener {listener!r} raised: {e}")

    def cancel_pending_trigger(self) -> bool:
        """Drops a scheduled reconnect trigger. Returns True if one was pending."""
        handle, self._pending_handle = self._pending_handle, None
        if handle is None:
            return False
        handle.cancel()
        logger.debug("Cancelled pending reconnect trigger")
        return True

    def _fire_reconnect(self):
        self._pending_handle = None
        if not self._online or self._reconnect_handler is None:
            return
        logger.info("Connectivity restored; triggering sync")
        result = self._reconnect_handler()
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def check_connectivity(self) -> bool:
        """
        Probes `check_url` and feeds the outcome into `update`.

        Any HTTP response counts as reachable; connection errors and timeouts count as offline.
        """
        if not self.check_url:
            return self._online
        try:
            async with httpx.AsyncClient(timeout=self.check_timeout, transport=self._transport) as client:
                await client.head(self.check_url)
            reachable = True
        except httpx.RequestError as e:
            logger.debug(f"Connectivity probe to {self.check_url} failed: {e}")
            reachable = False
        self.update(reachable)
        return reachable

    async def watch(self, interval: float = 15.0):
        """Polls `check_connectivity` every `interval` seconds until cancelled."""
        logger.info(f"Watching connectivity every {interval}s via {self.check_url}")
        while True:
            await self.check_connectivity()
            await asyncio.sleep(interval)

#
# End of network_monitor.py
########################################################################################################################
