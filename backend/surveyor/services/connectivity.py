"""
Connectivity tracking and automatic sync triggering.
The platform network library pushes state changes into ConnectivityMonitor; the
SyncScheduler drains the queue when the device comes back online and on a timer.
"""
import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable, List, Optional

from .offline_sync import SyncQueueManager

logger = logging.getLogger(__name__)

OnlineListener = Callable[[], Awaitable[object]]


class ConnectivityMonitor:
    """Holds the last reported network state and notifies on offline -> online."""

    def __init__(self, is_connected: bool = False, is_internet_reachable: Optional[bool] = None):
        self.is_connected = is_connected
        self.is_internet_reachable = is_internet_reachable
        self._listeners: List[OnlineListener] = []

    @property
    def is_online(self) -> bool:
        # Reachability is unknown (None) while the OS is still probing; treat as reachable
        return bool(self.is_connected) and self.is_internet_reachable is not False

    def subscribe(self, listener: OnlineListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def update(self, is_connected: bool, is_internet_reachable: Optional[bool] = None) -> bool:
        """Record a state change. Returns True when it was an offline -> online transition."""
        was_online = self.is_online
        self.is_connected = is_connected
        self.is_internet_reachable = is_internet_reachable
        came_online = self.is_online and not was_online
        logger.info(
            "Connectivity changed: connected=%s reachable=%s online=%s",
            is_connected, is_internet_reachable, self.is_online,
        )
        if came_online:
            for listener in list(self._listeners):
                try:
                    await listener()
                except Exception:
                    logger.exception("Online listener failed")
        return came_online


class SyncScheduler:
    """
    Drives SyncQueueManager.drain() from connectivity events and a periodic timer.
    The interval is the only backoff: failed items wait for the next tick.
    """

    def __init__(self, manager: SyncQueueManager, monitor: ConnectivityMonitor, interval: float = 30.0):
        self.manager = manager
        self.monitor = monitor
        self.interval = interval
        self.last_sync_at = None
        self.last_result = None
        self.drain_task: Optional[asyncio.Task] = None
        self._task: Optional[asyncio.Task] = None
        self._unsubscribe: Optional[Callable[[], None]] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._unsubscribe = self.monitor.subscribe(self._on_online)
        self._task = asyncio.create_task(self._run())
        logger.info("Sync scheduler started (interval=%ss)", self.interval)

    async def stop(self) -> None:
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self.drain_task and not self.drain_task.done():
            # An interrupted item stays IN_FLIGHT and is recovered by the next drain
            self.drain_task.cancel()
            try:
                await self.drain_task
            except asyncio.CancelledError:
                pass
        logger.info("Sync scheduler stopped")

    async def sync_if_online(self):
        """Drain when online and something is waiting; returns the DrainResult or None."""
        if not self.monitor.is_online:
            return None
        if await self.manager.pending_count() == 0:
            return None
        result = await self.manager.drain()
        if not result.skipped:
            self.last_result = result
            self.last_sync_at = datetime.utcnow()
        return result

    async def _on_online(self) -> None:
        """Start a drain in the background so the connectivity report returns at once."""
        if self.drain_task is not None and not self.drain_task.done():
            return
        self.drain_task = asyncio.create_task(self.sync_if_online())
        self.drain_task.add_done_callback(self._drain_finished)

    @staticmethod
    def _drain_finished(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Reconnect sync failed", exc_info=exc)

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.sync_if_online()
            except Exception:
                logger.exception("Periodic sync failed")
