"""
Heartbeat monitor.

One background loop for all tasks: refresh the heartbeat of tasks this
process is actively driving, and periodically fail any active task whose
stored heartbeat went stale (e.g. its worker died with the process).
"""
import asyncio
from typing import Awaitable, Callable, List, Optional, Set
from loguru import logger

from config import settings
from .manager import TaskManager


class HeartbeatMonitor:
    """
    Usage:
        monitor = HeartbeatMonitor(manager)
        await monitor.start()
        monitor.track(task_id)      # while a worker drives the task
        monitor.untrack(task_id)    # on pause/cancel/finish
        await monitor.stop()

    `refresh_once` and `sweep_once` are the loop's two steps and can be
    driven directly with a manual clock on the manager.
    """

    def __init__(
        self,
        manager: TaskManager,
        heartbeat_interval: Optional[float] = None,
        sweep_interval: Optional[float] = None,
        stale_threshold: Optional[float] = None,
        on_stale: Optional[Callable[[str], Awaitable[None]]] = None,
    ):
        self.manager = manager
        self.heartbeat_interval = heartbeat_interval or settings.HEARTBEAT_INTERVAL
        self.sweep_interval = sweep_interval or settings.HEARTBEAT_SWEEP_INTERVAL
        self.stale_threshold = stale_threshold or settings.HEARTBEAT_STALE_THRESHOLD
        self._on_stale = on_stale
        self._tracked: Set[str] = set()
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def tracked(self) -> Set[str]:
        return set(self._tracked)

    def set_on_stale(self, on_stale: Optional[Callable[[str], Awaitable[None]]]) -> None:
        """Set the callback awaited with the id of each task the sweep fails"""
        self._on_stale = on_stale

    def track(self, task_id: str) -> None:
        self._tracked.add(task_id)

    def untrack(self, task_id: str) -> None:
        self._tracked.discard(task_id)

    async def start(self):
        """Start the monitor loop"""
        if self._running:
            logger.warning("Heartbeat monitor already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._monitor_loop())
        logger.info(
            f"Heartbeat monitor started (refresh={self.heartbeat_interval}s, "
            f"sweep={self.sweep_interval}s, stale after {self.stale_threshold}s)"
        )

    async def stop(self):
        """Stop the monitor loop"""
        if not self._running:
            return

        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.info("Heartbeat monitor stopped")

    async def _monitor_loop(self):
        ticks_per_sweep = max(1, round(self.sweep_interval / self.heartbeat_interval))
        tick = 0
        while self._running:
            await asyncio.sleep(self.heartbeat_interval)
            tick += 1
            try:
                await self.refresh_once()
                if tick % ticks_per_sweep == 0:
                    await self.sweep_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error in heartbeat loop: {e}")

    async def refresh_once(self) -> int:
        """Refresh tracked tasks; tasks that are no longer active stop being tracked"""
        refreshed = 0
        for task_id in list(self._tracked):
            if await self.manager.heartbeat(task_id):
                refreshed += 1
            else:
                self.untrack(task_id)
        return refreshed

    async def sweep_once(self) -> List[str]:
        """Fail every active task with a stale heartbeat; returns the failed ids"""
        failed = []
        for task in await self.manager.list_active_tasks():
            try:
                if await self.manager.fail_if_stale(task.id, self.stale_threshold):
                    failed.append(task.id)
                    self.untrack(task.id)
                    if self._on_stale is not None:
                        await self._on_stale(task.id)
            except Exception as e:
                logger.error(f"Stale check failed for task {task.id}: {e}")

        if failed:
            logger.warning(f"Heartbeat sweep failed {len(failed)} unresponsive tasks")
        return failed
