"""
Task Executor - hosts translation tasks in the running process

Provides:
- Configurable concurrent task limit
- Queue position tracking
- Cancellation of in-flight work on pause/cancel
- Heartbeat monitor lifecycle, including a stale sweep at startup
"""
import asyncio
from typing import Dict, Optional, Sequence, Union
from loguru import logger

from config import settings
from subtitles.models import SubtitleEntry
from tasks.heartbeat import HeartbeatMonitor
from tasks.manager import TaskManager
from tasks.models import TaskAction, TaskStatus, TranslationTask
from translation.models import TranslationContext
from translation.orchestrator import TranslationOrchestrator


class TaskExecutor:
    """
    Registry of running translation tasks.

    One executor is created by the hosting process and passed to whatever
    needs it; `start()`/`stop()` tie its background work to that process.

    Usage:
        executor = TaskExecutor(manager, orchestrator)
        await executor.start()
        task = await executor.submit("video-1", entries, TranslationContext(video_title="..."))
        await executor.wait(task.id)
        await executor.stop()
    """

    def __init__(
        self,
        manager: TaskManager,
        orchestrator: TranslationOrchestrator,
        monitor: Optional[HeartbeatMonitor] = None,
        max_concurrent: Optional[int] = None,
    ):
        self.manager = manager
        self.orchestrator = orchestrator
        self.monitor = monitor or HeartbeatMonitor(manager)
        self.monitor.set_on_stale(self._on_stale)
        self.max_concurrent = max_concurrent or settings.MAX_CONCURRENT_TASKS
        self.semaphore = asyncio.Semaphore(self.max_concurrent)

        # Task ids waiting for a slot / currently processing, in submission order
        self.pending_tasks: Dict[str, asyncio.Task] = {}
        self.active_tasks: Dict[str, asyncio.Task] = {}
        self._running = False

        logger.info(f"TaskExecutor initialized with max_concurrent={self.max_concurrent}")

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self):
        """Start the heartbeat monitor and fail tasks orphaned by a previous process"""
        if self._running:
            return

        self._running = True
        failed = await self.monitor.sweep_once()
        if failed:
            logger.warning(f"Recovered {len(failed)} unresponsive tasks at startup")
        await self.monitor.start()
        logger.info("TaskExecutor started")

    async def stop(self):
        """Stop the monitor and cancel in-flight work; task records keep their status"""
        self._running = False
        await self.monitor.stop()

        running = list(self.pending_tasks.values()) + list(self.active_tasks.values())
        for job in running:
            job.cancel()
        for job in running:
            try:
                await job
            except asyncio.CancelledError:
                pass
        logger.info("TaskExecutor stopped")

    # Submission

    async def submit(
        self,
        video_id: str,
        entries: Sequence[SubtitleEntry],
        context: Optional[TranslationContext] = None,
    ) -> TranslationTask:
        """
        Create (or reuse) the task for a video and schedule it if queued.
        """
        context = context or TranslationContext()
        task = await self.manager.create_task(video_id, entries, context.to_dict())
        if task.status == TaskStatus.QUEUED:
            self._schedule(task.id)
        return task

    def _schedule(self, task_id: str) -> None:
        if self.is_task_scheduled(task_id):
            return
        # Queued tasks count as active for the sweep, so refresh them while they wait
        self.monitor.track(task_id)
        self.pending_tasks[task_id] = asyncio.create_task(self._run(task_id))
        logger.info(f"Task {task_id} scheduled, queue position: {self.get_queue_position(task_id)}")

    async def _run(self, task_id: str):
        job = asyncio.current_task()
        try:
            async with self.semaphore:
                self.pending_tasks.pop(task_id, None)
                self.active_tasks[task_id] = job
                logger.info(
                    f"Task {task_id} started processing "
                    f"(active: {len(self.active_tasks)}, pending: {len(self.pending_tasks)})"
                )
                await self.orchestrator.run(task_id)
        except asyncio.CancelledError:
            logger.info(f"Task {task_id} processing interrupted")
            raise
        except Exception as e:
            logger.error(f"Task {task_id} processing error: {e}")
        finally:
            if self.pending_tasks.get(task_id) is job:
                del self.pending_tasks[task_id]
            if self.active_tasks.get(task_id) is job:
                del self.active_tasks[task_id]
            # A resumed run may already own this task id
            if not self.is_task_scheduled(task_id):
                self.monitor.untrack(task_id)

    def _interrupt(self, task_id: str) -> bool:
        """Cancel the asyncio job driving a task, if any"""
        self.monitor.untrack(task_id)
        job = self.active_tasks.pop(task_id, None) or self.pending_tasks.pop(task_id, None)
        if job is None:
            return False
        job.cancel()
        return True

    async def _on_stale(self, task_id: str):
        if self._interrupt(task_id):
            logger.warning(f"Stopped worker for unresponsive task {task_id}")

    async def wait(self, task_id: str) -> TranslationTask:
        """Wait for the task's current run to end and return its record"""
        job = self.active_tasks.get(task_id) or self.pending_tasks.get(task_id)
        if job is not None:
            try:
                await asyncio.shield(job)
            except asyncio.CancelledError:
                if not job.cancelled():
                    raise
        return await self.manager.get_task(task_id)

    # Actions

    async def pause(self, task_id: str) -> TranslationTask:
        task = await self.manager.pause(task_id)
        self._interrupt(task_id)
        return task

    async def resume(self, task_id: str) -> TranslationTask:
        task = await self.manager.resume(task_id)
        self._schedule(task_id)
        return task

    async def cancel(self, task_id: str) -> TranslationTask:
        task = await self.manager.cancel(task_id)
        self._interrupt(task_id)
        return task

    async def restart(self, task_id: str) -> TranslationTask:
        task = await self.manager.restart(task_id)
        self._schedule(task_id)
        return task

    async def delete(self, task_id: str) -> bool:
        return await self.manager.delete(task_id)

    async def perform_action(self, task_id: str, action: Union[TaskAction, str]) -> Optional[TranslationTask]:
        action = TaskAction(action)
        if action == TaskAction.PAUSE:
            return await self.pause(task_id)
        if action == TaskAction.CONTINUE:
            return await self.resume(task_id)
        if action == TaskAction.CANCEL:
            return await self.cancel(task_id)
        if action == TaskAction.RESTART:
            return await self.restart(task_id)
        await self.delete(task_id)
        return None

    # Status

    def is_task_scheduled(self, task_id: str) -> bool:
        return task_id in self.pending_tasks or task_id in self.active_tasks

    def get_queue_position(self, task_id: str) -> int:
        """
        Returns:
            0 = currently processing
            1+ = position in queue
            -1 = not found
        """
        if task_id in self.active_tasks:
            return 0
        for position, tid in enumerate(self.pending_tasks, start=1):
            if tid == task_id:
                return position
        return -1

    def get_status(self) -> Dict:
        """Get current executor status"""
        return {
            "running": self._running,
            "active_count": len(self.active_tasks),
            "pending_count": len(self.pending_tasks),
            "max_concurrent": self.max_concurrent,
            "active_tasks": list(self.active_tasks),
            "queue": [
                {"task_id": tid, "position": i + 1}
                for i, tid in enumerate(self.pending_tasks)
            ],
        }
