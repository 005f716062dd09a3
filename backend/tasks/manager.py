"""
Translation task state machine.

All task and segment-task mutation goes through TaskManager. Each task has
its own asyncio.Lock, so concurrent segment completions, user actions and
the heartbeat sweep never interleave a read-modify-write on the same task.

States:
    queued -> segmenting -> translating -> stitching -> [optimizing] -> completed
    segmenting -> completed (cached translation)
    any non-terminal -> failed | cancelled
    queued/segmenting/translating/stitching/optimizing -> paused -> translating
    completed/failed/cancelled -> queued (restart)
"""
import asyncio
import weakref
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Union
from loguru import logger

from subtitles.models import SubtitleEntry, entries_to_dicts
from .models import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    NotificationType,
    SegmentProgress,
    SegmentStatus,
    SegmentTask,
    TaskAction,
    TaskNotFoundError,
    TaskNotification,
    TaskStatus,
    TaskTransitionError,
    TranslationProgress,
    TranslationTask,
)
from .progress import NullProgressSink, ProgressSink
from .store import TaskStore

Clock = Callable[[], datetime]

RESTARTABLE_STATUSES = frozenset({TaskStatus.FAILED, TaskStatus.CANCELLED, TaskStatus.COMPLETED})
IN_FLIGHT_SEGMENT_STATUSES = frozenset({SegmentStatus.TRANSLATING, SegmentStatus.RETRYING})


class TaskManager:
    """
    Owns the lifecycle of translation tasks.

    Usage:
        manager = TaskManager(MemoryTaskStore(), sink=LoggingProgressSink())
        task = await manager.create_task("video-123", entries, context.to_dict())
        await manager.pause(task.id)
    """

    def __init__(
        self,
        store: TaskStore,
        sink: Optional[ProgressSink] = None,
        clock: Clock = datetime.now,
    ):
        self.store = store
        self.sink = sink or NullProgressSink()
        self.clock = clock
        # An entry lives only while some coroutine holds or waits on the lock
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()
        self._create_lock = asyncio.Lock()

    def _lock(self, task_id: str) -> asyncio.Lock:
        lock = self._locks.get(task_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[task_id] = lock
        return lock

    async def _load(self, task_id: str) -> TranslationTask:
        task = await self.store.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    def _require(self, task: TranslationTask, allowed: Iterable[TaskStatus], action: str) -> None:
        if task.status not in allowed:
            raise TaskTransitionError(task.id, task.status, action)

    async def _save(self, task: TranslationTask) -> TranslationTask:
        task.updated_at = self.clock()
        return await self.store.update_task(task)

    async def _notify(self, task: TranslationTask, type_: NotificationType, title: str, message: str) -> None:
        await self.store.create_notification(TaskNotification(
            task_id=task.id,
            type=type_,
            title=title,
            message=message,
            sent_at=self.clock(),
        ))

    def _emit(self, task: TranslationTask, stage: Optional[str] = None, result: Any = None,
              message: Optional[str] = None) -> None:
        try:
            self.sink.on_task_event(
                task.id,
                stage or task.status.value,
                task.status.value,
                task.progress_percentage,
                result,
                message,
            )
        except Exception as e:
            logger.error(f"Progress sink failed for task {task.id}: {e}")

    async def _transition(
        self,
        task: TranslationTask,
        status: TaskStatus,
        title: str,
        message: str,
        notification: NotificationType = NotificationType.PROGRESS,
        result: Any = None,
    ) -> TranslationTask:
        previous = task.status
        task.status = status
        task.current_phase = message
        task = await self._save(task)
        await self._notify(task, notification, title, message)
        self._emit(task, result=result, message=message)
        logger.info(f"Task {task.id}: {previous.value} -> {status.value} ({message})")
        return task

    # Queries

    async def get_task(self, task_id: str) -> TranslationTask:
        return await self._load(task_id)

    async def list_tasks(self, statuses: Optional[Iterable[TaskStatus]] = None) -> List[TranslationTask]:
        return await self.store.list_tasks(statuses)

    async def list_active_tasks(self) -> List[TranslationTask]:
        return await self.store.list_tasks(ACTIVE_STATUSES)

    async def list_segments(self, task_id: str) -> List[SegmentTask]:
        return await self.store.list_segments(task_id)

    async def get_progress(self, task_id: str) -> TranslationProgress:
        task = await self._load(task_id)
        segments = await self.store.list_segments(task_id)
        return TranslationProgress(
            task_id=task.id,
            video_id=task.video_id,
            status=task.status,
            current_phase=task.current_phase,
            total_segments=task.total_segments,
            completed_segments=task.completed_segments,
            current_segment=task.current_segment,
            progress_percentage=task.progress_percentage,
            last_heartbeat=task.last_heartbeat,
            error_message=task.error_message,
            segments=[
                SegmentProgress(
                    segment_index=s.segment_index,
                    status=s.status,
                    subtitle_count=s.subtitle_count,
                    retry_count=s.retry_count,
                    processing_time_ms=s.processing_time_ms,
                    error_message=s.error_message,
                    partial_result=s.partial_result,
                )
                for s in segments
            ],
        )

    async def merge_segment_results(self, task_id: str) -> List[SubtitleEntry]:
        """
        Concatenate segment results in index order.

        A segment without a result contributes its source entries, so the
        merged transcript always covers the whole timeline.
        """
        merged: List[SubtitleEntry] = []
        for segment in await self.store.list_segments(task_id):
            if segment.status == SegmentStatus.COMPLETED and segment.partial_result is not None:
                merged.extend(segment.partial_result)
            else:
                logger.warning(
                    f"Task {task_id}: segment {segment.segment_index} has no result "
                    f"({segment.status.value}), keeping source text"
                )
                merged.extend(segment.source_entries)
        return merged

    # Creation

    async def create_task(
        self,
        video_id: str,
        entries: Sequence[SubtitleEntry],
        context: Optional[Dict[str, Any]] = None,
    ) -> TranslationTask:
        """
        Create a queued task, or return the open task already tracking this video.
        """
        async with self._create_lock:
            existing = await self.store.find_open_task(video_id)
            if existing is not None:
                logger.info(f"Reusing open task {existing.id} ({existing.status.value}) for video {video_id}")
                return existing

            now = self.clock()
            task = TranslationTask(
                video_id=video_id,
                context=dict(context or {}),
                source_entries=list(entries),
                current_phase="Queued",
                last_heartbeat=now,
                created_at=now,
                updated_at=now,
            )
            task = await self.store.create_task(task)
            await self._notify(task, NotificationType.PROGRESS, "Translation queued",
                               f"{len(task.source_entries)} subtitles queued for translation")
            self._emit(task, message="Queued")
            logger.info(f"Created translation task {task.id} for video {video_id} ({len(entries)} entries)")
            return task

    # Pipeline transitions (driven by the orchestrator)

    async def start_segmenting(self, task_id: str) -> TranslationTask:
        async with self._lock(task_id):
            task = await self._load(task_id)
            self._require(task, {TaskStatus.QUEUED}, "segment")
            now = self.clock()
            task.started_at = task.started_at or now
            task.last_heartbeat = now
            return await self._transition(task, TaskStatus.SEGMENTING, "Translation started",
                                          "Segmenting transcript")

    async def register_segments(self, task_id: str, segments: Sequence[Any]) -> TranslationTask:
        """
        Record segmentation output and move to translating.

        `segments` are translation Segment objects (index, entries,
        estimated_tokens). Any previous segment records are replaced.
        Accepted while segmenting, or while translating after a resume
        that happened before segmentation finished.
        """
        async with self._lock(task_id):
            task = await self._load(task_id)
            self._require(task, {TaskStatus.SEGMENTING, TaskStatus.TRANSLATING}, "register segments for")

            await self.store.delete_segments(task_id)
            for segment in segments:
                await self.store.create_segment(SegmentTask(
                    task_id=task_id,
                    segment_index=segment.index,
                    subtitle_count=len(segment.entries),
                    character_count=sum(len(e.text) for e in segment.entries),
                    estimated_tokens=segment.estimated_tokens,
                    source_entries=list(segment.entries),
                ))

            task.total_segments = len(segments)
            task.completed_segments = 0
            task.current_segment = 0
            task.progress_percentage = 0
            return await self._transition(
                task, TaskStatus.TRANSLATING, "Translating",
                f"Translating {len(segments)} segments",
            )

    async def mark_segment_started(self, task_id: str, segment_index: int) -> bool:
        """Flag a segment as in flight; False if the task is no longer translating"""
        async with self._lock(task_id):
            task = await self._load(task_id)
            if task.status != TaskStatus.TRANSLATING:
                return False
            segment = await self.store.get_segment(task_id, segment_index)
            if segment is None or segment.status == SegmentStatus.COMPLETED:
                return False

            segment.status = SegmentStatus.TRANSLATING
            segment.started_at = self.clock()
            await self.store.update_segment(segment)

            task.current_segment = segment_index
            task.current_phase = f"Segment {segment_index + 1}/{task.total_segments}"
            await self._save(task)
            return True

    async def mark_segment_retrying(self, task_id: str, segment_index: int, retry_count: int,
                                    error_message: str) -> bool:
        async with self._lock(task_id):
            task = await self._load(task_id)
            if task.status != TaskStatus.TRANSLATING:
                return False
            segment = await self.store.get_segment(task_id, segment_index)
            if segment is None or segment.status == SegmentStatus.COMPLETED:
                return False

            segment.status = SegmentStatus.RETRYING
            segment.retry_count = retry_count
            segment.error_message = error_message
            await self.store.update_segment(segment)
            self._emit(task, stage="translating",
                       message=f"Retrying segment {segment_index + 1}/{task.total_segments}")
            return True

    async def complete_segment(
        self,
        task_id: str,
        segment_index: int,
        result: Sequence[SubtitleEntry],
        processing_time_ms: int,
        retry_count: int = 0,
        error_message: Optional[str] = None,
    ) -> Optional[TranslationTask]:
        """
        Store a segment result and recompute task progress.

        Returns None when the result is discarded (task paused, cancelled or
        otherwise no longer translating). Completing an already completed
        segment does not count it twice. When the last segment completes the
        task moves to stitching.
        """
        async with self._lock(task_id):
            task = await self._load(task_id)
            if task.status != TaskStatus.TRANSLATING:
                logger.info(
                    f"Task {task_id} is {task.status.value}; discarding result for segment {segment_index}"
                )
                return None

            segment = await self.store.get_segment(task_id, segment_index)
            if segment is None:
                logger.warning(f"Task {task_id}: unknown segment {segment_index}, result discarded")
                return None

            if segment.status != SegmentStatus.COMPLETED:
                segment.status = SegmentStatus.COMPLETED
                segment.partial_result = list(result)
                segment.processing_time_ms = processing_time_ms
                segment.retry_count = retry_count
                segment.error_message = error_message
                segment.completed_at = self.clock()
                await self.store.update_segment(segment)

            segments = await self.store.list_segments(task_id)
            completed = sum(1 for s in segments if s.status == SegmentStatus.COMPLETED)
            previous_progress = task.progress_percentage
            task.completed_segments = completed
            if task.total_segments:
                # Never report less progress than already reported
                task.progress_percentage = max(
                    previous_progress, round(100 * completed / task.total_segments)
                )
            task.current_phase = f"Translated {completed}/{task.total_segments} segments"
            task.last_heartbeat = self.clock()
            task = await self._save(task)
            self._emit(
                task,
                stage="translating",
                result={"segment_index": segment_index, "subtitles": entries_to_dicts(result)},
                message=task.current_phase,
            )
            logger.debug(f"Task {task_id}: segment {segment_index} done ({completed}/{task.total_segments})")

            if completed == task.total_segments and task.total_segments > 0:
                task = await self._transition(task, TaskStatus.STITCHING, "Stitching",
                                              "Repairing segment boundaries")
            return task

    async def begin_stitching(self, task_id: str) -> TranslationTask:
        """
        Move to stitching once every segment is complete.

        Needed only when there are no segments at all; otherwise the last
        segment completion performs this transition.
        """
        async with self._lock(task_id):
            task = await self._load(task_id)
            if task.status == TaskStatus.STITCHING:
                return task
            self._require(task, {TaskStatus.TRANSLATING}, "stitch")
            if task.completed_segments != task.total_segments:
                raise TaskTransitionError(task.id, task.status, "stitch")
            task.progress_percentage = 100
            return await self._transition(task, TaskStatus.STITCHING, "Stitching",
                                          "Repairing segment boundaries")

    async def begin_optimizing(self, task_id: str) -> TranslationTask:
        async with self._lock(task_id):
            task = await self._load(task_id)
            self._require(task, {TaskStatus.STITCHING}, "optimize")
            return await self._transition(task, TaskStatus.OPTIMIZING, "Optimizing",
                                          "Optimizing subtitle timing")

    async def update_phase(self, task_id: str, phase: str) -> bool:
        """Record a human-readable phase without changing status"""
        async with self._lock(task_id):
            task = await self._load(task_id)
            if task.status not in ACTIVE_STATUSES:
                return False
            task.current_phase = phase
            task.last_heartbeat = self.clock()
            task = await self._save(task)
            self._emit(task, message=phase)
            return True

    async def update_context(self, task_id: str, context: Dict[str, Any]) -> TranslationTask:
        """Replace the stored translation context (e.g. after keyword extraction)"""
        async with self._lock(task_id):
            task = await self._load(task_id)
            self._require(task, ACTIVE_STATUSES, "update context of")
            task.context = dict(context)
            return await self._save(task)

    async def complete_from_cache(self, task_id: str, result: Sequence[SubtitleEntry]) -> TranslationTask:
        """Finish a task that was just segmenting with a previously cached translation"""
        async with self._lock(task_id):
            task = await self._load(task_id)
            self._require(task, {TaskStatus.SEGMENTING}, "complete from cache")
            task.completed_segments = task.total_segments
            task.result = list(result)
            task.progress_percentage = 100
            task.completed_at = self.clock()
            return await self._transition(
                task, TaskStatus.COMPLETED, "Translation completed",
                "Translation completed (cached)",
                notification=NotificationType.COMPLETED,
                result=entries_to_dicts(task.result),
            )

    async def complete_task(self, task_id: str, result: Sequence[SubtitleEntry]) -> TranslationTask:
        async with self._lock(task_id):
            task = await self._load(task_id)
            self._require(task, {TaskStatus.STITCHING, TaskStatus.OPTIMIZING}, "complete")
            task.result = list(result)
            task.progress_percentage = 100
            task.completed_at = self.clock()
            return await self._transition(
                task, TaskStatus.COMPLETED, "Translation completed",
                f"Translated {len(task.result)} subtitles",
                notification=NotificationType.COMPLETED,
                result=entries_to_dicts(task.result),
            )

    async def fail_task(self, task_id: str, error_message: str) -> TranslationTask:
        """Fail a task. A task that is already terminal is returned unchanged."""
        async with self._lock(task_id):
            task = await self._load(task_id)
            if task.is_terminal:
                return task
            return await self._fail(task, error_message)

    async def _fail(self, task: TranslationTask, error_message: str) -> TranslationTask:
        for segment in await self.store.list_segments(task.id):
            if segment.status in IN_FLIGHT_SEGMENT_STATUSES:
                segment.status = SegmentStatus.FAILED
                segment.error_message = error_message
                await self.store.update_segment(segment)

        task.error_message = error_message
        task.completed_at = self.clock()
        return await self._transition(
            task, TaskStatus.FAILED, "Translation failed", error_message,
            notification=NotificationType.FAILED,
        )

    # Liveness

    async def heartbeat(self, task_id: str) -> bool:
        """Refresh the heartbeat of an active task; False if the task is not active"""
        async with self._lock(task_id):
            task = await self.store.get_task(task_id)
            if task is None or task.status not in ACTIVE_STATUSES:
                return False
            task.last_heartbeat = self.clock()
            await self._save(task)
            return True

    async def fail_if_stale(self, task_id: str, threshold: Union[float, timedelta]) -> bool:
        """
        Fail the task if it is active and its heartbeat is older than `threshold`.

        Status and heartbeat are re-read under the task lock, so a task that
        finished or was refreshed since the caller looked is left alone.
        """
        if not isinstance(threshold, timedelta):
            threshold = timedelta(seconds=threshold)

        async with self._lock(task_id):
            task = await self.store.get_task(task_id)
            if task is None or task.status not in ACTIVE_STATUSES:
                return False

            now = self.clock()
            last = task.last_heartbeat or task.updated_at
            if now - last <= threshold:
                return False

            age = (now - last).total_seconds()
            logger.warning(f"Task {task_id} heartbeat is {age:.0f}s old, marking failed")
            await self._fail(
                task,
                f"Task became unresponsive (no heartbeat for {age:.0f} seconds)",
            )
            return True

    # User actions

    async def pause(self, task_id: str) -> TranslationTask:
        async with self._lock(task_id):
            task = await self._load(task_id)
            self._require(task, ACTIVE_STATUSES, "pause")

            # In-flight segments will be retranslated after resume
            for segment in await self.store.list_segments(task_id):
                if segment.status in IN_FLIGHT_SEGMENT_STATUSES:
                    segment.status = SegmentStatus.PENDING
                    await self.store.update_segment(segment)

            task.paused_at = self.clock()
            return await self._transition(
                task, TaskStatus.PAUSED, "Translation paused",
                f"Paused at {task.completed_segments}/{task.total_segments} segments",
                notification=NotificationType.PAUSED,
            )

    async def resume(self, task_id: str) -> TranslationTask:
        async with self._lock(task_id):
            task = await self._load(task_id)
            self._require(task, {TaskStatus.PAUSED}, "resume")
            task.paused_at = None
            task.last_heartbeat = self.clock()
            task.started_at = task.started_at or task.last_heartbeat
            return await self._transition(task, TaskStatus.TRANSLATING, "Translation resumed",
                                          "Resuming translation")

    async def cancel(self, task_id: str) -> TranslationTask:
        async with self._lock(task_id):
            task = await self._load(task_id)
            if task.is_terminal:
                raise TaskTransitionError(task.id, task.status, "cancel")
            task.completed_at = self.clock()
            return await self._transition(task, TaskStatus.CANCELLED, "Translation cancelled",
                                          "Cancelled by user")

    async def restart(self, task_id: str) -> TranslationTask:
        async with self._lock(task_id):
            task = await self._load(task_id)
            self._require(task, RESTARTABLE_STATUSES, "restart")

            open_task = await self.store.find_open_task(task.video_id)
            if open_task is not None and open_task.id != task.id:
                raise TaskTransitionError(task.id, task.status, f"restart (task {open_task.id} is open for this video)")

            for segment in await self.store.list_segments(task_id):
                segment.status = SegmentStatus.PENDING
                segment.partial_result = None
                segment.retry_count = 0
                segment.processing_time_ms = None
                segment.error_message = None
                segment.started_at = None
                segment.completed_at = None
                await self.store.update_segment(segment)

            task.completed_segments = 0
            task.current_segment = 0
            task.progress_percentage = 0
            task.error_message = None
            task.result = None
            task.started_at = None
            task.paused_at = None
            task.completed_at = None
            task.last_heartbeat = self.clock()
            return await self._transition(task, TaskStatus.QUEUED, "Translation restarted",
                                          "Queued for translation")

    async def delete(self, task_id: str) -> bool:
        async with self._lock(task_id):
            task = await self._load(task_id)
            if task.status not in TERMINAL_STATUSES:
                raise TaskTransitionError(task.id, task.status, "delete")
            deleted = await self.store.delete_task(task_id)
            logger.info(f"Deleted translation task {task_id}")
        return deleted

    async def perform_action(self, task_id: str, action: Union[TaskAction, str]) -> Optional[TranslationTask]:
        """Dispatch a user action; returns the updated task (None after delete)"""
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

    # Notifications

    async def list_notifications(self, task_id: str) -> List[TaskNotification]:
        return await self.store.list_notifications(task_id)

    async def list_unread_notifications(self) -> List[TaskNotification]:
        return await self.store.list_unread_notifications()

    async def mark_notification_read(self, notification_id: str) -> TaskNotification:
        notification = await self.store.get_notification(notification_id)
        if notification is None:
            raise KeyError(f"Notification not found: {notification_id}")
        if not notification.is_read:
            notification.is_read = True
            notification = await self.store.update_notification(notification)
        return notification
