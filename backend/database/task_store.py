"""
SQL Task Store
Persists translation tasks through the async SQLAlchemy repositories
"""
from typing import Optional, List
from loguru import logger

from subtitles.models import entries_from_dicts, entries_to_dicts
from tasks.models import (
    NotificationType,
    SegmentStatus,
    SegmentTask,
    TaskNotification,
    TaskStatus,
    TranslationTask,
)
from tasks.store import TaskStore

from .connection import get_db, init_db
from .models import TranslationTaskModel, SegmentTaskModel, TaskNotificationModel
from .repository import TranslationTaskRepository, SegmentTaskRepository, NotificationRepository


def _task_values(task: TranslationTask) -> dict:
    return {
        "id": task.id,
        "video_id": task.video_id,
        "status": TaskStatus(task.status).value,
        "total_segments": task.total_segments,
        "completed_segments": task.completed_segments,
        "current_segment": task.current_segment,
        "progress_percentage": task.progress_percentage,
        "current_phase": task.current_phase,
        "last_heartbeat": task.last_heartbeat,
        "started_at": task.started_at,
        "paused_at": task.paused_at,
        "completed_at": task.completed_at,
        "error_message": task.error_message,
        "context": dict(task.context),
        "source_entries": entries_to_dicts(task.source_entries),
        "result": entries_to_dicts(task.result) if task.result is not None else None,
        "created_at": task.created_at,
        "updated_at": task.updated_at,
    }


def _task_from_model(model: TranslationTaskModel) -> TranslationTask:
    return TranslationTask(
        id=model.id,
        video_id=model.video_id,
        status=TaskStatus(model.status),
        total_segments=model.total_segments or 0,
        completed_segments=model.completed_segments or 0,
        current_segment=model.current_segment or 0,
        progress_percentage=model.progress_percentage or 0,
        current_phase=model.current_phase or "",
        last_heartbeat=model.last_heartbeat,
        started_at=model.started_at,
        paused_at=model.paused_at,
        completed_at=model.completed_at,
        error_message=model.error_message,
        context=dict(model.context or {}),
        source_entries=entries_from_dicts(model.source_entries or []),
        result=entries_from_dicts(model.result) if model.result is not None else None,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


def _segment_values(segment: SegmentTask) -> dict:
    return {
        "id": segment.id,
        "task_id": segment.task_id,
        "segment_index": segment.segment_index,
        "status": SegmentStatus(segment.status).value,
        "subtitle_count": segment.subtitle_count,
        "character_count": segment.character_count,
        "estimated_tokens": segment.estimated_tokens,
        "retry_count": segment.retry_count,
        "source_entries": entries_to_dicts(segment.source_entries),
        "partial_result": entries_to_dicts(segment.partial_result) if segment.partial_result is not None else None,
        "processing_time_ms": segment.processing_time_ms,
        "error_message": segment.error_message,
        "started_at": segment.started_at,
        "completed_at": segment.completed_at,
    }


def _segment_from_model(model: SegmentTaskModel) -> SegmentTask:
    return SegmentTask(
        id=model.id,
        task_id=model.task_id,
        segment_index=model.segment_index,
        status=SegmentStatus(model.status),
        subtitle_count=model.subtitle_count or 0,
        character_count=model.character_count or 0,
        estimated_tokens=model.estimated_tokens or 0,
        retry_count=model.retry_count or 0,
        source_entries=entries_from_dicts(model.source_entries or []),
        partial_result=entries_from_dicts(model.partial_result) if model.partial_result is not None else None,
        processing_time_ms=model.processing_time_ms,
        error_message=model.error_message,
        started_at=model.started_at,
        completed_at=model.completed_at,
    )


def _notification_values(notification: TaskNotification) -> dict:
    return {
        "id": notification.id,
        "task_id": notification.task_id,
        "type": NotificationType(notification.type).value,
        "title": notification.title,
        "message": notification.message,
        "is_read": notification.is_read,
        "sent_at": notification.sent_at,
    }


def _notification_from_model(model: TaskNotificationModel) -> TaskNotification:
    return TaskNotification(
        id=model.id,
        task_id=model.task_id,
        type=NotificationType(model.type),
        title=model.title,
        message=model.message or "",
        is_read=bool(model.is_read),
        sent_at=model.sent_at,
    )


class SqlTaskStore(TaskStore):
    """
    TaskStore backed by the configured database.

    Each call runs in its own session (see `get_db`), so every operation
    commits on its own.

    Usage:
        store = SqlTaskStore()
        await store.initialize()
        manager = TaskManager(store)
    """

    async def initialize(self):
        """Create tables if they do not exist"""
        await init_db()
        logger.info("SQL task store ready")

    # Translation tasks

    async def create_task(self, task):
        async with get_db() as session:
            repo = TranslationTaskRepository(session)
            if await repo.get(task.id):
                raise ValueError(f"Task already exists: {task.id}")
            model = await repo.create(_task_values(task))
            return _task_from_model(model)

    async def get_task(self, task_id):
        async with get_db() as session:
            model = await TranslationTaskRepository(session).get(task_id)
            return _task_from_model(model) if model else None

    async def find_open_task(self, video_id):
        async with get_db() as session:
            model = await TranslationTaskRepository(session).get_open_for_video(video_id)
            return _task_from_model(model) if model else None

    async def list_tasks(self, statuses=None):
        values = [TaskStatus(s).value for s in statuses] if statuses is not None else None
        async with get_db() as session:
            models = await TranslationTaskRepository(session).get_all(values)
            return [_task_from_model(m) for m in models]

    async def update_task(self, task):
        values = _task_values(task)
        values.pop("id")
        async with get_db() as session:
            model = await TranslationTaskRepository(session).update(task.id, values)
            if model is None:
                raise KeyError(task.id)
            return _task_from_model(model)

    async def delete_task(self, task_id):
        async with get_db() as session:
            return await TranslationTaskRepository(session).delete(task_id)

    # Segment tasks

    async def create_segment(self, segment):
        async with get_db() as session:
            model = await SegmentTaskRepository(session).upsert(_segment_values(segment))
            return _segment_from_model(model)

    async def get_segment(self, task_id, segment_index):
        async with get_db() as session:
            model = await SegmentTaskRepository(session).get(task_id, segment_index)
            return _segment_from_model(model) if model else None

    async def list_segments(self, task_id):
        async with get_db() as session:
            models = await SegmentTaskRepository(session).get_for_task(task_id)
            return [_segment_from_model(m) for m in models]

    async def update_segment(self, segment):
        values = _segment_values(segment)
        for key in ("id", "task_id", "segment_index"):
            values.pop(key)
        async with get_db() as session:
            model = await SegmentTaskRepository(session).update(segment.task_id, segment.segment_index, values)
            if model is None:
                raise KeyError(f"{segment.task_id}:{segment.segment_index}")
            return _segment_from_model(model)

    async def delete_segments(self, task_id):
        async with get_db() as session:
            return await SegmentTaskRepository(session).delete_for_task(task_id)

    # Notifications

    async def create_notification(self, notification):
        async with get_db() as session:
            model = await NotificationRepository(session).create(_notification_values(notification))
            return _notification_from_model(model)

    async def get_notification(self, notification_id):
        async with get_db() as session:
            model = await NotificationRepository(session).get(notification_id)
            return _notification_from_model(model) if model else None

    async def list_notifications(self, task_id):
        async with get_db() as session:
            models = await NotificationRepository(session).get_for_task(task_id)
            return [_notification_from_model(m) for m in models]

    async def list_unread_notifications(self):
        async with get_db() as session:
            models = await NotificationRepository(session).get_unread()
            return [_notification_from_model(m) for m in models]

    async def update_notification(self, notification):
        async with get_db() as session:
            model = await NotificationRepository(session).update(
                notification.id, {"is_read": notification.is_read}
            )
            if model is None:
                raise KeyError(notification.id)
            return _notification_from_model(model)
