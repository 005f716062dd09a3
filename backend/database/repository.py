"""
Repository classes for database operations
Provides CRUD operations for translation tasks, segment tasks, notifications
and cached translations
"""
from datetime import datetime
from typing import Optional, List, Dict, Any, Iterable
from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession
from loguru import logger

from .models import TranslationTaskModel, SegmentTaskModel, TaskNotificationModel, TranslationCacheModel

# Statuses a task can no longer leave without a restart
TERMINAL_STATUS_VALUES = ("completed", "failed", "cancelled")


def _apply(model, values: Dict[str, Any]):
    for key, value in values.items():
        setattr(model, key, value)
    return model


class TranslationTaskRepository:
    """Repository for translation task CRUD operations"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, values: Dict[str, Any]) -> TranslationTaskModel:
        """Create a new task"""
        task = TranslationTaskModel(**values)
        self.session.add(task)
        await self.session.flush()
        logger.info(f"Created translation task: {task.id} (video {task.video_id})")
        return task

    async def get(self, task_id: str) -> Optional[TranslationTaskModel]:
        """Get task by ID"""
        stmt = select(TranslationTaskModel).where(TranslationTaskModel.id == task_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_open_for_video(self, video_id: str) -> Optional[TranslationTaskModel]:
        """Get the task for a video that has not reached a terminal status"""
        stmt = select(TranslationTaskModel).where(
            TranslationTaskModel.video_id == video_id,
            TranslationTaskModel.status.notin_(TERMINAL_STATUS_VALUES),
        ).order_by(TranslationTaskModel.created_at.desc()).limit(1)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_all(self, statuses: Optional[Iterable[str]] = None) -> List[TranslationTaskModel]:
        """Get all tasks, oldest first, optionally filtered by status"""
        stmt = select(TranslationTaskModel).order_by(TranslationTaskModel.created_at)
        if statuses is not None:
            stmt = stmt.where(TranslationTaskModel.status.in_(list(statuses)))
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def update(self, task_id: str, values: Dict[str, Any]) -> Optional[TranslationTaskModel]:
        """Update task fields"""
        task = await self.get(task_id)
        if not task:
            return None
        _apply(task, values)
        await self.session.flush()
        return task

    async def delete(self, task_id: str) -> bool:
        """Delete a task together with its segments and notifications"""
        task = await self.get(task_id)
        if not task:
            return False
        await self.session.execute(delete(SegmentTaskModel).where(SegmentTaskModel.task_id == task_id))
        await self.session.execute(delete(TaskNotificationModel).where(TaskNotificationModel.task_id == task_id))
        await self.session.execute(delete(TranslationTaskModel).where(TranslationTaskModel.id == task_id))
        await self.session.flush()
        logger.info(f"Deleted translation task: {task_id}")
        return True


class SegmentTaskRepository:
    """Repository for per-segment progress records"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, task_id: str, segment_index: int) -> Optional[SegmentTaskModel]:
        stmt = select(SegmentTaskModel).where(
            SegmentTaskModel.task_id == task_id,
            SegmentTaskModel.segment_index == segment_index,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def upsert(self, values: Dict[str, Any]) -> SegmentTaskModel:
        """Create the segment record, replacing any record at the same index"""
        await self.session.execute(delete(SegmentTaskModel).where(
            SegmentTaskModel.task_id == values["task_id"],
            SegmentTaskModel.segment_index == values["segment_index"],
        ))
        segment = SegmentTaskModel(**values)
        self.session.add(segment)
        await self.session.flush()
        return segment

    async def get_for_task(self, task_id: str) -> List[SegmentTaskModel]:
        """Get segments of a task ordered by index"""
        stmt = select(SegmentTaskModel).where(
            SegmentTaskModel.task_id == task_id
        ).order_by(SegmentTaskModel.segment_index)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def update(self, task_id: str, segment_index: int, values: Dict[str, Any]) -> Optional[SegmentTaskModel]:
        segment = await self.get(task_id, segment_index)
        if not segment:
            return None
        _apply(segment, values)
        await self.session.flush()
        return segment

    async def delete_for_task(self, task_id: str) -> int:
        result = await self.session.execute(delete(SegmentTaskModel).where(SegmentTaskModel.task_id == task_id))
        await self.session.flush()
        return result.rowcount or 0


class NotificationRepository:
    """Repository for task notifications"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, values: Dict[str, Any]) -> TaskNotificationModel:
        notification = TaskNotificationModel(**values)
        self.session.add(notification)
        await self.session.flush()
        return notification

    async def get(self, notification_id: str) -> Optional[TaskNotificationModel]:
        stmt = select(TaskNotificationModel).where(TaskNotificationModel.id == notification_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_for_task(self, task_id: str) -> List[TaskNotificationModel]:
        """Get notifications of a task, oldest first"""
        stmt = select(TaskNotificationModel).where(
            TaskNotificationModel.task_id == task_id
        ).order_by(TaskNotificationModel.sent_at)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_unread(self) -> List[TaskNotificationModel]:
        stmt = select(TaskNotificationModel).where(
            TaskNotificationModel.is_read == False  # noqa: E712
        ).order_by(TaskNotificationModel.sent_at)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def update(self, notification_id: str, values: Dict[str, Any]) -> Optional[TaskNotificationModel]:
        notification = await self.get(notification_id)
        if not notification:
            return None
        _apply(notification, values)
        await self.session.flush()
        return notification


class TranslationCacheRepository:
    """Repository for cached translations"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, video_id: str, content_hash: str, config_hash: str) -> Optional[TranslationCacheModel]:
        stmt = select(TranslationCacheModel).where(
            TranslationCacheModel.video_id == video_id,
            TranslationCacheModel.content_hash == content_hash,
            TranslationCacheModel.config_hash == config_hash,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def upsert(self, values: Dict[str, Any]) -> TranslationCacheModel:
        """Create the cache entry, replacing any entry with the same key"""
        await self.session.execute(delete(TranslationCacheModel).where(
            TranslationCacheModel.video_id == values["video_id"],
            TranslationCacheModel.content_hash == values["content_hash"],
            TranslationCacheModel.config_hash == values["config_hash"],
        ))
        entry = TranslationCacheModel(**values)
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def update(self, entry_id: str, values: Dict[str, Any]) -> Optional[TranslationCacheModel]:
        stmt = select(TranslationCacheModel).where(TranslationCacheModel.id == entry_id)
        entry = (await self.session.execute(stmt)).scalar_one_or_none()
        if not entry:
            return None
        _apply(entry, values)
        await self.session.flush()
        return entry

    async def get_all(self) -> List[TranslationCacheModel]:
        stmt = select(TranslationCacheModel).order_by(TranslationCacheModel.created_at)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def delete_for_video(self, video_id: str) -> int:
        result = await self.session.execute(
            delete(TranslationCacheModel).where(TranslationCacheModel.video_id == video_id)
        )
        await self.session.flush()
        return result.rowcount or 0

    async def delete_older_than(self, cutoff: datetime) -> int:
        result = await self.session.execute(
            delete(TranslationCacheModel).where(TranslationCacheModel.created_at < cutoff)
        )
        await self.session.flush()
        count = result.rowcount or 0
        if count:
            logger.info(f"Deleted {count} cached translations older than {cutoff}")
        return count
