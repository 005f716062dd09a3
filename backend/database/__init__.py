"""
Database module for SubStitch
Provides SQLite-based persistence for translation tasks, segments, notifications
and the translation cache
"""
from .models import Base, TranslationTaskModel, SegmentTaskModel, TaskNotificationModel, TranslationCacheModel
from .repository import (
    TranslationTaskRepository,
    SegmentTaskRepository,
    NotificationRepository,
    TranslationCacheRepository,
)
from .connection import configure, get_db, init_db, close_db
from .task_store import SqlTaskStore
from .cache_store import SqlCacheStore

__all__ = [
    "Base",
    "TranslationTaskModel",
    "SegmentTaskModel",
    "TaskNotificationModel",
    "TranslationCacheModel",
    "TranslationTaskRepository",
    "SegmentTaskRepository",
    "NotificationRepository",
    "TranslationCacheRepository",
    "configure",
    "get_db",
    "init_db",
    "close_db",
    "SqlTaskStore",
    "SqlCacheStore",
]
