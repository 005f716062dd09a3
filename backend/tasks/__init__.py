"""
Translation Task Package

Provides:
- Task, segment and notification records
- Task storage interface with an in-memory implementation
- The task state machine (TaskManager)
- Heartbeat liveness monitor
- Progress sinks and broadcasting
"""
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
from .store import MemoryTaskStore, TaskStore
from .manager import TaskManager
from .heartbeat import HeartbeatMonitor
from .progress import (
    CompositeProgressSink,
    LoggingProgressSink,
    NullProgressSink,
    ProgressBroadcaster,
    ProgressSink,
    TaskEvent,
)

__all__ = [
    "ACTIVE_STATUSES",
    "TERMINAL_STATUSES",
    "NotificationType",
    "SegmentProgress",
    "SegmentStatus",
    "SegmentTask",
    "TaskAction",
    "TaskNotFoundError",
    "TaskNotification",
    "TaskStatus",
    "TaskTransitionError",
    "TranslationProgress",
    "TranslationTask",
    "MemoryTaskStore",
    "TaskStore",
    "TaskManager",
    "HeartbeatMonitor",
    "CompositeProgressSink",
    "LoggingProgressSink",
    "NullProgressSink",
    "ProgressBroadcaster",
    "ProgressSink",
    "TaskEvent",
]
