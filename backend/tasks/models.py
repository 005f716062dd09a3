"""
Translation task records.

TranslationTask is the job as a whole; SegmentTask tracks one segment's
translation; TaskNotification is a write-once log of lifecycle events.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
import uuid

from subtitles.models import SubtitleEntry, entries_to_dicts


class TaskStatus(str, Enum):
    QUEUED = "queued"
    SEGMENTING = "segmenting"
    TRANSLATING = "translating"
    STITCHING = "stitching"
    OPTIMIZING = "optimizing"
    COMPLETED = "completed"
    FAILED = "failed"
    PAUSED = "paused"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED})

# States a live worker is driving; these get heartbeats and can be paused
ACTIVE_STATUSES = frozenset({
    TaskStatus.QUEUED,
    TaskStatus.SEGMENTING,
    TaskStatus.TRANSLATING,
    TaskStatus.STITCHING,
    TaskStatus.OPTIMIZING,
})


class SegmentStatus(str, Enum):
    PENDING = "pending"
    TRANSLATING = "translating"
    COMPLETED = "completed"
    FAILED = "failed"
    RETRYING = "retrying"


class NotificationType(str, Enum):
    PROGRESS = "progress"
    COMPLETED = "completed"
    FAILED = "failed"
    PAUSED = "paused"


class TaskAction(str, Enum):
    """User-facing actions on a task"""
    RESTART = "restart"
    CONTINUE = "continue"
    PAUSE = "pause"
    CANCEL = "cancel"
    DELETE = "delete"


class TaskNotFoundError(KeyError):
    """No task with the given id"""

    def __init__(self, task_id: str):
        super().__init__(task_id)
        self.task_id = task_id

    def __str__(self) -> str:
        return f"Translation task not found: {self.task_id}"


class TaskTransitionError(ValueError):
    """The requested action is not allowed from the task's current status"""

    def __init__(self, task_id: str, status: TaskStatus, action: str):
        super().__init__(
            f"Cannot {action} task {task_id} while it is {TaskStatus(status).value}"
        )
        self.task_id = task_id
        self.status = TaskStatus(status)
        self.action = action


def _new_id() -> str:
    return str(uuid.uuid4())


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class TranslationTask:
    """A whole translation job for one video transcript"""
    video_id: str
    id: str = field(default_factory=_new_id)
    status: TaskStatus = TaskStatus.QUEUED
    total_segments: int = 0
    completed_segments: int = 0
    current_segment: int = 0
    progress_percentage: int = 0
    current_phase: str = ""
    last_heartbeat: Optional[datetime] = None
    started_at: Optional[datetime] = None
    paused_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    context: Dict[str, Any] = field(default_factory=dict)
    source_entries: List[SubtitleEntry] = field(default_factory=list)
    result: Optional[List[SubtitleEntry]] = None
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def to_dict(self, include_entries: bool = False) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "video_id": self.video_id,
            "status": self.status.value,
            "total_segments": self.total_segments,
            "completed_segments": self.completed_segments,
            "current_segment": self.current_segment,
            "progress_percentage": self.progress_percentage,
            "current_phase": self.current_phase,
            "last_heartbeat": _iso(self.last_heartbeat),
            "started_at": _iso(self.started_at),
            "paused_at": _iso(self.paused_at),
            "completed_at": _iso(self.completed_at),
            "error_message": self.error_message,
            "context": self.context,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if include_entries:
            data["source_entries"] = entries_to_dicts(self.source_entries)
            data["result"] = entries_to_dicts(self.result) if self.result is not None else None
        return data


@dataclass
class SegmentTask:
    """Translation progress of one segment"""
    task_id: str
    segment_index: int
    id: str = field(default_factory=_new_id)
    status: SegmentStatus = SegmentStatus.PENDING
    subtitle_count: int = 0
    character_count: int = 0
    estimated_tokens: int = 0
    retry_count: int = 0
    source_entries: List[SubtitleEntry] = field(default_factory=list)
    partial_result: Optional[List[SubtitleEntry]] = None
    processing_time_ms: Optional[int] = None
    error_message: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "task_id": self.task_id,
            "segment_index": self.segment_index,
            "status": self.status.value,
            "subtitle_count": self.subtitle_count,
            "character_count": self.character_count,
            "estimated_tokens": self.estimated_tokens,
            "retry_count": self.retry_count,
            "processing_time_ms": self.processing_time_ms,
            "error_message": self.error_message,
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
        }


@dataclass
class TaskNotification:
    """Lifecycle event recorded for a task; only `is_read` changes after creation"""
    task_id: str
    type: NotificationType
    title: str
    message: str
    id: str = field(default_factory=_new_id)
    is_read: bool = False
    sent_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "task_id": self.task_id,
            "type": self.type.value,
            "title": self.title,
            "message": self.message,
            "is_read": self.is_read,
            "sent_at": _iso(self.sent_at),
        }


@dataclass
class SegmentProgress:
    segment_index: int
    status: SegmentStatus
    subtitle_count: int
    retry_count: int
    processing_time_ms: Optional[int] = None
    error_message: Optional[str] = None
    partial_result: Optional[List[SubtitleEntry]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "segment_index": self.segment_index,
            "status": self.status.value,
            "subtitle_count": self.subtitle_count,
            "retry_count": self.retry_count,
            "processing_time_ms": self.processing_time_ms,
            "error_message": self.error_message,
            "partial_result": entries_to_dicts(self.partial_result) if self.partial_result is not None else None,
        }


@dataclass
class TranslationProgress:
    """Snapshot of a task and its segments for progress displays"""
    task_id: str
    video_id: str
    status: TaskStatus
    current_phase: str
    total_segments: int
    completed_segments: int
    current_segment: int
    progress_percentage: int
    last_heartbeat: Optional[datetime] = None
    error_message: Optional[str] = None
    segments: List[SegmentProgress] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id,
            "video_id": self.video_id,
            "status": self.status.value,
            "current_phase": self.current_phase,
            "total_segments": self.total_segments,
            "completed_segments": self.completed_segments,
            "current_segment": self.current_segment,
            "progress_percentage": self.progress_percentage,
            "last_heartbeat": _iso(self.last_heartbeat),
            "error_message": self.error_message,
            "segments": [s.to_dict() for s in self.segments],
        }
