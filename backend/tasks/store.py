"""
Task storage interface and the in-process implementation.

Every operation is individually atomic; nothing here spans entities in a
transaction. Stores hand out copies, so callers must `update_*` to persist
a change.
"""
import copy
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional

from .models import (
    TERMINAL_STATUSES,
    SegmentTask,
    TaskNotification,
    TaskStatus,
    TranslationTask,
)


class TaskStore(ABC):
    """Durable keyed storage for tasks, segment tasks and notifications"""

    # Translation tasks

    @abstractmethod
    async def create_task(self, task: TranslationTask) -> TranslationTask:
        pass

    @abstractmethod
    async def get_task(self, task_id: str) -> Optional[TranslationTask]:
        pass

    @abstractmethod
    async def find_open_task(self, video_id: str) -> Optional[TranslationTask]:
        """The non-terminal task for a video, if any"""
        pass

    @abstractmethod
    async def list_tasks(self, statuses: Optional[Iterable[TaskStatus]] = None) -> List[TranslationTask]:
        pass

    @abstractmethod
    async def update_task(self, task: TranslationTask) -> TranslationTask:
        pass

    @abstractmethod
    async def delete_task(self, task_id: str) -> bool:
        """Delete a task together with its segment tasks and notifications"""
        pass

    # Segment tasks

    @abstractmethod
    async def create_segment(self, segment: SegmentTask) -> SegmentTask:
        pass

    @abstractmethod
    async def get_segment(self, task_id: str, segment_index: int) -> Optional[SegmentTask]:
        pass

    @abstractmethod
    async def list_segments(self, task_id: str) -> List[SegmentTask]:
        """Segment tasks of a task, ordered by segment index"""
        pass

    @abstractmethod
    async def update_segment(self, segment: SegmentTask) -> SegmentTask:
        pass

    @abstractmethod
    async def delete_segments(self, task_id: str) -> int:
        pass

    # Notifications

    @abstractmethod
    async def create_notification(self, notification: TaskNotification) -> TaskNotification:
        pass

    @abstractmethod
    async def get_notification(self, notification_id: str) -> Optional[TaskNotification]:
        pass

    @abstractmethod
    async def list_notifications(self, task_id: str) -> List[TaskNotification]:
        """Notifications of a task, oldest first"""
        pass

    @abstractmethod
    async def list_unread_notifications(self) -> List[TaskNotification]:
        pass

    @abstractmethod
    async def update_notification(self, notification: TaskNotification) -> TaskNotification:
        pass


class MemoryTaskStore(TaskStore):
    """Dictionary-backed store for embedding and tests"""

    def __init__(self):
        self._tasks: Dict[str, TranslationTask] = {}
        self._segments: Dict[str, Dict[int, SegmentTask]] = {}
        self._notifications: Dict[str, TaskNotification] = {}

    async def create_task(self, task):
        if task.id in self._tasks:
            raise ValueError(f"Task already exists: {task.id}")
        self._tasks[task.id] = copy.deepcopy(task)
        return copy.deepcopy(task)

    async def get_task(self, task_id):
        task = self._tasks.get(task_id)
        return copy.deepcopy(task) if task else None

    async def find_open_task(self, video_id):
        for task in self._tasks.values():
            if task.video_id == video_id and task.status not in TERMINAL_STATUSES:
                return copy.deepcopy(task)
        return None

    async def list_tasks(self, statuses=None):
        wanted = set(statuses) if statuses is not None else None
        tasks = [
            copy.deepcopy(t) for t in self._tasks.values()
            if wanted is None or t.status in wanted
        ]
        return sorted(tasks, key=lambda t: t.created_at)

    async def update_task(self, task):
        if task.id not in self._tasks:
            raise KeyError(task.id)
        self._tasks[task.id] = copy.deepcopy(task)
        return copy.deepcopy(task)

    async def delete_task(self, task_id):
        if self._tasks.pop(task_id, None) is None:
            return False
        self._segments.pop(task_id, None)
        for nid in [n.id for n in self._notifications.values() if n.task_id == task_id]:
            del self._notifications[nid]
        return True

    async def create_segment(self, segment):
        self._segments.setdefault(segment.task_id, {})[segment.segment_index] = copy.deepcopy(segment)
        return copy.deepcopy(segment)

    async def get_segment(self, task_id, segment_index):
        segment = self._segments.get(task_id, {}).get(segment_index)
        return copy.deepcopy(segment) if segment else None

    async def list_segments(self, task_id):
        segments = self._segments.get(task_id, {})
        return [copy.deepcopy(segments[i]) for i in sorted(segments)]

    async def update_segment(self, segment):
        segments = self._segments.get(segment.task_id, {})
        if segment.segment_index not in segments:
            raise KeyError(f"{segment.task_id}:{segment.segment_index}")
        segments[segment.segment_index] = copy.deepcopy(segment)
        return copy.deepcopy(segment)

    async def delete_segments(self, task_id):
        return len(self._segments.pop(task_id, {}))

    async def create_notification(self, notification):
        self._notifications[notification.id] = copy.deepcopy(notification)
        return copy.deepcopy(notification)

    async def get_notification(self, notification_id):
        notification = self._notifications.get(notification_id)
        return copy.deepcopy(notification) if notification else None

    async def list_notifications(self, task_id):
        found = [copy.deepcopy(n) for n in self._notifications.values() if n.task_id == task_id]
        return sorted(found, key=lambda n: n.sent_at)

    async def list_unread_notifications(self):
        found = [copy.deepcopy(n) for n in self._notifications.values() if not n.is_read]
        return sorted(found, key=lambda n: n.sent_at)

    async def update_notification(self, notification):
        if notification.id not in self._notifications:
            raise KeyError(notification.id)
        self._notifications[notification.id] = copy.deepcopy(notification)
        return copy.deepcopy(notification)
