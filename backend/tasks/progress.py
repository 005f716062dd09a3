"""
Progress sinks.

The task manager pushes a TaskEvent on every meaningful transition. Sinks
must not block; transports (SSE, websockets) subscribe through the
ProgressBroadcaster and drain their own queue.
"""
import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence
from loguru import logger


STAGE_NUMBERS = {
    "queued": 0,
    "segmenting": 1,
    "translating": 2,
    "stitching": 3,
    "optimizing": 4,
    "completed": 5,
}


@dataclass
class TaskEvent:
    task_id: str
    stage: str
    status: str
    progress: int
    result: Any = None
    message: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def stage_number(self) -> int:
        return STAGE_NUMBERS.get(self.stage, -1)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id,
            "stage": self.stage,
            "stage_number": self.stage_number,
            "status": self.status,
            "progress": self.progress,
            "result": self.result,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
        }


class ProgressSink(ABC):
    """Receives task events; implementations must return quickly"""

    @abstractmethod
    def on_task_event(
        self,
        task_id: str,
        stage: str,
        status: str,
        progress: int,
        result: Any = None,
        message: Optional[str] = None,
    ) -> None:
        pass


class NullProgressSink(ProgressSink):
    def on_task_event(self, task_id, stage, status, progress, result=None, message=None):
        pass


class LoggingProgressSink(ProgressSink):
    """Writes every event to the log"""

    def on_task_event(self, task_id, stage, status, progress, result=None, message=None):
        suffix = f" - {message}" if message else ""
        logger.info(f"[{task_id[:8]}] {stage} ({status}) {progress}%{suffix}")


class CompositeProgressSink(ProgressSink):
    """Fans one event out to several sinks; a failing sink does not affect the others"""

    def __init__(self, sinks: Sequence[ProgressSink]):
        self.sinks = list(sinks)

    def on_task_event(self, task_id, stage, status, progress, result=None, message=None):
        for sink in self.sinks:
            try:
                sink.on_task_event(task_id, stage, status, progress, result, message)
            except Exception as e:
                logger.error(f"Progress sink {type(sink).__name__} failed: {e}")


class ProgressBroadcaster(ProgressSink):
    """
    Per-task subscriber queues.

    Usage:
        queue = broadcaster.subscribe(task_id)
        try:
            while True:
                event = await queue.get()
                ...
        finally:
            broadcaster.unsubscribe(task_id, queue)
    """

    def __init__(self, max_queue_size: int = 100):
        self.max_queue_size = max_queue_size
        self._subscribers: Dict[str, List[asyncio.Queue]] = {}

    def subscribe(self, task_id: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.max_queue_size)
        self._subscribers.setdefault(task_id, []).append(queue)
        logger.debug(f"Progress subscriber added for task {task_id}")
        return queue

    def unsubscribe(self, task_id: str, queue: asyncio.Queue) -> None:
        queues = self._subscribers.get(task_id, [])
        if queue in queues:
            queues.remove(queue)
        if not queues:
            self._subscribers.pop(task_id, None)

    def subscriber_count(self, task_id: str) -> int:
        return len(self._subscribers.get(task_id, []))

    def on_task_event(self, task_id, stage, status, progress, result=None, message=None):
        queues = self._subscribers.get(task_id)
        if not queues:
            return

        event = TaskEvent(task_id, stage, status, progress, result, message)
        for queue in list(queues):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                # Subscriber stopped draining; drop it rather than stall the task
                logger.warning(f"Dropping slow progress subscriber for task {task_id}")
                self.unsubscribe(task_id, queue)
