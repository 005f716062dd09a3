"""
Segment translator.

Translates one segment through the model backend under a retry policy.
A segment is never lost: when every attempt fails, its original entries
are used as the output so the time range stays covered.
"""
import time
from typing import List, Optional, Sequence
from loguru import logger

from subtitles.models import SubtitleEntry
from tasks.manager import TaskManager
from .backends import ModelBackend
from .errors import BackendResponseError
from .models import GenerationParams, TranslationContext
from .retry import RetryExhaustedError, RetryPolicy
from .segmenter import Segment


class SegmentTranslator:
    """
    Usage:
        translator = SegmentTranslator(backend, manager)
        entries = await translator.translate(segment, context, task_id=task.id)
    """

    def __init__(
        self,
        backend: ModelBackend,
        manager: Optional[TaskManager] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.backend = backend
        self.manager = manager
        self.retry_policy = retry_policy or RetryPolicy()

    async def translate(
        self,
        segment: Segment,
        context: TranslationContext,
        task_id: Optional[str] = None,
        total_segments: Optional[int] = None,
    ) -> List[SubtitleEntry]:
        """
        Translate a segment.

        When `task_id` is given the owning SegmentTask is updated through the
        task manager, which also recomputes task progress.
        """
        tracked = task_id is not None and self.manager is not None
        if tracked and not await self.manager.mark_segment_started(task_id, segment.index):
            logger.debug(f"Task {task_id} not translating, skipping segment {segment.index}")
            return list(segment.entries)

        seg_context = context.for_segment(segment.index, total_segments or segment.index + 1)
        label = f"Segment {segment.index}"
        started = time.monotonic()
        retries = 0
        error_message = None

        async def call(params: GenerationParams) -> List[SubtitleEntry]:
            translated = await self.backend.translate(segment.entries, seg_context, params)
            return self._validate(segment, translated)

        async def on_retry(attempt: int, error: BaseException) -> None:
            nonlocal retries
            retries = attempt - 1
            if tracked:
                await self.manager.mark_segment_retrying(task_id, segment.index, retries, str(error))

        try:
            result = await self.retry_policy.run(call, label=label, on_retry=on_retry)
        except RetryExhaustedError as e:
            error_message = str(e.last_error)
            logger.warning(f"{label} failed after {e.attempts} attempts, keeping original text: {error_message}")
            result = list(segment.entries)

        elapsed_ms = int((time.monotonic() - started) * 1000)
        logger.info(f"{label}: {len(result)} entries in {elapsed_ms}ms (retries={retries})")

        if tracked:
            await self.manager.complete_segment(
                task_id,
                segment.index,
                result,
                processing_time_ms=elapsed_ms,
                retry_count=retries,
                error_message=error_message,
            )
        return result

    def _validate(self, segment: Segment, translated: Sequence[SubtitleEntry]) -> List[SubtitleEntry]:
        expected = len(segment.entries)
        if expected and not translated:
            raise BackendResponseError(f"Segment {segment.index}: backend returned no subtitles")

        if len(translated) != expected:
            logger.warning(
                f"Segment {segment.index}: expected {expected} entries, got {len(translated)}"
            )
            return list(translated)

        # Same count: keep source timing, take translated text
        return [
            source.with_text(target.text)
            for source, target in zip(segment.entries, translated)
        ]
