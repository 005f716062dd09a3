"""
Translation orchestrator.

Drives one task through segmenting, concurrent segment translation,
boundary stitching and optional timing optimization. Before segmenting it
checks the translation cache (a hit completes the task at once) and fills
in title keywords when the context has none. Every state change
goes through the TaskManager; if the task is paused or cancelled while
work is outstanding, the manager rejects the late update and the run ends
quietly.
"""
import asyncio
from typing import List, Optional
from loguru import logger

from config import settings
from subtitles.models import SubtitleEntry
from subtitles.timing import TimingConfig, TimingOptimizer, repair_overlaps
from tasks.manager import TaskManager
from tasks.models import SegmentStatus, TaskStatus, TaskTransitionError, TranslationTask
from .backends import ModelBackend
from .boundary import BoundaryAnalyzer, BoundaryPatterns
from .cache import TranslationCache
from .keywords import KeywordExtractor
from .models import TranslationContext
from .retry import RetryPolicy
from .segment_translator import SegmentTranslator
from .segmenter import Segment, Segmenter
from .stitcher import Stitcher
from .token_limits import SegmentationPreference


class TranslationOrchestrator:
    """
    Usage:
        orchestrator = TranslationOrchestrator(manager, backend)
        task = await orchestrator.run(task_id)
    """

    def __init__(
        self,
        manager: TaskManager,
        backend: ModelBackend,
        segmenter: Optional[Segmenter] = None,
        retry_policy: Optional[RetryPolicy] = None,
        stitcher: Optional[Stitcher] = None,
        preference: Optional[SegmentationPreference] = None,
        stitch_enabled: Optional[bool] = None,
        optimize_timing: Optional[bool] = None,
        timing_config: Optional[TimingConfig] = None,
        keyword_extractor: Optional[KeywordExtractor] = None,
        cache: Optional[TranslationCache] = None,
    ):
        self.manager = manager
        self.backend = backend
        self.keyword_extractor = keyword_extractor or KeywordExtractor(backend)
        # No cache unless one is given
        self.cache = cache
        self.segmenter = segmenter or Segmenter()
        self.translator = SegmentTranslator(backend, manager, retry_policy)
        self.stitcher = stitcher or Stitcher(backend)
        self.preference = SegmentationPreference(preference or settings.SEGMENTATION_PREFERENCE)
        self.stitch_enabled = settings.STITCH_ENABLED if stitch_enabled is None else stitch_enabled
        self.optimize_timing = settings.OPTIMIZE_TIMING if optimize_timing is None else optimize_timing
        self.timing_optimizer = TimingOptimizer(timing_config or TimingConfig(
            min_duration=settings.MIN_ENTRY_DURATION,
            max_gap_fill=settings.MAX_GAP_FILL,
            epsilon=settings.TIMESTAMP_EPSILON,
        ))

    async def run(self, task_id: str) -> TranslationTask:
        """
        Process a task from its current state until it completes, or until it
        is paused, cancelled or failed. Unexpected errors fail the task.
        """
        task = await self.manager.get_task(task_id)
        if task.status not in {TaskStatus.QUEUED, TaskStatus.SEGMENTING, TaskStatus.TRANSLATING,
                               TaskStatus.STITCHING, TaskStatus.OPTIMIZING}:
            logger.info(f"Task {task_id} is {task.status.value}, nothing to run")
            return task

        context = TranslationContext.from_dict(task.context)

        try:
            if task.status == TaskStatus.QUEUED:
                task = await self.manager.start_segmenting(task_id)
                if self.cache is not None:
                    cached = await self.cache.lookup(task.video_id, task.source_entries, context)
                    if cached is not None:
                        return await self.manager.complete_from_cache(task_id, cached)
                context = await self._extract_keywords(task, context)

            if task.status in {TaskStatus.SEGMENTING, TaskStatus.TRANSLATING}:
                task = await self._translate(task, context)

            if task.status in {TaskStatus.STITCHING, TaskStatus.OPTIMIZING}:
                task = await self._finish(task, context)

            return task

        except TaskTransitionError as e:
            # Paused, cancelled or failed underneath us; late work is dropped
            logger.info(f"Task {task_id} stopped processing: {e}")
            return await self.manager.get_task(task_id)
        except asyncio.CancelledError:
            logger.info(f"Task {task_id} processing cancelled")
            raise
        except Exception as e:
            logger.exception(f"Task {task_id} failed: {e}")
            return await self.manager.fail_task(task_id, str(e))

    async def _extract_keywords(self, task: TranslationTask, context: TranslationContext) -> TranslationContext:
        if context.keywords or not context.extract_keywords or not context.video_title:
            return context

        await self.manager.update_phase(task.id, "Extracting keywords")
        keywords = await self.keyword_extractor.extract(context)
        if not keywords:
            return context

        context.keywords = keywords
        await self.manager.update_context(task.id, context.to_dict())
        return context

    async def _translate(self, task: TranslationTask, context: TranslationContext) -> TranslationTask:
        records = await self.manager.list_segments(task.id)

        if task.status == TaskStatus.SEGMENTING or not records:
            segments = self.segmenter.segment(task.source_entries, context.model, self.preference)
            task = await self.manager.register_segments(task.id, segments)
            records = await self.manager.list_segments(task.id)
        else:
            segments = [
                Segment(r.segment_index, tuple(r.source_entries), r.estimated_tokens) for r in records
            ]

        done = {r.segment_index for r in records if r.status == SegmentStatus.COMPLETED}
        pending = [s for s in segments if s.index not in done]
        if pending:
            logger.info(f"Task {task.id}: translating {len(pending)}/{len(segments)} segments")
            await asyncio.gather(*(
                self.translator.translate(segment, context, task_id=task.id, total_segments=len(segments))
                for segment in pending
            ))

        task = await self.manager.get_task(task.id)
        if task.status == TaskStatus.TRANSLATING and task.completed_segments == task.total_segments:
            task = await self.manager.begin_stitching(task.id)
        return task

    async def _finish(self, task: TranslationTask, context: TranslationContext) -> TranslationTask:
        records = await self.manager.list_segments(task.id)
        per_segment: List[List[SubtitleEntry]] = [
            list(r.partial_result) if r.partial_result is not None else list(r.source_entries)
            for r in records
        ]

        if task.status == TaskStatus.STITCHING and self.stitch_enabled and len(per_segment) > 1:
            patterns = BoundaryPatterns.for_languages(context.source_lang, context.target_lang)
            boundaries = BoundaryAnalyzer(patterns).analyze(per_segment)

            async def report(done: int, total: int) -> None:
                await self.manager.update_phase(task.id, f"Stitched {done}/{total} boundaries")

            entries = await self.stitcher.stitch_all(per_segment, boundaries, context, on_progress=report)
        else:
            merged = await self.manager.merge_segment_results(task.id)
            entries = repair_overlaps(merged, self.stitcher.epsilon)

        if self.optimize_timing:
            if task.status == TaskStatus.STITCHING:
                task = await self.manager.begin_optimizing(task.id)
            entries = self.timing_optimizer.optimize(entries)

        task = await self.manager.complete_task(task.id, entries)
        if self.cache is not None:
            await self.cache.save(task.video_id, task.source_entries, context, task.result)
        return task
