"""
Boundary stitching.

For every flagged join, a small window of entries around it is sent back
to the model to repair meaning broken by segmentation. A stitch that does
not come back with the same number of entries is discarded. Timestamps
are never taken from the model.
"""
import asyncio
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple
from loguru import logger

from config import settings
from subtitles.models import SubtitleEntry
from subtitles.timing import repair_overlaps
from .backends import ModelBackend
from .boundary import BoundaryAnalysis
from .models import GenerationParams, TranslationContext


class Stitcher:
    """
    Usage:
        stitcher = Stitcher(backend)
        entries = await stitcher.stitch_all(translated_segments, boundaries, context)
    """

    def __init__(
        self,
        backend: ModelBackend,
        context_size: Optional[int] = None,
        max_concurrency: Optional[int] = None,
        temperature: Optional[float] = None,
        epsilon: Optional[float] = None,
    ):
        self.backend = backend
        self.context_size = context_size or settings.STITCH_CONTEXT_SIZE
        if self.context_size < 2 or self.context_size % 2:
            raise ValueError(f"Stitch context size must be an even number >= 2, got {self.context_size}")
        self.max_concurrency = max(1, max_concurrency or settings.STITCH_MAX_CONCURRENCY)
        self.temperature = temperature if temperature is not None else settings.STITCH_TEMPERATURE
        self.epsilon = epsilon if epsilon is not None else settings.TIMESTAMP_EPSILON

    def window_bounds(self, total: int, boundary_index: int) -> Tuple[int, int]:
        """
        Half-open [start, end) window around the first entry of the next
        segment, clipped to the transcript.
        """
        half = self.context_size // 2
        return max(0, boundary_index - half), min(total, boundary_index + half)

    async def stitch(
        self,
        entries: Sequence[SubtitleEntry],
        boundary_index: int,
        boundary: BoundaryAnalysis,
        context: TranslationContext,
    ) -> Optional[List[SubtitleEntry]]:
        """
        Ask the backend to repair the window around one join.

        Returns:
            The corrected window (same length and timestamps as the submitted
            window), or None if the stitch failed or was discarded.
        """
        start, end = self.window_bounds(len(entries), boundary_index)
        window = list(entries[start:end])
        label = f"Boundary {boundary.segment_index}->{boundary.next_segment_index}"

        try:
            stitched = await self.backend.stitch_context(
                window, boundary, context, GenerationParams(temperature=self.temperature)
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"{label}: stitch request failed, keeping original window: {e}")
            return None

        if len(stitched) != len(window):
            logger.warning(
                f"{label}: stitch returned {len(stitched)} entries for a window of {len(window)}, discarded"
            )
            return None

        logger.debug(f"{label}: stitched window [{start}, {end})")
        return [
            original.with_text(new.text.strip() or original.text)
            for original, new in zip(window, stitched)
        ]

    async def stitch_all(
        self,
        segments: Sequence[Sequence[SubtitleEntry]],
        boundaries: Sequence[BoundaryAnalysis],
        context: TranslationContext,
        on_progress: Optional[Callable[[int, int], Awaitable[None]]] = None,
    ) -> List[SubtitleEntry]:
        """
        Merge segment entries and apply a stitch to every flagged boundary.

        A failure at one boundary never stops the others. Windows that
        overlap are never stitched at the same time. Ends with a timestamp
        repair pass over the whole transcript.

        Args:
            segments: translated entries of each segment, in order
            boundaries: analysis for each join (only flagged ones are stitched)
            on_progress: awaited with (done, total) after each stitch attempt
        """
        entries: List[SubtitleEntry] = []
        offsets = []
        for seg_entries in segments:
            offsets.append(len(entries))
            entries.extend(seg_entries)

        flagged = [
            (offsets[b.next_segment_index], b)
            for b in boundaries
            if b.needs_stitching and b.next_segment_index < len(offsets)
        ]
        if not flagged:
            return repair_overlaps(entries, self.epsilon)

        logger.info(f"Stitching {len(flagged)} boundaries (concurrency={self.max_concurrency})")
        applied = 0
        done = 0

        for batch in self._batches(len(entries), flagged):
            results = await asyncio.gather(
                *(self.stitch(entries, index, boundary, context) for index, boundary in batch)
            )
            for (index, _), corrected in zip(batch, results):
                if corrected is not None:
                    start, end = self.window_bounds(len(entries), index)
                    entries[start:end] = corrected
                    applied += 1
            done += len(batch)
            if on_progress is not None:
                await on_progress(done, len(flagged))

        logger.info(f"Applied {applied}/{len(flagged)} stitches")
        return repair_overlaps(entries, self.epsilon)

    def _batches(
        self, total: int, flagged: List[Tuple[int, BoundaryAnalysis]]
    ) -> List[List[Tuple[int, BoundaryAnalysis]]]:
        """Group boundaries, in order, into batches of non-overlapping windows"""
        batches: List[List[Tuple[int, BoundaryAnalysis]]] = []
        current: List[Tuple[int, BoundaryAnalysis]] = []
        current_end = -1

        for index, boundary in flagged:
            start, end = self.window_bounds(total, index)
            if current and (len(current) >= self.max_concurrency or start < current_end):
                batches.append(current)
                current = []
            current.append((index, boundary))
            current_end = end

        if current:
            batches.append(current)
        return batches
