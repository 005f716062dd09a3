"""
Token-budget segmentation.

Splits a transcript into contiguous segments that each fit one model
request. Segments partition the input: concatenating their entries in
index order gives back the original sequence.
"""
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple
from loguru import logger

from config import settings
from subtitles.models import SubtitleEntry
from .token_limits import SegmentationPreference, lookup, token_threshold


@dataclass(frozen=True)
class Segment:
    """A contiguous slice of the transcript sent in one request"""
    index: int
    entries: Tuple[SubtitleEntry, ...]
    estimated_tokens: int

    @property
    def subtitle_count(self) -> int:
        return len(self.entries)

    @property
    def character_count(self) -> int:
        return sum(len(entry.text) for entry in self.entries)


@dataclass
class TokenEstimator:
    """
    Rough token estimate for a translation round trip.

    A request carries the original text, the translated text and JSON
    formatting, so each character costs `tokens_per_char * expansion`.
    Every request also pays a fixed `overhead` for the prompt.
    """
    tokens_per_char: float = field(default_factory=lambda: settings.TOKENS_PER_CHAR)
    expansion: float = field(default_factory=lambda: settings.TRANSLATION_EXPANSION)
    overhead: int = field(default_factory=lambda: settings.REQUEST_OVERHEAD_TOKENS)

    def entry_tokens(self, text: str) -> int:
        return math.ceil(len(text) * self.tokens_per_char * self.expansion)

    def request_tokens(self, texts: Sequence[str]) -> int:
        return self.overhead + sum(self.entry_tokens(text) for text in texts)


@dataclass
class SegmentationStats:
    total_subtitles: int
    total_estimated_tokens: int
    needs_segmentation: bool
    recommended_segments: int
    model_max_tokens: int
    threshold: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_subtitles": self.total_subtitles,
            "total_estimated_tokens": self.total_estimated_tokens,
            "needs_segmentation": self.needs_segmentation,
            "recommended_segments": self.recommended_segments,
            "model_max_tokens": self.model_max_tokens,
            "threshold": self.threshold,
        }


class Segmenter:
    """
    Greedy token-budget segmenter.

    Usage:
        segmenter = Segmenter()
        segments = segmenter.segment(entries, "gpt-4o", SegmentationPreference.QUALITY)
    """

    def __init__(self, estimator: Optional[TokenEstimator] = None):
        self.estimator = estimator or TokenEstimator()

    def segment(
        self,
        entries: Sequence[SubtitleEntry],
        model_id: str,
        preference: SegmentationPreference = SegmentationPreference.QUALITY,
    ) -> List[Segment]:
        """
        Split entries into segments under the model's token threshold.

        An entry is never split; a single entry larger than the threshold
        becomes a segment of its own. Empty input yields no segments.
        """
        if not entries:
            return []

        threshold = token_threshold(model_id, preference)
        overhead = self.estimator.overhead
        segments: List[Segment] = []
        current: List[SubtitleEntry] = []
        current_tokens = overhead

        for entry in entries:
            entry_tokens = self.estimator.entry_tokens(entry.text)
            if current and current_tokens + entry_tokens > threshold:
                segments.append(Segment(len(segments), tuple(current), current_tokens))
                current = []
                current_tokens = overhead
            current.append(entry)
            current_tokens += entry_tokens

        segments.append(Segment(len(segments), tuple(current), current_tokens))

        logger.info(
            f"Segmented {len(entries)} entries into {len(segments)} segments "
            f"(model={model_id}, preference={SegmentationPreference(preference).value}, threshold={threshold})"
        )
        for seg in segments:
            logger.debug(f"  Segment {seg.index}: {seg.subtitle_count} entries, ~{seg.estimated_tokens} tokens")

        return segments

    def stats(
        self,
        entries: Sequence[SubtitleEntry],
        model_id: str,
        preference: SegmentationPreference = SegmentationPreference.QUALITY,
    ) -> SegmentationStats:
        """Whole-transcript estimate, used to preview how a job will be split"""
        limits = lookup(model_id)
        threshold = token_threshold(model_id, preference)
        total = self.estimator.request_tokens([entry.text for entry in entries])
        needs = total > threshold
        return SegmentationStats(
            total_subtitles=len(entries),
            total_estimated_tokens=total,
            needs_segmentation=needs,
            recommended_segments=math.ceil(total / threshold) if needs else 1,
            model_max_tokens=limits.max_tokens,
            threshold=threshold,
        )
