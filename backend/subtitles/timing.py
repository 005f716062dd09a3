"""
Subtitle timing repair and optimization.

- repair_overlaps: clamp an entry that runs into the next one
- TimingOptimizer: local pass run in the optimizing phase
  (extend very short entries, close tiny gaps, never overlap)
"""
from dataclasses import dataclass
from typing import List, Optional, Sequence
from loguru import logger

from .models import SubtitleEntry


DEFAULT_EPSILON = 0.001


def repair_overlaps(
    entries: Sequence[SubtitleEntry],
    epsilon: float = DEFAULT_EPSILON,
) -> List[SubtitleEntry]:
    """
    Clamp any `end > next.start` to `next.start - epsilon`.

    Entry count and text never change. When clamping would make an entry
    end before it starts (next entry starts at or before this one) the
    entry is left untouched and a warning is logged.
    """
    repaired = list(entries)
    fixed = 0

    for i in range(len(repaired) - 1):
        current = repaired[i]
        next_start = repaired[i + 1].start
        if current.end <= next_start:
            continue

        new_end = round(next_start - epsilon, 6)
        if new_end <= current.start:
            logger.warning(
                f"Cannot clamp entry {i} ({current.start:.3f}-{current.end:.3f}) "
                f"before next start {next_start:.3f}"
            )
            continue

        repaired[i] = current.with_timing(current.start, new_end)
        fixed += 1

    if fixed:
        logger.debug(f"Repaired {fixed} overlapping timestamps")
    return repaired


@dataclass
class TimingConfig:
    """Timing optimization configuration"""
    min_duration: float = 0.8   # Entries shorter than this are extended into free space
    max_gap_fill: float = 0.3   # Gaps shorter than this are closed
    epsilon: float = DEFAULT_EPSILON


class TimingOptimizer:
    """
    Local timing pass. Only ever moves an entry's end forward into free space
    before the next entry, so it cannot create overlaps or reorder entries.

    Usage:
        optimizer = TimingOptimizer(TimingConfig(min_duration=1.0))
        entries = optimizer.optimize(entries)
    """

    def __init__(self, config: Optional[TimingConfig] = None):
        self.config = config or TimingConfig()

    def optimize(self, entries: Sequence[SubtitleEntry]) -> List[SubtitleEntry]:
        cfg = self.config
        result = repair_overlaps(entries, cfg.epsilon)
        adjusted = 0

        for i, entry in enumerate(result):
            limit = result[i + 1].start - cfg.epsilon if i + 1 < len(result) else None
            new_end = entry.end

            # Close tiny gaps to reduce flicker
            if limit is not None:
                gap = result[i + 1].start - entry.end
                if 0 < gap < cfg.max_gap_fill:
                    new_end = max(new_end, limit)

            # Give very short entries more screen time
            if new_end - entry.start < cfg.min_duration:
                target = entry.start + cfg.min_duration
                new_end = max(new_end, target if limit is None else min(target, limit))

            new_end = round(new_end, 6)
            if new_end > entry.end:
                result[i] = entry.with_timing(entry.start, new_end)
                adjusted += 1

        logger.info(f"Timing optimization adjusted {adjusted}/{len(result)} entries")
        return result
