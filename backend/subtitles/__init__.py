"""
Subtitle Processing Module

Provides:
- Immutable subtitle entries
- Subtitle parsing (SRT, VTT)
- Subtitle formatting
- Timestamp repair and timing optimization
"""
from .models import SubtitleEntry, entries_from_dicts, entries_to_dicts
from .parser import SubtitleParser
from .formatter import SubtitleFormatter
from .timing import TimingConfig, TimingOptimizer, repair_overlaps

__all__ = [
    "SubtitleEntry",
    "entries_from_dicts",
    "entries_to_dicts",
    "SubtitleParser",
    "SubtitleFormatter",
    "TimingConfig",
    "TimingOptimizer",
    "repair_overlaps",
]
