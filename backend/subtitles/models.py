"""
Subtitle data model shared by every translation stage.
"""
from dataclasses import dataclass, replace
from typing import Any, Dict, Iterable, List


@dataclass(frozen=True)
class SubtitleEntry:
    """A single timed line of transcript text.

    Entries are immutable; stages that change text or timing build new
    entries with `with_text` / `with_timing`.
    """
    start: float  # Start time in seconds
    end: float    # End time in seconds
    text: str

    def __post_init__(self):
        if self.start >= self.end:
            raise ValueError(
                f"Subtitle entry must start before it ends ({self.start} >= {self.end})"
            )

    @property
    def duration(self) -> float:
        return self.end - self.start

    @property
    def char_count(self) -> int:
        return len(self.text)

    def with_text(self, text: str) -> "SubtitleEntry":
        return replace(self, text=text)

    def with_timing(self, start: float, end: float) -> "SubtitleEntry":
        return replace(self, start=start, end=end)

    def to_dict(self) -> Dict[str, Any]:
        return {"start": self.start, "end": self.end, "text": self.text}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SubtitleEntry":
        return cls(start=float(data["start"]), end=float(data["end"]), text=str(data["text"]))


def entries_to_dicts(entries: Iterable[SubtitleEntry]) -> List[Dict[str, Any]]:
    return [entry.to_dict() for entry in entries]


def entries_from_dicts(items: Iterable[Dict[str, Any]]) -> List[SubtitleEntry]:
    return [SubtitleEntry.from_dict(item) for item in items]
