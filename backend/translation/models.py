"""
Translation request context and generation parameters.
"""
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional

from config import settings


@dataclass
class TranslationContext:
    """Everything a backend needs to know about the job besides the entries"""
    video_title: str = ""
    model: str = field(default_factory=lambda: settings.LLM_MODEL)
    source_lang: str = field(default_factory=lambda: settings.SOURCE_LANG)
    target_lang: str = field(default_factory=lambda: settings.TARGET_LANG)
    taiwan_optimization: bool = True
    natural_tone: bool = True
    keywords: List[str] = field(default_factory=list)
    extract_keywords: bool = field(default_factory=lambda: settings.KEYWORD_EXTRACTION)
    segment_index: Optional[int] = None
    segment_count: Optional[int] = None

    def for_segment(self, index: int, count: int) -> "TranslationContext":
        data = asdict(self)
        data.update(segment_index=index, segment_count=count)
        return TranslationContext(**data)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data.pop("segment_index")
        data.pop("segment_count")
        return data

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "TranslationContext":
        data = dict(data or {})
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)


@dataclass(frozen=True)
class GenerationParams:
    """Per-call sampling parameters"""
    temperature: float = 0.1
    is_retry: bool = False
