"""
Validated response shapes for model backends.

Backends normalize whatever the provider returns into these models; the
rest of the engine only ever sees a validated SubtitleListPayload.
"""
from typing import List
from pydantic import BaseModel, ConfigDict, Field, model_validator

from subtitles.models import SubtitleEntry


class SubtitleEntryPayload(BaseModel):
    """One entry as returned by the model"""
    model_config = ConfigDict(extra="ignore")

    start: float = Field(..., ge=0, description="Start time in seconds")
    end: float = Field(..., description="End time in seconds")
    text: str

    @model_validator(mode="after")
    def check_timing(self):
        if self.start >= self.end:
            raise ValueError(f"start ({self.start}) must be before end ({self.end})")
        return self

    def to_entry(self) -> SubtitleEntry:
        return SubtitleEntry(start=self.start, end=self.end, text=self.text.strip())


class SubtitleListPayload(BaseModel):
    """The `{"subtitles": [...]}` envelope every backend response must fit"""
    model_config = ConfigDict(extra="ignore")

    subtitles: List[SubtitleEntryPayload]

    def to_entries(self) -> List[SubtitleEntry]:
        return [item.to_entry() for item in self.subtitles]


class KeywordListPayload(BaseModel):
    """The `{"keywords": [...]}` envelope of a keyword extraction reply"""
    model_config = ConfigDict(extra="ignore")

    keywords: List[str]

    def to_keywords(self) -> List[str]:
        return [k.strip() for k in self.keywords if k and k.strip()]
