"""Shared test doubles: subtitle builders, a manual clock and a scripted model backend."""

import asyncio
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence

import pytest

from subtitles.models import SubtitleEntry
from translation.backends import ModelBackend
from translation.errors import BackendError


def make_entries(texts: Sequence[str], duration: float = 2.0, gap: float = 0.5,
                 start: float = 0.0) -> List[SubtitleEntry]:
    """Consecutive entries, each `duration` long with `gap` seconds between them."""
    entries = []
    t = start
    for text in texts:
        entries.append(SubtitleEntry(start=round(t, 3), end=round(t + duration, 3), text=text))
        t += duration + gap
    return entries


class ManualClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: Optional[datetime] = None):
        self.now = now or datetime(2024, 1, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeBackend(ModelBackend):
    """
    Scripted backend.

    translate() prefixes every text with "T:"; stitch_context() prefixes
    with "S:". Failures are scripted per segment, keyed by the text of
    the segment's first entry.
    """

    def __init__(self):
        self.translate_calls: List[tuple] = []
        self.stitch_calls: List[tuple] = []
        self.failures: Dict[str, int] = {}
        self.always_fail: set = set()
        self.short_reply: set = set()
        self.stitch_error = False
        self.stitch_short = False
        self.gate: Optional[asyncio.Event] = None
        self.started = 0
        self.keywords: List[str] = []
        self.keyword_error = False
        self.keyword_calls: List[tuple] = []

    @property
    def name(self) -> str:
        return "fake"

    async def translate(self, entries, context, params):
        self.translate_calls.append((list(entries), context, params))
        self.started += 1
        if self.gate is not None:
            await self.gate.wait()

        key = entries[0].text
        if key in self.always_fail:
            raise BackendError(f"scripted failure for {key}")
        if self.failures.get(key, 0) > 0:
            self.failures[key] -= 1
            raise BackendError(f"scripted failure for {key}")
        if key in self.short_reply:
            return [e.with_text(f"T:{e.text}") for e in entries][:-1]
        return [e.with_text(f"T:{e.text}") for e in entries]

    async def stitch_context(self, window, hint, context, params):
        self.stitch_calls.append((list(window), hint, context, params))
        if self.stitch_error:
            raise BackendError("stitch failed")
        if self.stitch_short:
            return list(window)[:-1]
        return [e.with_text(f"S:{e.text}") for e in window]

    async def extract_keywords(self, title, context, params, max_keywords):
        self.keyword_calls.append((title, context, params, max_keywords))
        if self.keyword_error:
            raise BackendError("keyword extraction failed")
        return list(self.keywords)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()
