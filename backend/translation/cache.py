"""
Translation result cache.

Finished translations are stored per video under two hashes: one of the
source entries and one of the settings that shape the output (model,
languages, style options). A new task for the same video with the same
transcript and settings can then complete without calling the model.

Cache failures never fail a translation: lookups degrade to a miss and
saves are skipped, both with a warning.
"""
import asyncio
import copy
import hashlib
import json
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple
from loguru import logger

from config import settings
from subtitles.models import SubtitleEntry, entries_to_dicts
from .models import TranslationContext


def content_hash(entries: Sequence[SubtitleEntry]) -> str:
    content = "\n".join(f"{e.start}|{e.end}|{e.text}" for e in entries)
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def config_hash(context: TranslationContext) -> str:
    """
    Hash of the options that change translation output.

    Keywords are left out: they are either derived from the title or
    supplied per run, and a cached result stays valid either way.
    """
    config = {
        "model": context.model,
        "source_lang": context.source_lang,
        "target_lang": context.target_lang,
        "taiwan_optimization": context.taiwan_optimization,
        "natural_tone": context.natural_tone,
    }
    return hashlib.sha256(json.dumps(config, sort_keys=True).encode("utf-8")).hexdigest()


@dataclass
class CachedTranslation:
    video_id: str
    content_hash: str
    config_hash: str
    target_lang: str
    model: str
    entries: List[SubtitleEntry]
    created_at: datetime = field(default_factory=datetime.now)
    last_accessed_at: Optional[datetime] = None
    access_count: int = 0
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @property
    def key(self) -> Tuple[str, str, str]:
        return self.video_id, self.content_hash, self.config_hash

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "video_id": self.video_id,
            "content_hash": self.content_hash,
            "config_hash": self.config_hash,
            "target_lang": self.target_lang,
            "model": self.model,
            "entries": entries_to_dicts(self.entries),
            "created_at": self.created_at.isoformat(),
            "last_accessed_at": self.last_accessed_at.isoformat() if self.last_accessed_at else None,
            "access_count": self.access_count,
        }


class CacheStore(ABC):
    """Keyed storage for cached translations"""

    @abstractmethod
    async def get(self, video_id: str, content_hash: str, config_hash: str) -> Optional[CachedTranslation]:
        pass

    @abstractmethod
    async def put(self, entry: CachedTranslation) -> CachedTranslation:
        """Store an entry, replacing any entry with the same key"""
        pass

    @abstractmethod
    async def update(self, entry: CachedTranslation) -> CachedTranslation:
        pass

    @abstractmethod
    async def list_entries(self) -> List[CachedTranslation]:
        pass

    @abstractmethod
    async def delete_for_video(self, video_id: str) -> int:
        pass

    @abstractmethod
    async def delete_older_than(self, cutoff: datetime) -> int:
        pass


class MemoryCacheStore(CacheStore):
    """Dictionary-backed cache store for embedding and tests"""

    def __init__(self):
        self._entries: Dict[Tuple[str, str, str], CachedTranslation] = {}

    async def get(self, video_id, content_hash, config_hash):
        entry = self._entries.get((video_id, content_hash, config_hash))
        return copy.deepcopy(entry) if entry else None

    async def put(self, entry):
        self._entries[entry.key] = copy.deepcopy(entry)
        return copy.deepcopy(entry)

    async def update(self, entry):
        if entry.key not in self._entries:
            raise KeyError(entry.key)
        self._entries[entry.key] = copy.deepcopy(entry)
        return copy.deepcopy(entry)

    async def list_entries(self):
        return sorted((copy.deepcopy(e) for e in self._entries.values()), key=lambda e: e.created_at)

    async def delete_for_video(self, video_id):
        keys = [k for k in self._entries if k[0] == video_id]
        for key in keys:
            del self._entries[key]
        return len(keys)

    async def delete_older_than(self, cutoff):
        keys = [k for k, e in self._entries.items() if e.created_at < cutoff]
        for key in keys:
            del self._entries[key]
        return len(keys)


class TranslationCache:
    """
    Usage:
        cache = TranslationCache(MemoryCacheStore())
        entries = await cache.lookup(video_id, source_entries, context)
        await cache.save(video_id, source_entries, context, translated)
    """

    def __init__(
        self,
        store: CacheStore,
        clock: Callable[[], datetime] = datetime.now,
        max_age_hours: Optional[float] = None,
    ):
        self.store = store
        self.clock = clock
        self.max_age = timedelta(hours=max_age_hours or settings.CACHE_MAX_AGE_HOURS)

    def _is_expired(self, entry: CachedTranslation) -> bool:
        return self.clock() - entry.created_at > self.max_age

    async def lookup(
        self,
        video_id: str,
        entries: Sequence[SubtitleEntry],
        context: TranslationContext,
    ) -> Optional[List[SubtitleEntry]]:
        """Cached translation for this transcript and settings, or None"""
        try:
            entry = await self.store.get(video_id, content_hash(entries), config_hash(context))
            if entry is None:
                logger.debug(f"Translation cache miss for video {video_id}")
                return None
            if self._is_expired(entry):
                logger.info(f"Cached translation for video {video_id} expired (created {entry.created_at})")
                return None

            entry.access_count += 1
            entry.last_accessed_at = self.clock()
            await self.store.update(entry)
            logger.info(
                f"Translation cache hit for video {video_id}: {len(entry.entries)} subtitles, "
                f"access #{entry.access_count}"
            )
            return list(entry.entries)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Translation cache lookup failed for video {video_id}: {e}")
            return None

    async def save(
        self,
        video_id: str,
        entries: Sequence[SubtitleEntry],
        context: TranslationContext,
        result: Sequence[SubtitleEntry],
    ) -> bool:
        try:
            await self.store.put(CachedTranslation(
                video_id=video_id,
                content_hash=content_hash(entries),
                config_hash=config_hash(context),
                target_lang=context.target_lang,
                model=context.model,
                entries=list(result),
                created_at=self.clock(),
            ))
            logger.debug(f"Cached translation for video {video_id} ({len(result)} subtitles)")
            return True
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Could not cache translation for video {video_id}: {e}")
            return False

    async def invalidate(self, video_id: str) -> int:
        """Drop every cached translation of a video"""
        removed = await self.store.delete_for_video(video_id)
        logger.info(f"Invalidated {removed} cached translations for video {video_id}")
        return removed

    async def cleanup(self) -> int:
        """Remove entries older than the maximum age"""
        removed = await self.store.delete_older_than(self.clock() - self.max_age)
        if removed:
            logger.info(f"Removed {removed} expired cached translations")
        return removed

    async def stats(self) -> Dict[str, Any]:
        entries = await self.store.list_entries()
        return {
            "entries": len(entries),
            "videos": len({e.video_id for e in entries}),
            "total_accesses": sum(e.access_count for e in entries),
            "expired": sum(1 for e in entries if self._is_expired(e)),
            "oldest": entries[0].created_at.isoformat() if entries else None,
            "newest": entries[-1].created_at.isoformat() if entries else None,
        }
