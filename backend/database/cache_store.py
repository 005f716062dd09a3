"""
SQL Cache Store
Persists cached translations through the async SQLAlchemy repositories
"""
from subtitles.models import entries_from_dicts, entries_to_dicts
from translation.cache import CachedTranslation, CacheStore

from .connection import get_db
from .models import TranslationCacheModel
from .repository import TranslationCacheRepository


def _entry_values(entry: CachedTranslation) -> dict:
    return {
        "id": entry.id,
        "video_id": entry.video_id,
        "content_hash": entry.content_hash,
        "config_hash": entry.config_hash,
        "target_lang": entry.target_lang,
        "model": entry.model,
        "entries": entries_to_dicts(entry.entries),
        "access_count": entry.access_count,
        "created_at": entry.created_at,
        "last_accessed_at": entry.last_accessed_at,
    }


def _entry_from_model(model: TranslationCacheModel) -> CachedTranslation:
    return CachedTranslation(
        id=model.id,
        video_id=model.video_id,
        content_hash=model.content_hash,
        config_hash=model.config_hash,
        target_lang=model.target_lang,
        model=model.model or "",
        entries=entries_from_dicts(model.entries or []),
        access_count=model.access_count or 0,
        created_at=model.created_at,
        last_accessed_at=model.last_accessed_at,
    )


class SqlCacheStore(CacheStore):
    """
    CacheStore backed by the configured database. Tables are created by
    `init_db` (see SqlTaskStore.initialize).
    """

    async def get(self, video_id, content_hash, config_hash):
        async with get_db() as session:
            model = await TranslationCacheRepository(session).get(video_id, content_hash, config_hash)
            return _entry_from_model(model) if model else None

    async def put(self, entry):
        async with get_db() as session:
            model = await TranslationCacheRepository(session).upsert(_entry_values(entry))
            return _entry_from_model(model)

    async def update(self, entry):
        async with get_db() as session:
            model = await TranslationCacheRepository(session).update(entry.id, {
                "access_count": entry.access_count,
                "last_accessed_at": entry.last_accessed_at,
            })
            if model is None:
                raise KeyError(entry.key)
            return _entry_from_model(model)

    async def list_entries(self):
        async with get_db() as session:
            models = await TranslationCacheRepository(session).get_all()
            return [_entry_from_model(m) for m in models]

    async def delete_for_video(self, video_id):
        async with get_db() as session:
            return await TranslationCacheRepository(session).delete_for_video(video_id)

    async def delete_older_than(self, cutoff):
        async with get_db() as session:
            return await TranslationCacheRepository(session).delete_older_than(cutoff)
