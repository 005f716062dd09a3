import asyncio

import pytest

from database import SqlCacheStore, SqlTaskStore, close_db, configure
from tasks.manager import TaskManager
from tasks.models import (
    NotificationType,
    SegmentStatus,
    SegmentTask,
    TaskNotification,
    TaskStatus,
    TranslationTask,
)
from translation.cache import TranslationCache
from translation.models import TranslationContext
from translation.orchestrator import TranslationOrchestrator
from translation.retry import RetryPolicy

from conftest import make_entries


def run_with_store(scenario):
    """Run `scenario(store)` against a fresh in-memory database."""
    async def run_test():
        configure("sqlite+aiosqlite:///:memory:")
        store = SqlTaskStore()
        try:
            await store.initialize()
            return await scenario(store)
        finally:
            await close_db()
            configure(None)

    return asyncio.run(run_test())


def _task(clock, video_id="video-1", **kwargs):
    now = clock()
    return TranslationTask(
        video_id=video_id,
        context={"video_title": "Demo", "keywords": ["alpha"]},
        source_entries=make_entries(["Hello.", "World."]),
        created_at=now,
        updated_at=now,
        **kwargs,
    )


def test_task_round_trip(clock):
    async def scenario(store):
        created = await store.create_task(_task(clock))
        with pytest.raises(ValueError):
            await store.create_task(created)

        created.status = TaskStatus.TRANSLATING
        created.progress_percentage = 40
        created.last_heartbeat = clock()
        created.result = make_entries(["Bonjour."])
        await store.update_task(created)

        loaded = await store.get_task(created.id)
        missing = await store.get_task("missing")
        with pytest.raises(KeyError):
            await store.update_task(_task(clock, video_id="other"))
        return created, loaded, missing

    created, loaded, missing = run_with_store(scenario)

    assert missing is None
    assert loaded.status == TaskStatus.TRANSLATING
    assert loaded.progress_percentage == 40
    assert loaded.context == {"video_title": "Demo", "keywords": ["alpha"]}
    assert loaded.source_entries == created.source_entries
    assert [e.text for e in loaded.result] == ["Bonjour."]
    assert loaded.last_heartbeat == clock.now


def test_find_open_and_list_by_status(clock):
    async def scenario(store):
        done = await store.create_task(_task(clock, status=TaskStatus.COMPLETED))
        clock.advance(1)
        open_task = await store.create_task(_task(clock, status=TaskStatus.PAUSED))
        clock.advance(1)
        other = await store.create_task(_task(clock, video_id="video-2"))
        return (
            done,
            open_task,
            other,
            await store.find_open_task("video-1"),
            await store.list_tasks([TaskStatus.QUEUED, TaskStatus.PAUSED]),
            await store.list_tasks(),
        )

    done, open_task, other, found, filtered, everything = run_with_store(scenario)

    assert found.id == open_task.id
    assert [t.id for t in filtered] == [open_task.id, other.id]
    assert [t.id for t in everything] == [done.id, open_task.id, other.id]


def test_segments_and_cascading_delete(clock):
    async def scenario(store):
        task = await store.create_task(_task(clock))
        entries = task.source_entries
        for index in (1, 0):
            await store.create_segment(SegmentTask(
                task_id=task.id, segment_index=index, subtitle_count=1,
                source_entries=[entries[index]],
            ))
        # Re-registering an index replaces the record
        await store.create_segment(SegmentTask(
            task_id=task.id, segment_index=1, subtitle_count=1, estimated_tokens=99,
            source_entries=[entries[1]],
        ))

        segment = await store.get_segment(task.id, 0)
        segment.status = SegmentStatus.COMPLETED
        segment.partial_result = [entries[0].with_text("Salut.")]
        await store.update_segment(segment)

        await store.create_notification(TaskNotification(
            task_id=task.id, type=NotificationType.PROGRESS, title="t", message="m", sent_at=clock(),
        ))
        listed = await store.list_segments(task.id)
        deleted = await store.delete_task(task.id)
        return (
            listed,
            deleted,
            await store.list_segments(task.id),
            await store.list_notifications(task.id),
            await store.delete_task(task.id),
        )

    listed, deleted, segments_after, notifications_after, deleted_again = run_with_store(scenario)

    assert [s.segment_index for s in listed] == [0, 1]
    assert listed[0].status == SegmentStatus.COMPLETED
    assert listed[0].partial_result[0].text == "Salut."
    assert listed[1].estimated_tokens == 99
    assert deleted is True
    assert segments_after == []
    assert notifications_after == []
    assert deleted_again is False


def test_notifications_read_state(clock):
    async def scenario(store):
        task = await store.create_task(_task(clock))
        first = await store.create_notification(TaskNotification(
            task_id=task.id, type=NotificationType.PROGRESS, title="Queued", message="", sent_at=clock(),
        ))
        clock.advance(1)
        await store.create_notification(TaskNotification(
            task_id=task.id, type=NotificationType.COMPLETED, title="Done", message="", sent_at=clock(),
        ))
        first.is_read = True
        await store.update_notification(first)
        return await store.list_notifications(task.id), await store.list_unread_notifications()

    notifications, unread = run_with_store(scenario)

    assert [n.title for n in notifications] == ["Queued", "Done"]
    assert notifications[0].is_read is True
    assert [n.title for n in unread] == ["Done"]
    assert unread[0].type == NotificationType.COMPLETED


def test_orchestrator_on_sql_store(backend, clock):
    entries = make_entries(["Hello.", "World."])

    async def scenario(store):
        manager = TaskManager(store, clock=clock)
        context = TranslationContext(video_title="Demo", model="gpt-4o", source_lang="en", target_lang="en")
        task = await manager.create_task("video-1", entries, context.to_dict())
        orchestrator = TranslationOrchestrator(
            manager, backend, retry_policy=RetryPolicy(max_attempts=1, backoff=0),
            stitch_enabled=True, optimize_timing=False,
        )
        await orchestrator.run(task.id)
        return await manager.get_task(task.id), await manager.get_progress(task.id)

    task, progress = run_with_store(scenario)

    assert task.status == TaskStatus.COMPLETED
    assert [e.text for e in task.result] == ["T:Hello.", "T:World."]
    assert progress.completed_segments == 1
    assert progress.segments[0].status == SegmentStatus.COMPLETED


def test_cache_store_round_trip(clock):
    entries = make_entries(["Hello.", "World."])
    translated = [e.with_text(f"T:{e.text}") for e in entries]
    context = TranslationContext(video_title="Demo", model="gpt-4o", source_lang="en", target_lang="zh-TW")

    async def scenario(store):
        cache = TranslationCache(SqlCacheStore(), clock=clock, max_age_hours=1)
        await cache.save("video-1", entries, context, entries)
        # Saving again under the same key replaces the entry
        await cache.save("video-1", entries, context, translated)
        hit = await cache.lookup("video-1", entries, context)
        miss = await cache.lookup("video-1", entries[:1], context)
        listed = await cache.store.list_entries()
        clock.advance(2 * 3600)
        removed = await cache.cleanup()
        return hit, miss, listed, removed, await cache.store.list_entries()

    hit, miss, listed, removed, remaining = run_with_store(scenario)

    assert [e.text for e in hit] == ["T:Hello.", "T:World."]
    assert miss is None
    assert len(listed) == 1
    assert listed[0].access_count == 1
    assert listed[0].target_lang == "zh-TW"
    assert removed == 1
    assert remaining == []
