import asyncio
import gc

import pytest

from tasks.manager import TaskManager
from tasks.models import (
    NotificationType,
    SegmentStatus,
    TaskNotFoundError,
    TaskStatus,
    TaskTransitionError,
)
from tasks.progress import ProgressSink
from tasks.store import MemoryTaskStore
from translation.segmenter import Segment

from conftest import make_entries


class RecordingSink(ProgressSink):
    def __init__(self):
        self.events = []

    def on_task_event(self, task_id, stage, status, progress, result=None, message=None):
        self.events.append((stage, status, progress))


def _segments(entries, size):
    return [
        Segment(index=i, entries=tuple(entries[start:start + size]), estimated_tokens=10)
        for i, start in enumerate(range(0, len(entries), size))
    ]


async def _translating(manager, video_id="video-1", count=4, size=1):
    entries = make_entries([f"line {i}." for i in range(count)])
    task = await manager.create_task(video_id, entries, {"video_title": "Demo"})
    await manager.start_segmenting(task.id)
    await manager.register_segments(task.id, _segments(entries, size))
    return task.id, entries


def test_create_task_is_idempotent_per_video(clock):
    async def run_test():
        manager = TaskManager(MemoryTaskStore(), clock=clock)
        entries = make_entries(["a.", "b."])
        first = await manager.create_task("video-1", entries)
        second = await manager.create_task("video-1", entries)
        other = await manager.create_task("video-2", entries)
        return first, second, other, await manager.list_notifications(first.id)

    first, second, other, notifications = asyncio.run(run_test())

    assert first.id == second.id
    assert other.id != first.id
    assert first.status == TaskStatus.QUEUED
    assert first.last_heartbeat == clock.now
    assert [n.title for n in notifications] == ["Translation queued"]


def test_pipeline_transitions_and_progress(clock):
    sink = RecordingSink()

    async def run_test():
        manager = TaskManager(MemoryTaskStore(), sink=sink, clock=clock)
        task_id, entries = await _translating(manager)

        with pytest.raises(TaskTransitionError):
            await manager.start_segmenting(task_id)

        progress = []
        for index in range(4):
            assert await manager.mark_segment_started(task_id, index)
            task = await manager.complete_segment(task_id, index, [entries[index].with_text("x")], 10)
            progress.append(task.progress_percentage)

        # The last segment moves the task on by itself
        stitching = await manager.get_task(task_id)
        task = await manager.begin_stitching(task_id)
        task = await manager.begin_optimizing(task_id)
        task = await manager.complete_task(task_id, entries)
        return progress, stitching, task

    progress, stitching, task = asyncio.run(run_test())

    assert progress == [25, 50, 75, 100]
    assert stitching.status == TaskStatus.STITCHING
    assert stitching.completed_segments == 4
    assert task.status == TaskStatus.COMPLETED
    assert task.result is not None and len(task.result) == 4
    assert task.completed_at == clock.now
    stages = [stage for stage, _, _ in sink.events]
    assert stages[0] == "queued"
    assert "stitching" in stages and "optimizing" in stages
    assert stages[-1] == "completed"


def test_complete_segment_is_idempotent(clock):
    async def run_test():
        manager = TaskManager(MemoryTaskStore(), clock=clock)
        task_id, entries = await _translating(manager)
        await manager.complete_segment(task_id, 0, [entries[0]], 5)
        task = await manager.complete_segment(task_id, 0, [entries[0].with_text("again")], 5)
        segment = (await manager.list_segments(task_id))[0]
        return task, segment

    task, segment = asyncio.run(run_test())

    assert task.completed_segments == 1
    assert task.progress_percentage == 25
    assert segment.partial_result[0].text == "line 0."


def test_pause_discards_late_results_and_blocks_delete(clock):
    async def run_test():
        manager = TaskManager(MemoryTaskStore(), clock=clock)
        task_id, entries = await _translating(manager)
        await manager.mark_segment_started(task_id, 0)
        paused = await manager.pause(task_id)

        late = await manager.complete_segment(task_id, 0, [entries[0]], 5)
        segments = await manager.list_segments(task_id)

        with pytest.raises(TaskTransitionError):
            await manager.delete(task_id)
        with pytest.raises(TaskTransitionError):
            await manager.pause(task_id)

        cancelled = await manager.cancel(task_id)
        deleted = await manager.delete(task_id)
        with pytest.raises(TaskNotFoundError):
            await manager.get_task(task_id)
        return paused, late, segments, cancelled, deleted

    paused, late, segments, cancelled, deleted = asyncio.run(run_test())

    assert paused.status == TaskStatus.PAUSED
    assert paused.paused_at == clock.now
    assert late is None
    assert segments[0].status == SegmentStatus.PENDING
    assert cancelled.status == TaskStatus.CANCELLED
    assert deleted is True


def test_resume_only_from_paused(clock):
    async def run_test():
        manager = TaskManager(MemoryTaskStore(), clock=clock)
        task_id, _ = await _translating(manager)
        with pytest.raises(TaskTransitionError):
            await manager.resume(task_id)
        await manager.perform_action(task_id, "pause")
        return await manager.perform_action(task_id, "continue")

    task = asyncio.run(run_test())

    assert task.status == TaskStatus.TRANSLATING
    assert task.paused_at is None


def test_restart_from_completed_resets_everything(clock):
    async def run_test():
        manager = TaskManager(MemoryTaskStore(), clock=clock)
        task_id, entries = await _translating(manager, count=2)
        for index in range(2):
            await manager.complete_segment(task_id, index, [entries[index].with_text("done")], 7, retry_count=1)
        await manager.complete_task(task_id, entries)

        restarted = await manager.restart(task_id)
        return restarted, await manager.list_segments(task_id)

    task, segments = asyncio.run(run_test())

    assert task.status == TaskStatus.QUEUED
    assert task.progress_percentage == 0
    assert task.completed_segments == 0
    assert task.result is None
    assert task.completed_at is None
    assert all(s.status == SegmentStatus.PENDING for s in segments)
    assert all(s.partial_result is None and s.retry_count == 0 for s in segments)


def test_restart_refused_while_video_has_open_task(clock):
    async def run_test():
        manager = TaskManager(MemoryTaskStore(), clock=clock)
        entries = make_entries(["a."])
        old = await manager.create_task("video-1", entries)
        await manager.fail_task(old.id, "boom")
        await manager.create_task("video-1", entries)
        with pytest.raises(TaskTransitionError):
            await manager.restart(old.id)

    asyncio.run(run_test())


def test_terminal_tasks_reject_cancel_and_ignore_fail(clock):
    async def run_test():
        manager = TaskManager(MemoryTaskStore(), clock=clock)
        task = await manager.create_task("video-1", make_entries(["a."]))
        await manager.cancel(task.id)
        with pytest.raises(TaskTransitionError):
            await manager.cancel(task.id)
        return await manager.fail_task(task.id, "late failure")

    task = asyncio.run(run_test())

    assert task.status == TaskStatus.CANCELLED
    assert task.error_message is None


def test_fail_marks_in_flight_segments_failed(clock):
    async def run_test():
        manager = TaskManager(MemoryTaskStore(), clock=clock)
        task_id, _ = await _translating(manager, count=2)
        await manager.mark_segment_started(task_id, 1)
        task = await manager.fail_task(task_id, "backend down")
        return task, await manager.list_segments(task_id)

    task, segments = asyncio.run(run_test())

    assert task.status == TaskStatus.FAILED
    assert task.error_message == "backend down"
    assert [s.status for s in segments] == [SegmentStatus.PENDING, SegmentStatus.FAILED]


def test_progress_snapshot_and_merge(clock):
    async def run_test():
        manager = TaskManager(MemoryTaskStore(), clock=clock)
        task_id, entries = await _translating(manager, count=4, size=2)
        await manager.complete_segment(task_id, 1, [e.with_text("T") for e in entries[2:]], 12)
        return (
            await manager.get_progress(task_id),
            await manager.merge_segment_results(task_id),
            entries,
        )

    progress, merged, entries = asyncio.run(run_test())

    assert progress.total_segments == 2
    assert progress.completed_segments == 1
    assert [s.status for s in progress.segments] == [SegmentStatus.PENDING, SegmentStatus.COMPLETED]
    assert progress.to_dict()["segments"][1]["partial_result"][0]["text"] == "T"
    assert [e.text for e in merged] == ["line 0.", "line 1.", "T", "T"]


def test_notifications_can_be_marked_read(clock):
    async def run_test():
        manager = TaskManager(MemoryTaskStore(), clock=clock)
        task_id, _ = await _translating(manager)
        notifications = await manager.list_notifications(task_id)
        await manager.mark_notification_read(notifications[0].id)
        unread = await manager.list_unread_notifications()
        with pytest.raises(KeyError):
            await manager.mark_notification_read("missing")
        return notifications, unread

    notifications, unread = asyncio.run(run_test())

    assert [n.type for n in notifications] == [NotificationType.PROGRESS] * 3
    assert len(unread) == 2
    assert notifications[0].id not in {n.id for n in unread}


def test_unknown_task_raises_not_found(clock):
    async def run_test():
        manager = TaskManager(MemoryTaskStore(), clock=clock)
        await manager.pause("nope")

    with pytest.raises(TaskNotFoundError):
        asyncio.run(run_test())


def test_task_locks_are_released_once_idle(clock):
    async def run_test():
        manager = TaskManager(MemoryTaskStore(), clock=clock)
        task_id, entries = await _translating(manager, count=4)
        await asyncio.gather(*(
            manager.complete_segment(task_id, index, [entries[index]], 5)
            for index in range(4)
        ))
        task = await manager.complete_task(task_id, entries)
        gc.collect()
        return task, len(manager._locks)

    task, lock_count = asyncio.run(run_test())

    assert task.status == TaskStatus.COMPLETED
    assert task.completed_segments == 4
    assert lock_count == 0


def test_complete_from_cache_only_while_segmenting(clock):
    async def run_test():
        manager = TaskManager(MemoryTaskStore(), clock=clock)
        entries = make_entries(["a.", "b."])
        task = await manager.create_task("video-1", entries, {"video_title": "Demo"})
        with pytest.raises(TaskTransitionError):
            await manager.complete_from_cache(task.id, entries)

        await manager.start_segmenting(task.id)
        updated = await manager.update_context(task.id, {"video_title": "Demo", "keywords": ["Demo"]})
        done = await manager.complete_from_cache(task.id, [e.with_text("cached") for e in entries])
        with pytest.raises(TaskTransitionError):
            await manager.update_context(task.id, {})
        return updated, done, await manager.list_notifications(task.id)

    updated, done, notifications = asyncio.run(run_test())

    assert updated.context["keywords"] == ["Demo"]
    assert done.status == TaskStatus.COMPLETED
    assert done.progress_percentage == 100
    assert done.current_phase == "Translation completed (cached)"
    assert [e.text for e in done.result] == ["cached", "cached"]
    assert notifications[-1].type == NotificationType.COMPLETED
