import asyncio

import pytest

from task_executor import TaskExecutor
from tasks.heartbeat import HeartbeatMonitor
from tasks.manager import TaskManager
from tasks.models import TaskStatus, TaskTransitionError
from tasks.store import MemoryTaskStore
from translation.models import TranslationContext
from translation.orchestrator import TranslationOrchestrator
from translation.retry import RetryPolicy
from translation.stitcher import Stitcher

from conftest import make_entries


def _executor(manager, backend, max_concurrent=2):
    orchestrator = TranslationOrchestrator(
        manager,
        backend,
        retry_policy=RetryPolicy(max_attempts=1, backoff=0),
        stitcher=Stitcher(backend, context_size=4),
        stitch_enabled=True,
        optimize_timing=False,
    )
    monitor = HeartbeatMonitor(manager, heartbeat_interval=30, sweep_interval=60, stale_threshold=300)
    return TaskExecutor(manager, orchestrator, monitor=monitor, max_concurrent=max_concurrent)


def _context():
    return TranslationContext(video_title="Demo", model="gpt-4o", source_lang="en", target_lang="zh-TW")


async def _wait_started(backend, count):
    while backend.started < count:
        await asyncio.sleep(0)


def test_submit_and_wait(backend, clock):
    entries = make_entries(["Hello.", "World."])

    async def run_test():
        manager = TaskManager(MemoryTaskStore(), clock=clock)
        executor = _executor(manager, backend)
        await executor.start()
        try:
            task = await executor.submit("video-1", entries, _context())
            again = await executor.submit("video-1", entries, _context())
            assert again.id == task.id
            finished = await executor.wait(task.id)
            return finished, executor.get_status()
        finally:
            await executor.stop()

    task, status = asyncio.run(run_test())

    assert task.status == TaskStatus.COMPLETED
    assert [e.text for e in task.result] == ["T:Hello.", "T:World."]
    assert status["active_count"] == 0
    assert status["pending_count"] == 0
    assert len(backend.translate_calls) == 1


def test_concurrency_limit_and_queue_position(backend, clock):
    backend.gate = asyncio.Event()

    async def run_test():
        manager = TaskManager(MemoryTaskStore(), clock=clock)
        executor = _executor(manager, backend, max_concurrent=1)
        first = await executor.submit("video-1", make_entries(["One."]), _context())
        second = await executor.submit("video-2", make_entries(["Two."]), _context())
        await _wait_started(backend, 1)

        positions = (executor.get_queue_position(first.id), executor.get_queue_position(second.id))
        status = executor.get_status()

        backend.gate.set()
        results = [await executor.wait(first.id), await executor.wait(second.id)]
        await executor.stop()
        return positions, status, results

    positions, status, results = asyncio.run(run_test())

    assert positions == (0, 1)
    assert status["active_count"] == 1
    assert status["queue"][0]["position"] == 1
    assert [t.status for t in results] == [TaskStatus.COMPLETED, TaskStatus.COMPLETED]


def test_waiting_task_keeps_heartbeat_while_slots_are_busy(backend, clock):
    backend.gate = asyncio.Event()

    async def run_test():
        manager = TaskManager(MemoryTaskStore(), clock=clock)
        executor = _executor(manager, backend, max_concurrent=1)
        first = await executor.submit("video-1", make_entries(["One."]), _context())
        second = await executor.submit("video-2", make_entries(["Two."]), _context())
        await _wait_started(backend, 1)

        clock.advance(301)
        await executor.monitor.refresh_once()
        failed = await executor.monitor.sweep_once()
        states = (await manager.get_task(first.id), await manager.get_task(second.id))
        position = executor.get_queue_position(second.id)

        backend.gate.set()
        finished = await executor.wait(second.id)
        await executor.stop()
        return failed, states, position, finished

    failed, (first, second), position, finished = asyncio.run(run_test())

    assert failed == []
    assert first.status == TaskStatus.TRANSLATING
    assert second.status == TaskStatus.QUEUED
    assert position == 1
    assert finished.status == TaskStatus.COMPLETED


def test_pause_interrupts_and_resume_completes(backend, clock):
    backend.gate = asyncio.Event()

    async def run_test():
        manager = TaskManager(MemoryTaskStore(), clock=clock)
        executor = _executor(manager, backend)
        task = await executor.submit("video-1", make_entries(["Hello."]), _context())
        await _wait_started(backend, 1)

        paused = await executor.perform_action(task.id, "pause")
        scheduled = executor.is_task_scheduled(task.id)

        backend.gate.set()
        await executor.perform_action(task.id, "continue")
        finished = await executor.wait(task.id)
        await executor.stop()
        return paused, scheduled, finished

    paused, scheduled, finished = asyncio.run(run_test())

    assert paused.status == TaskStatus.PAUSED
    assert scheduled is False
    assert finished.status == TaskStatus.COMPLETED


def test_cancel_then_delete(backend, clock):
    backend.gate = asyncio.Event()

    async def run_test():
        manager = TaskManager(MemoryTaskStore(), clock=clock)
        executor = _executor(manager, backend)
        task = await executor.submit("video-1", make_entries(["Hello."]), _context())
        await _wait_started(backend, 1)

        with pytest.raises(TaskTransitionError):
            await executor.delete(task.id)
        cancelled = await executor.cancel(task.id)
        result = await executor.perform_action(task.id, "delete")
        remaining = await manager.list_tasks()
        await executor.stop()
        return cancelled, result, remaining

    cancelled, result, remaining = asyncio.run(run_test())

    assert cancelled.status == TaskStatus.CANCELLED
    assert result is None
    assert remaining == []


def test_restart_reschedules(backend, clock):
    async def run_test():
        manager = TaskManager(MemoryTaskStore(), clock=clock)
        executor = _executor(manager, backend)
        task = await executor.submit("video-1", make_entries(["Hello."]), _context())
        await executor.wait(task.id)
        restarted = await executor.restart(task.id)
        finished = await executor.wait(task.id)
        await executor.stop()
        return restarted, finished

    restarted, finished = asyncio.run(run_test())

    assert restarted.status == TaskStatus.QUEUED
    assert finished.status == TaskStatus.COMPLETED
    assert len(backend.translate_calls) == 2


def test_start_fails_tasks_orphaned_by_previous_process(backend, clock):
    async def run_test():
        store = MemoryTaskStore()
        manager = TaskManager(store, clock=clock)
        orphan = await manager.create_task("video-1", make_entries(["Hello."]))
        await manager.start_segmenting(orphan.id)

        clock.advance(600)
        executor = _executor(manager, backend)
        await executor.start()
        await executor.stop()
        return await manager.get_task(orphan.id)

    task = asyncio.run(run_test())

    assert task.status == TaskStatus.FAILED
    assert "unresponsive" in task.error_message
