import asyncio

from subtitles.timing import TimingConfig
from tasks.manager import TaskManager
from tasks.models import NotificationType, SegmentStatus, TaskStatus
from tasks.progress import ProgressBroadcaster
from tasks.store import MemoryTaskStore
from translation.models import TranslationContext
from translation.orchestrator import TranslationOrchestrator
from translation.retry import RetryPolicy
from translation.segmenter import Segmenter, TokenEstimator
from translation.stitcher import Stitcher

from conftest import make_entries


def _texts(count):
    # No terminal punctuation, so every join gets stitched
    return [f"entry {i:03d} ".ljust(28, "x") for i in range(count)]


def _orchestrator(manager, backend, **kwargs):
    kwargs.setdefault("stitch_enabled", True)
    kwargs.setdefault("optimize_timing", False)
    return TranslationOrchestrator(
        manager,
        backend,
        segmenter=Segmenter(TokenEstimator(tokens_per_char=1, expansion=1, overhead=33)),
        retry_policy=RetryPolicy(max_attempts=2, backoff=0),
        stitcher=Stitcher(backend, context_size=8, epsilon=0.001),
        preference="quality",
        **kwargs,
    )


async def _submit(manager, entries, model="llama"):
    context = TranslationContext(video_title="Demo", model=model, source_lang="en", target_lang="en")
    return await manager.create_task("video-1", entries, context.to_dict())


def test_end_to_end_with_stitching(backend, clock):
    entries = make_entries(_texts(130))

    async def run_test():
        manager = TaskManager(MemoryTaskStore(), clock=clock)
        task = await _submit(manager, entries)
        task = await _orchestrator(manager, backend).run(task.id)
        return task, await manager.list_segments(task.id), await manager.list_notifications(task.id)

    task, segments, notifications = asyncio.run(run_test())

    assert task.status == TaskStatus.COMPLETED
    assert task.progress_percentage == 100
    assert [s.subtitle_count for s in segments] == [50, 50, 30]
    assert all(s.status == SegmentStatus.COMPLETED for s in segments)

    result = task.result
    assert len(result) == 130
    assert [(e.start, e.end) for e in result] == [(e.start, e.end) for e in entries]
    assert result[0].text == f"T:{entries[0].text}"
    assert result[46].text == f"S:T:{entries[46].text}"
    assert result[53].text == f"S:T:{entries[53].text}"
    assert result[54].text == f"T:{entries[54].text}"
    assert result[100].text == f"S:T:{entries[100].text}"
    assert len(backend.stitch_calls) == 2
    assert notifications[-1].type == NotificationType.COMPLETED


def test_failed_segment_keeps_original_text(backend, clock):
    entries = make_entries(_texts(130))
    backend.always_fail.add(entries[50].text)

    async def run_test():
        manager = TaskManager(MemoryTaskStore(), clock=clock)
        task = await _submit(manager, entries)
        task = await _orchestrator(manager, backend, stitch_enabled=False).run(task.id)
        return task, await manager.list_segments(task.id)

    task, segments = asyncio.run(run_test())

    assert task.status == TaskStatus.COMPLETED
    assert segments[1].status == SegmentStatus.COMPLETED
    assert segments[1].retry_count == 1
    assert segments[1].error_message
    assert task.result[60].text == entries[60].text
    assert task.result[10].text == f"T:{entries[10].text}"
    assert backend.stitch_calls == []


def test_optimizing_phase_when_enabled(backend, clock):
    entries = make_entries(["Short one.", "Another."], duration=0.3, gap=2.0)
    broadcaster = ProgressBroadcaster()

    async def run_test():
        manager = TaskManager(MemoryTaskStore(), sink=broadcaster, clock=clock)
        task = await _submit(manager, entries, model="gpt-4o")
        queue = broadcaster.subscribe(task.id)
        orchestrator = _orchestrator(manager, backend, optimize_timing=True)
        orchestrator.timing_optimizer.config = TimingConfig(min_duration=0.8, max_gap_fill=0.3)
        task = await orchestrator.run(task.id)

        stages = []
        while not queue.empty():
            stages.append(queue.get_nowait().stage)
        return task, stages

    task, stages = asyncio.run(run_test())

    assert task.status == TaskStatus.COMPLETED
    assert "optimizing" in stages
    assert stages[-1] == "completed"
    assert [round(e.end - e.start, 3) for e in task.result] == [0.8, 0.8]


def test_pause_discards_in_flight_results_then_resume_finishes(backend, clock):
    entries = make_entries(_texts(130))
    backend.gate = asyncio.Event()

    async def run_test():
        manager = TaskManager(MemoryTaskStore(), clock=clock)
        task = await _submit(manager, entries)
        orchestrator = _orchestrator(manager, backend)

        job = asyncio.create_task(orchestrator.run(task.id))
        while backend.started < 3:
            await asyncio.sleep(0)

        await manager.pause(task.id)
        backend.gate.set()
        paused = await job
        paused_segments = await manager.list_segments(task.id)

        await manager.resume(task.id)
        finished = await orchestrator.run(task.id)
        return paused, paused_segments, finished

    paused, paused_segments, finished = asyncio.run(run_test())

    assert paused.status == TaskStatus.PAUSED
    assert paused.completed_segments == 0
    assert all(s.status == SegmentStatus.PENDING for s in paused_segments)
    assert finished.status == TaskStatus.COMPLETED
    assert len(finished.result) == 130
    assert len(backend.translate_calls) == 6


def test_empty_transcript_completes_with_no_output(backend, clock):
    async def run_test():
        manager = TaskManager(MemoryTaskStore(), clock=clock)
        task = await _submit(manager, [])
        return await _orchestrator(manager, backend).run(task.id)

    task = asyncio.run(run_test())

    assert task.status == TaskStatus.COMPLETED
    assert task.result == []
    assert backend.translate_calls == []


def test_unexpected_error_fails_task(backend, clock):
    class BrokenSegmenter(Segmenter):
        def segment(self, entries, model_id, preference=None):
            raise RuntimeError("segmenter exploded")

    async def run_test():
        manager = TaskManager(MemoryTaskStore(), clock=clock)
        task = await _submit(manager, make_entries(["a."]))
        orchestrator = _orchestrator(manager, backend)
        orchestrator.segmenter = BrokenSegmenter()
        return await orchestrator.run(task.id)

    task = asyncio.run(run_test())

    assert task.status == TaskStatus.FAILED
    assert task.error_message == "segmenter exploded"


def test_run_ignores_inactive_task(backend, clock):
    async def run_test():
        manager = TaskManager(MemoryTaskStore(), clock=clock)
        task = await _submit(manager, make_entries(["a."]))
        await manager.cancel(task.id)
        return await _orchestrator(manager, backend).run(task.id)

    task = asyncio.run(run_test())

    assert task.status == TaskStatus.CANCELLED
    assert backend.translate_calls == []
