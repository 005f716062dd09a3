#!/usr/bin/env python3
"""
Translate an SRT/VTT file with segmented translation and boundary stitching.

Usage:
    python scripts/translate_srt.py input.srt output.srt [--provider openai] [--model gpt-4o]
        [--source-lang en] [--target-lang zh-TW] [--title "Video title"] [--speed]
        [--optimize-timing] [--no-stitch] [--no-keywords] [--persist] [--no-cache]

The API key comes from LLM_API_KEY (environment or .env).
"""
import argparse
import asyncio
import sys
from pathlib import Path
from loguru import logger

# Add backend directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))

from config import settings
from database import SqlCacheStore, SqlTaskStore, close_db
from subtitles import SubtitleFormatter, SubtitleParser
from task_executor import TaskExecutor
from tasks import LoggingProgressSink, MemoryTaskStore, TaskManager, TaskStatus
from translation import (
    SegmentationPreference,
    Segmenter,
    TranslationCache,
    TranslationContext,
    TranslationOrchestrator,
    create_backend,
)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Translate a subtitle file")
    parser.add_argument("input", type=Path)
    parser.add_argument("output", type=Path)
    parser.add_argument("--provider", default=settings.LLM_PROVIDER)
    parser.add_argument("--model", default=settings.LLM_MODEL)
    parser.add_argument("--source-lang", default=settings.SOURCE_LANG)
    parser.add_argument("--target-lang", default=settings.TARGET_LANG)
    parser.add_argument("--title", default="")
    parser.add_argument("--speed", action="store_true", help="Smaller segments, more parallel requests")
    parser.add_argument("--optimize-timing", action="store_true")
    parser.add_argument("--no-stitch", action="store_true")
    parser.add_argument("--no-keywords", action="store_true", help="Do not extract key terms from the title")
    parser.add_argument("--persist", action="store_true", help="Keep task records in the database")
    parser.add_argument("--no-cache", action="store_true", help="Ignore and do not fill the translation cache")
    return parser.parse_args(argv)


async def run(args: argparse.Namespace) -> int:
    entries = SubtitleParser().parse_file(args.input)
    print(f"Parsed {len(entries)} subtitles from {args.input}")
    if not entries:
        print("Nothing to translate")
        return 1

    cache = None
    if args.persist:
        store = SqlTaskStore()
        await store.initialize()
        # The cache only pays off across runs, so it lives in the database too
        if settings.CACHE_ENABLED and not args.no_cache:
            cache = TranslationCache(SqlCacheStore())
            await cache.cleanup()
    else:
        store = MemoryTaskStore()

    preference = SegmentationPreference.SPEED if args.speed else SegmentationPreference.QUALITY
    segmenter = Segmenter()
    stats = segmenter.stats(entries, args.model, preference)
    print(
        f"~{stats.total_estimated_tokens} tokens, threshold {stats.threshold}, "
        f"about {stats.recommended_segments} segment(s)"
    )

    manager = TaskManager(store, sink=LoggingProgressSink())
    backend = create_backend(args.provider, model=args.model)
    orchestrator = TranslationOrchestrator(
        manager,
        backend,
        segmenter=segmenter,
        preference=preference,
        stitch_enabled=not args.no_stitch,
        optimize_timing=args.optimize_timing,
        cache=cache,
    )
    executor = TaskExecutor(manager, orchestrator)
    context = TranslationContext(
        video_title=args.title or args.input.stem,
        model=args.model,
        source_lang=args.source_lang,
        target_lang=args.target_lang,
        extract_keywords=not args.no_keywords,
    )

    await executor.start()
    try:
        task = await executor.submit(str(args.input.resolve()), entries, context)
        task = await executor.wait(task.id)
    finally:
        await executor.stop()
        if args.persist:
            await close_db()

    if task.status != TaskStatus.COMPLETED:
        print(f"Translation {task.status.value}: {task.error_message or task.current_phase}")
        return 1

    SubtitleFormatter().save(task.result, args.output)
    print(f"Saved {len(task.result)} subtitles to {args.output}")
    return 0


def main():
    args = parse_args()
    try:
        sys.exit(asyncio.run(run(args)))
    except FileNotFoundError as e:
        logger.error(f"Input not found: {e}")
        sys.exit(1)


if __name__ == '__main__':
    main()
