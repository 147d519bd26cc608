#!/usr/bin/env python3
"""
Ingestion CLI
Drives the resumable ingestion engine from the command line.

Usage:
    python ingest_cli.py extract <pdf_id> <file_path>
    python ingest_cli.py extract <pdf_id> <file_path> --resume <run_id>
    python ingest_cli.py runs <pdf_id>
    python ingest_cli.py reingest sources.json
    python ingest_cli.py missing-chunks circulars.json
    python ingest_cli.py embeddings tables.json
    python ingest_cli.py cleanup --days 30

Snapshot files are JSON lists of {id, locator, label, category, total_items,
enriched: {embedding, hierarchy, keywords}}. Ctrl-C stops after the slice (or
document) in flight; a stopped extraction can be resumed with --resume.
"""

import argparse
import asyncio
import json
import signal
import sys
from pathlib import Path

import httpx

from config.logging_config import get_logger, set_level
from config.constants import RUN_HISTORY_DAYS
from config.settings import settings
from core.ingestion import (
    CancellationToken,
    ConsoleSink,
    LoggingSink,
    ProcessingTarget,
    RunStatus,
    SQLiteRunStore,
    embedding_backfill_orchestrator,
    load_snapshot,
    missing_chunks_orchestrator,
    page_extraction_controller,
    reingestion_orchestrator,
)
from core.ingestion.workflows import build_store

logger = get_logger(__name__)


def print_header():
    """Print header"""
    print("""
+======================================================================+
|                                                                      |
|             Customs Assistant - Ingestion Engine                     |
|                                                                      |
+======================================================================+
""")


def _install_interrupt(token: CancellationToken, message: str):
    """Route Ctrl-C to a cooperative cancel instead of KeyboardInterrupt."""
    loop = asyncio.get_running_loop()

    def handler():
        if token.is_cancelled:
            return
        print(f"\n\n[!] {message}")
        token.cancel("interrupted from keyboard")

    try:
        loop.add_signal_handler(signal.SIGINT, handler)
    except (NotImplementedError, RuntimeError):
        logger.debug("Signal handlers unavailable; Ctrl-C will abort immediately")


def _load_snapshot_file(path: str):
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = data.get("targets", [])
    return load_snapshot(data)


def print_run(state):
    total = state.total_units if state.total_units is not None else "?"
    print(f"  [{state.status.value.upper()}] {state.run_id}")
    print(f"     Target: {state.target_ref}")
    print(f"     Units: {state.processed_units}/{total} | Next: {state.cursor}")
    counters = ", ".join(f"{k}={v}" for k, v in sorted(state.stats.counters.items()))
    if counters:
        print(f"     Stats: {counters}")
    if state.stats.errors:
        print(f"     Skipped/errors: {len(state.stats.errors)} (last: {state.stats.errors[-1]})")
    if state.last_error:
        print(f"     Error: {state.last_error}")
    print()


def print_summary(summary):
    print("\n[i] Summary:")
    print(f"   Completed: {summary.completed}")
    print(f"   Failed: {summary.failed}")
    print(f"   Skipped: {summary.skipped}")
    for target_id, error in summary.errors.items():
        print(f"   [X] {target_id}: {error}")
    counters = ", ".join(f"{k}={v}" for k, v in sorted(summary.stats.counters.items()))
    if counters:
        print(f"   Stats: {counters}")


async def cmd_extract(args) -> int:
    """Extract one PDF page range by page range"""
    token = CancellationToken("extract")
    _install_interrupt(token, "Stopping after the current slice...")

    overrides = {}
    if args.slice_size:
        overrides["slice_size"] = args.slice_size
    if args.policy:
        overrides["exhausted_retry_policy"] = args.policy

    async with httpx.AsyncClient() as client:
        controller = page_extraction_controller(
            client,
            settings,
            sinks=[ConsoleSink(), LoggingSink()],
            **overrides,
        )
        target = ProcessingTarget(target_id=args.pdf_id, locator=args.file_path)

        if args.resume:
            print(f"\n[>] Resuming run {args.resume}...\n")
            try:
                state = await controller.resume(args.resume, target=target, cancel_token=token)
            except KeyError:
                print(f"  [X] Unknown run: {args.resume}")
                return 1
        else:
            print(f"\n[>] Extracting {args.pdf_id}...\n")
            state = await controller.start(target, cancel_token=token)

    print()
    print_run(state)
    if state.status == RunStatus.PAUSED:
        print(f"[i] Resume with: extract {args.pdf_id} {args.file_path} --resume {state.run_id}")
    return 0 if state.status != RunStatus.ERROR else 1


async def _run_batch(args, factory) -> int:
    snapshot = _load_snapshot_file(args.snapshot)
    token = CancellationToken("batch")
    _install_interrupt(token, "Stopping after the current document...")

    async with httpx.AsyncClient() as client:
        orchestrator = factory(
            client,
            settings,
            run_sinks=[LoggingSink()],
            batch_sinks=[ConsoleSink()],
        )
        summary = await orchestrator.run_batch(snapshot, cancel_token=token)

    print_summary(summary)
    return 0 if summary.failed == 0 else 1


async def cmd_reingest(args) -> int:
    """Re-ingest legal sources lacking a structural hierarchy"""
    return await _run_batch(args, reingestion_orchestrator)


async def cmd_missing_chunks(args) -> int:
    """Ingest stored documents that have no chunk"""
    return await _run_batch(args, missing_chunks_orchestrator)


async def cmd_embeddings(args) -> int:
    """Backfill embeddings table by table"""
    return await _run_batch(args, embedding_backfill_orchestrator)


def cmd_runs(args) -> int:
    """List recorded runs for a target"""
    store = build_store(settings)
    runs = store.list_runs(args.target_ref)
    print(f"\n[i] Runs for {args.target_ref}")
    print("=" * 50)
    if not runs:
        print("  No runs recorded")
        return 0
    for state in runs[:args.limit]:
        print_run(state)
    return 0


def cmd_cleanup(args) -> int:
    """Delete finished runs older than N days"""
    store = SQLiteRunStore(settings.run_store_path)
    removed = store.cleanup_old_runs(days=args.days)
    print(f"  [OK] Removed {removed} run(s)")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Resumable ingestion engine for the customs assistant"
    )
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    extract_parser = subparsers.add_parser("extract", help="Extract one PDF in slices")
    extract_parser.add_argument("pdf_id", help="PDF document id")
    extract_parser.add_argument("file_path", help="Storage path of the PDF")
    extract_parser.add_argument("--resume", metavar="RUN_ID", help="Resume a paused run")
    extract_parser.add_argument("--slice-size", type=int, default=None, help="Pages per call")
    extract_parser.add_argument("--policy", choices=["abort", "skip"], default=None,
                                help="Exhausted-retry policy")

    runs_parser = subparsers.add_parser("runs", help="List runs for a target")
    runs_parser.add_argument("target_ref", help="Target id")
    runs_parser.add_argument("--limit", type=int, default=20, help="Max runs shown")

    for name, help_text in (
        ("reingest", "Re-ingest legal sources lacking hierarchy"),
        ("missing-chunks", "Ingest documents that have no chunk"),
        ("embeddings", "Backfill missing embeddings"),
    ):
        batch_parser = subparsers.add_parser(name, help=help_text)
        batch_parser.add_argument("snapshot", help="Catalogue snapshot (JSON)")

    cleanup_parser = subparsers.add_parser("cleanup", help="Delete old finished runs")
    cleanup_parser.add_argument("--days", type=int, default=RUN_HISTORY_DAYS,
                                help="Age threshold in days")

    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    print_header()
    set_level(args.log_level or settings.log_level)
    logger.debug(f"Engine settings: {settings.engine_summary()}")

    async_commands = {
        "extract": cmd_extract,
        "reingest": cmd_reingest,
        "missing-chunks": cmd_missing_chunks,
        "embeddings": cmd_embeddings,
    }
    sync_commands = {
        "runs": cmd_runs,
        "cleanup": cmd_cleanup,
    }

    if args.command in async_commands:
        return asyncio.run(async_commands[args.command](args))
    return sync_commands[args.command](args)


if __name__ == "__main__":
    sys.exit(main())
