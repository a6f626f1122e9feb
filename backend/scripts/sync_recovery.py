#!/usr/bin/env python3
"""
Operator tool for inspecting and recovering the inventory sync.

Usage:
    sync_recovery.py init-db               Create missing tables
    sync_recovery.py status                Show sync status and checkpoint
    sync_recovery.py checkpoint --page N   Make the next resume start at page N
    sync_recovery.py resume [--page N]     Resume (from checkpoint or page N) and wait
    sync_recovery.py fresh [--page N]      Discard the checkpoint and sync from scratch
    sync_recovery.py clear                 Delete the checkpoint
"""

import argparse
import asyncio
import sys

from dotenv import load_dotenv

load_dotenv()

from inventory_mirror.database import engine, init_db  # noqa: E402
from inventory_mirror.schemas.sync import (  # noqa: E402
    ControlResult,
    SyncControlResponse,
    SyncMode,
)
from inventory_mirror.services.sync_orchestrator import get_orchestrator  # noqa: E402


def log(msg):
    """Print with flush for immediate output."""
    print(msg, flush=True)


def report(outcome: SyncControlResponse) -> int:
    """Print a control outcome; returns the process exit code."""
    log(f"[{outcome.result.value}] {outcome.message}")

    status = outcome.status
    if status is not None:
        log(f"  Status:    {status.status.value}")
        log(f"  Run:       {status.run_id or '-'}")
        log(f"  Page:      {status.current_page:,}")
        progress = (
            f" / {status.total_records:,} ({status.progress_percent:.1f}%)"
            if status.total_records
            else ""
        )
        log(f"  Processed: {status.records_processed:,}{progress}")
        if status.total_pages:
            log(f"  Pages:     {status.total_pages:,} reported upstream")
        if status.error_count or status.failed_pages:
            log(f"  Errors:    {status.error_count} ({status.failed_pages} failed pages)")
        if status.error_message:
            log(f"  Message:   {status.error_message}")

    if outcome.checkpoint is not None:
        orchestrator = get_orchestrator()
        log(f"  Checkpoint: {orchestrator.checkpoints.describe(outcome.checkpoint)}")

    return 0 if outcome.result is ControlResult.SUCCESS else 1


async def run(args: argparse.Namespace) -> int:
    if args.command == "init-db":
        await init_db()
        log("Database tables created")
        return 0

    orchestrator = get_orchestrator()
    try:
        if args.command == "status":
            outcome = await orchestrator.status()
        elif args.command == "checkpoint":
            outcome = await orchestrator.checkpoint(args.page, args.total_processed)
        elif args.command == "resume":
            outcome = await orchestrator.start(SyncMode.RESUME, from_page=args.page, wait=True)
        elif args.command == "fresh":
            outcome = await orchestrator.start(SyncMode.FRESH, from_page=args.page, wait=True)
        else:
            outcome = await orchestrator.clear_checkpoint()
        return report(outcome)
    finally:
        await engine.dispose()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Inspect and recover the inventory sync.")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("init-db", help="create missing database tables")
    commands.add_parser("status", help="show sync status and checkpoint")

    checkpoint = commands.add_parser("checkpoint", help="make the next resume start at a page")
    checkpoint.add_argument("--page", type=int, required=True)
    checkpoint.add_argument(
        "--total-processed",
        type=int,
        default=None,
        help="records already mirrored (default: page x upstream page size)",
    )

    resume = commands.add_parser("resume", help="resume the sync and wait for it")
    resume.add_argument("--page", type=int, default=None)

    fresh = commands.add_parser("fresh", help="discard the checkpoint and sync from scratch")
    fresh.add_argument("--page", type=int, default=None)

    commands.add_parser("clear", help="delete the checkpoint")
    return parser


if __name__ == "__main__":
    args = build_parser().parse_args()
    if getattr(args, "page", None) is not None and args.page < 1:
        log("Error: --page must be 1 or greater")
        sys.exit(2)

    try:
        sys.exit(asyncio.run(run(args)))
    except KeyboardInterrupt:
        log("\nInterrupted; the last checkpoint is kept for resume")
        sys.exit(130)
