"""
Command line entry point for the snapshot engine.

Usage:
    filebackup capture PATH [--workspace DIR] [--backup-dir DIR]
    filebackup restore PATH [--yes]
    filebackup cleanup
    filebackup status PATH

Configuration comes from FILEBACKUP_* environment variables; --workspace
and --backup-dir override them. Without any workspace the current
directory is used.

Exit codes:
    0  success
    1  failure (validation, I/O, no snapshot, invalid configuration)
    2  busy or declined by the user
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

import json_log_formatter
from pydantic import ValidationError

from .config import Settings
from .engine import (
    NotificationLevel,
    OutcomeStatus,
    RestoreConfirmation,
    SnapshotEngine,
)
from .errors import SnapshotError

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_BUSY = 2


def setup_logging(settings: Settings, verbose: bool = False) -> None:
    """Configure logging based on configuration.

    Args:
        settings: Engine settings
        verbose: Force DEBUG level
    """
    level = logging.DEBUG if verbose else getattr(logging, settings.log_level.upper(), logging.INFO)

    if settings.log_format == "json":
        formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]


class ConsoleNotifier:
    """Prints notifications; warnings and errors go to stderr."""

    def notify(self, level: NotificationLevel, message: str) -> None:
        stream = sys.stdout if level is NotificationLevel.INFO else sys.stderr
        print(message, file=stream)


class ConsoleConfirmPrompt:
    """Asks for confirmation on the terminal."""

    async def confirm(self, request: RestoreConfirmation) -> bool:
        answer = await asyncio.get_event_loop().run_in_executor(
            None, input, f"{request.message()} [y/N] "
        )
        return answer.strip().lower() in ("y", "yes")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="filebackup",
        description="Timestamped file snapshots with restore and retention cleanup",
    )
    parser.add_argument(
        "--workspace",
        action="append",
        help="Workspace root (repeatable); snapshots mirror paths relative to it",
    )
    parser.add_argument("--backup-dir", help="Custom snapshot root directory")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")

    commands = parser.add_subparsers(dest="command", required=True)

    capture = commands.add_parser("capture", help="Snapshot a file")
    capture.add_argument("path", help="File to snapshot")

    restore = commands.add_parser("restore", help="Restore a file from its latest snapshot")
    restore.add_argument("path", help="File to restore")
    restore.add_argument("-y", "--yes", action="store_true", help="Don't ask for confirmation")

    commands.add_parser("cleanup", help="Delete snapshots older than the retention window")

    status = commands.add_parser("status", help="Show the snapshots of a file")
    status.add_argument("path", help="File to inspect")

    return parser


def load_settings(args: argparse.Namespace) -> Settings:
    """Settings from the environment with command line overrides applied."""
    overrides = {}
    if args.workspace:
        overrides["workspace_roots"] = [os.path.abspath(w) for w in args.workspace]
    if args.backup_dir:
        overrides["backup_directory"] = args.backup_dir

    settings = Settings(**overrides)
    if not settings.workspace_roots:
        settings.workspace_roots = [os.getcwd()]
    settings.validate_values()
    return settings


async def run(args: argparse.Namespace, settings: Settings) -> int:
    """Run one command and return its exit code."""
    confirm = None
    if args.command == "restore" and not args.yes:
        confirm = ConsoleConfirmPrompt()

    engine = SnapshotEngine(settings, notifier=ConsoleNotifier(), confirm=confirm)
    try:
        if args.command == "capture":
            outcome = await engine.capture_file(os.path.abspath(args.path))
            if outcome.ok:
                return EXIT_OK
            return EXIT_BUSY if outcome.status is OutcomeStatus.BUSY else EXIT_FAILURE

        if args.command == "restore":
            outcome = await engine.rollback_file(os.path.abspath(args.path))
            if outcome.ok:
                return EXIT_OK
            if outcome.status in (OutcomeStatus.BUSY, OutcomeStatus.DECLINED):
                return EXIT_BUSY
            return EXIT_FAILURE

        if args.command == "cleanup":
            report = await engine.cleanup()
            return EXIT_OK if not report.cancelled else EXIT_FAILURE

        if args.command == "status":
            return await _print_status(engine, Path(os.path.abspath(args.path)))

        return EXIT_FAILURE
    finally:
        await engine.shutdown()


async def _print_status(engine: SnapshotEngine, path: Path) -> int:
    diagnostics = await engine.diagnose(path)
    print(f"File: {path}")
    print(f"  Snapshot directory: {diagnostics.snapshot_dir}")
    print(f"  Status: {diagnostics.reason}")
    for candidate in diagnostics.candidates:
        marker = "ok" if candidate.valid else "invalid timestamp"
        print(f"    {candidate.name} ({marker})")

    latest = await engine.store.find_latest(path)
    if latest is None:
        print(f"  {diagnostics.describe()}")
        return EXIT_FAILURE
    print(f"  Latest: {latest.captured_at:%Y-%m-%d %H:%M:%S} ({latest.size_bytes} bytes)")
    return EXIT_OK


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = load_settings(args)
    except (SnapshotError, ValidationError) as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        sys.exit(EXIT_FAILURE)

    setup_logging(settings, verbose=args.verbose)

    try:
        code = asyncio.run(run(args, settings))
    except SnapshotError as e:
        logger.error(f"{args.command} failed: {e.message}", extra={"code": e.code})
        code = EXIT_FAILURE
    except KeyboardInterrupt:
        print("Interrupted", file=sys.stderr)
        code = EXIT_FAILURE

    sys.exit(code)


if __name__ == "__main__":
    main()
