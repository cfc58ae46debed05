"""
Snapshot capture, lookup and restore.

The store keeps no index: every query lists the snapshot directory derived
for the source file and decodes the timestamp token of each entry. The
filesystem is the only source of truth.

Capture steps:
    1. validate the source (SafetyValidator.validate_capturable)
    2. derive the destination for the current second
    3. validate the destination directory (system directory denylist)
    4. create the destination directory tree
    5. write to '.<name>.partial', then os.replace to the final name
    6. optional auto-cleanup of the destination directory

Invariants:
    - A partially written snapshot is never visible under a snapshot name
    - Snapshots of one source are totally ordered by
      (captured_at, token, file name)
    - Entries whose token does not decode are ignored, never errors
    - restore overwrites the source with the snapshot bytes verbatim and
      takes no snapshot of its own

How to change safely:
    - The partial-file name must not end with the snapshot extension or
      find_latest would pick it up; the sweeper expires orphans by
      PARTIAL_SUFFIX (config.py)
    - Keep blocking calls inside run_in_executor
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Optional, Union

from ..config import PARTIAL_SUFFIX
from ..errors import (
    NoSnapshotFoundError,
    NotAFileError,
    OperationCancelledError,
    SnapshotIOError,
)
from ..progress import CancellationToken, ProgressReporter
from . import timestamps
from .paths import PathResolver
from .validation import SafetyValidator

logger = logging.getLogger(__name__)


CAPTURE_STEPS = 5
RESTORE_STEPS = 3

Content = Union[str, bytes]

# Diagnostic reasons
REASON_OK = "ok"
REASON_ROOT_MISSING = "root_missing"
REASON_NO_MATCHING_FILES = "no_matching_files"
REASON_INVALID_TIMESTAMPS = "invalid_timestamps"


@dataclass
class Snapshot:
    """A stored point-in-time copy of a source file.

    Attributes:
        source_path: File the snapshot was taken of
        storage_path: Location of the snapshot file
        captured_at: Capture instant (naive local time, second resolution)
        token: Raw timestamp token from the file name
        size_bytes: Snapshot size in bytes
    """

    source_path: Path
    storage_path: Path
    captured_at: datetime
    token: str
    size_bytes: int = 0

    @property
    def sort_key(self) -> tuple[datetime, str, str]:
        return (self.captured_at, self.token, self.storage_path.name)


@dataclass
class SnapshotCandidate:
    """A directory entry that looked like a snapshot of the source."""

    name: str
    token: Optional[str]
    valid: bool


@dataclass
class SnapshotDiagnostics:
    """Why a lookup found (or did not find) a snapshot."""

    source_path: Path
    snapshot_dir: Path
    reason: str
    candidates: list[SnapshotCandidate] = field(default_factory=list)

    @property
    def valid_count(self) -> int:
        return sum(1 for candidate in self.candidates if candidate.valid)

    def describe(self) -> str:
        if self.reason == REASON_ROOT_MISSING:
            return f"Snapshot directory does not exist: {self.snapshot_dir}"
        if self.reason == REASON_NO_MATCHING_FILES:
            return f"No snapshot files for {self.source_path.name} in {self.snapshot_dir}"
        if self.reason == REASON_INVALID_TIMESTAMPS:
            return (
                f"Found {len(self.candidates)} snapshot files for {self.source_path.name} "
                "but none has a valid timestamp"
            )
        return f"Found {self.valid_count} valid snapshots in {self.snapshot_dir}"


class SnapshotStore:
    """Captures, lists and restores snapshots of source files.

    Example:
        >>> store = SnapshotStore(PathResolver(workspaces=["/ws"]), SafetyValidator())
        >>> snapshot = await store.capture("/ws/src/app.ts", "content")
        >>> latest = await store.find_latest("/ws/src/app.ts")
        >>> await store.restore("/ws/src/app.ts", latest)
    """

    def __init__(
        self,
        resolver: PathResolver,
        validator: SafetyValidator,
        sweeper: Any = None,
        auto_cleanup: bool = False,
        cleanup_days: int = 30,
        clock: Callable[[], datetime] = datetime.now,
        log: logging.Logger | None = None,
    ) -> None:
        """Initialize the store.

        Args:
            resolver: Derives snapshot locations
            validator: Safety checks for capture and restore
            sweeper: RetentionSweeper used for auto-cleanup
            auto_cleanup: Sweep the destination directory after each capture
            cleanup_days: Retention window for auto-cleanup
            clock: Returns the current local time
            log: Logger override
        """
        self.resolver = resolver
        self.validator = validator
        self.sweeper = sweeper
        self.auto_cleanup = auto_cleanup
        self.cleanup_days = cleanup_days
        self._clock = clock
        self._logger = log or logger

    @classmethod
    def from_settings(
        cls,
        settings,
        sweeper: Any = None,
        clock: Callable[[], datetime] = datetime.now,
        log: logging.Logger | None = None,
    ) -> SnapshotStore:
        return cls(
            resolver=PathResolver.from_settings(settings),
            validator=SafetyValidator.from_settings(settings, log=log),
            sweeper=sweeper,
            auto_cleanup=settings.auto_cleanup,
            cleanup_days=settings.cleanup_days,
            clock=clock,
            log=log,
        )

    @property
    def extension(self) -> str:
        return self.resolver.extension

    async def capture(
        self,
        source_path: Path | str,
        content: Content | None = None,
        cancellation: CancellationToken | None = None,
        progress: ProgressReporter | None = None,
    ) -> Snapshot:
        """Write a new snapshot of source_path.

        Args:
            source_path: Absolute path of the live file
            content: Exact bytes (or text, written as UTF-8) to store;
                None reads the file from disk
            cancellation: Polled between steps
            progress: Receives one message per step

        Returns:
            The created Snapshot

        Raises:
            SnapshotValidationError: If the source or destination is rejected
            OperationCancelledError: If cancelled between steps
            SnapshotIOError: If reading or writing fails
        """
        source = Path(source_path)
        cancel = cancellation or CancellationToken()
        steps = progress or ProgressReporter(CAPTURE_STEPS, log=self._logger)

        cancel.raise_if_cancelled("capture", "validate")
        steps.next_step("Validating file")
        await self.validator.validate_capturable(source)

        cancel.raise_if_cancelled("capture", "resolve")
        steps.next_step("Resolving snapshot path")
        captured_at = self._clock().replace(microsecond=0)
        snapshot_dir = self.resolver.resolve_snapshot_dir(source)
        self.validator.validate_snapshot_root(snapshot_dir)
        storage_path = snapshot_dir / self.resolver.resolve_snapshot_file_name(source, captured_at)

        cancel.raise_if_cancelled("capture", "create directory")
        steps.next_step("Creating snapshot directory")
        await self._run(self._make_dirs, snapshot_dir)

        if content is None:
            try:
                data = await self._run(self._read_bytes, source)
            except FileNotFoundError as e:
                raise SnapshotIOError(f"Source file disappeared: {source}", path=str(source)) from e
        elif isinstance(content, str):
            data = content.encode("utf-8")
        else:
            data = bytes(content)

        cancel.raise_if_cancelled("capture", "write")
        steps.next_step("Writing snapshot")
        temp_path = snapshot_dir / f".{storage_path.name}{PARTIAL_SUFFIX}"
        try:
            await self._run(self._write_bytes, temp_path, data)
            cancel.raise_if_cancelled("capture", "commit")
            await self._run(os.replace, temp_path, storage_path)
        except OperationCancelledError:
            await self._run(self._remove_quietly, temp_path)
            raise
        except OSError as e:
            await self._run(self._remove_quietly, temp_path)
            raise SnapshotIOError(f"Failed to write snapshot: {e}", path=str(storage_path)) from e

        snapshot = Snapshot(
            source_path=source,
            storage_path=storage_path,
            captured_at=captured_at,
            token=timestamps.encode(captured_at),
            size_bytes=len(data),
        )
        self._logger.info(
            f"Snapshot created: {storage_path}",
            extra={"source_path": str(source), "size_bytes": snapshot.size_bytes},
        )

        steps.next_step("Checking retention")
        if self.auto_cleanup and self.sweeper is not None:
            try:
                await self.sweeper.sweep(snapshot_dir, self.cleanup_days)
            except OSError as e:
                self._logger.warning(f"Auto-cleanup failed for {snapshot_dir}: {e}")

        steps.complete("Snapshot completed")
        return snapshot

    async def list_snapshots(self, source_path: Path | str) -> list[Snapshot]:
        """All valid snapshots of a source file, newest first."""
        source = Path(source_path)
        snapshot_dir = self.resolver.resolve_snapshot_dir(source)
        entries = await self._run(self._scan_dir, snapshot_dir)

        snapshots = []
        for name, size in entries or []:
            token = timestamps.extract_token(name, self.extension, source.name)
            captured_at = timestamps.decode(token)
            if captured_at is None:
                continue
            snapshots.append(
                Snapshot(
                    source_path=source,
                    storage_path=snapshot_dir / name,
                    captured_at=captured_at,
                    token=token,
                    size_bytes=size,
                )
            )

        snapshots.sort(key=lambda s: s.sort_key, reverse=True)
        return snapshots

    async def find_latest(self, source_path: Path | str) -> Snapshot | None:
        """Most recent valid snapshot of a source file, or None."""
        snapshots = await self.list_snapshots(source_path)
        if not snapshots:
            self._logger.debug(f"No snapshots found for {source_path}")
            return None
        return snapshots[0]

    async def has_snapshot(self, source_path: Path | str) -> bool:
        return await self.find_latest(source_path) is not None

    async def restore(
        self,
        source_path: Path | str,
        snapshot: Snapshot,
        cancellation: CancellationToken | None = None,
        progress: ProgressReporter | None = None,
    ) -> int:
        """Overwrite source_path with the content of a snapshot.

        Returns:
            Number of bytes written

        Raises:
            NoSnapshotFoundError: If the snapshot vanished before it was read
            SnapshotValidationError: If the paths are rejected
            OperationCancelledError: If cancelled before the write
            SnapshotIOError: If reading or writing fails
        """
        source = Path(source_path)
        storage_path = Path(snapshot.storage_path)
        cancel = cancellation or CancellationToken()
        steps = progress or ProgressReporter(RESTORE_STEPS, log=self._logger)

        cancel.raise_if_cancelled("restore", "validate")
        steps.next_step("Validating snapshot")
        self.validator.validate_path(source)
        try:
            await self.validator.validate_restorable(storage_path)
        except NotAFileError as e:
            if not await self._run(storage_path.exists):
                raise self._vanished(source, storage_path) from e
            raise

        cancel.raise_if_cancelled("restore", "read")
        steps.next_step("Reading snapshot")
        try:
            data = await self._run(self._read_bytes, storage_path)
        except FileNotFoundError as e:
            raise self._vanished(source, storage_path) from e

        cancel.raise_if_cancelled("restore", "write")
        steps.next_step("Restoring file")
        try:
            await self._run(self._write_bytes, source, data)
        except OSError as e:
            raise SnapshotIOError(f"Failed to restore {source}: {e}", path=str(source)) from e

        steps.complete("Restore completed")
        self._logger.info(
            f"File restored from snapshot: {storage_path}",
            extra={"source_path": str(source), "size_bytes": len(data)},
        )
        return len(data)

    async def diagnose(self, source_path: Path | str) -> SnapshotDiagnostics:
        """Explain what the snapshot directory holds for a source file."""
        source = Path(source_path)
        snapshot_dir = self.resolver.resolve_snapshot_dir(source)
        entries = await self._run(self._scan_dir, snapshot_dir)

        if entries is None:
            return SnapshotDiagnostics(source, snapshot_dir, REASON_ROOT_MISSING)

        prefix = f"{source.name}."
        candidates = []
        for name, _size in sorted(entries):
            if not name.startswith(prefix) or not name.lower().endswith(self.extension.lower()):
                continue
            token = timestamps.extract_token(name, self.extension, source.name)
            candidates.append(
                SnapshotCandidate(name=name, token=token, valid=timestamps.decode(token) is not None)
            )

        if not candidates:
            reason = REASON_NO_MATCHING_FILES
        elif not any(candidate.valid for candidate in candidates):
            reason = REASON_INVALID_TIMESTAMPS
        else:
            reason = REASON_OK

        diagnostics = SnapshotDiagnostics(source, snapshot_dir, reason, candidates)
        self._logger.debug(
            diagnostics.describe(),
            extra={"reason": reason, "candidates": [c.name for c in candidates]},
        )
        return diagnostics

    def _vanished(self, source: Path, storage_path: Path) -> NoSnapshotFoundError:
        self._logger.warning(f"Snapshot disappeared before restore: {storage_path}")
        return NoSnapshotFoundError(
            str(source), message=f"Snapshot no longer exists: {storage_path}"
        )

    async def _run(self, fn: Callable[..., Any], *args: Any) -> Any:
        return await asyncio.get_event_loop().run_in_executor(None, fn, *args)

    def _scan_dir(self, directory: Path) -> Optional[list[tuple[str, int]]]:
        """(name, size) of regular files in a directory; None if it is missing.

        Entries that cannot be inspected (symlink loops, unreadable
        targets) are logged and skipped.
        """
        try:
            with os.scandir(directory) as it:
                entries = []
                for entry in it:
                    try:
                        if entry.is_file():
                            entries.append((entry.name, entry.stat().st_size))
                    except FileNotFoundError:
                        continue
                    except OSError as e:
                        self._logger.warning(f"Skipping unreadable snapshot entry {entry.path}: {e}")
                return entries
        except (FileNotFoundError, NotADirectoryError):
            return None
        except OSError as e:
            raise SnapshotIOError(
                f"Failed to list snapshot directory: {e}", path=str(directory)
            ) from e

    @staticmethod
    def _make_dirs(directory: Path) -> None:
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise SnapshotIOError(
                f"Failed to create snapshot directory: {e}", path=str(directory)
            ) from e

    @staticmethod
    def _read_bytes(path: Path) -> bytes:
        try:
            return path.read_bytes()
        except FileNotFoundError:
            raise
        except OSError as e:
            raise SnapshotIOError(f"Failed to read {path}: {e}", path=str(path)) from e

    @staticmethod
    def _write_bytes(path: Path, data: bytes) -> None:
        with open(path, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())

    @staticmethod
    def _remove_quietly(path: Path) -> None:
        try:
            path.unlink()
        except FileNotFoundError:
            pass
