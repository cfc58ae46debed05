"""
Age-based snapshot retention.

The sweeper deletes snapshot files older than a retention window and then
removes directories left empty, bottom-up. It runs on demand (cleanup
command, auto-cleanup after a capture) or as a periodic background loop.

Sweep phases:
    SCANNING -> DELETING -> PRUNING_DIRS -> DONE

Invariants:
    - Only files carrying the snapshot extension (or capture temp files
      named ".<snapshot>.partial") are ever deleted; the name is re-checked
      right before each delete
    - The root directory itself is never removed
    - Per-entry I/O failures are logged and skipped; one bad entry never
      aborts the sweep
    - A second sweep with the same window deletes nothing
    - max_age_days is clamped to 1..365

How to change safely:
    - Age is the file's mtime, not the timestamp token in its name; files
      copied in from elsewhere keep their copy time
    - The sweeper does not take the operation guard; a capture racing a
      sweep is safe because fresh snapshots are never older than the window
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Iterable, Optional

from ..config import (
    DEFAULT_SNAPSHOT_EXTENSION,
    MAX_CLEANUP_DAYS,
    MIN_CLEANUP_DAYS,
    PARTIAL_SUFFIX,
)
from ..progress import CancellationToken, ProgressReporter

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60


class SweepPhase(Enum):
    """Progress of a single-root sweep."""

    SCANNING = "scanning"
    DELETING = "deleting"
    PRUNING_DIRS = "pruning_dirs"
    DONE = "done"


@dataclass
class SweepResult:
    """Outcome of sweeping one root.

    Attributes:
        root: Directory that was swept
        cutoff: Files with an mtime before this instant were eligible
        phase: Last phase reached (DONE on normal completion)
        deleted: Snapshot files removed (orphaned temp files are not counted)
        removed_dirs: Empty directories removed
        errors: Per-entry failures that were skipped
    """

    root: Path
    cutoff: datetime
    phase: SweepPhase = SweepPhase.SCANNING
    deleted: list[Path] = field(default_factory=list)
    removed_dirs: list[Path] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def deleted_count(self) -> int:
        return len(self.deleted)


@dataclass
class SweepReport:
    """Outcome of sweeping several roots."""

    deleted_count: int = 0
    removed_dir_count: int = 0
    error_count: int = 0
    cancelled: bool = False
    results: list[SweepResult] = field(default_factory=list)

    def add(self, result: SweepResult) -> None:
        self.results.append(result)
        self.deleted_count += result.deleted_count
        self.removed_dir_count += len(result.removed_dirs)
        self.error_count += len(result.errors)


def clamp_days(max_age_days: int, log: logging.Logger | None = None) -> int:
    """Clamp a retention window to MIN_CLEANUP_DAYS..MAX_CLEANUP_DAYS."""
    clamped = max(MIN_CLEANUP_DAYS, min(MAX_CLEANUP_DAYS, int(max_age_days)))
    if clamped != max_age_days:
        (log or logger).warning(
            f"Cleanup days {max_age_days} out of range, using {clamped}",
            extra={"requested_days": max_age_days, "effective_days": clamped},
        )
    return clamped


class RetentionSweeper:
    """Deletes expired snapshots and prunes empty snapshot directories.

    Example:
        >>> sweeper = RetentionSweeper()
        >>> deleted = await sweeper.sweep(Path("/ws/.snapshot-meta/snapshots"), 30)

    The periodic loop sweeps the configured roots every interval_seconds:
        >>> sweeper = RetentionSweeper(roots=[root], max_age_days=30)
        >>> task = asyncio.create_task(sweeper.start())
        >>> await sweeper.stop()
    """

    def __init__(
        self,
        extension: str = DEFAULT_SNAPSHOT_EXTENSION,
        roots: Iterable[Path | str] = (),
        max_age_days: int = 30,
        interval_seconds: float = 3600,
        clock: Callable[[], float] = time.time,
        log: logging.Logger | None = None,
    ) -> None:
        """Initialize the sweeper.

        Args:
            extension: Snapshot file extension (with leading dot)
            roots: Roots swept by the periodic loop
            max_age_days: Retention window used by the periodic loop
            interval_seconds: Interval between periodic sweeps
            clock: Returns the current time as a POSIX timestamp
            log: Logger override
        """
        self.extension = extension
        self.roots = [Path(root) for root in roots]
        self.max_age_days = max_age_days
        self.interval_seconds = interval_seconds
        self._clock = clock
        self._logger = log or logger

        self._running = False
        self._sweep_count = 0
        self._last_report: Optional[SweepReport] = None

    @classmethod
    def from_settings(
        cls,
        settings,
        roots: Iterable[Path | str] = (),
        log: logging.Logger | None = None,
    ) -> RetentionSweeper:
        return cls(
            extension=settings.snapshot_extension,
            roots=roots,
            max_age_days=settings.cleanup_days,
            interval_seconds=settings.sweep_interval_seconds,
            log=log,
        )

    async def sweep(self, root: Path | str, max_age_days: int) -> int:
        """Sweep one root and return the number of snapshots deleted."""
        result = await self.sweep_detailed(root, max_age_days)
        return result.deleted_count

    async def sweep_detailed(self, root: Path | str, max_age_days: int) -> SweepResult:
        """Sweep one root and return the full result."""
        days = clamp_days(max_age_days, self._logger)
        return await asyncio.get_event_loop().run_in_executor(
            None, self._sweep_root, Path(root), days
        )

    async def sweep_roots(
        self,
        roots: Iterable[Path | str],
        max_age_days: int,
        cancellation: CancellationToken | None = None,
        progress: ProgressReporter | None = None,
    ) -> SweepReport:
        """Sweep several roots in order.

        Cancellation is checked once per root; a cancelled run keeps the
        counts of the roots already swept and sets cancelled=True.
        """
        report = SweepReport()
        for root in roots:
            if cancellation is not None and cancellation.is_cancelled:
                self._logger.info(
                    f"Cleanup cancelled after {len(report.results)} roots",
                    extra={"deleted": report.deleted_count},
                )
                report.cancelled = True
                break
            if progress is not None:
                progress.next_step(f"Cleaning up {root}")
            report.add(await self.sweep_detailed(root, max_age_days))

        self._logger.info(
            f"Cleanup completed: deleted {report.deleted_count} old snapshots",
            extra={
                "deleted": report.deleted_count,
                "removed_dirs": report.removed_dir_count,
                "errors": report.error_count,
                "cancelled": report.cancelled,
            },
        )
        return report

    def _sweep_root(self, root: Path, max_age_days: int) -> SweepResult:
        """Blocking sweep of a single root."""
        now = self._clock()
        cutoff = now - max_age_days * SECONDS_PER_DAY
        result = SweepResult(root=root, cutoff=datetime.fromtimestamp(cutoff))

        if not root.is_dir():
            self._logger.debug(f"Snapshot root does not exist: {root}")
            result.phase = SweepPhase.DONE
            return result

        self._logger.info(f"Starting cleanup in: {root} (older than {max_age_days} days)")

        expired = self._scan(root, cutoff, result)

        result.phase = SweepPhase.DELETING
        for path in expired:
            self._delete(path, result)

        result.phase = SweepPhase.PRUNING_DIRS
        self._prune_empty_dirs(root, result)

        result.phase = SweepPhase.DONE
        if result.deleted:
            self._logger.info(
                f"Deleted {result.deleted_count} old snapshots from {root}",
                extra={"removed_dirs": len(result.removed_dirs)},
            )
        return result

    def _has_extension(self, name: str) -> bool:
        return name.lower().endswith(self.extension.lower())

    def _is_sweepable(self, name: str) -> bool:
        """Snapshot files, plus temp files orphaned by an interrupted capture."""
        if self._has_extension(name):
            return True
        if name.startswith(".") and name.endswith(PARTIAL_SUFFIX):
            return self._has_extension(name[: -len(PARTIAL_SUFFIX)])
        return False

    def _scan(self, root: Path, cutoff: float, result: SweepResult) -> list[Path]:
        def on_error(error: OSError) -> None:
            self._record_error(result, error.filename, "scan", error)

        expired = []
        for dirpath, _dirnames, filenames in os.walk(root, onerror=on_error):
            for name in filenames:
                if not self._is_sweepable(name):
                    continue
                path = Path(dirpath) / name
                try:
                    mtime = path.stat().st_mtime
                except OSError as e:
                    self._record_error(result, path, "stat", e)
                    continue
                if mtime < cutoff:
                    expired.append(path)
        return expired

    def _delete(self, path: Path, result: SweepResult) -> None:
        if not self._is_sweepable(path.name):
            self._logger.warning(f"Skipping non-snapshot file during cleanup: {path}")
            return
        try:
            path.unlink()
        except FileNotFoundError:
            return
        except OSError as e:
            self._record_error(result, path, "delete", e)
            return
        if not self._has_extension(path.name):
            self._logger.info(f"Removed orphaned capture temp file: {path}")
            return
        result.deleted.append(path)
        self._logger.debug(f"Deleted old snapshot: {path}")

    def _prune_empty_dirs(self, root: Path, result: SweepResult) -> None:
        for dirpath, _dirnames, _filenames in os.walk(root, topdown=False):
            directory = Path(dirpath)
            if directory == root:
                continue
            try:
                if any(directory.iterdir()):
                    continue
                directory.rmdir()
            except FileNotFoundError:
                continue
            except OSError as e:
                self._record_error(result, directory, "rmdir", e)
                continue
            result.removed_dirs.append(directory)
            self._logger.debug(f"Removed empty directory: {directory}")

    def _record_error(self, result: SweepResult, path: Any, action: str, error: OSError) -> None:
        message = f"Failed to {action} {path}: {error}"
        result.errors.append(message)
        self._logger.warning(message)

    async def start(self) -> None:
        """Run the periodic sweep loop until stopped."""
        if self._running:
            self._logger.warning("Retention sweeper already running")
            return

        self._running = True
        self._logger.info(
            "Starting retention sweeper",
            extra={
                "roots": [str(root) for root in self.roots],
                "max_age_days": self.max_age_days,
                "interval_seconds": self.interval_seconds,
            },
        )

        try:
            while self._running:
                await self._sweep_cycle()
                await asyncio.sleep(self.interval_seconds)

        except asyncio.CancelledError:
            self._logger.info("Retention sweeper cancelled")
        except Exception as e:
            self._logger.error(f"Retention sweeper error: {e}", exc_info=True)
        finally:
            self._running = False

    async def stop(self) -> None:
        """Stop the periodic sweep loop."""
        self._running = False
        self._logger.info("Stopping retention sweeper")

    async def _sweep_cycle(self) -> None:
        if not self.roots:
            return
        self._last_report = await self.sweep_roots(self.roots, self.max_age_days)
        self._sweep_count += 1

    @property
    def running(self) -> bool:
        return self._running

    @property
    def stats(self) -> dict[str, Any]:
        """Get sweeper statistics."""
        return {
            "running": self._running,
            "sweep_count": self._sweep_count,
            "last_deleted": self._last_report.deleted_count if self._last_report else 0,
        }
