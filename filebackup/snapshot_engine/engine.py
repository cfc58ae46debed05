"""
Snapshot engine facade.

Wires the guard, store and sweeper together and runs the user-facing flows:
capture, rollback, cleanup and the save hook. Hosts (an editor extension,
the CLI) plug in through three small protocols:

    Notifier.notify(level, message)      one message per user invocation
    ConfirmPrompt.confirm(request)       yes/no before a restore overwrites
    DocumentHost.reload(path)            reload an open buffer after restore

Invariants:
    - Every capture and rollback runs under the per-path OperationGuard;
      a busy path yields a BUSY outcome without touching the filesystem
    - A user-initiated flow emits exactly one notification
    - Save-hook captures never notify; their failures are logged only
    - shutdown() stops the background sweeper and drains the guard

How to change safely:
    - Keep error-to-outcome conversion here; the store and sweeper raise
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable, Optional, Protocol

from .config import Settings
from .errors import (
    NoSnapshotFoundError,
    OperationCancelledError,
    OperationInProgressError,
    SnapshotError,
)
from .progress import CancellationToken, ProgressReporter
from .retention import RetentionSweeper, SweepReport
from .snapshot import OperationGuard, Snapshot, SnapshotDiagnostics, SnapshotStore
from .snapshot.validation import format_bytes

logger = logging.getLogger(__name__)


class NotificationLevel(Enum):
    """Severity of a user notification."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class OutcomeStatus(Enum):
    """Result of a user-facing flow."""

    SUCCESS = "success"
    BUSY = "busy"
    DECLINED = "declined"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass
class RestoreConfirmation:
    """What the user is asked to confirm before a restore."""

    source_path: Path
    snapshot: Snapshot

    @property
    def captured_at(self) -> datetime:
        return self.snapshot.captured_at

    @property
    def size_text(self) -> str:
        return format_bytes(self.snapshot.size_bytes)

    def message(self) -> str:
        return (
            f"Restore {self.source_path.name} from snapshot taken "
            f"{self.captured_at:%Y-%m-%d %H:%M:%S} ({self.size_text})? "
            "This overwrites the current content."
        )


@dataclass
class CaptureOutcome:
    status: OutcomeStatus
    source_path: Path
    snapshot: Optional[Snapshot] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.status is OutcomeStatus.SUCCESS


@dataclass
class RestoreOutcome:
    status: OutcomeStatus
    source_path: Path
    snapshot: Optional[Snapshot] = None
    bytes_restored: int = 0
    error: Optional[Exception] = None
    diagnostics: Optional[SnapshotDiagnostics] = None

    @property
    def ok(self) -> bool:
        return self.status is OutcomeStatus.SUCCESS


class Notifier(Protocol):
    def notify(self, level: NotificationLevel, message: str) -> None: ...


class ConfirmPrompt(Protocol):
    async def confirm(self, request: RestoreConfirmation) -> bool: ...


class DocumentHost(Protocol):
    async def reload(self, path: Path) -> None: ...


class LoggingNotifier:
    """Notifier that writes notifications to a logger."""

    _LEVELS = {
        NotificationLevel.INFO: logging.INFO,
        NotificationLevel.WARNING: logging.WARNING,
        NotificationLevel.ERROR: logging.ERROR,
    }

    def __init__(self, log: logging.Logger | None = None) -> None:
        self._logger = log or logger

    def notify(self, level: NotificationLevel, message: str) -> None:
        self._logger.log(self._LEVELS[level], message)


class SnapshotEngine:
    """Entry point for hosts embedding the snapshot engine.

    Example:
        >>> engine = SnapshotEngine(Settings(workspace_roots=["/ws"]))
        >>> await engine.start()
        >>> outcome = await engine.capture_file("/ws/src/app.ts")
        >>> outcome = await engine.rollback_file("/ws/src/app.ts")
        >>> await engine.shutdown()

    Without a ConfirmPrompt, rollback proceeds without asking.
    """

    def __init__(
        self,
        settings: Settings,
        notifier: Notifier | None = None,
        confirm: ConfirmPrompt | None = None,
        host: DocumentHost | None = None,
        clock: Callable[[], datetime] = datetime.now,
        log: logging.Logger | None = None,
    ) -> None:
        self.settings = settings
        self.notifier = notifier or LoggingNotifier(log)
        self.confirm = confirm
        self.host = host
        self._logger = log or logger

        self.guard = OperationGuard(
            stale_timeout_seconds=settings.stale_operation_seconds, log=log
        )
        self.sweeper = RetentionSweeper.from_settings(settings, log=log)
        self.store = SnapshotStore.from_settings(
            settings, sweeper=self.sweeper, clock=clock, log=log
        )
        self.resolver = self.store.resolver
        self.validator = self.store.validator
        self.sweeper.roots = self.resolver.default_roots()

        self._sweeper_task: Optional[asyncio.Task] = None

    def _notify(self, enabled: bool, level: NotificationLevel, message: str) -> None:
        if enabled:
            self.notifier.notify(level, message)

    async def capture_file(
        self,
        path: Path | str,
        content: str | bytes | None = None,
        notify: bool = True,
        cancellation: CancellationToken | None = None,
        progress: ProgressReporter | None = None,
    ) -> CaptureOutcome:
        """Capture a snapshot of a file.

        Args:
            path: Absolute path of the file
            content: Content to store; None reads the file from disk
            notify: Emit a user notification for the outcome
            cancellation: Caller cancellation token
            progress: Step reporter

        Returns:
            CaptureOutcome (BUSY when another operation holds the path)
        """
        source = Path(path)
        async with self.guard.hold(source, cancellation) as token:
            if token is None:
                self._notify(
                    notify,
                    NotificationLevel.WARNING,
                    f"Snapshot already in progress for {source.name}",
                )
                return CaptureOutcome(
                    OutcomeStatus.BUSY, source, error=OperationInProgressError(str(source))
                )

            try:
                snapshot = await self.store.capture(
                    source, content, cancellation=token.cancellation, progress=progress
                )
            except OperationCancelledError as e:
                self._logger.info(f"Snapshot cancelled for {source}: {e}")
                self._notify(notify, NotificationLevel.INFO, "Snapshot cancelled")
                return CaptureOutcome(OutcomeStatus.CANCELLED, source, error=e)
            except SnapshotError as e:
                self._logger.error(
                    f"Snapshot failed for {source}: {e.message}",
                    extra={"code": e.code, "details": e.details},
                )
                self._notify(notify, NotificationLevel.ERROR, f"Snapshot failed: {e.message}")
                return CaptureOutcome(OutcomeStatus.FAILED, source, error=e)
            except Exception as e:
                self._logger.error(f"Unexpected error capturing {source}: {e}", exc_info=True)
                self._notify(notify, NotificationLevel.ERROR, f"Snapshot failed: {e}")
                return CaptureOutcome(OutcomeStatus.FAILED, source, error=e)

        self._notify(
            notify, NotificationLevel.INFO, f"Snapshot created: {snapshot.storage_path.name}"
        )
        return CaptureOutcome(OutcomeStatus.SUCCESS, source, snapshot=snapshot)

    async def handle_save(
        self, path: Path | str, content: str | bytes | None = None
    ) -> CaptureOutcome | None:
        """Save hook: capture silently when auto_backup_on_save is enabled."""
        if not self.settings.auto_backup_on_save:
            return None
        outcome = await self.capture_file(path, content, notify=False)
        if outcome.status is OutcomeStatus.FAILED:
            self._logger.warning(f"Auto snapshot on save failed for {path}: {outcome.error}")
        elif outcome.status is OutcomeStatus.BUSY:
            self._logger.debug(f"Auto snapshot skipped, operation in progress for {path}")
        return outcome

    async def rollback_file(
        self,
        path: Path | str,
        cancellation: CancellationToken | None = None,
        progress: ProgressReporter | None = None,
    ) -> RestoreOutcome:
        """Restore a file from its most recent snapshot.

        Returns:
            RestoreOutcome; a missing snapshot is FAILED with a
            NoSnapshotFoundError carrying the directory diagnostics
        """
        source = Path(path)
        async with self.guard.hold(source, cancellation) as token:
            if token is None:
                self.notifier.notify(
                    NotificationLevel.WARNING,
                    f"Restore already in progress for {source.name}",
                )
                return RestoreOutcome(
                    OutcomeStatus.BUSY, source, error=OperationInProgressError(str(source))
                )

            try:
                return await self._rollback(source, token.cancellation, progress)
            except NoSnapshotFoundError as e:
                detail = e.diagnostics.describe() if e.diagnostics is not None else e.message
                self._logger.warning(f"No snapshot found for {source}: {detail}")
                self.notifier.notify(
                    NotificationLevel.WARNING, f"No snapshot found for {source.name}. {detail}"
                )
                return RestoreOutcome(
                    OutcomeStatus.FAILED, source, error=e, diagnostics=e.diagnostics
                )
            except OperationCancelledError as e:
                self._logger.info(f"Restore cancelled for {source}: {e}")
                self.notifier.notify(NotificationLevel.INFO, "Restore cancelled")
                return RestoreOutcome(OutcomeStatus.CANCELLED, source, error=e)
            except SnapshotError as e:
                self._logger.error(
                    f"Restore failed for {source}: {e.message}",
                    extra={"code": e.code, "details": e.details},
                )
                self.notifier.notify(NotificationLevel.ERROR, f"Restore failed: {e.message}")
                return RestoreOutcome(OutcomeStatus.FAILED, source, error=e)
            except Exception as e:
                self._logger.error(f"Unexpected error restoring {source}: {e}", exc_info=True)
                self.notifier.notify(NotificationLevel.ERROR, f"Restore failed: {e}")
                return RestoreOutcome(OutcomeStatus.FAILED, source, error=e)

    async def _rollback(
        self,
        source: Path,
        cancellation: CancellationToken,
        progress: ProgressReporter | None,
    ) -> RestoreOutcome:
        self.validator.validate_path(source)
        snapshot = await self.store.find_latest(source)
        if snapshot is None:
            diagnostics = await self.store.diagnose(source)
            raise NoSnapshotFoundError(str(source), diagnostics)

        cancellation.raise_if_cancelled("restore", "confirm")
        if self.confirm is not None:
            accepted = await self.confirm.confirm(RestoreConfirmation(source, snapshot))
            if not accepted:
                self._logger.info(f"Restore declined for {source}")
                self.notifier.notify(NotificationLevel.INFO, "Restore cancelled")
                return RestoreOutcome(OutcomeStatus.DECLINED, source, snapshot=snapshot)

        written = await self.store.restore(
            source, snapshot, cancellation=cancellation, progress=progress
        )

        if self.host is not None:
            try:
                await self.host.reload(source)
            except Exception as e:
                self._logger.warning(f"Failed to reload {source} after restore: {e}")

        self.notifier.notify(
            NotificationLevel.INFO,
            f"{source.name} restored from snapshot taken {snapshot.captured_at:%Y-%m-%d %H:%M:%S}",
        )
        return RestoreOutcome(
            OutcomeStatus.SUCCESS, source, snapshot=snapshot, bytes_restored=written
        )

    async def cleanup(
        self,
        cancellation: CancellationToken | None = None,
        progress: ProgressReporter | None = None,
    ) -> SweepReport:
        """Sweep every default snapshot root with the configured window.

        Raises:
            InvalidConfigError: If the settings are invalid (after notifying)
        """
        try:
            self.validator.validate_settings(self.settings)
        except SnapshotError as e:
            self._logger.error(f"Cleanup aborted: {e.message}", extra={"code": e.code})
            self.notifier.notify(NotificationLevel.ERROR, f"Cleanup failed: {e.message}")
            raise

        roots = self.resolver.default_roots()
        if not roots:
            self.notifier.notify(NotificationLevel.INFO, "No snapshot directories configured")
            return SweepReport()

        report = await self.sweeper.sweep_roots(
            roots, self.settings.cleanup_days, cancellation=cancellation, progress=progress
        )
        if report.cancelled:
            message = f"Cleanup cancelled after deleting {report.deleted_count} old snapshots"
        else:
            message = f"Cleanup completed: deleted {report.deleted_count} old snapshots"
        level = NotificationLevel.WARNING if report.error_count else NotificationLevel.INFO
        self.notifier.notify(level, message)
        return report

    async def has_snapshot(self, path: Path | str) -> bool:
        return await self.store.has_snapshot(path)

    async def diagnose(self, path: Path | str) -> SnapshotDiagnostics:
        return await self.store.diagnose(path)

    async def start(self) -> None:
        """Start background work (the periodic sweep when auto-cleanup is on)."""
        self.settings.log_config()
        if not self.settings.auto_cleanup or not self.sweeper.roots:
            return
        if self._sweeper_task is None or self._sweeper_task.done():
            self._sweeper_task = asyncio.create_task(self.sweeper.start())

    async def shutdown(self) -> None:
        """Stop the sweeper and cancel in-flight operations."""
        await self.sweeper.stop()
        if self._sweeper_task is not None:
            self._sweeper_task.cancel()
            await asyncio.gather(self._sweeper_task, return_exceptions=True)
            self._sweeper_task = None
        await self.guard.drain()
        self._logger.info("Snapshot engine stopped")
