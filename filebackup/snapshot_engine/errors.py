"""
Error types for the snapshot engine.

This module defines all exception types raised by the engine:
- SnapshotError: Base exception
- SnapshotValidationError: Path and file validation failures
- OperationInProgressError: Another operation holds the source path
- NoSnapshotFoundError: Nothing to restore from
- OperationCancelledError: Cooperative cancellation was observed
- SnapshotIOError: Wrapped read/write/delete failures

Invariants:
    - All errors inherit from SnapshotError
    - Every error carries a stable code for programmatic handling
    - Error messages are actionable
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class SnapshotError(Exception):
    """Base exception for all snapshot engine errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "SNAPSHOT_ERROR"
        self.details = details or {}


class SnapshotValidationError(SnapshotError):
    """A path or file failed a safety validation."""

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        code: str = "VALIDATION_FAILED",
    ) -> None:
        super().__init__(message, code=code, details={"path": path})
        self.path = path


class InvalidPathError(SnapshotValidationError):
    """Path is empty, relative, or contains a null byte."""

    def __init__(self, message: str, path: Optional[str] = None) -> None:
        super().__init__(message, path=path, code="INVALID_PATH")


class PathTraversalError(SnapshotValidationError):
    """Path contains parent-directory or home-directory segments."""

    def __init__(self, message: str, path: Optional[str] = None) -> None:
        super().__init__(message, path=path, code="PATH_TRAVERSAL")


class SystemDirectoryError(SnapshotValidationError):
    """Snapshot root points into an OS/system directory."""

    def __init__(self, message: str, path: Optional[str] = None) -> None:
        super().__init__(message, path=path, code="SYSTEM_DIRECTORY")


class SnapshotLoopError(SnapshotValidationError):
    """Source is itself a snapshot or lives inside a snapshot tree.

    Raised when:
    - The file carries the snapshot extension
    - A path segment matches a snapshot directory pattern
    """

    def __init__(self, message: str, path: Optional[str] = None) -> None:
        super().__init__(message, path=path, code="SNAPSHOT_LOOP_DETECTED")


class FileTooLargeError(SnapshotValidationError):
    """File exceeds the configured size ceiling."""

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        size_bytes: Optional[int] = None,
        limit_bytes: Optional[int] = None,
    ) -> None:
        super().__init__(message, path=path, code="FILE_TOO_LARGE")
        self.details.update({"size_bytes": size_bytes, "limit_bytes": limit_bytes})
        self.size_bytes = size_bytes
        self.limit_bytes = limit_bytes


class NotAFileError(SnapshotValidationError):
    """Path does not point to a regular file."""

    def __init__(self, message: str, path: Optional[str] = None) -> None:
        super().__init__(message, path=path, code="NOT_A_FILE")


class NotReadableError(SnapshotValidationError):
    """File exists but cannot be read."""

    def __init__(self, message: str, path: Optional[str] = None) -> None:
        super().__init__(message, path=path, code="NOT_READABLE")


class NotASnapshotFileError(SnapshotValidationError):
    """Restore target lacks the snapshot extension."""

    def __init__(self, message: str, path: Optional[str] = None) -> None:
        super().__init__(message, path=path, code="NOT_A_SNAPSHOT_FILE")


class InvalidConfigError(SnapshotValidationError):
    """Configuration values are out of range."""

    def __init__(self, message: str, setting: Optional[str] = None) -> None:
        super().__init__(message, path=None, code="INVALID_CONFIG")
        self.details["setting"] = setting
        self.setting = setting


class OperationInProgressError(SnapshotError):
    """A capture or restore is already running for this source path."""

    def __init__(self, source_path: str) -> None:
        super().__init__(
            f"Operation already in progress for {source_path}",
            code="OPERATION_IN_PROGRESS",
            details={"source_path": source_path},
        )
        self.source_path = source_path


class NoSnapshotFoundError(SnapshotError):
    """No usable snapshot exists for the source path.

    Attributes:
        source_path: File that was being restored
        diagnostics: Optional SnapshotDiagnostics explaining why
    """

    def __init__(
        self,
        source_path: str,
        diagnostics: Any = None,
        message: Optional[str] = None,
    ) -> None:
        reason = getattr(diagnostics, "reason", None)
        super().__init__(
            message or f"No snapshot found for {source_path}",
            code="NO_SNAPSHOT_FOUND",
            details={"source_path": source_path, "reason": reason},
        )
        self.source_path = source_path
        self.diagnostics = diagnostics


class OperationCancelledError(SnapshotError):
    """The operation observed a cancellation request between steps."""

    def __init__(self, operation: str, step: Optional[str] = None) -> None:
        msg = f"{operation} cancelled"
        if step:
            msg += f" before '{step}'"
        super().__init__(msg, code="CANCELLED", details={"operation": operation, "step": step})
        self.operation = operation
        self.step = step


class SnapshotIOError(SnapshotError):
    """Underlying read, write or delete failed.

    The original OSError is chained as __cause__.
    """

    def __init__(self, message: str, path: Optional[str] = None) -> None:
        super().__init__(message, code="IO_FAILURE", details={"path": path})
        self.path = path
