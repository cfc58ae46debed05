"""
Safety validations for snapshot capture and restore.

Every check either returns silently or raises a SnapshotValidationError
subclass. Checks never modify the filesystem; the async checks only stat
and check read access.

Invariants:
    - A file carrying the snapshot extension is never captured
    - A file whose directory path contains a snapshot directory pattern
      (or lies under the configured custom root) is never captured
    - Restore only ever reads files carrying the snapshot extension
    - Snapshot roots never point into OS/system directories

How to change safely:
    - Patterns are compared as whole path segments, case-insensitively,
      with '\\' and '/' unified; keep new patterns in that form
    - Loosening a check here can turn capture into unbounded recursion
"""

from __future__ import annotations

import asyncio
import logging
import os
import stat
from pathlib import Path
from typing import Iterable

from ..config import DEFAULT_MAX_FILE_SIZE, DEFAULT_SNAPSHOT_EXTENSION
from ..errors import (
    FileTooLargeError,
    InvalidPathError,
    NotAFileError,
    NotASnapshotFileError,
    NotReadableError,
    PathTraversalError,
    SnapshotLoopError,
    SnapshotValidationError,
    SystemDirectoryError,
)
from .paths import DEFAULT_META_DIR, DEFAULT_SNAPSHOT_DIR

logger = logging.getLogger(__name__)

DEFAULT_SNAPSHOT_DIR_PATTERNS = (
    f"{DEFAULT_META_DIR}/{DEFAULT_SNAPSHOT_DIR}",
    DEFAULT_SNAPSHOT_DIR,
    "backups",
    ".backup",
    "backup",
)

SYSTEM_DIRECTORIES = (
    "/etc",
    "/usr",
    "/var",
    "/bin",
    "/sbin",
    "/boot",
    "/proc",
    "/sys",
    "C:\\Windows",
    "C:\\Program Files",
    "C:\\Program Files (x86)",
)

SOURCE_EXTENSIONS = frozenset({
    ".ts", ".js", ".tsx", ".jsx", ".vue", ".py", ".java", ".cs", ".cpp", ".c",
    ".h", ".hpp", ".php", ".rb", ".go", ".rs", ".swift", ".kt", ".scala",
    ".html", ".css", ".scss", ".sass", ".less", ".xml", ".json", ".yaml",
    ".yml", ".md", ".txt", ".sql", ".sh", ".bat", ".ps1", ".dockerfile",
})


def _segments(path: str) -> list[str]:
    """Lower-cased, separator-normalized, non-empty path segments."""
    normalized = path.replace("\\", "/").lower()
    return [part for part in normalized.split("/") if part and part != "."]


def _contains_run(haystack: list[str], needle: list[str]) -> bool:
    if not needle or len(needle) > len(haystack):
        return False
    width = len(needle)
    return any(haystack[i:i + width] == needle for i in range(len(haystack) - width + 1))


def _is_absolute(path: str) -> bool:
    if os.path.isabs(path):
        return True
    # Drive-qualified Windows paths, e.g. C:\Users or C:/Users
    return len(path) >= 3 and path[0].isalpha() and path[1] == ":" and path[2] in "\\/"


def format_bytes(size: int) -> str:
    """Format bytes to a human readable string."""
    units = ["Bytes", "KB", "MB", "GB"]
    if size <= 0:
        return "0 Bytes"
    value = float(size)
    index = 0
    while value >= 1024 and index < len(units) - 1:
        value /= 1024
        index += 1
    value = round(value, 2)
    if value == int(value):
        value = int(value)
    return f"{value} {units[index]}"


class SafetyValidator:
    """Path and file validations guarding capture and restore.

    Attributes:
        extension: Snapshot file extension (with leading dot)
        max_file_size: Size ceiling in bytes for captured/restored files
        snapshot_dir_patterns: Directory patterns that mark a snapshot tree
        snapshot_roots: Extra directories (custom roots) treated as snapshot trees

    Example:
        >>> validator = SafetyValidator()
        >>> validator.validate_not_snapshot("/ws/src/app.ts")
        >>> validator.validate_not_snapshot("/ws/src/app.ts.2024-01-15_14-30-25.bak")
        Traceback (most recent call last):
        ...
        SnapshotLoopError: ...
    """

    def __init__(
        self,
        extension: str = DEFAULT_SNAPSHOT_EXTENSION,
        max_file_size: int = DEFAULT_MAX_FILE_SIZE,
        snapshot_dir_patterns: Iterable[str] = DEFAULT_SNAPSHOT_DIR_PATTERNS,
        snapshot_roots: Iterable[Path | str] = (),
        system_directories: Iterable[str] = SYSTEM_DIRECTORIES,
        log: logging.Logger | None = None,
    ) -> None:
        self.extension = extension
        self.max_file_size = max_file_size
        self.snapshot_dir_patterns = tuple(snapshot_dir_patterns)
        self.snapshot_roots = tuple(str(root) for root in snapshot_roots)
        self.system_directories = tuple(system_directories)
        self._logger = log or logger
        self._pattern_segments = [_segments(p) for p in self.snapshot_dir_patterns]

    @classmethod
    def from_settings(cls, settings, log: logging.Logger | None = None) -> SafetyValidator:
        custom_root = settings.custom_root
        return cls(
            extension=settings.snapshot_extension,
            max_file_size=settings.max_file_size_bytes,
            snapshot_roots=[custom_root] if custom_root is not None else [],
            log=log,
        )

    def validate_path(self, path: Path | str) -> None:
        """Reject empty, traversing, null-byte or relative paths."""
        raw = str(path) if path is not None else ""
        if not raw or not raw.strip():
            raise InvalidPathError("File path is required", path=raw)
        if "\0" in raw:
            raise InvalidPathError("Null bytes detected in file path", path=raw.replace("\0", "\\0"))

        for part in raw.replace("\\", "/").split("/"):
            if part == ".." or part.startswith("~"):
                raise PathTraversalError("Directory traversal detected in file path", path=raw)

        if not _is_absolute(raw):
            raise InvalidPathError("File path must be absolute", path=raw)

        self._logger.debug(f"File path validated: {raw}")

    def validate_snapshot_root(self, path: Path | str) -> None:
        """validate_path plus the system directory denylist."""
        self.validate_path(path)
        segments = _segments(str(path))
        for system_dir in self.system_directories:
            if segments[: len(_segments(system_dir))] == _segments(system_dir):
                raise SystemDirectoryError(
                    f"Cannot store snapshots in system directory {system_dir}", path=str(path)
                )
        self._logger.debug(f"Snapshot directory validated: {path}")

    def validate_not_snapshot(self, path: Path | str) -> None:
        """Reject snapshot files and anything inside a snapshot tree."""
        raw = str(path)
        segments = _segments(raw)
        directory_segments = segments[:-1]

        in_snapshot_dir = any(
            _contains_run(directory_segments, pattern) for pattern in self._pattern_segments
        )
        if not in_snapshot_dir:
            for root in self.snapshot_roots:
                root_segments = _segments(root)
                if root_segments and directory_segments[: len(root_segments)] == root_segments:
                    in_snapshot_dir = True
                    break

        is_snapshot_file = raw.lower().endswith(self.extension.lower())

        if in_snapshot_dir or is_snapshot_file:
            raise SnapshotLoopError(
                "Cannot snapshot files that are snapshots themselves or live in a snapshot directory",
                path=raw,
            )
        self._logger.debug(f"File is not in a snapshot directory: {raw}")

    async def validate_capturable(self, path: Path | str) -> None:
        """Full eligibility check for capture."""
        self.validate_path(path)
        self.validate_not_snapshot(path)

        st = await self._stat(path, "File")
        self._check_regular_file(path, st, "File")

        ext = os.path.splitext(str(path))[1].lower()
        if ext and ext not in SOURCE_EXTENSIONS:
            self._logger.warning(
                f"File extension {ext} is not in the source allow-list, proceeding with capture",
                extra={"path": str(path)},
            )

        await self._check_readable(path, "File")
        self._logger.debug(f"File validated for capture: {path}")

    async def validate_restorable(self, path: Path | str) -> None:
        """Full eligibility check for a snapshot about to be restored."""
        self.validate_path(path)

        st = await self._stat(path, "Snapshot")
        self._check_regular_file(path, st, "Snapshot")

        if not str(path).lower().endswith(self.extension.lower()):
            raise NotASnapshotFileError(
                f"File is not a snapshot file ({self.extension} extension required)",
                path=str(path),
            )

        await self._check_readable(path, "Snapshot")
        self._logger.debug(f"Snapshot validated for restore: {path}")

    def validate_settings(self, settings) -> None:
        """Validate user-facing configuration values."""
        settings.validate_values()
        if settings.custom_root is not None:
            self.validate_snapshot_root(settings.custom_root)
        self._logger.debug("Configuration validated successfully")

    async def _stat(self, path: Path | str, label: str) -> os.stat_result:
        loop = asyncio.get_event_loop()
        try:
            return await loop.run_in_executor(None, os.stat, str(path))
        except FileNotFoundError:
            raise NotAFileError(f"{label} does not exist", path=str(path))
        except PermissionError:
            raise NotReadableError(f"{label} is not accessible", path=str(path))
        except OSError as e:
            raise SnapshotValidationError(f"Failed to validate {label.lower()}: {e}", path=str(path))

    def _check_regular_file(self, path: Path | str, st: os.stat_result, label: str) -> None:
        if not stat.S_ISREG(st.st_mode):
            raise NotAFileError(f"{label} path does not point to a file", path=str(path))
        if st.st_size > self.max_file_size:
            raise FileTooLargeError(
                f"{label} size ({format_bytes(st.st_size)}) exceeds maximum allowed size "
                f"({format_bytes(self.max_file_size)})",
                path=str(path),
                size_bytes=st.st_size,
                limit_bytes=self.max_file_size,
            )

    async def _check_readable(self, path: Path | str, label: str) -> None:
        loop = asyncio.get_event_loop()
        readable = await loop.run_in_executor(None, os.access, str(path), os.R_OK)
        if not readable:
            raise NotReadableError(f"{label} is not readable", path=str(path))
