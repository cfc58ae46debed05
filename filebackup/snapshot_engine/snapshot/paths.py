"""
Snapshot path derivation.

Layout:
    <root>/<workspace-relative dir>/<file name>.<YYYY-MM-DD_HH-MM-SS>.bak

Root selection:
    1. custom root (backup_directory), resolved to absolute if relative
    2. <workspace>/.snapshot-meta/snapshots when the file is in a workspace
    3. <source dir>/snapshots otherwise

Invariants:
    - Derivation is pure; nothing here touches the filesystem
    - The workspace-relative suffix never escapes the root (no '..' segments)

How to change safely:
    - Existing snapshot trees are found by re-deriving these paths; a layout
      change orphans every snapshot taken before it
"""

from __future__ import annotations

import os
from datetime import datetime
from pathlib import Path
from typing import Iterable

from ..config import DEFAULT_SNAPSHOT_EXTENSION
from . import timestamps

DEFAULT_META_DIR = ".snapshot-meta"
DEFAULT_SNAPSHOT_DIR = "snapshots"


class PathResolver:
    """Derives where snapshots of a source file live.

    Attributes:
        custom_root: Absolute custom snapshot root, or None for the default
        preserve_structure: Mirror the workspace-relative directory
        workspaces: Known workspace root directories
        extension: Snapshot file extension (with leading dot)

    Example:
        >>> resolver = PathResolver(workspaces=[Path("/ws")])
        >>> resolver.resolve_snapshot_dir(Path("/ws/src/app.ts"))
        PosixPath('/ws/.snapshot-meta/snapshots/src')
    """

    def __init__(
        self,
        custom_root: Path | str | None = None,
        preserve_structure: bool = True,
        workspaces: Iterable[Path | str] = (),
        extension: str = DEFAULT_SNAPSHOT_EXTENSION,
    ) -> None:
        self.custom_root = self._normalize_root(custom_root)
        self.preserve_structure = preserve_structure
        self.workspaces = [Path(os.path.abspath(w)) for w in workspaces]
        self.extension = extension

    @classmethod
    def from_settings(cls, settings) -> PathResolver:
        """Create a resolver from Settings."""
        return cls(
            custom_root=settings.custom_root,
            preserve_structure=settings.preserve_folder_structure,
            workspaces=settings.workspaces,
            extension=settings.snapshot_extension,
        )

    @staticmethod
    def _normalize_root(root: Path | str | None) -> Path | None:
        if root is None:
            return None
        raw = str(root).strip()
        if not raw:
            return None
        return Path(os.path.abspath(raw))

    def find_workspace(self, source_path: Path | str) -> Path | None:
        """Return the deepest known workspace containing the source, if any."""
        source = Path(os.path.abspath(source_path))
        best: Path | None = None
        for workspace in self.workspaces:
            if source == workspace or workspace in source.parents:
                if best is None or len(workspace.parts) > len(best.parts):
                    best = workspace
        return best

    def resolve_root(self, source_path: Path | str) -> Path:
        """Snapshot root for a source file, before the mirrored suffix."""
        if self.custom_root is not None:
            return self.custom_root
        workspace = self.find_workspace(source_path)
        if workspace is not None:
            return workspace / DEFAULT_META_DIR / DEFAULT_SNAPSHOT_DIR
        return Path(os.path.abspath(source_path)).parent / DEFAULT_SNAPSHOT_DIR

    def resolve_snapshot_dir(self, source_path: Path | str) -> Path:
        """Directory that holds the snapshots of a source file."""
        snapshot_dir = self.resolve_root(source_path)
        if not self.preserve_structure:
            return snapshot_dir

        workspace = self.find_workspace(source_path)
        if workspace is None:
            return snapshot_dir

        source_dir = Path(os.path.abspath(source_path)).parent
        relative = os.path.relpath(source_dir, workspace)
        if relative == os.curdir or relative.split(os.sep)[0] == os.pardir:
            return snapshot_dir
        return snapshot_dir / relative

    def resolve_snapshot_file_name(self, source_path: Path | str, timestamp: datetime) -> str:
        """'<original name>.<token><extension>'."""
        return f"{Path(source_path).name}.{timestamps.encode(timestamp)}{self.extension}"

    def resolve_snapshot_path(self, source_path: Path | str, timestamp: datetime) -> Path:
        return self.resolve_snapshot_dir(source_path) / self.resolve_snapshot_file_name(
            source_path, timestamp
        )

    def default_roots(self) -> list[Path]:
        """Roots a cleanup run walks: the custom root, or one per workspace."""
        if self.custom_root is not None:
            return [self.custom_root]
        return [w / DEFAULT_META_DIR / DEFAULT_SNAPSHOT_DIR for w in self.workspaces]

