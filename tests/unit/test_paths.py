"""
Unit tests for PathResolver.

Tests cover:
- Root selection (custom, workspace, source directory)
- Folder structure mirroring
- Snapshot file naming
- Default cleanup roots
"""

from datetime import datetime
from pathlib import Path

import pytest

from filebackup.snapshot_engine.config import Settings
from filebackup.snapshot_engine.snapshot.paths import PathResolver


class TestResolveSnapshotDir:
    """Tests for snapshot directory derivation."""

    def test_workspace_default_root_mirrors_structure(self):
        resolver = PathResolver(workspaces=["/ws"])
        assert resolver.resolve_snapshot_dir("/ws/src/app.ts") == Path(
            "/ws/.snapshot-meta/snapshots/src"
        )

    def test_file_at_workspace_top_level(self):
        """Top-level files go straight into the root."""
        resolver = PathResolver(workspaces=["/ws"])
        assert resolver.resolve_snapshot_dir("/ws/app.ts") == Path("/ws/.snapshot-meta/snapshots")

    def test_nested_directories(self):
        resolver = PathResolver(workspaces=["/ws"])
        assert resolver.resolve_snapshot_dir("/ws/a/b/c/app.ts") == Path(
            "/ws/.snapshot-meta/snapshots/a/b/c"
        )

    def test_flat_layout(self):
        """preserve_structure=False puts every snapshot in the root."""
        resolver = PathResolver(workspaces=["/ws"], preserve_structure=False)
        assert resolver.resolve_snapshot_dir("/ws/src/app.ts") == Path(
            "/ws/.snapshot-meta/snapshots"
        )

    def test_custom_root(self):
        resolver = PathResolver(custom_root="/store", workspaces=["/ws"])
        assert resolver.resolve_snapshot_dir("/ws/src/app.ts") == Path("/store/src")

    def test_blank_custom_root_uses_default(self):
        resolver = PathResolver(custom_root="   ", workspaces=["/ws"])
        assert resolver.custom_root is None
        assert resolver.resolve_snapshot_dir("/ws/src/app.ts") == Path(
            "/ws/.snapshot-meta/snapshots/src"
        )

    def test_relative_custom_root_made_absolute(self):
        resolver = PathResolver(custom_root="store")
        assert resolver.custom_root.is_absolute()

    def test_outside_workspace_uses_source_dir(self):
        """Files outside every workspace snapshot next to themselves."""
        resolver = PathResolver(workspaces=["/ws"])
        assert resolver.resolve_snapshot_dir("/other/lib/util.py") == Path("/other/lib/snapshots")

    def test_outside_workspace_with_custom_root_is_flat(self):
        resolver = PathResolver(custom_root="/store", workspaces=["/ws"])
        assert resolver.resolve_snapshot_dir("/other/lib/util.py") == Path("/store")

    def test_deepest_workspace_wins(self):
        resolver = PathResolver(workspaces=["/ws", "/ws/packages/core"])
        assert resolver.find_workspace("/ws/packages/core/src/index.ts") == Path("/ws/packages/core")
        assert resolver.resolve_snapshot_dir("/ws/packages/core/src/index.ts") == Path(
            "/ws/packages/core/.snapshot-meta/snapshots/src"
        )

    def test_sibling_prefix_is_not_a_workspace(self):
        """/ws2 is not inside /ws."""
        resolver = PathResolver(workspaces=["/ws"])
        assert resolver.find_workspace("/ws2/app.ts") is None


class TestSnapshotNaming:
    """Tests for snapshot file names."""

    def test_file_name(self):
        resolver = PathResolver(workspaces=["/ws"])
        name = resolver.resolve_snapshot_file_name(
            "/ws/src/app.ts", datetime(2024, 1, 15, 14, 30, 25)
        )
        assert name == "app.ts.2024-01-15_14-30-25.bak"

    def test_full_path(self):
        resolver = PathResolver(workspaces=["/ws"])
        path = resolver.resolve_snapshot_path("/ws/src/app.ts", datetime(2024, 1, 15, 14, 30, 25))
        assert path == Path("/ws/.snapshot-meta/snapshots/src/app.ts.2024-01-15_14-30-25.bak")

    def test_custom_extension(self):
        resolver = PathResolver(workspaces=["/ws"], extension=".snap")
        name = resolver.resolve_snapshot_file_name("/ws/app.ts", datetime(2024, 1, 15, 14, 30, 25))
        assert name == "app.ts.2024-01-15_14-30-25.snap"


class TestDefaultRoots:
    """Tests for the roots walked by cleanup."""

    def test_custom_root_only(self):
        resolver = PathResolver(custom_root="/store", workspaces=["/ws", "/ws2"])
        assert resolver.default_roots() == [Path("/store")]

    def test_one_root_per_workspace(self):
        resolver = PathResolver(workspaces=["/ws", "/ws2"])
        assert resolver.default_roots() == [
            Path("/ws/.snapshot-meta/snapshots"),
            Path("/ws2/.snapshot-meta/snapshots"),
        ]

    def test_no_workspace_no_roots(self):
        assert PathResolver().default_roots() == []


class TestFromSettings:
    """Tests for PathResolver.from_settings."""

    @pytest.fixture
    def settings(self):
        return Settings(
            backup_directory="/store",
            preserve_folder_structure=False,
            workspace_roots=["/ws"],
            snapshot_extension=".snap",
        )

    def test_from_settings(self, settings):
        resolver = PathResolver.from_settings(settings)
        assert resolver.custom_root == Path("/store")
        assert resolver.preserve_structure is False
        assert resolver.workspaces == [Path("/ws")]
        assert resolver.extension == ".snap"
