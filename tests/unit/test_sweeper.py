"""
Unit tests for RetentionSweeper.

Tests cover:
- Age-based deletion by mtime
- Empty directory pruning (root kept)
- Orphaned capture temp files
- Per-entry I/O errors recorded without aborting
- Idempotence
- Window clamping
- Multi-root sweeps with cancellation
- Periodic loop lifecycle
"""

import asyncio
import logging
import os
import time

import pytest

from filebackup.snapshot_engine.progress import CancellationToken, ProgressReporter
from filebackup.snapshot_engine.retention import (
    RetentionSweeper,
    SweepPhase,
    clamp_days,
)

DAY = 24 * 60 * 60


def make_file(path, age_days, content="x"):
    """Create a file with an mtime age_days in the past."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    mtime = time.time() - age_days * DAY
    os.utime(path, (mtime, mtime))
    return path


@pytest.fixture
def root(tmp_path):
    path = tmp_path / "store"
    path.mkdir()
    return path


@pytest.fixture
def sweeper():
    return RetentionSweeper()


class TestSweep:
    """Tests for sweeping a single root."""

    @pytest.mark.asyncio
    async def test_old_deleted_recent_kept(self, sweeper, root):
        """31-day-old snapshot goes, 10-day-old stays, emptied dir removed."""
        old = make_file(root / "a" / "x.ts.2024-01-01_00-00-00.bak", 31)
        recent = make_file(root / "b" / "y.ts.2024-02-01_00-00-00.bak", 10)

        result = await sweeper.sweep_detailed(root, 30)

        assert result.deleted == [old]
        assert not old.exists()
        assert recent.exists()
        assert not (root / "a").exists()
        assert (root / "b").exists()
        assert root.exists()
        assert result.removed_dirs == [root / "a"]
        assert result.phase is SweepPhase.DONE

    @pytest.mark.asyncio
    async def test_sweep_returns_count(self, sweeper, root):
        make_file(root / "a.ts.2024-01-01_00-00-00.bak", 40)
        make_file(root / "b.ts.2024-01-01_00-00-00.bak", 40)
        assert await sweeper.sweep(root, 30) == 2

    @pytest.mark.asyncio
    async def test_non_snapshot_files_untouched(self, sweeper, root):
        notes = make_file(root / "sub" / "notes.txt", 400)
        notes_partial = make_file(root / "sub" / ".notes.txt.partial", 400)

        assert await sweeper.sweep(root, 30) == 0

        assert notes.exists()
        assert notes_partial.exists()
        assert (root / "sub").exists()

    @pytest.mark.asyncio
    async def test_orphaned_partial_removed_when_expired(self, sweeper, root):
        """Temp files left by an interrupted capture age out like snapshots."""
        orphan = make_file(root / "a" / ".x.ts.2024-01-01_00-00-00.bak.partial", 40)
        fresh = make_file(root / "b" / ".y.ts.2024-02-01_00-00-00.bak.partial", 0)

        result = await sweeper.sweep_detailed(root, 30)

        assert not orphan.exists()
        assert fresh.exists()
        assert result.deleted_count == 0
        assert result.removed_dirs == [root / "a"]

    @pytest.mark.asyncio
    async def test_unreadable_entry_does_not_abort(self, sweeper, root):
        """A symlink loop is recorded as an error and the sweep carries on."""
        old = make_file(root / "x.ts.2024-01-01_00-00-00.bak", 40)
        loop = root / "y.ts.2024-01-01_00-00-00.bak"
        loop.symlink_to(loop.name)

        result = await sweeper.sweep_detailed(root, 30)

        assert result.deleted == [old]
        assert not old.exists()
        assert loop.is_symlink()
        assert len(result.errors) == 1
        assert result.errors[0].startswith(f"Failed to stat {loop}")
        assert result.phase is SweepPhase.DONE

    @pytest.mark.asyncio
    async def test_errors_counted_in_report(self, sweeper, tmp_path):
        first = tmp_path / "one"
        make_file(first / "x.ts.2024-01-01_00-00-00.bak", 40)
        loop = first / "y.ts.2024-01-01_00-00-00.bak"
        loop.symlink_to(loop.name)
        second = tmp_path / "two"
        make_file(second / "z.ts.2024-01-01_00-00-00.bak", 40)

        report = await sweeper.sweep_roots([first, second], 30)

        assert report.deleted_count == 2
        assert report.error_count == 1
        assert not report.cancelled

    @pytest.mark.asyncio
    async def test_extension_case_insensitive(self, sweeper, root):
        old = make_file(root / "x.ts.2024-01-01_00-00-00.BAK", 40)
        assert await sweeper.sweep(root, 30) == 1
        assert not old.exists()

    @pytest.mark.asyncio
    async def test_age_from_mtime_not_name(self, sweeper, root):
        """A freshly written file with an ancient token is kept."""
        kept = make_file(root / "x.ts.2001-01-01_00-00-00.bak", 0)
        assert await sweeper.sweep(root, 30) == 0
        assert kept.exists()

    @pytest.mark.asyncio
    async def test_nested_empty_dirs_pruned_bottom_up(self, sweeper, root):
        make_file(root / "a" / "b" / "c" / "x.ts.2024-01-01_00-00-00.bak", 60)

        result = await sweeper.sweep_detailed(root, 30)

        assert list(root.iterdir()) == []
        assert result.removed_dirs == [root / "a" / "b" / "c", root / "a" / "b", root / "a"]

    @pytest.mark.asyncio
    async def test_idempotent(self, sweeper, root):
        make_file(root / "a" / "x.ts.2024-01-01_00-00-00.bak", 60)
        make_file(root / "b" / "y.ts.2024-01-01_00-00-00.bak", 5)

        first = await sweeper.sweep_detailed(root, 30)
        second = await sweeper.sweep_detailed(root, 30)

        assert first.deleted_count == 1
        assert second.deleted_count == 0
        assert second.removed_dirs == []

    @pytest.mark.asyncio
    async def test_missing_root(self, sweeper, tmp_path):
        result = await sweeper.sweep_detailed(tmp_path / "absent", 30)
        assert result.deleted_count == 0
        assert result.phase is SweepPhase.DONE

    @pytest.mark.asyncio
    async def test_custom_extension(self, root):
        sweeper = RetentionSweeper(extension=".snap")
        bak = make_file(root / "x.ts.2024-01-01_00-00-00.bak", 60)
        snap = make_file(root / "x.ts.2024-01-01_00-00-00.snap", 60)

        assert await sweeper.sweep(root, 30) == 1
        assert bak.exists()
        assert not snap.exists()

    @pytest.mark.asyncio
    async def test_injected_clock(self, root):
        """Cutoff is computed from the injected clock."""
        path = make_file(root / "x.ts.2024-01-01_00-00-00.bak", 0)
        future = RetentionSweeper(clock=lambda: time.time() + 31 * DAY)
        assert await future.sweep(root, 30) == 1
        assert not path.exists()


class TestClampDays:
    """Tests for window clamping."""

    @pytest.mark.parametrize("days,expected", [(0, 1), (-5, 1), (1, 1), (30, 30), (365, 365), (1000, 365)])
    def test_clamp(self, days, expected):
        assert clamp_days(days) == expected

    def test_clamp_warns(self, caplog):
        with caplog.at_level(logging.WARNING):
            clamp_days(0)
        assert any("out of range" in record.getMessage() for record in caplog.records)

    @pytest.mark.asyncio
    async def test_zero_days_behaves_as_one(self, sweeper, root):
        two_days = make_file(root / "x.ts.2024-01-01_00-00-00.bak", 2)
        fresh = make_file(root / "y.ts.2024-01-01_00-00-00.bak", 0)

        assert await sweeper.sweep(root, 0) == 1
        assert not two_days.exists()
        assert fresh.exists()


class TestSweepRoots:
    """Tests for multi-root sweeps."""

    @pytest.mark.asyncio
    async def test_all_roots_swept(self, sweeper, tmp_path):
        first = tmp_path / "one"
        second = tmp_path / "two"
        make_file(first / "x.ts.2024-01-01_00-00-00.bak", 60)
        make_file(second / "y.ts.2024-01-01_00-00-00.bak", 60)
        make_file(second / "z.ts.2024-01-01_00-00-00.bak", 60)

        report = await sweeper.sweep_roots([first, second], 30)

        assert report.deleted_count == 3
        assert not report.cancelled
        assert len(report.results) == 2

    @pytest.mark.asyncio
    async def test_cancelled_before_start(self, sweeper, tmp_path):
        make_file(tmp_path / "one" / "x.ts.2024-01-01_00-00-00.bak", 60)
        token = CancellationToken()
        token.cancel()

        report = await sweeper.sweep_roots([tmp_path / "one"], 30, cancellation=token)

        assert report.cancelled
        assert report.deleted_count == 0
        assert (tmp_path / "one" / "x.ts.2024-01-01_00-00-00.bak").exists()

    @pytest.mark.asyncio
    async def test_cancelled_between_roots_keeps_partial_count(self, sweeper, tmp_path):
        first = tmp_path / "one"
        second = tmp_path / "two"
        make_file(first / "x.ts.2024-01-01_00-00-00.bak", 60)
        kept = make_file(second / "y.ts.2024-01-01_00-00-00.bak", 60)
        token = CancellationToken()

        def cancel_during_first(message, pct):
            if str(first) in message:
                token.cancel()

        # Cancellation requested while the first root is being swept
        progress = ProgressReporter(2, sink=cancel_during_first)
        report = await sweeper.sweep_roots(
            [first, second], 30, cancellation=token, progress=progress
        )

        assert report.cancelled
        assert report.deleted_count == 1
        assert len(report.results) == 1
        assert kept.exists()


class TestPeriodicLoop:
    """Tests for the background sweep loop."""

    @pytest.mark.asyncio
    async def test_start_sweeps_then_stops(self, tmp_path):
        root = tmp_path / "store"
        old = make_file(root / "x.ts.2024-01-01_00-00-00.bak", 60)
        sweeper = RetentionSweeper(roots=[root], max_age_days=30, interval_seconds=0.01)

        task = asyncio.create_task(sweeper.start())
        await asyncio.sleep(0.05)

        assert sweeper.running
        assert not old.exists()
        assert sweeper.stats["sweep_count"] >= 1

        await sweeper.stop()
        await asyncio.wait_for(task, timeout=1)
        assert not sweeper.running

    @pytest.mark.asyncio
    async def test_start_twice_is_noop(self, tmp_path):
        sweeper = RetentionSweeper(roots=[tmp_path], interval_seconds=0.01)

        task = asyncio.create_task(sweeper.start())
        await asyncio.sleep(0.02)
        await sweeper.start()

        await sweeper.stop()
        await asyncio.wait_for(task, timeout=1)

    @pytest.mark.asyncio
    async def test_cancel_task(self, tmp_path):
        sweeper = RetentionSweeper(roots=[tmp_path], interval_seconds=60)

        task = asyncio.create_task(sweeper.start())
        await asyncio.sleep(0.02)
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

        assert not sweeper.running
