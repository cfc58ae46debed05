"""
Snapshot capture and restore.

This module provides:
- PathResolver: where snapshots of a source file live
- timestamps: encode/decode of the sortable name token
- SafetyValidator: capture/restore eligibility checks
- OperationGuard: per-path mutual exclusion
- SnapshotStore: capture, lookup, restore, diagnostics
"""

from . import timestamps
from .guard import LockToken, OperationGuard
from .paths import PathResolver
from .store import Snapshot, SnapshotCandidate, SnapshotDiagnostics, SnapshotStore
from .validation import SafetyValidator

__all__ = [
    "LockToken",
    "OperationGuard",
    "PathResolver",
    "SafetyValidator",
    "Snapshot",
    "SnapshotCandidate",
    "SnapshotDiagnostics",
    "SnapshotStore",
    "timestamps",
]
