"""
filebackup snapshot engine - point-in-time snapshots of live files.

This package captures timestamped full copies of a source file into a
mirrored snapshot tree, restores ("rolls back") a file from its most recent
snapshot, and prunes snapshots older than a retention window.

Architecture:
    ┌─────────────┐     ┌────────────────┐     ┌─────────────────┐
    │ Host editor │────▶│ SnapshotEngine │────▶│ OperationGuard  │
    │  / CLI      │     │   (facade)     │     │ (per-path lock) │
    └─────────────┘     └───────┬────────┘     └─────────────────┘
                                │
              ┌─────────────────┼──────────────────┐
              │                 │                  │
              ▼                 ▼                  ▼
      ┌──────────────┐  ┌───────────────┐  ┌──────────────────┐
      │SafetyValidator│ │ SnapshotStore │  │ RetentionSweeper │
      └──────────────┘  └───────┬───────┘  └────────┬─────────┘
                                │                   │
                         ┌──────┴───────┐           │
                         ▼              ▼           ▼
                  ┌────────────┐ ┌────────────┐ ┌──────────────┐
                  │PathResolver│ │ Timestamp  │ │ snapshot root│
                  │            │ │   Codec    │ │  (on disk)   │
                  └────────────┘ └────────────┘ └──────────────┘

Invariants:
    - The filesystem is the only source of truth; no snapshot registry is kept
    - A snapshot is identified by a complete, well-formed file name
    - The engine never snapshots its own output
    - At most one capture/restore is in flight per source path
    - The sweeper never deletes a snapshot root itself

How to change safely:
    - The on-disk naming scheme is a compatibility contract; never change it
      without a migration for existing snapshot trees
    - New validations must raise SnapshotValidationError subclasses
"""

from ._version import __version__

__all__ = ["__version__"]
