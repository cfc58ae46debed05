"""
Snapshot retention: age-based pruning of snapshot trees.
"""

from .sweeper import RetentionSweeper, SweepPhase, SweepReport, SweepResult, clamp_days

__all__ = ["RetentionSweeper", "SweepPhase", "SweepReport", "SweepResult", "clamp_days"]
