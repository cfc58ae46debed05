"""
Configuration management for the snapshot engine.

All configuration is loaded from environment variables (prefix FILEBACKUP_)
through pydantic-settings. A host embedding the engine can also construct
Settings directly with explicit values.

Invariants:
    - All settings have sensible defaults for local use
    - An empty backup_directory means "use the default root"
    - cleanup_days is validated to 1..365 before any sweep runs

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Keep env names stable; hosts persist them in their own settings stores
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings

from .errors import InvalidConfigError

logger = logging.getLogger(__name__)

DEFAULT_SNAPSHOT_EXTENSION = ".bak"
PARTIAL_SUFFIX = ".partial"  # in-flight capture, see SnapshotStore.capture
DEFAULT_MAX_FILE_SIZE = 100 * 1024 * 1024  # 100MB
MIN_CLEANUP_DAYS = 1
MAX_CLEANUP_DAYS = 365


class Settings(BaseSettings):
    """Snapshot engine configuration loaded from environment."""

    # Snapshot placement
    backup_directory: str = Field(default="", description="Custom snapshot root (empty = default)")
    preserve_folder_structure: bool = Field(
        default=True, description="Mirror the workspace-relative directory under the root"
    )
    workspace_roots: list[str] = Field(
        default_factory=list, description="Known workspace root directories"
    )

    # Retention
    cleanup_days: int = Field(default=30, description="Delete snapshots older than N days")
    auto_cleanup: bool = Field(default=False, description="Sweep after every capture")
    sweep_interval_seconds: int = Field(
        default=3600, description="Interval of the background sweep loop"
    )

    # Consumed by the save-event hook, not by the store
    auto_backup_on_save: bool = Field(default=False, description="Capture on every save")

    # Safety limits
    snapshot_extension: str = Field(default=DEFAULT_SNAPSHOT_EXTENSION)
    max_file_size_bytes: int = Field(default=DEFAULT_MAX_FILE_SIZE)
    stale_operation_seconds: int = Field(
        default=300, description="Cancel operations still holding a lock after N seconds"
    )

    # Observability
    log_level: str = Field(default="INFO")
    log_format: Literal["json", "text"] = Field(default="text")

    model_config = {"env_prefix": "FILEBACKUP_"}

    @classmethod
    def from_env(cls) -> Settings:
        """Load and validate configuration from environment variables.

        Raises:
            InvalidConfigError: If a value is out of range.
        """
        settings = cls()
        settings.validate_values()
        return settings

    @property
    def custom_root(self) -> Path | None:
        """Custom snapshot root as an absolute path, or None when unset."""
        raw = self.backup_directory.strip()
        if not raw:
            return None
        path = Path(raw)
        if not path.is_absolute():
            path = Path.cwd() / path
        return path

    @property
    def workspaces(self) -> list[Path]:
        """Workspace roots as absolute paths."""
        return [Path(root).absolute() for root in self.workspace_roots if root.strip()]

    def validate_values(self) -> None:
        """Validate configuration consistency.

        Raises:
            InvalidConfigError: If configuration is invalid.
        """
        if not MIN_CLEANUP_DAYS <= self.cleanup_days <= MAX_CLEANUP_DAYS:
            raise InvalidConfigError(
                f"Cleanup days must be between {MIN_CLEANUP_DAYS} and {MAX_CLEANUP_DAYS}",
                setting="cleanup_days",
            )
        if not self.snapshot_extension.startswith(".") or len(self.snapshot_extension) < 2:
            raise InvalidConfigError(
                f"Snapshot extension must start with '.': {self.snapshot_extension!r}",
                setting="snapshot_extension",
            )
        if self.max_file_size_bytes <= 0:
            raise InvalidConfigError(
                "max_file_size_bytes must be positive", setting="max_file_size_bytes"
            )
        if self.sweep_interval_seconds <= 0:
            raise InvalidConfigError(
                "sweep_interval_seconds must be positive", setting="sweep_interval_seconds"
            )

    def log_config(self) -> None:
        """Log configuration."""
        logger.info(
            "Snapshot configuration loaded",
            extra={
                "backup_directory": self.backup_directory or None,
                "preserve_folder_structure": self.preserve_folder_structure,
                "workspace_roots": self.workspace_roots,
                "cleanup_days": self.cleanup_days,
                "auto_cleanup": self.auto_cleanup,
                "auto_backup_on_save": self.auto_backup_on_save,
                "snapshot_extension": self.snapshot_extension,
                "log_level": self.log_level,
            },
        )
