"""ZFS snapshot streaming backups to an rclone remote."""
from __future__ import annotations

from .config import BackupConfig
from .coordinator import RunCoordinator, RunRequest
from .errors import BackupError
from .retention import RetentionEngine, RetentionPolicy
from .types import RunAction, RunReport, RunStatus

__all__ = [
    "BackupConfig",
    "BackupError",
    "RetentionEngine",
    "RetentionPolicy",
    "RunAction",
    "RunCoordinator",
    "RunReport",
    "RunRequest",
    "RunStatus",
]
