"""Error hierarchy for backup operations."""
from __future__ import annotations

from typing import Dict, Optional


class BackupError(RuntimeError):
    """Base exception for backup related failures."""


class InitializationError(BackupError):
    """Raised when a run cannot start; no dataset has been touched yet."""


class DatasetSkipped(BackupError):
    """Raised when a dataset cannot be snapshotted and is skipped for this run."""


class TransferFailure(BackupError):
    """Raised when a stage of the send/compress/upload pipeline fails.

    ``stage_status`` maps each stage name to its exit status (``None`` when the
    stage never started).
    """

    def __init__(self, message: str, *, stage_status: Optional[Dict[str, Optional[int]]] = None) -> None:
        super().__init__(message)
        self.stage_status: Dict[str, Optional[int]] = dict(stage_status or {})


class StateWriteFailure(BackupError):
    """Raised when a persisted chain marker cannot be written."""


class DeletionFailure(BackupError):
    """Raised when a backup set could not be fully removed from the remote."""


class NotificationFailure(BackupError):
    """Raised by notifiers when a message could not be delivered."""


class ManifestError(BackupError):
    """Raised when a set manifest cannot be read or written."""


class SnapshotError(BackupError):
    """Raised by snapshot providers when a snapshot operation fails."""


class RemoteStoreError(BackupError):
    """Raised by remote stores for any failed operation."""


class RemoteNotFound(RemoteStoreError):
    """Raised when the requested remote path does not exist."""


class LockUnavailable(BackupError):
    """Raised when another instance already holds the run lock."""


class RunInterrupted(Exception):
    """Raised from signal handlers to unwind a run that received SIGTERM/SIGHUP.

    Not a :class:`BackupError`: per-dataset and finalizer handlers must let it
    through to the run boundary.
    """


__all__ = [
    "BackupError",
    "DatasetSkipped",
    "DeletionFailure",
    "InitializationError",
    "LockUnavailable",
    "ManifestError",
    "NotificationFailure",
    "RemoteNotFound",
    "RemoteStoreError",
    "RunInterrupted",
    "SnapshotError",
    "StateWriteFailure",
    "TransferFailure",
]
