"""Concrete collaborators: zfs, pigz, rclone, Mailgun and the status file."""
from __future__ import annotations

from .commands import CommandError, ProcessStage, run_command, spawn_stage
from .compress import PigzCompressor
from .mailgun import MailgunNotifier
from .motd import MotdStatusPublisher
from .rclone import RcloneStore
from .zfs import ZfsSnapshotProvider

__all__ = [
    "CommandError",
    "MailgunNotifier",
    "MotdStatusPublisher",
    "PigzCompressor",
    "ProcessStage",
    "RcloneStore",
    "ZfsSnapshotProvider",
    "run_command",
    "spawn_stage",
]
