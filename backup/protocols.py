"""Contracts for the collaborators a run depends on.

The backup domain never shells out or talks HTTP itself; it is handed
objects satisfying these protocols (see ``providers`` for the ZFS, pigz,
rclone, Mailgun and status-file implementations).
"""
from __future__ import annotations

from typing import BinaryIO, List, Optional, Protocol, Tuple, runtime_checkable

from .types import RunReport


@runtime_checkable
class StreamStage(Protocol):
    """One running stage of the transfer pipeline."""

    name: str

    @property
    def stdout(self) -> BinaryIO:
        """Byte stream produced by this stage."""
        raise NotImplementedError

    def wait(self) -> int:
        """Block until the stage exits and return its exit status."""
        raise NotImplementedError

    def terminate(self) -> None:
        raise NotImplementedError


class SnapshotProvider(Protocol):
    def dataset_exists(self, dataset: str) -> bool:
        raise NotImplementedError

    def create(self, dataset: str, name: str) -> None:
        """Create ``dataset@name``; raise ``SnapshotError`` on failure."""
        raise NotImplementedError

    def destroy(self, full_name: str) -> None:
        raise NotImplementedError

    def exists(self, full_name: str) -> bool:
        raise NotImplementedError

    def list_snapshots(self, dataset: str) -> List[str]:
        """Return full snapshot names (``dataset@name``) directly under *dataset*."""
        raise NotImplementedError

    def open_stream(self, base: Optional[str], target: str) -> StreamStage:
        """Start a send of *target*, incremental from *base* when given."""
        raise NotImplementedError


class Compressor(Protocol):
    def attach(self, upstream: BinaryIO) -> StreamStage:
        raise NotImplementedError


class RemoteStore(Protocol):
    """Remote object store. Missing paths raise ``RemoteNotFound``."""

    def mkdir(self, path: str) -> None:
        raise NotImplementedError

    def put(self, path: str, stream: BinaryIO) -> None:
        raise NotImplementedError

    def put_bytes(self, path: str, data: bytes) -> None:
        raise NotImplementedError

    def get(self, path: str) -> bytes:
        raise NotImplementedError

    def list(self, path: str) -> List[Tuple[str, int]]:
        raise NotImplementedError

    def delete(self, path: str) -> None:
        raise NotImplementedError

    def total_size(self, path: str) -> int:
        raise NotImplementedError


class Notifier(Protocol):
    def send(self, subject: str, body: str, category: str) -> None:
        """Deliver a message; raise ``NotificationFailure`` when it is not accepted."""
        raise NotImplementedError


class StatusPublisher(Protocol):
    def publish(self, report: RunReport) -> None:
        raise NotImplementedError


__all__ = [
    "Compressor",
    "Notifier",
    "RemoteStore",
    "SnapshotProvider",
    "StatusPublisher",
    "StreamStage",
]
