"""In-memory collaborators for backup tests."""
from __future__ import annotations

import io
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Tuple

from backup.config import BackupConfig
from backup.errors import NotificationFailure, RemoteNotFound, RemoteStoreError, SnapshotError
from backup.naming import full_artifact_name, incremental_artifact_name, manifest_name
from backup.types import RunReport
from core.settings import merge_defaults

__all__ = [
    "FakeCompressor",
    "FakeRemoteStore",
    "FakeSnapshotProvider",
    "FakeStage",
    "FixedClock",
    "RecordingNotifier",
    "RecordingPublisher",
    "make_config",
    "seed_set",
]


class FixedClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


class FakeStage:
    def __init__(self, name: str, data: bytes, exit_code: int = 0) -> None:
        self.name = name
        self.stdout = io.BytesIO(data)
        self.exit_code = exit_code
        self.terminated = False

    def wait(self) -> int:
        return self.exit_code

    def terminate(self) -> None:
        self.terminated = True


class FakeSnapshotProvider:
    def __init__(self, datasets: List[str]) -> None:
        self.snapshots: Dict[str, List[str]] = {name: [] for name in datasets}
        self.fail_create: Set[str] = set()
        self.fail_destroy: Set[str] = set()
        self.send_exit: Dict[str, int] = {}
        self.streams: List[Tuple[Optional[str], str]] = []
        self.stages: List[FakeStage] = []

    def dataset_exists(self, dataset: str) -> bool:
        return dataset in self.snapshots

    def create(self, dataset: str, name: str) -> None:
        if dataset in self.fail_create:
            raise SnapshotError(f"cannot create {dataset}@{name}")
        self.snapshots[dataset].append(name)

    def destroy(self, full_name: str) -> None:
        if full_name in self.fail_destroy:
            raise SnapshotError(f"cannot destroy {full_name}")
        dataset, _, name = full_name.partition("@")
        self.snapshots[dataset].remove(name)

    def exists(self, full_name: str) -> bool:
        dataset, _, name = full_name.partition("@")
        return name in self.snapshots.get(dataset, [])

    def list_snapshots(self, dataset: str) -> List[str]:
        return [f"{dataset}@{name}" for name in self.snapshots.get(dataset, [])]

    def open_stream(self, base: Optional[str], target: str) -> FakeStage:
        self.streams.append((base, target))
        dataset = target.partition("@")[0]
        stage = FakeStage("send", f"{base or ''}->{target}".encode("utf-8"), self.send_exit.get(dataset, 0))
        self.stages.append(stage)
        return stage


class FakeCompressor:
    def __init__(self, exit_code: int = 0) -> None:
        self.exit_code = exit_code
        self.stages: List[FakeStage] = []

    def attach(self, upstream) -> FakeStage:
        stage = FakeStage("compress", b"gz:" + upstream.read(), self.exit_code)
        self.stages.append(stage)
        return stage


class FakeRemoteStore:
    """Flat path -> bytes map; directories exist implicitly or via ``mkdir``."""

    def __init__(self) -> None:
        self.files: Dict[str, bytes] = {}
        self.sizes: Dict[str, int] = {}
        self.dirs: Set[str] = set()
        self.deleted: List[str] = []
        self.fail_delete: Set[str] = set()
        self.fail_list: Set[str] = set()
        self.fail_put: Set[str] = set()
        self.fail_get: Set[str] = set()
        self.fail_probe: Set[str] = set()
        self.aggregate_error: Optional[str] = None
        self.calls: List[Tuple[str, str]] = []

    # helpers ----------------------------------------------------------
    def add(self, path: str, size: int, data: bytes = b"") -> None:
        self.files[path] = data
        self.sizes[path] = size

    def size_of(self, path: str) -> int:
        return self.sizes.get(path, len(self.files.get(path, b"")))

    def names_in(self, directory: str) -> List[str]:
        prefix = directory.rstrip("/") + "/"
        return sorted(path[len(prefix):] for path in self.files if path.startswith(prefix) and "/" not in path[len(prefix):])

    def _dir_exists(self, directory: str) -> bool:
        prefix = directory.rstrip("/") + "/"
        return directory in self.dirs or any(path.startswith(prefix) for path in self.files)

    # RemoteStore ------------------------------------------------------
    def mkdir(self, path: str) -> None:
        self.calls.append(("mkdir", path))
        self.dirs.add(path)

    def put(self, path: str, stream) -> None:
        self.calls.append(("put", path))
        data = stream.read()
        if path in self.fail_put:
            raise RemoteStoreError(f"upload of {path} failed")
        self.files[path] = data
        self.sizes.pop(path, None)

    def put_bytes(self, path: str, data: bytes) -> None:
        self.calls.append(("put_bytes", path))
        if path in self.fail_put:
            raise RemoteStoreError(f"upload of {path} failed")
        self.files[path] = bytes(data)
        self.sizes.pop(path, None)

    def get(self, path: str) -> bytes:
        self.calls.append(("get", path))
        if path in self.fail_get:
            raise RemoteStoreError(f"cannot read {path}")
        if path not in self.files:
            raise RemoteNotFound(path)
        return self.files[path]

    def list(self, path: str) -> List[Tuple[str, int]]:
        self.calls.append(("list", path))
        if path in self.fail_list:
            raise RemoteStoreError(f"cannot list {path}")
        if not self._dir_exists(path):
            raise RemoteNotFound(path)
        prefix = path.rstrip("/") + "/"
        return [(name, self.size_of(prefix + name)) for name in self.names_in(path)]

    def delete(self, path: str) -> None:
        self.calls.append(("delete", path))
        if path in self.fail_delete:
            raise RemoteStoreError(f"cannot delete {path}")
        if path not in self.files:
            raise RemoteNotFound(path)
        del self.files[path]
        self.sizes.pop(path, None)
        self.deleted.append(path)

    def total_size(self, path: str) -> int:
        self.calls.append(("total_size", path))
        if path in self.files:
            if path in self.fail_probe:
                raise RemoteStoreError(f"cannot stat {path}")
            return self.size_of(path)
        if self.aggregate_error is not None:
            raise RemoteStoreError(self.aggregate_error)
        if not self._dir_exists(path):
            raise RemoteNotFound(path)
        prefix = path.rstrip("/") + "/"
        return sum(self.size_of(name) for name in self.files if name.startswith(prefix))


class RecordingNotifier:
    def __init__(self, *, fail: bool = False) -> None:
        self.sent: List[Tuple[str, str, str]] = []
        self.fail = fail

    def send(self, subject: str, body: str, category: str) -> None:
        if self.fail:
            raise NotificationFailure("mail relay rejected the message")
        self.sent.append((subject, body, category))


class RecordingPublisher:
    def __init__(self) -> None:
        self.reports: List[RunReport] = []

    def publish(self, report: RunReport) -> None:
        self.reports.append(report)


def make_config(tmp_path: Path, datasets: Optional[List[str]] = None, **sections: Dict[str, Any]) -> BackupConfig:
    """Build a valid config rooted in *tmp_path*; keyword sections are merged over the defaults."""

    payload: Dict[str, Any] = {
        "datasets": datasets if datasets is not None else ["tank/data"],
        "paths": {
            "state_dir": str(tmp_path / "state"),
            "lock_file": str(tmp_path / "run.lock"),
            "log_file": None,
        },
        "remote": {"name": "remote", "base_path": "backups"},
    }
    for key, value in sections.items():
        if isinstance(value, dict) and isinstance(payload.get(key), dict):
            payload[key] = {**payload[key], **value}
        else:
            payload[key] = value
    return BackupConfig.from_settings(merge_defaults(payload))


def seed_set(store: FakeRemoteStore, safe: str, set_id: str, sizes: List[int], *, base: str = "backups", manifest: bool = True) -> None:
    """Create one full plus ``len(sizes) - 1`` incrementals for ``(safe, set_id)``."""

    directory = f"{base}/{safe}"
    snap = f"zfsstream_snap_{set_id}"
    store.add(f"{directory}/{full_artifact_name(safe, set_id, snap)}", sizes[0])
    for offset, size in enumerate(sizes[1:], start=1):
        nxt = f"zfsstream_snap_{int(set_id) + offset}"
        store.add(f"{directory}/{incremental_artifact_name(safe, set_id, snap, nxt)}", size)
        snap = nxt
    if manifest:
        store.add(f"{directory}/{manifest_name(safe, set_id)}", 7, b"{}")
