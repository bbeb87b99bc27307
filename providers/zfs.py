"""ZFS snapshot and send-stream provider."""
from __future__ import annotations

from typing import List, Optional

from backup.errors import SnapshotError

from .commands import CommandError, ProcessStage, Runner, Spawner, run_command, spawn_stage


class ZfsSnapshotProvider:
    def __init__(self, command: str = "zfs", *, runner: Runner = run_command, spawner: Spawner = spawn_stage) -> None:
        self._zfs = command
        self._run = runner
        self._spawn = spawner

    def dataset_exists(self, dataset: str) -> bool:
        try:
            self._run([self._zfs, "list", "-H", "-o", "name", dataset])
        except CommandError:
            return False
        return True

    def create(self, dataset: str, name: str) -> None:
        full_name = f"{dataset}@{name}"
        try:
            self._run([self._zfs, "snapshot", full_name])
        except CommandError as exc:
            raise SnapshotError(str(exc)) from exc

    def destroy(self, full_name: str) -> None:
        if "@" not in full_name:
            raise SnapshotError(f"refusing to destroy {full_name!r}: not a snapshot name")
        try:
            self._run([self._zfs, "destroy", full_name])
        except CommandError as exc:
            raise SnapshotError(str(exc)) from exc

    def exists(self, full_name: str) -> bool:
        try:
            self._run([self._zfs, "list", "-H", "-t", "snapshot", "-o", "name", full_name])
        except CommandError:
            return False
        return True

    def list_snapshots(self, dataset: str) -> List[str]:
        try:
            output = self._run([self._zfs, "list", "-H", "-t", "snapshot", "-o", "name", "-d", "1", dataset])
        except CommandError as exc:
            raise SnapshotError(str(exc)) from exc
        names: List[str] = []
        for line in output.decode("utf-8", errors="replace").splitlines():
            name = line.strip()
            # only snapshots directly on this dataset, not on children
            if "@" in name and name.split("@", 1)[0] == dataset:
                names.append(name)
        return names

    def send_argv(self, base: Optional[str], target: str) -> List[str]:
        if base:
            return [self._zfs, "send", "-I", base, target]
        return [self._zfs, "send", target]

    def open_stream(self, base: Optional[str], target: str) -> ProcessStage:
        argv = self.send_argv(base, target)
        try:
            return self._spawn("send", argv)
        except OSError as exc:
            raise SnapshotError(f"cannot start {' '.join(argv)}: {exc}") from exc


__all__ = ["ZfsSnapshotProvider"]
