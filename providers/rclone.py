"""Remote object store backed by the ``rclone`` command line client."""
from __future__ import annotations

import json
from typing import BinaryIO, List, Optional, Sequence, Tuple

from backup.errors import RemoteNotFound, RemoteStoreError

from .commands import CommandError, Runner, run_command

# rclone exit codes: 3 directory not found, 4 file not found
_NOT_FOUND_CODES = frozenset({3, 4})
_NOT_FOUND_MARKERS = ("directory not found", "object not found")


def _translate(exc: CommandError, target: str) -> RemoteStoreError:
    stderr = (exc.stderr or "").lower()
    if exc.returncode in _NOT_FOUND_CODES or any(marker in stderr for marker in _NOT_FOUND_MARKERS):
        return RemoteNotFound(f"{target}: not found")
    return RemoteStoreError(f"rclone failed for {target} (exit {exc.returncode}): {exc.stderr.strip()}")


class RcloneStore:
    """Paths are relative to the configured remote, e.g. ``backups/tank_data/file``."""

    def __init__(
        self,
        remote_name: str,
        *,
        command: str = "rclone",
        config_path: Optional[str] = None,
        global_options: Sequence[str] = (),
        rcat_options: Sequence[str] = (),
        lsjson_options: Sequence[str] = (),
        runner: Runner = run_command,
    ) -> None:
        self._remote = remote_name.rstrip(":")
        self._command = command
        self._config_path = config_path
        self._global = list(global_options)
        self._rcat = list(rcat_options)
        self._lsjson = list(lsjson_options)
        self._run = runner

    def target(self, path: str) -> str:
        return f"{self._remote}:{path.strip('/')}"

    def _argv(self, subcommand: str, *args: str) -> List[str]:
        argv = [self._command, subcommand]
        if self._config_path:
            argv += ["--config", str(self._config_path)]
        argv += self._global
        argv += list(args)
        return argv

    def _call(self, path: str, argv: List[str], **kwargs) -> bytes:
        try:
            return self._run(argv, **kwargs)
        except CommandError as exc:
            raise _translate(exc, self.target(path)) from exc

    # ------------------------------------------------------------------
    def mkdir(self, path: str) -> None:
        self._call(path, self._argv("mkdir", self.target(path)))

    def put(self, path: str, stream: BinaryIO) -> None:
        self._call(path, self._argv("rcat", *self._rcat, self.target(path)), stdin=stream)

    def put_bytes(self, path: str, data: bytes) -> None:
        self._call(path, self._argv("rcat", self.target(path)), input=data)

    def get(self, path: str) -> bytes:
        return self._call(path, self._argv("cat", self.target(path)))

    def list(self, path: str) -> List[Tuple[str, int]]:
        output = self._call(path, self._argv("lsjson", *self._lsjson, self.target(path)))
        try:
            entries = json.loads(output.decode("utf-8") or "[]")
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise RemoteStoreError(f"unparsable lsjson output for {self.target(path)}: {exc}") from exc
        listed: List[Tuple[str, int]] = []
        for entry in entries if isinstance(entries, list) else []:
            if not isinstance(entry, dict) or entry.get("IsDir"):
                continue
            name = entry.get("Name")
            if not isinstance(name, str):
                continue
            try:
                size = int(entry.get("Size", 0))
            except (TypeError, ValueError):
                size = 0
            listed.append((name, max(size, 0)))
        return listed

    def delete(self, path: str) -> None:
        self._call(path, self._argv("deletefile", self.target(path)))

    def total_size(self, path: str) -> int:
        output = self._call(path, self._argv("size", "--json", self.target(path)))
        try:
            payload = json.loads(output.decode("utf-8"))
            return int(payload["bytes"])
        except (UnicodeDecodeError, json.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
            raise RemoteStoreError(f"unparsable size output for {self.target(path)}: {exc}") from exc


__all__ = ["RcloneStore"]
