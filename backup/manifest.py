"""Per-set JSON manifests stored next to the artifacts on the remote."""
from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from core.paths import remote_dataset_dir, remote_join

from .errors import ManifestError, RemoteNotFound, RemoteStoreError
from .logs import RunLogger
from .naming import manifest_name
from .protocols import RemoteStore
from .types import ManifestEntry

MANIFEST_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


def _skeleton(set_id: str, dataset: str, now: datetime) -> Dict[str, Any]:
    stamp = now.strftime(MANIFEST_TIME_FORMAT)
    return {
        "set_id": set_id,
        "dataset": dataset,
        "creation_time": stamp,
        "last_updated": stamp,
        "files": [],
    }


class ManifestManager:
    """Fetch, extend and rewrite the manifest of one ``(dataset, set_id)``."""

    def __init__(
        self,
        store: RemoteStore,
        base_path: str,
        *,
        logger: RunLogger,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._store = store
        self._base_path = base_path
        self._logger = logger
        self._clock = clock or datetime.now

    def path_for(self, dataset_safe: str, set_id: str) -> str:
        return remote_join(remote_dataset_dir(self._base_path, dataset_safe), manifest_name(dataset_safe, set_id))

    def load(self, dataset: str, dataset_safe: str, set_id: str) -> Dict[str, Any]:
        """Return the stored manifest, or a fresh skeleton when none is usable."""

        path = self.path_for(dataset_safe, set_id)
        try:
            raw = self._store.get(path)
        except RemoteNotFound:
            self._logger.info(f"Manifest {path} not found, creating new.", phase="manifest", summarize=False)
            return _skeleton(set_id, dataset, self._clock())
        except RemoteStoreError as exc:
            raise ManifestError(f"cannot fetch manifest {path}: {exc}") from exc
        try:
            document = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            self._logger.warning(f"Manifest {path} is corrupt ({exc}); starting a new one", phase="manifest")
            return _skeleton(set_id, dataset, self._clock())
        if not isinstance(document, dict) or not isinstance(document.get("files"), list):
            self._logger.warning(f"Manifest {path} has an unexpected structure; starting a new one", phase="manifest")
            return _skeleton(set_id, dataset, self._clock())
        return document

    def record(self, dataset: str, dataset_safe: str, set_id: str, entry: ManifestEntry) -> Dict[str, Any]:
        """Append *entry* to the set's manifest and upload the whole document.

        An existing entry with the same filename is replaced, so a retried
        upload never shows up twice. Raises :class:`ManifestError` when the
        document cannot be fetched or written.
        """

        document = self.load(dataset, dataset_safe, set_id)
        files: List[Dict[str, Any]] = [
            item for item in document["files"] if not (isinstance(item, dict) and item.get("filename") == entry.filename)
        ]
        if len(files) != len(document["files"]):
            self._logger.warning(f"Manifest already listed {entry.filename}; replacing the entry", phase="manifest")
        files.append(entry.to_dict())
        document["files"] = files
        document["last_updated"] = self._clock().strftime(MANIFEST_TIME_FORMAT)

        path = self.path_for(dataset_safe, set_id)
        payload = json.dumps(document, indent=2).encode("utf-8")
        try:
            self._store.put_bytes(path, payload)
        except RemoteStoreError as exc:
            raise ManifestError(f"cannot upload manifest {path}: {exc}") from exc
        self._logger.info(f"Manifest updated: {path}", phase="manifest")
        return document


__all__ = ["MANIFEST_TIME_FORMAT", "ManifestManager"]
