"""Enumerate remote backup sets and measure remote usage."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from core.paths import dataset_safe_name, remote_dataset_dir

from .errors import RemoteNotFound, RemoteStoreError
from .logs import RunLogger
from .naming import DEFAULT_EXTENSION, RemoteName, decode_name
from .protocols import RemoteStore
from .types import RemoteEntry, RemoteSet


@dataclass(slots=True)
class DatasetListing:
    dataset_safe: str
    entries: List[RemoteEntry]
    missing: bool = False
    error: Optional[str] = None


class RemoteSetInventory:
    """Group remote artifacts of the configured datasets into backup sets."""

    def __init__(
        self,
        store: RemoteStore,
        base_path: str,
        datasets: Sequence[str],
        *,
        logger: RunLogger,
        dedicated_base_path: bool = True,
        extension: str = DEFAULT_EXTENSION,
    ) -> None:
        self._store = store
        self._base_path = base_path
        self._datasets = [dataset_safe_name(name) for name in datasets]
        self._logger = logger
        self._dedicated = dedicated_base_path
        self._extension = extension
        self.last_total_size: Optional[int] = None

    @property
    def dataset_keys(self) -> List[str]:
        return list(self._datasets)

    def dataset_dir(self, dataset_safe: str) -> str:
        return remote_dataset_dir(self._base_path, dataset_safe)

    # ------------------------------------------------------------------
    def list_dataset(self, dataset_safe: str) -> DatasetListing:
        """List one dataset directory; a missing or unreadable one yields no entries."""

        path = self.dataset_dir(dataset_safe)
        try:
            raw = self._store.list(path)
        except RemoteNotFound:
            self._logger.debug(f"Remote directory {path} not found", phase="inventory")
            return DatasetListing(dataset_safe=dataset_safe, entries=[], missing=True)
        except RemoteStoreError as exc:
            self._logger.warning(f"Cannot list {path}: {exc}", phase="inventory")
            return DatasetListing(dataset_safe=dataset_safe, entries=[], error=str(exc))
        entries = [RemoteEntry(name=name, size=max(int(size), 0)) for name, size in raw]
        return DatasetListing(dataset_safe=dataset_safe, entries=entries)

    def decode(self, name: str) -> Optional[RemoteName]:
        return decode_name(name, extension=self._extension)

    def sets_for(self, dataset_safe: str, listing: Optional[DatasetListing] = None) -> List[RemoteSet]:
        """Return the dataset's sets sorted oldest first."""

        listing = listing or self.list_dataset(dataset_safe)
        grouped: Dict[str, RemoteSet] = {}
        for entry in listing.entries:
            decoded = self.decode(entry.name)
            if decoded is None or not decoded.is_artifact or decoded.dataset != dataset_safe:
                continue
            current = grouped.setdefault(
                decoded.set_id,
                RemoteSet(set_id=decoded.set_id, dataset=dataset_safe, size_bytes=0),
            )
            current.size_bytes += entry.size
            current.files.append(entry.name)
        return [grouped[key] for key in sorted(grouped)]

    def globally_sorted(self) -> List[RemoteSet]:
        """All sets of all configured datasets, ascending by set id."""

        collected: List[RemoteSet] = []
        for dataset_safe in self._datasets:
            collected.extend(self.sets_for(dataset_safe))
        collected.sort(key=lambda item: (item.set_id, item.dataset))
        self._logger.debug(f"Found {len(collected)} set(s) across {len(self._datasets)} dataset(s)", phase="inventory")
        return collected

    # ------------------------------------------------------------------
    def _summed_size(self) -> int:
        total = 0
        for dataset_safe in self._datasets:
            listing = self.list_dataset(dataset_safe)
            for entry in listing.entries:
                decoded = self.decode(entry.name)
                if decoded is not None and decoded.is_artifact:
                    total += entry.size
        return total

    def total_size(self) -> int:
        """Measure total remote usage in bytes.

        With a dedicated base path the store's aggregate query is used; when it
        fails for any reason other than "not found" the per-file sum is used.
        """

        total: Optional[int] = None
        if self._dedicated:
            try:
                total = int(self._store.total_size(self._base_path))
            except RemoteNotFound:
                total = 0
            except (RemoteStoreError, ValueError, TypeError) as exc:
                self._logger.debug(f"Aggregate size query failed ({exc}); summing files", phase="inventory")
                total = None
        if total is None:
            total = self._summed_size()
        self.last_total_size = total
        return total


__all__ = ["DatasetListing", "RemoteSetInventory"]
