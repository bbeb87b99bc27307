"""Verify that remote backup sets are present and reachable."""
from __future__ import annotations

from typing import Iterable, List, Optional, Sequence

from core.paths import dataset_safe_name, remote_dataset_dir, remote_join

from .errors import RemoteStoreError
from .logs import RunLogger
from .naming import find_set_ids, set_token
from .protocols import RemoteStore
from .types import DatasetVerification, VerificationReport

ALL_DATASETS = "ALL"


class Verifier:
    """Probe every file of a set for reachable metadata.

    This is a presence check: each file must answer a size query. File
    contents are not read.
    """

    def __init__(
        self,
        store: RemoteStore,
        base_path: str,
        datasets: Sequence[str],
        *,
        logger: RunLogger,
        extension: str,
    ) -> None:
        self._store = store
        self._base_path = base_path
        self._datasets = list(datasets)
        self._logger = logger
        self._extension = extension

    def _targets(self, dataset_filter: str) -> List[str]:
        if dataset_filter.upper() == ALL_DATASETS:
            return list(self._datasets)
        return [dataset_filter]

    def latest_set_id(self, names: Iterable[str]) -> Optional[str]:
        """Return the greatest set id found in artifact names, if any."""

        found: List[str] = []
        for name in names:
            if name.endswith(self._extension):
                found.extend(find_set_ids(name))
        return max(found) if found else None

    def verify(self, dataset_filter: str = ALL_DATASETS, set_id: Optional[str] = None) -> VerificationReport:
        """Verify the given set (or the latest one) of one dataset or of all datasets."""

        report = VerificationReport()
        targets = self._targets(dataset_filter)
        if not targets:
            self._logger.error("VERIFY: no datasets configured", phase="verify")
        for dataset in targets:
            result = self.verify_dataset(dataset, set_id)
            report.results.append(result)
        return report

    def verify_dataset(self, dataset: str, set_id: Optional[str] = None) -> DatasetVerification:
        if dataset not in self._datasets:
            message = f"Dataset {dataset} is not configured"
            self._logger.error(f"VERIFY ERROR: {message}", phase="verify")
            return DatasetVerification(dataset=dataset, set_id=set_id, ok=False, errors=[message])

        safe = dataset_safe_name(dataset)
        directory = remote_dataset_dir(self._base_path, safe)
        try:
            names = [name for name, _size in self._store.list(directory)]
        except RemoteStoreError as exc:
            message = f"cannot list {directory}: {exc}"
            self._logger.error(f"VERIFY ERROR: {message}", phase="verify")
            return DatasetVerification(dataset=dataset, set_id=set_id, ok=False, errors=[message])

        target_set = set_id or self.latest_set_id(names)
        if not target_set:
            message = f"no backup sets found for {dataset}"
            self._logger.error(f"VERIFY ERROR: {message}", phase="verify")
            return DatasetVerification(dataset=dataset, set_id=None, ok=False, errors=[message])

        token = set_token(target_set)
        files = sorted(name for name in names if token in name)
        result = DatasetVerification(dataset=dataset, set_id=target_set, ok=True, files_checked=files)
        self._logger.info(f"VERIFY: {dataset} SET_ID {target_set}, {len(files)} file(s)", phase="verify")
        if not files:
            result.ok = False
            result.errors.append(f"no files found for SET_ID {target_set}")
            self._logger.error(f"VERIFY ERROR: No files for {dataset} SET_ID {target_set}", phase="verify")
            return result

        for name in files:
            path = remote_join(directory, name)
            try:
                size = self._store.total_size(path)
            except RemoteStoreError as exc:
                result.ok = False
                result.errors.append(f"{name}: {exc}")
                self._logger.error(f"VERIFY ERROR: cannot probe {path}: {exc}", phase="verify")
                continue
            self._logger.debug(f"VERIFY: {name} reachable ({size} B)", phase="verify")
        self._logger.event(
            event=f"VERIFY {'OK' if result.ok else 'FAILED'}: {dataset} SET_ID {target_set}",
            phase="verify",
            ok=result.ok,
            files=len(files),
        )
        return result


__all__ = ["ALL_DATASETS", "Verifier"]
