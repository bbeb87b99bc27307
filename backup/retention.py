"""Retention policy enforcement for remote backup sets.

Two policies compose: a per-dataset set-count limit and a global byte limit.
The byte limit is enforced reactively after uploads and, optionally,
proactively before uploads when usage crosses a trigger percentage. Deletion
always removes a whole set (every artifact and the manifest of one
``(dataset, set_id)`` pair).
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, List, Optional

from core.paths import remote_join

from .errors import DeletionFailure, RemoteNotFound, RemoteStoreError
from .inventory import RemoteSetInventory
from .logs import RunLogger
from .protocols import RemoteStore
from .types import RetentionOutcome

SetDeleted = Callable[[str, str], None]


@dataclass(slots=True)
class RetentionPolicy:
    max_sets_per_dataset: int = 3
    size_limit_enabled: bool = True
    max_total_bytes: int = 1_000_000_000_000
    proactive_trigger_pct: int = 90
    proactive_margin_pct: int = 5
    max_proactive_attempts: int = 5
    max_size_prune_attempts: int = 20

    @property
    def proactive_enabled(self) -> bool:
        return self.size_limit_enabled and 0 < self.proactive_trigger_pct <= 100

    @property
    def proactive_threshold(self) -> int:
        return self.max_total_bytes * self.proactive_trigger_pct // 100

    @property
    def proactive_target(self) -> int:
        pct = max(self.proactive_trigger_pct - self.proactive_margin_pct, 0)
        return self.max_total_bytes * pct // 100


@dataclass(slots=True)
class DeletionResult:
    dataset: str
    set_id: str
    removed: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


class RetentionEngine:
    def __init__(
        self,
        store: RemoteStore,
        inventory: RemoteSetInventory,
        policy: RetentionPolicy,
        *,
        logger: RunLogger,
        on_set_deleted: Optional[SetDeleted] = None,
    ) -> None:
        self._store = store
        self._inventory = inventory
        self._policy = policy
        self._logger = logger
        self._on_set_deleted = on_set_deleted

    @property
    def policy(self) -> RetentionPolicy:
        return self._policy

    # ------------------------------------------------------------------
    def delete_set(self, dataset_safe: str, set_id: str) -> DeletionResult:
        """Remove every remote file encoding ``(dataset_safe, set_id)``.

        Per-file failures are logged and the remaining files are still
        attempted; nothing already removed is restored. Raises
        :class:`DeletionFailure` when the dataset directory cannot be listed.
        """

        result = DeletionResult(dataset=dataset_safe, set_id=set_id)
        directory = self._inventory.dataset_dir(dataset_safe)
        try:
            entries = self._store.list(directory)
        except RemoteNotFound:
            self._logger.info(f"PRUNING: No files found for SET_ID {set_id} in {dataset_safe}.", phase="retention")
            return result
        except RemoteStoreError as exc:
            raise DeletionFailure(f"cannot list {directory} to delete set {set_id}: {exc}") from exc

        targets = []
        for name, _size in entries:
            decoded = self._inventory.decode(name)
            if decoded is None or decoded.dataset != dataset_safe or decoded.set_id != set_id:
                continue
            targets.append(name)
        if not targets:
            self._logger.info(f"PRUNING: No files found for SET_ID {set_id} in {dataset_safe}.", phase="retention")
            return result

        self._logger.info(f"PRUNING: Deleting SET_ID {set_id} for dataset {dataset_safe} ({len(targets)} file(s))", phase="retention")
        for name in targets:
            path = remote_join(directory, name)
            try:
                self._store.delete(path)
            except RemoteNotFound:
                result.removed.append(name)
            except RemoteStoreError as exc:
                self._logger.warning(f"PRUNING: Failed to delete {path}: {exc}", phase="retention")
                result.failed.append(name)
            else:
                result.removed.append(name)
        if result.failed:
            self._logger.warning(
                f"PRUNING WARNING: {len(result.failed)} error(s) while deleting SET_ID {set_id} files for {dataset_safe}.",
                phase="retention",
            )
        if self._on_set_deleted is not None and result.removed:
            self._on_set_deleted(dataset_safe, set_id)
        return result

    def _delete_unit(self, dataset_safe: str, set_id: str, outcome: RetentionOutcome, *, context: str) -> bool:
        try:
            result = self.delete_set(dataset_safe, set_id)
        except DeletionFailure as exc:
            outcome.failures.append(f"{context}: {exc}")
            self._logger.error(f"{context}: {exc}", phase="retention")
            return False
        if not result.ok:
            message = f"{context}: failed to fully delete set {set_id} for {dataset_safe}"
            outcome.failures.append(message)
            self._logger.error(message, phase="retention")
            return False
        outcome.deleted.append((dataset_safe, set_id))
        return True

    # ------------------------------------------------------------------
    def enforce_count(self) -> RetentionOutcome:
        """Keep only the newest ``max_sets_per_dataset`` sets of every dataset."""

        outcome = RetentionOutcome()
        limit = self._policy.max_sets_per_dataset
        if limit <= 0:
            self._logger.info("SetCountPrune: disabled.", phase="retention", summarize=False)
            return outcome
        for dataset_safe in self._inventory.dataset_keys:
            listing = self._inventory.list_dataset(dataset_safe)
            if listing.error:
                outcome.failures.append(f"SetCountPrune: cannot list {dataset_safe}: {listing.error}")
                continue
            sets = self._inventory.sets_for(dataset_safe, listing)
            overflow = len(sets) - limit
            self._logger.info(
                f"SetCountPrune: {dataset_safe} has {len(sets)} set(s), max {limit}.",
                phase="retention",
                summarize=False,
            )
            if overflow <= 0:
                continue
            self._logger.info(f"SetCountPrune: For {dataset_safe}, deleting {overflow} oldest set(s).", phase="retention")
            for remote_set in sets[:overflow]:
                self._delete_unit(dataset_safe, remote_set.set_id, outcome, context="SetCountPrune")
        return outcome

    def _prune_oldest_until(self, target: int, max_attempts: int, *, context: str) -> RetentionOutcome:
        outcome = RetentionOutcome()
        total = self._inventory.total_size()
        attempts = 0
        while total > target and attempts < max_attempts:
            sets = self._inventory.globally_sorted()
            if not sets:
                message = f"{context}: no sets left to prune but {total} B > target {target} B"
                self._logger.warning(message, phase="retention")
                outcome.failures.append(message)
                break
            oldest = sets[0]
            self._logger.info(
                f"{context}: Deleting globally oldest SET_ID {oldest.set_id} from {oldest.dataset} (size ~{oldest.size_bytes} B).",
                phase="retention",
            )
            attempts += 1
            if not self._delete_unit(oldest.dataset, oldest.set_id, outcome, context=context):
                break
            total = self._inventory.total_size()
        if total > target and attempts >= max_attempts:
            message = f"{context}: hit max attempts ({max_attempts}) but {total} B still above target {target} B"
            self._logger.warning(message, phase="retention")
            outcome.failures.append(message)
        outcome.final_total_bytes = total
        return outcome

    def enforce_size(self) -> RetentionOutcome:
        """Delete globally oldest sets until usage is within ``max_total_bytes``."""

        if not self._policy.size_limit_enabled:
            self._logger.info("GlobalSizePrune: disabled.", phase="retention", summarize=False)
            return RetentionOutcome()
        limit = self._policy.max_total_bytes
        outcome = self._prune_oldest_until(limit, self._policy.max_size_prune_attempts, context="GlobalSizePrune")
        if outcome.final_total_bytes is not None and outcome.final_total_bytes <= limit:
            self._logger.info(
                f"GlobalSizePrune: Total size ({outcome.final_total_bytes} B) within limit ({limit} B).",
                phase="retention",
            )
        return outcome

    def proactive_prune(self) -> RetentionOutcome:
        """Prune before uploads when usage already exceeds the trigger percentage."""

        if not self._policy.proactive_enabled:
            return RetentionOutcome()
        threshold = self._policy.proactive_threshold
        current = self._inventory.total_size()
        if current <= threshold:
            self._logger.info(
                f"PROACTIVE_PRUNING: Total size ({current} B) below proactive threshold ({threshold} B).",
                phase="proactive",
                summarize=False,
            )
            return RetentionOutcome(final_total_bytes=current)
        self._logger.info(
            f"PROACTIVE_PRUNING: Current size {current} B > threshold {threshold} B. Will prune.",
            phase="proactive",
        )
        return self._prune_oldest_until(
            self._policy.proactive_target,
            self._policy.max_proactive_attempts,
            context="PROACTIVE_PRUNING",
        )


__all__ = ["DeletionResult", "RetentionEngine", "RetentionPolicy"]
