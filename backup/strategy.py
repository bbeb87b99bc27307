"""Choose between a full and an incremental backup for one dataset."""
from __future__ import annotations

from datetime import datetime
from typing import Callable

from core.paths import dataset_safe_name

from .naming import (
    DEFAULT_EXTENSION,
    full_artifact_name,
    incremental_artifact_name,
    parse_timestamp,
    snapshot_name,
)
from .types import BackupDescriptor, BackupKind, PersistedState, StrategyDecision

SnapshotExists = Callable[[str], bool]


def days_since(timestamp: str | None, now: datetime) -> int | None:
    moment = parse_timestamp(timestamp)
    if moment is None:
        return None
    return int((now - moment).total_seconds() // 86400)


def decide_strategy(
    dataset: str,
    state: PersistedState,
    *,
    run_timestamp: str,
    snapshot_prefix: str,
    full_interval_days: int,
    snapshot_exists: SnapshotExists,
    now: datetime,
    extension: str = DEFAULT_EXTENSION,
) -> StrategyDecision:
    """Return the backup descriptor for this run.

    Rules are applied in order: an elapsed (or unknown) full-backup interval,
    missing chain markers, and a missing local base snapshot all force a FULL
    backup with ``set_id = run_timestamp``. Otherwise the backup is INCREMENTAL
    from the last successful snapshot into the current set.
    """

    safe = dataset_safe_name(dataset)
    new_snapshot = snapshot_name(snapshot_prefix, run_timestamp)
    warnings: list[str] = []
    reason = ""
    force_full = False
    elapsed: int | None = None

    if full_interval_days > 0:
        elapsed = days_since(state.last_full_backup_timestamp, now)
        if elapsed is None:
            force_full = True
            if state.last_full_backup_timestamp:
                reason = f"unparsable last full timestamp {state.last_full_backup_timestamp!r}"
            else:
                reason = "no record of a previous full backup"
        elif elapsed >= full_interval_days:
            force_full = True
            reason = f"{elapsed} day(s) since last full (interval {full_interval_days})"

    if not force_full and (not state.current_set_id or not state.last_successful_snapshot_suffix):
        force_full = True
        reason = "no chain state (current set or last snapshot missing)"

    if not force_full:
        base_full_name = f"{dataset}@{state.last_successful_snapshot_suffix}"
        if not snapshot_exists(base_full_name):
            force_full = True
            reason = f"base snapshot {state.last_successful_snapshot_suffix} not found locally"
            warnings.append(f"Base snapshot {base_full_name} missing; chain presumed broken, forcing full")

    if force_full:
        descriptor = BackupDescriptor(
            dataset=dataset,
            dataset_safe=safe,
            set_id=run_timestamp,
            kind=BackupKind.FULL,
            new_snapshot_name=new_snapshot,
            base_snapshot_name=None,
            remote_filename=full_artifact_name(safe, run_timestamp, new_snapshot, extension),
        )
        return StrategyDecision(descriptor=descriptor, reason=reason, days_since_full=elapsed, warnings=warnings)

    set_id = str(state.current_set_id)
    base = str(state.last_successful_snapshot_suffix)
    descriptor = BackupDescriptor(
        dataset=dataset,
        dataset_safe=safe,
        set_id=set_id,
        kind=BackupKind.INCREMENTAL,
        new_snapshot_name=new_snapshot,
        base_snapshot_name=base,
        remote_filename=incremental_artifact_name(safe, set_id, base, new_snapshot, extension),
    )
    return StrategyDecision(
        descriptor=descriptor,
        reason=f"chain intact, continuing set {set_id} from {base}",
        days_since_full=elapsed,
        warnings=warnings,
    )


__all__ = ["days_since", "decide_strategy"]
