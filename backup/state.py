"""Persisted chain markers and the cooldown marker.

Each dataset owns one JSON record ``<dataset_safe>.state.json`` in the state
directory; the global cooldown marker lives in ``last_successful_run.json``.
Every write goes to a temporary file that is fsynced and renamed over the
target, so a crash leaves either the old or the new record, never a torn one.
"""
from __future__ import annotations

import json
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from core.paths import get_cooldown_path, get_legacy_state_path, get_state_path

from .errors import StateWriteFailure
from .naming import is_valid_set_id, is_valid_snapshot_name
from .types import PersistedState

LOGGER = logging.getLogger("zfsbackup.state")

_STATE_KEYS = (
    "last_successful_snapshot_suffix",
    "current_set_id",
    "last_full_backup_timestamp",
)
_LEGACY_FILES = {
    "last_successful_snapshot_suffix": "last_snap_suffix",
    "current_set_id": "current_set_id",
    "last_full_backup_timestamp": "last_full_backup_timestamp",
}
_LEGACY_COOLDOWN_FILE = "last_successful_run_timestamp"


def _atomic_write_json(target: Path, payload: Dict[str, Any]) -> None:
    tmp = target.with_name(target.name + ".tmp")
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        with open(tmp, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, ensure_ascii=False, indent=2, sort_keys=True)
            handle.write("\n")
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp, target)
    except OSError as exc:
        try:
            if tmp.exists():
                tmp.unlink()
        except OSError:
            pass
        raise StateWriteFailure(f"cannot write {target}: {exc}") from exc


def _read_json(path: Path) -> Optional[Dict[str, Any]]:
    try:
        with open(path, "r", encoding="utf-8") as handle:
            data = json.load(handle)
    except FileNotFoundError:
        return None
    except (OSError, json.JSONDecodeError) as exc:
        LOGGER.warning("Unreadable state record %s (%s); treating as absent", path, exc)
        return None
    return data if isinstance(data, dict) else None


def _read_text(path: Path) -> Optional[str]:
    try:
        return path.read_text(encoding="utf-8").strip() or None
    except OSError:
        return None


class StateStore:
    """Keyed store for :class:`PersistedState` records and the cooldown marker."""

    def __init__(self, state_dir: Path, *, snapshot_prefix: str) -> None:
        self._state_dir = Path(state_dir)
        self._prefix = snapshot_prefix

    @property
    def state_dir(self) -> Path:
        return self._state_dir

    # ------------------------------------------------------------------
    def _load_raw(self, dataset_safe: str) -> Dict[str, Optional[str]]:
        data = _read_json(get_state_path(self._state_dir, dataset_safe))
        if data is None:
            data = {
                key: _read_text(get_legacy_state_path(self._state_dir, dataset_safe, legacy))
                for key, legacy in _LEGACY_FILES.items()
            }
        return {key: (str(data[key]) if data.get(key) not in (None, "") else None) for key in _STATE_KEYS}

    def load(self, dataset_safe: str) -> PersistedState:
        """Return the dataset's markers; malformed values come back as ``None``."""

        raw = self._load_raw(dataset_safe)
        state = PersistedState(**raw)
        if state.last_successful_snapshot_suffix and not is_valid_snapshot_name(
            state.last_successful_snapshot_suffix, self._prefix
        ):
            LOGGER.warning(
                "Invalid last snapshot suffix %r for %s; ignoring",
                state.last_successful_snapshot_suffix,
                dataset_safe,
            )
            state.last_successful_snapshot_suffix = None
        if state.current_set_id and not is_valid_set_id(state.current_set_id):
            LOGGER.warning("Invalid current set id %r for %s; ignoring", state.current_set_id, dataset_safe)
            state.current_set_id = None
        if state.last_full_backup_timestamp and not is_valid_set_id(state.last_full_backup_timestamp):
            LOGGER.warning(
                "Invalid last full timestamp %r for %s; ignoring",
                state.last_full_backup_timestamp,
                dataset_safe,
            )
            state.last_full_backup_timestamp = None
        return state

    def save(self, dataset_safe: str, state: PersistedState) -> None:
        _atomic_write_json(get_state_path(self._state_dir, dataset_safe), state.to_dict())

    def update(self, dataset_safe: str, mutate: Callable[[PersistedState], None]) -> PersistedState:
        """Read-modify-write one dataset record in a single atomic replace."""

        state = PersistedState(**self._load_raw(dataset_safe))
        mutate(state)
        self.save(dataset_safe, state)
        return state

    def invalidate_set(self, dataset_safe: str, set_id: str) -> bool:
        """Forget *set_id* as the dataset's current set so the next run starts a full.

        Returns True when the record referenced the set and was rewritten.
        """

        raw = self._load_raw(dataset_safe)
        if raw.get("current_set_id") != set_id:
            return False

        def _clear(state: PersistedState) -> None:
            state.current_set_id = None
            state.last_full_backup_timestamp = None

        self.update(dataset_safe, _clear)
        return True

    # ------------------------------------------------------------------
    def last_successful_run(self) -> Optional[datetime]:
        data = _read_json(get_cooldown_path(self._state_dir))
        value: Any = data.get("epoch") if data else _read_text(self._state_dir / _LEGACY_COOLDOWN_FILE)
        try:
            return datetime.fromtimestamp(int(value))
        except (TypeError, ValueError, OverflowError, OSError):
            return None

    def mark_successful_run(self, moment: datetime) -> None:
        _atomic_write_json(
            get_cooldown_path(self._state_dir),
            {"epoch": int(moment.timestamp()), "iso": moment.isoformat(timespec="seconds")},
        )


__all__ = ["StateStore"]
