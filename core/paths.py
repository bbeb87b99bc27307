from __future__ import annotations

import os
import re
from pathlib import Path
from typing import List, Optional

__all__ = [
    "CONFIG_ENV_VAR",
    "dataset_safe_name",
    "ensure_state_dir",
    "get_cooldown_path",
    "get_default_settings_paths",
    "get_legacy_state_path",
    "get_state_path",
    "remote_dataset_dir",
    "remote_join",
]

_PROJECT_ROOT = Path(__file__).resolve().parent.parent
CONFIG_ENV_VAR = "ZFS_RCLONE_BACKUP_CONFIG"
_SYSTEM_SETTINGS_PATH = Path("/etc/zfs-rclone-backup/settings.json")

_UNSAFE_PATTERN = re.compile(r"[^A-Za-z0-9_.-]+")


def _expand_path(value: str) -> Path:
    expanded = os.path.expandvars(os.path.expanduser(value))
    return Path(expanded).resolve()


def dataset_safe_name(dataset: str) -> str:
    """Return the filesystem-safe key for *dataset* (``tank/data`` -> ``tank_data``)."""

    cleaned = _UNSAFE_PATTERN.sub("_", dataset.strip().replace("/", "_"))
    return cleaned or "dataset"


def remote_join(*parts: str) -> str:
    cleaned = [part.strip("/") for part in parts if part and part.strip("/")]
    return "/".join(cleaned)


def remote_dataset_dir(base_path: str, dataset_safe: str) -> str:
    return remote_join(base_path, dataset_safe)


def get_state_path(state_dir: Path, dataset_safe: str) -> Path:
    return state_dir / f"{dataset_safe}.state.json"


def get_legacy_state_path(state_dir: Path, dataset_safe: str, key: str) -> Path:
    return state_dir / f"{dataset_safe}.{key}"


def get_cooldown_path(state_dir: Path) -> Path:
    return state_dir / "last_successful_run.json"


def ensure_state_dir(state_dir: Path) -> Path:
    state_dir.mkdir(parents=True, exist_ok=True)
    return state_dir


def get_default_settings_paths(explicit: Optional[Path] = None) -> List[Path]:
    """Return the search order for settings.json files."""

    paths: List[Path] = []
    if explicit is not None:
        paths.append(Path(explicit))
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        try:
            paths.append(_expand_path(env_path))
        except (OSError, RuntimeError):
            pass
    paths.append(_SYSTEM_SETTINGS_PATH)
    paths.append(_PROJECT_ROOT / "settings.json")
    return paths
