from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from .logging_utils import redact_secret
from .paths import get_default_settings_paths
from .settings_schema import SETTINGS_VALIDATOR

__all__ = [
    "DEFAULT_SETTINGS",
    "SETTINGS_VERSION",
    "SettingsError",
    "describe_settings",
    "load_settings",
    "merge_defaults",
]

LOGGER = logging.getLogger("zfsbackup.settings")

SETTINGS_VERSION = 1


class SettingsError(RuntimeError):
    """Raised when an explicitly requested settings file cannot be read."""


DEFAULT_SETTINGS: Dict[str, Any] = {
    "version": SETTINGS_VERSION,
    "datasets": [],
    "snapshot_prefix": "zfsstream_snap",
    "paths": {
        "state_dir": "/var/lib/zfs-rclone-stream-backup",
        "lock_file": "/var/lock/zfs_rclone_stream_backup.lock",
        "log_file": "/var/log/zfs_rclone_stream_backup.log",
    },
    "zfs": {
        "command": "zfs",
    },
    "remote": {
        "command": "rclone",
        "name": "",
        "base_path": "",
        "config_path": None,
        "dedicated_base_path": True,
        "artifact_extension": ".zfs.gz",
        "global_options": [
            "--tpslimit",
            "20",
            "--tpslimit-burst",
            "10",
            "--retries",
            "20",
            "--low-level-retries",
            "15",
        ],
        "rcat_options": [
            "--stats=1m",
            "--stats-one-line",
            "--buffer-size=1024M",
            "--retries",
            "5",
            "--low-level-retries",
            "10",
        ],
        "lsjson_options": ["--fast-list"],
    },
    "compression": {
        "command": "pigz",
        "options": ["-6"],
    },
    "backup": {
        "full_interval_days": 7,
        "cooldown_seconds": 10800,
        "manifests": True,
    },
    "retention": {
        "max_sets_per_dataset": 3,
        "size_limit_enabled": True,
        "max_total_bytes": 1_000_000_000_000,
        "proactive_trigger_pct": 90,
        "proactive_margin_pct": 5,
        "max_proactive_attempts": 5,
        "max_size_prune_attempts": 20,
    },
    "notifications": {
        "enable": False,
        "on_success": True,
        "on_partial_failure": True,
        "on_critical_failure": True,
        "on_info": True,
        "detail_level": "standard",
        "mailgun": {
            "api_key": None,
            "domain": None,
            "base_url": "https://api.eu.mailgun.net/v3",
            "recipient": None,
            "sender": None,
            "subject_prefix": "[ZFS Backup]",
            "timeout_s": 30,
        },
    },
    "status_file": {
        "enable": False,
        "path": "/var/lib/zfs-backup-status/rclone_stream_backup_status.txt",
        "summary_lines": 15,
    },
}


def merge_defaults(data: Dict[str, Any]) -> Dict[str, Any]:
    def _merge(default: Dict[str, Any], payload: Dict[str, Any]) -> Dict[str, Any]:
        result: Dict[str, Any] = {}
        for key, value in default.items():
            if isinstance(value, dict):
                current = payload.get(key)
                if isinstance(current, dict):
                    result[key] = _merge(value, current)
                else:
                    result[key] = _merge(value, {})
            elif isinstance(value, list):
                current = payload.get(key)
                result[key] = list(current) if isinstance(current, list) else list(value)
            else:
                result[key] = payload.get(key, value)
        for key, value in payload.items():
            if key not in result:
                result[key] = value
        return result

    return _merge(DEFAULT_SETTINGS, data or {})


def _apply_migrations(settings: Dict[str, Any]) -> Dict[str, Any]:
    version = settings.get("version")
    try:
        version_int = int(version)
    except (TypeError, ValueError):
        version_int = 0
    if version_int < SETTINGS_VERSION:
        settings["version"] = SETTINGS_VERSION
    return settings


def _log_unknown_keys(settings: Dict[str, Any], source: Optional[Path]) -> None:
    unknown = list(SETTINGS_VALIDATOR.unknown_keys(settings))
    if not unknown:
        return
    LOGGER.warning("Unknown settings keys in %s: %s", source or "<defaults>", ", ".join(unknown))


def _read_json(path: Path) -> Optional[Dict[str, Any]]:
    with open(path, "r", encoding="utf-8") as handle:
        loaded = json.load(handle)
    return loaded if isinstance(loaded, dict) else None


def load_settings(explicit: Optional[Path] = None) -> Dict[str, Any]:
    """Load settings from the first readable candidate and merge defaults.

    An explicit path that cannot be read or parsed raises :class:`SettingsError`;
    the implicit candidates are skipped silently.
    """

    data: Dict[str, Any] = {}
    source: Optional[Path] = None
    if explicit is not None:
        try:
            loaded = _read_json(Path(explicit))
        except (OSError, json.JSONDecodeError) as exc:
            raise SettingsError(f"Cannot read settings from {explicit}: {exc}") from exc
        if loaded is None:
            raise SettingsError(f"Settings file {explicit} does not contain a JSON object")
        data, source = loaded, Path(explicit)
    else:
        for candidate in get_default_settings_paths():
            try:
                loaded = _read_json(candidate)
            except FileNotFoundError:
                continue
            except json.JSONDecodeError:
                LOGGER.warning("Ignoring malformed settings file %s", candidate)
                continue
            except OSError:
                continue
            if loaded is not None:
                data, source = loaded, candidate
                break
    merged = merge_defaults(data)
    merged = _apply_migrations(merged)
    merged["_source"] = str(source) if source else None
    _log_unknown_keys({k: v for k, v in merged.items() if k != "_source"}, source)
    return merged


def describe_settings(settings: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy of *settings* safe to log (secrets redacted)."""

    described = json.loads(json.dumps(settings, default=str))
    mailgun = described.get("notifications", {}).get("mailgun", {})
    if isinstance(mailgun, dict) and mailgun.get("api_key"):
        mailgun["api_key"] = redact_secret(str(mailgun["api_key"]))
    return described
