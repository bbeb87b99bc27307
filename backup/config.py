"""Typed view over the settings dictionary."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from core.paths import dataset_safe_name
from core.settings import DEFAULT_SETTINGS

from .errors import InitializationError
from .retention import RetentionPolicy
from .summary import DETAIL_LEVELS


def _as_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(item) for item in value]
    return str(value).split()


def _as_int(problems: List[str], data: Mapping[str, Any], section: str, key: str, default: int) -> int:
    value = data.get(key, default)
    if not isinstance(value, bool):
        try:
            return int(value)
        except (TypeError, ValueError):
            pass
    problems.append(f"{section}.{key} must be a number, got {value!r}")
    return default


@dataclass(slots=True)
class RemoteConfig:
    name: str = ""
    base_path: str = ""
    command: str = "rclone"
    config_path: Optional[str] = None
    dedicated_base_path: bool = True
    artifact_extension: str = ".zfs.gz"
    global_options: List[str] = field(default_factory=list)
    rcat_options: List[str] = field(default_factory=list)
    lsjson_options: List[str] = field(default_factory=list)


@dataclass(slots=True)
class MailgunConfig:
    api_key: Optional[str] = None
    domain: Optional[str] = None
    base_url: str = "https://api.eu.mailgun.net/v3"
    recipient: Optional[str] = None
    sender: Optional[str] = None
    subject_prefix: str = "[ZFS Backup]"
    timeout_s: float = 30.0

    @property
    def complete(self) -> bool:
        return all((self.api_key, self.domain, self.recipient, self.sender))


@dataclass(slots=True)
class NotificationConfig:
    enable: bool = False
    on_success: bool = True
    on_partial_failure: bool = True
    on_critical_failure: bool = True
    on_info: bool = True
    detail_level: str = "standard"
    mailgun: MailgunConfig = field(default_factory=MailgunConfig)

    def allows(self, category: str) -> bool:
        if not self.enable:
            return False
        return bool(getattr(self, f"on_{category}", False))


@dataclass(slots=True)
class StatusFileConfig:
    enable: bool = False
    path: Optional[Path] = None
    summary_lines: int = 15


@dataclass(slots=True)
class BackupConfig:
    datasets: List[str]
    snapshot_prefix: str
    state_dir: Path
    lock_file: Path
    log_file: Optional[Path]
    zfs_command: str
    remote: RemoteConfig
    compression_command: str
    compression_options: List[str]
    full_interval_days: int
    cooldown_seconds: int
    manifests: bool
    retention: RetentionPolicy
    notifications: NotificationConfig
    status_file: StatusFileConfig
    problems: List[str] = field(default_factory=list)

    @classmethod
    def from_settings(cls, settings: Mapping[str, Any]) -> "BackupConfig":
        """Build the typed configuration.

        Malformed values fall back to their defaults and are kept in
        ``problems``; :meth:`validate` reports them.
        """

        paths: Dict[str, Any] = dict(settings.get("paths") or {})
        remote_raw: Dict[str, Any] = dict(settings.get("remote") or {})
        compression: Dict[str, Any] = dict(settings.get("compression") or {})
        backup: Dict[str, Any] = dict(settings.get("backup") or {})
        retention: Dict[str, Any] = dict(settings.get("retention") or {})
        notify: Dict[str, Any] = dict(settings.get("notifications") or {})
        mailgun: Dict[str, Any] = dict(notify.get("mailgun") or {})
        status: Dict[str, Any] = dict(settings.get("status_file") or {})

        problems: List[str] = []
        datasets = settings.get("datasets") or []
        if not isinstance(datasets, list):
            problems.append("datasets must be a list of dataset names")
            datasets = []

        remote = RemoteConfig(
            name=str(remote_raw.get("name") or "").rstrip(":"),
            base_path=str(remote_raw.get("base_path") or "").strip("/"),
            command=str(remote_raw.get("command") or "rclone"),
            config_path=remote_raw.get("config_path") or None,
            dedicated_base_path=bool(remote_raw.get("dedicated_base_path", True)),
            artifact_extension=str(remote_raw.get("artifact_extension") or ".zfs.gz"),
            global_options=_as_list(remote_raw.get("global_options")),
            rcat_options=_as_list(remote_raw.get("rcat_options")),
            lsjson_options=_as_list(remote_raw.get("lsjson_options")),
        )
        policy = RetentionPolicy(
            max_sets_per_dataset=_as_int(problems, retention, "retention", "max_sets_per_dataset", 3),
            size_limit_enabled=bool(retention.get("size_limit_enabled", True)),
            max_total_bytes=_as_int(problems, retention, "retention", "max_total_bytes", DEFAULT_SETTINGS["retention"]["max_total_bytes"]),
            proactive_trigger_pct=_as_int(problems, retention, "retention", "proactive_trigger_pct", 90),
            proactive_margin_pct=_as_int(problems, retention, "retention", "proactive_margin_pct", 5),
            max_proactive_attempts=_as_int(problems, retention, "retention", "max_proactive_attempts", 5),
            max_size_prune_attempts=_as_int(problems, retention, "retention", "max_size_prune_attempts", 20),
        )
        notifications = NotificationConfig(
            enable=bool(notify.get("enable", False)),
            on_success=bool(notify.get("on_success", True)),
            on_partial_failure=bool(notify.get("on_partial_failure", True)),
            on_critical_failure=bool(notify.get("on_critical_failure", True)),
            on_info=bool(notify.get("on_info", True)),
            detail_level=str(notify.get("detail_level") or "standard").lower(),
            mailgun=MailgunConfig(
                api_key=mailgun.get("api_key") or None,
                domain=mailgun.get("domain") or None,
                base_url=str(mailgun.get("base_url") or "https://api.eu.mailgun.net/v3").rstrip("/"),
                recipient=mailgun.get("recipient") or None,
                sender=mailgun.get("sender") or None,
                subject_prefix=str(mailgun.get("subject_prefix") or ""),
                timeout_s=float(_as_int(problems, mailgun, "mailgun", "timeout_s", 30)),
            ),
        )
        status_path = status.get("path")
        status_file = StatusFileConfig(
            enable=bool(status.get("enable", False)),
            path=Path(status_path) if status_path else None,
            summary_lines=_as_int(problems, status, "status_file", "summary_lines", 15),
        )
        log_file = paths.get("log_file", DEFAULT_SETTINGS["paths"]["log_file"])
        return cls(
            datasets=[str(name).strip() for name in datasets if str(name).strip()],
            snapshot_prefix=str(settings.get("snapshot_prefix") or "zfsstream_snap"),
            state_dir=Path(paths.get("state_dir") or "/var/lib/zfs-rclone-stream-backup"),
            lock_file=Path(paths.get("lock_file") or "/var/lock/zfs_rclone_stream_backup.lock"),
            log_file=Path(log_file) if log_file else None,
            zfs_command=str((settings.get("zfs") or {}).get("command") or "zfs"),
            remote=remote,
            compression_command=str(compression.get("command") or "pigz"),
            compression_options=_as_list(compression.get("options")),
            full_interval_days=_as_int(problems, backup, "backup", "full_interval_days", 7),
            cooldown_seconds=_as_int(problems, backup, "backup", "cooldown_seconds", DEFAULT_SETTINGS["backup"]["cooldown_seconds"]),
            manifests=bool(backup.get("manifests", True)),
            retention=policy,
            notifications=notifications,
            status_file=status_file,
            problems=problems,
        )

    def validate(self) -> None:
        """Raise :class:`InitializationError` describing every problem found."""

        problems: List[str] = list(self.problems)
        if not self.datasets:
            problems.append("no datasets configured")
        if len(set(self.datasets)) != len(self.datasets):
            problems.append("datasets contain duplicates")
        else:
            by_key: Dict[str, List[str]] = {}
            for name in self.datasets:
                by_key.setdefault(dataset_safe_name(name), []).append(name)
            for key, names in sorted(by_key.items()):
                if len(names) > 1:
                    problems.append(f"datasets {', '.join(names)} share the storage key {key!r}")
        if not self.remote.name:
            problems.append("remote.name is empty")
        if not self.remote.base_path:
            problems.append("remote.base_path is empty")
        if not self.remote.artifact_extension.startswith("."):
            problems.append("remote.artifact_extension must start with '.'")
        if not self.snapshot_prefix or "@" in self.snapshot_prefix or "/" in self.snapshot_prefix:
            problems.append("snapshot_prefix must be non-empty and contain neither '@' nor '/'")
        if self.full_interval_days < 0:
            problems.append("backup.full_interval_days must be >= 0")
        if self.cooldown_seconds < 0:
            problems.append("backup.cooldown_seconds must be >= 0")
        policy = self.retention
        if policy.max_sets_per_dataset < 0:
            problems.append("retention.max_sets_per_dataset must be >= 0")
        if policy.size_limit_enabled:
            if policy.max_total_bytes <= 0:
                problems.append("retention.max_total_bytes must be > 0 when the size limit is enabled")
            if not 0 < policy.proactive_trigger_pct <= 100:
                problems.append("retention.proactive_trigger_pct must be in (0, 100]")
            if not 0 < policy.proactive_margin_pct < policy.proactive_trigger_pct:
                problems.append("retention.proactive_margin_pct must be > 0 and below the trigger percentage")
            if policy.max_proactive_attempts < 0 or policy.max_size_prune_attempts < 1:
                problems.append("retention attempt bounds must be positive")
        if self.notifications.detail_level not in DETAIL_LEVELS:
            problems.append(f"notifications.detail_level must be one of {', '.join(DETAIL_LEVELS)}")
        if self.notifications.enable and not self.notifications.mailgun.complete:
            problems.append("notifications enabled but mailgun api_key/domain/recipient/sender incomplete")
        if self.status_file.enable and self.status_file.path is None:
            problems.append("status_file enabled without a path")
        if problems:
            raise InitializationError("Invalid configuration: " + "; ".join(problems))

    @property
    def remote_base(self) -> str:
        """Base path including the remote name, e.g. ``gdrive:backups/zfs``."""

        return f"{self.remote.name}:{self.remote.base_path}"


__all__ = [
    "BackupConfig",
    "MailgunConfig",
    "NotificationConfig",
    "RemoteConfig",
    "StatusFileConfig",
]
