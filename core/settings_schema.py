from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, Mapping


_ALLOWED_STRUCTURE: Dict[str, Any] = {
    "version": None,
    "datasets": None,
    "snapshot_prefix": None,
    "paths": {"state_dir", "lock_file", "log_file"},
    "zfs": {"command"},
    "remote": {
        "command",
        "name",
        "base_path",
        "config_path",
        "dedicated_base_path",
        "artifact_extension",
        "global_options",
        "rcat_options",
        "lsjson_options",
    },
    "compression": {"command", "options"},
    "backup": {"full_interval_days", "cooldown_seconds", "manifests"},
    "retention": {
        "max_sets_per_dataset",
        "size_limit_enabled",
        "max_total_bytes",
        "proactive_trigger_pct",
        "proactive_margin_pct",
        "max_proactive_attempts",
        "max_size_prune_attempts",
    },
    "notifications": {
        "enable": None,
        "on_success": None,
        "on_partial_failure": None,
        "on_critical_failure": None,
        "on_info": None,
        "detail_level": None,
        "mailgun": {
            "api_key",
            "domain",
            "base_url",
            "recipient",
            "sender",
            "subject_prefix",
            "timeout_s",
        },
    },
    "status_file": {"enable", "path", "summary_lines"},
}


@dataclass(slots=True)
class SettingsValidator:
    schema: Mapping[str, Any]

    def unknown_keys(self, payload: Mapping[str, Any]) -> Iterable[str]:
        return sorted(self._iter_unknown(payload, self.schema, path=""))

    def _iter_unknown(self, payload: Mapping[str, Any], schema: Mapping[str, Any], *, path: str) -> Iterable[str]:
        for key, value in payload.items():
            if key not in schema:
                yield f"{path}{key}"
                continue
            rule = schema[key]
            if rule is None:
                continue
            if rule == "*":
                continue
            if isinstance(rule, set):
                if not isinstance(value, Mapping):
                    continue
                for sub in value.keys():
                    if sub not in rule:
                        yield f"{path}{key}.{sub}"
                continue
            if isinstance(rule, Mapping) and isinstance(value, Mapping):
                next_path = f"{path}{key}."
                yield from self._iter_unknown(value, rule, path=next_path)


SETTINGS_VALIDATOR = SettingsValidator(_ALLOWED_STRUCTURE)

__all__ = ["SETTINGS_VALIDATOR"]
