"""Remote filename grammar for backup artifacts and manifests.

All producers and consumers of remote names go through this module::

    full_<dataset>_set-<id>_snap-<snap><ext>
    inc_<dataset>_set-<id>_from-<base>_to-<snap><ext>
    manifest_set-<id>_dataset-<dataset>.json

``<id>`` is a 14 digit ``YYYYMMDDHHMMSS`` timestamp, so lexicographic order of
set ids is chronological order. Names that do not decode are skipped by every
caller.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from .types import BackupKind

TIMESTAMP_FORMAT = "%Y%m%d%H%M%S"
DEFAULT_EXTENSION = ".zfs.gz"
MANIFEST_KIND = "manifest"

_TIMESTAMP = r"\d{14}"
_SNAPSHOT = r"[A-Za-z0-9][A-Za-z0-9_.:-]*?_\d{14}"
_TIMESTAMP_RE = re.compile(rf"^{_TIMESTAMP}$")
_SET_TOKEN_RE = re.compile(rf"set-({_TIMESTAMP})(?!\d)")

_FULL_RE = re.compile(
    rf"^full_(?P<dataset>.+?)_set-(?P<set_id>{_TIMESTAMP})_snap-(?P<snapshot>{_SNAPSHOT})(?P<ext>\..+)$"
)
_INC_RE = re.compile(
    rf"^inc_(?P<dataset>.+?)_set-(?P<set_id>{_TIMESTAMP})"
    rf"_from-(?P<base>{_SNAPSHOT})_to-(?P<snapshot>{_SNAPSHOT})(?P<ext>\..+)$"
)
_MANIFEST_RE = re.compile(rf"^manifest_set-(?P<set_id>{_TIMESTAMP})_dataset-(?P<dataset>.+)\.json$")


@dataclass(frozen=True, slots=True)
class RemoteName:
    """Structured form of a decoded remote filename."""

    name: str
    kind: str
    dataset: str
    set_id: str
    snapshot: Optional[str] = None
    base_snapshot: Optional[str] = None
    extension: Optional[str] = None

    @property
    def is_artifact(self) -> bool:
        return self.kind in (BackupKind.FULL.value, BackupKind.INCREMENTAL.value)


def format_timestamp(moment: datetime) -> str:
    return moment.strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse a 14 digit timestamp; return ``None`` for anything malformed."""

    if not value or not _TIMESTAMP_RE.match(value):
        return None
    try:
        return datetime.strptime(value, TIMESTAMP_FORMAT)
    except ValueError:
        return None


def is_valid_set_id(value: Optional[str]) -> bool:
    return parse_timestamp(value) is not None


def snapshot_name(prefix: str, timestamp: str) -> str:
    return f"{prefix}_{timestamp}"


def is_valid_snapshot_name(value: Optional[str], prefix: str) -> bool:
    if not value:
        return False
    match = re.fullmatch(rf"{re.escape(prefix)}_({_TIMESTAMP})", value)
    return bool(match) and parse_timestamp(match.group(1)) is not None


def full_artifact_name(dataset_safe: str, set_id: str, snapshot: str, extension: str = DEFAULT_EXTENSION) -> str:
    return f"full_{dataset_safe}_set-{set_id}_snap-{snapshot}{extension}"


def incremental_artifact_name(
    dataset_safe: str,
    set_id: str,
    base_snapshot: str,
    snapshot: str,
    extension: str = DEFAULT_EXTENSION,
) -> str:
    return f"inc_{dataset_safe}_set-{set_id}_from-{base_snapshot}_to-{snapshot}{extension}"


def manifest_name(dataset_safe: str, set_id: str) -> str:
    return f"manifest_set-{set_id}_dataset-{dataset_safe}.json"


def decode_name(name: str, *, extension: Optional[str] = DEFAULT_EXTENSION) -> Optional[RemoteName]:
    """Decode *name* into a :class:`RemoteName` or return ``None``.

    Artifacts must carry *extension* unless it is ``None``.
    """

    match = _FULL_RE.match(name)
    if match:
        if extension is not None and match.group("ext") != extension:
            return None
        return RemoteName(
            name=name,
            kind=BackupKind.FULL.value,
            dataset=match.group("dataset"),
            set_id=match.group("set_id"),
            snapshot=match.group("snapshot"),
            extension=match.group("ext"),
        )
    match = _INC_RE.match(name)
    if match:
        if extension is not None and match.group("ext") != extension:
            return None
        return RemoteName(
            name=name,
            kind=BackupKind.INCREMENTAL.value,
            dataset=match.group("dataset"),
            set_id=match.group("set_id"),
            snapshot=match.group("snapshot"),
            base_snapshot=match.group("base"),
            extension=match.group("ext"),
        )
    match = _MANIFEST_RE.match(name)
    if match:
        return RemoteName(
            name=name,
            kind=MANIFEST_KIND,
            dataset=match.group("dataset"),
            set_id=match.group("set_id"),
            extension=".json",
        )
    return None


def set_token(set_id: str) -> str:
    return f"set-{set_id}"


def find_set_ids(name: str) -> list[str]:
    """Return every ``set-<id>`` token embedded in *name*."""

    return _SET_TOKEN_RE.findall(name)


__all__ = [
    "DEFAULT_EXTENSION",
    "MANIFEST_KIND",
    "RemoteName",
    "TIMESTAMP_FORMAT",
    "decode_name",
    "find_set_ids",
    "format_timestamp",
    "full_artifact_name",
    "incremental_artifact_name",
    "is_valid_set_id",
    "is_valid_snapshot_name",
    "manifest_name",
    "parse_timestamp",
    "set_token",
    "snapshot_name",
]
