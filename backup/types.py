"""Common dataclasses shared across backup modules."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Tuple


class BackupKind(str, Enum):
    FULL = "full"
    INCREMENTAL = "incremental"


class RunAction(str, Enum):
    BACKUP = "BACKUP"
    VERIFY = "VERIFY"


class RunStatus(str, Enum):
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    VERIFY_SUCCESS = "VERIFY_SUCCESS"
    SKIPPED_COOLDOWN = "SKIPPED_COOLDOWN"
    SKIPPED_LOCKED = "SKIPPED_LOCKED"
    PARTIAL_FAILURE = "PARTIAL_FAILURE"
    VERIFY_FAILURE = "VERIFY_FAILURE"
    INTERRUPTED = "INTERRUPTED"
    INIT_FAILURE = "INIT_FAILURE"
    UNEXPECTED_ERROR = "UNEXPECTED_ERROR"

    @property
    def severity(self) -> int:
        return _SEVERITY[self]

    @property
    def exit_code(self) -> int:
        if self is RunStatus.PENDING:
            return 2
        if self in _CLEAN_EXITS:
            return 0
        return 1

    def escalate(self, other: "RunStatus") -> "RunStatus":
        """Return whichever of the two statuses is more severe."""

        return other if other.severity > self.severity else self


_SEVERITY: Dict[RunStatus, int] = {
    RunStatus.PENDING: 0,
    RunStatus.SUCCESS: 1,
    RunStatus.VERIFY_SUCCESS: 1,
    RunStatus.SKIPPED_COOLDOWN: 1,
    RunStatus.SKIPPED_LOCKED: 1,
    RunStatus.PARTIAL_FAILURE: 2,
    RunStatus.VERIFY_FAILURE: 2,
    RunStatus.INTERRUPTED: 3,
    RunStatus.INIT_FAILURE: 4,
    RunStatus.UNEXPECTED_ERROR: 5,
}

_CLEAN_EXITS = frozenset(
    {
        RunStatus.SUCCESS,
        RunStatus.VERIFY_SUCCESS,
        RunStatus.SKIPPED_COOLDOWN,
        RunStatus.SKIPPED_LOCKED,
    }
)


@dataclass(slots=True)
class PersistedState:
    """Per-dataset chain markers that outlive individual runs."""

    last_successful_snapshot_suffix: Optional[str] = None
    current_set_id: Optional[str] = None
    last_full_backup_timestamp: Optional[str] = None

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {
            "last_successful_snapshot_suffix": self.last_successful_snapshot_suffix,
            "current_set_id": self.current_set_id,
            "last_full_backup_timestamp": self.last_full_backup_timestamp,
        }


@dataclass(slots=True)
class BackupDescriptor:
    dataset: str
    dataset_safe: str
    set_id: str
    kind: BackupKind
    new_snapshot_name: str
    base_snapshot_name: Optional[str]
    remote_filename: str

    @property
    def new_snapshot_full_name(self) -> str:
        return f"{self.dataset}@{self.new_snapshot_name}"

    @property
    def base_snapshot_full_name(self) -> Optional[str]:
        if not self.base_snapshot_name:
            return None
        return f"{self.dataset}@{self.base_snapshot_name}"


@dataclass(slots=True)
class StrategyDecision:
    descriptor: BackupDescriptor
    reason: str
    days_since_full: Optional[int] = None
    warnings: List[str] = field(default_factory=list)


@dataclass(slots=True)
class RemoteEntry:
    name: str
    size: int


@dataclass(slots=True)
class RemoteSet:
    set_id: str
    dataset: str
    size_bytes: int
    files: List[str] = field(default_factory=list)


@dataclass(slots=True)
class ManifestEntry:
    filename: str
    kind: BackupKind
    size: int
    snapshot: str
    prev_snapshot: Optional[str]
    timestamp: str

    def to_dict(self) -> Dict[str, object]:
        return {
            "filename": self.filename,
            "type": self.kind.value,
            "size": int(self.size),
            "snapshot": self.snapshot,
            "prev_snapshot": self.prev_snapshot or "",
            "timestamp": self.timestamp,
        }


@dataclass(slots=True)
class RetentionOutcome:
    deleted: List[Tuple[str, str]] = field(default_factory=list)
    failures: List[str] = field(default_factory=list)
    final_total_bytes: Optional[int] = None

    @property
    def ok(self) -> bool:
        return not self.failures


@dataclass(slots=True)
class DatasetOutcome:
    dataset: str
    ok: bool = False
    kind: Optional[BackupKind] = None
    set_id: Optional[str] = None
    snapshot: Optional[str] = None
    remote_filename: Optional[str] = None
    size_bytes: int = 0
    days_since_full: Optional[int] = None
    remote_sets: Optional[int] = None
    error: Optional[str] = None

    def status_line(self) -> str:
        parts: List[str] = []
        if self.days_since_full is not None:
            parts.append(f"Days since last full: {self.days_since_full}")
        if self.snapshot:
            kind = self.kind.value if self.kind else "unknown"
            line = f"Last snap: {self.snapshot} ({kind}, SET: {self.set_id})"
            if not self.ok:
                line += " - FAILED THIS RUN"
            parts.append(line)
        elif self.error:
            parts.append(f"FAILED THIS RUN: {self.error}")
        if self.remote_sets is not None:
            parts.append(f"Remote Sets: {self.remote_sets}")
        return ", ".join(parts) if parts else "No activity"


@dataclass(slots=True)
class DatasetVerification:
    dataset: str
    set_id: Optional[str]
    ok: bool
    files_checked: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


@dataclass(slots=True)
class VerificationReport:
    results: List[DatasetVerification] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return bool(self.results) and all(result.ok for result in self.results)


@dataclass(slots=True)
class RunReport:
    action: RunAction
    started: datetime
    status: RunStatus = RunStatus.PENDING
    finished: Optional[datetime] = None
    datasets: Dict[str, DatasetOutcome] = field(default_factory=dict)
    total_remote_size: Optional[int] = None
    verification: Optional[VerificationReport] = None
    summary: str = ""

    def degrade(self, status: RunStatus) -> None:
        self.status = self.status.escalate(status)

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.finished is None:
            return None
        return (self.finished - self.started).total_seconds()


__all__ = [
    "BackupDescriptor",
    "BackupKind",
    "DatasetOutcome",
    "DatasetVerification",
    "ManifestEntry",
    "PersistedState",
    "RemoteEntry",
    "RemoteSet",
    "RetentionOutcome",
    "RunAction",
    "RunReport",
    "RunStatus",
    "StrategyDecision",
    "VerificationReport",
]
