"""Drive a backup or verification run from lock acquisition to final report.

A run goes through two gates (the single-instance lock, then for backups the
cooldown marker) before touching anything. A backup run then executes, in
order: proactive pruning, per-dataset snapshot and transfer, local snapshot
cleanup, per-dataset count pruning and global size pruning. Each dataset is
processed in isolation; its failures degrade the run to ``PARTIAL_FAILURE``
without stopping the remaining datasets. The finalizer runs exactly once on
every exit path.
"""
from __future__ import annotations

import logging
import signal
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from core.paths import dataset_safe_name, ensure_state_dir, remote_dataset_dir, remote_join

from .config import BackupConfig
from .errors import (
    BackupError,
    DatasetSkipped,
    InitializationError,
    LockUnavailable,
    ManifestError,
    NotificationFailure,
    RemoteStoreError,
    RunInterrupted,
    SnapshotError,
    StateWriteFailure,
)
from .inventory import RemoteSetInventory
from .lock import RunLock
from .logs import RunLogger
from .manifest import ManifestManager
from .naming import format_timestamp
from .protocols import Compressor, Notifier, RemoteStore, SnapshotProvider, StatusPublisher
from .retention import RetentionEngine
from .state import StateStore
from .strategy import decide_strategy
from .summary import render_summary, subject_for
from .transfer import run_transfer
from .types import (
    BackupKind,
    DatasetOutcome,
    ManifestEntry,
    PersistedState,
    RetentionOutcome,
    RunAction,
    RunReport,
    RunStatus,
)
from .verify import ALL_DATASETS, Verifier

LOGGER = logging.getLogger("zfsbackup.coordinator")

Clock = Callable[[], datetime]

_CATEGORIES: Dict[RunStatus, Optional[str]] = {
    RunStatus.SUCCESS: "success",
    RunStatus.VERIFY_SUCCESS: "success",
    RunStatus.PARTIAL_FAILURE: "partial_failure",
    RunStatus.VERIFY_FAILURE: "partial_failure",
    RunStatus.SKIPPED_COOLDOWN: "info",
    RunStatus.SKIPPED_LOCKED: None,
}
_UNPUBLISHED = frozenset({RunStatus.SKIPPED_COOLDOWN, RunStatus.SKIPPED_LOCKED})


def notification_category(status: RunStatus) -> Optional[str]:
    """Map a terminal status to a notification category (``None`` sends nothing)."""

    return _CATEGORIES.get(status, "critical_failure")


@dataclass(slots=True)
class RunRequest:
    action: RunAction = RunAction.BACKUP
    dataset_filter: str = ALL_DATASETS
    set_id: Optional[str] = None


class RunCoordinator:
    def __init__(
        self,
        config: BackupConfig,
        *,
        snapshots: SnapshotProvider,
        compressor: Compressor,
        store: RemoteStore,
        notifier: Optional[Notifier] = None,
        publisher: Optional[StatusPublisher] = None,
        lock: Optional[RunLock] = None,
        clock: Optional[Clock] = None,
        handle_signals: bool = False,
    ) -> None:
        self._config = config
        self._snapshots = snapshots
        self._compressor = compressor
        self._store = store
        self._notifier = notifier
        self._publisher = publisher
        self._lock = lock or RunLock(config.lock_file)
        self._clock = clock or datetime.now
        self._handle_signals = handle_signals
        self._state = StateStore(config.state_dir, snapshot_prefix=config.snapshot_prefix)

    @property
    def state(self) -> StateStore:
        return self._state

    # ------------------------------------------------------------------
    def execute(self, request: Optional[RunRequest] = None) -> RunReport:
        """Run *request* and return the finalized report (``report.status.exit_code`` is the exit code)."""

        request = request or RunRequest()
        report = RunReport(action=request.action, started=self._clock())
        logger = RunLogger(clock=self._clock)
        previous_handlers = self._install_signal_handlers()
        try:
            try:
                self._lock.acquire()
            except LockUnavailable as exc:
                logger.info(f"Another instance is already running ({exc}). Exiting.", phase="init")
                report.status = RunStatus.SKIPPED_LOCKED
                return report
            self._initialize(logger)
            if request.action is RunAction.VERIFY:
                self._run_verify(request, report, logger)
            else:
                self._run_backup(report, logger)
        except InitializationError as exc:
            logger.error(f"INIT ERROR: {exc}", phase="init")
            report.degrade(RunStatus.INIT_FAILURE)
        except (RunInterrupted, KeyboardInterrupt) as exc:
            reason = str(exc) or "keyboard interrupt"
            logger.warning(f"INFO: Script interrupted ({reason}). Action: {request.action.value}", phase=logger.phase)
            report.degrade(RunStatus.INTERRUPTED)
        except Exception as exc:  # noqa: BLE001 - run boundary
            LOGGER.exception("Unexpected error during %s run", request.action.value)
            logger.error(f"ERROR: An unhandled error occurred: {exc!r}", phase=logger.phase)
            report.degrade(RunStatus.UNEXPECTED_ERROR)
        finally:
            self._finalize(report, logger)
            self._restore_signal_handlers(previous_handlers)
        return report

    # ------------------------------------------------------------------
    def _install_signal_handlers(self) -> Dict[int, Any]:
        if not self._handle_signals or threading.current_thread() is not threading.main_thread():
            return {}

        def _interrupt(signum: int, _frame: Any) -> None:
            raise RunInterrupted(f"received {signal.Signals(signum).name}")

        previous: Dict[int, Any] = {}
        for signum in (signal.SIGTERM, signal.SIGHUP):
            previous[signum] = signal.signal(signum, _interrupt)
        return previous

    @staticmethod
    def _restore_signal_handlers(previous: Dict[int, Any]) -> None:
        for signum, handler in previous.items():
            signal.signal(signum, handler)

    def _initialize(self, logger: RunLogger) -> None:
        logger.phase = "init"
        self._config.validate()
        try:
            ensure_state_dir(self._config.state_dir)
        except OSError as exc:
            raise InitializationError(f"cannot create state directory {self._config.state_dir}: {exc}") from exc
        logger.info(
            f"Initialized: {len(self._config.datasets)} dataset(s), remote {self._config.remote_base}",
            phase="init",
            summarize=False,
        )

    # ------------------------------------------------------------------
    def _cooldown_active(self, now: datetime, logger: RunLogger) -> bool:
        cooldown = self._config.cooldown_seconds
        if cooldown <= 0:
            return False
        last = self._state.last_successful_run()
        if last is None:
            return False
        elapsed = int((now - last).total_seconds())
        if elapsed >= cooldown:
            return False
        logger.info(
            f"Cooldown active: last successful run {elapsed}s ago, minimum interval {cooldown}s. Skipping backup.",
            phase="cooldown",
        )
        return True

    def _run_backup(self, report: RunReport, logger: RunLogger) -> None:
        cfg = self._config
        now = self._clock()
        if self._cooldown_active(now, logger):
            report.status = RunStatus.SKIPPED_COOLDOWN
            return

        run_timestamp = format_timestamp(now)
        logger.info(f"Backup run started (run timestamp {run_timestamp})", phase="init")
        inventory = RemoteSetInventory(
            self._store,
            cfg.remote.base_path,
            cfg.datasets,
            logger=logger,
            dedicated_base_path=cfg.remote.dedicated_base_path,
            extension=cfg.remote.artifact_extension,
        )
        engine = RetentionEngine(
            self._store,
            inventory,
            cfg.retention,
            logger=logger,
            on_set_deleted=lambda safe, set_id: self._forget_set(safe, set_id, report, logger),
        )
        manifests = ManifestManager(self._store, cfg.remote.base_path, logger=logger, clock=self._clock)

        logger.phase = "proactive"
        self._absorb(engine.proactive_prune(), report)

        logger.phase = "backup"
        for dataset in cfg.datasets:
            outcome = self._backup_dataset(dataset, run_timestamp, now, manifests, logger)
            report.datasets[dataset] = outcome
            if not outcome.ok:
                report.degrade(RunStatus.PARTIAL_FAILURE)

        logger.phase = "cleanup"
        self._cleanup_local_snapshots(logger)

        logger.phase = "retention"
        self._absorb(engine.enforce_count(), report)
        for dataset in cfg.datasets:
            safe = dataset_safe_name(dataset)
            listing = inventory.list_dataset(safe)
            if listing.error is None:
                outcome = report.datasets.setdefault(dataset, DatasetOutcome(dataset=dataset))
                outcome.remote_sets = len(inventory.sets_for(safe, listing))

        if cfg.retention.size_limit_enabled:
            size_outcome = engine.enforce_size()
            self._absorb(size_outcome, report)
            report.total_remote_size = size_outcome.final_total_bytes
        elif cfg.remote.dedicated_base_path:
            report.total_remote_size = inventory.total_size()
            logger.info(f"Total remote size: {report.total_remote_size} B (size limit disabled)", phase="retention")

        if report.status is RunStatus.PENDING:
            report.status = RunStatus.SUCCESS
        if report.status is RunStatus.SUCCESS:
            try:
                self._state.mark_successful_run(self._clock())
            except StateWriteFailure as exc:
                logger.error(f"ERROR: cannot record successful run for cooldown: {exc}", phase="finalize")
                report.degrade(RunStatus.PARTIAL_FAILURE)

    def _absorb(self, outcome: RetentionOutcome, report: RunReport) -> None:
        if not outcome.ok:
            report.degrade(RunStatus.PARTIAL_FAILURE)

    def _forget_set(self, dataset_safe: str, set_id: str, report: RunReport, logger: RunLogger) -> None:
        try:
            if self._state.invalidate_set(dataset_safe, set_id):
                logger.warning(
                    f"Deleted set {set_id} was the current set of {dataset_safe}; next backup will be full",
                    phase="retention",
                )
        except StateWriteFailure as exc:
            logger.error(f"ERROR: cannot reset chain state for {dataset_safe}: {exc}", phase="retention")
            report.degrade(RunStatus.PARTIAL_FAILURE)

    # ------------------------------------------------------------------
    def _backup_dataset(
        self,
        dataset: str,
        run_timestamp: str,
        now: datetime,
        manifests: ManifestManager,
        logger: RunLogger,
    ) -> DatasetOutcome:
        cfg = self._config
        safe = dataset_safe_name(dataset)
        outcome = DatasetOutcome(dataset=dataset)
        logger.info(f"Processing dataset: {dataset}", phase="backup", summarize=False)
        try:
            if not self._snapshots.dataset_exists(dataset):
                raise DatasetSkipped(f"Source dataset {dataset} not found")
            state = self._state.load(safe)
            decision = decide_strategy(
                dataset,
                state,
                run_timestamp=run_timestamp,
                snapshot_prefix=cfg.snapshot_prefix,
                full_interval_days=cfg.full_interval_days,
                snapshot_exists=self._snapshots.exists,
                now=now,
                extension=cfg.remote.artifact_extension,
            )
            descriptor = decision.descriptor
            outcome.kind = descriptor.kind
            outcome.set_id = descriptor.set_id
            outcome.snapshot = descriptor.new_snapshot_name
            outcome.remote_filename = descriptor.remote_filename
            outcome.days_since_full = decision.days_since_full
            for warning in decision.warnings:
                logger.warning(f"WARNING: {warning}", phase="backup")
            logger.info(
                f"{dataset}: {descriptor.kind.value.upper()} backup, SET_ID {descriptor.set_id} ({decision.reason})",
                phase="backup",
            )

            try:
                self._snapshots.create(dataset, descriptor.new_snapshot_name)
            except SnapshotError as exc:
                raise DatasetSkipped(f"Failed to create snapshot {descriptor.new_snapshot_full_name}: {exc}") from exc

            directory = remote_dataset_dir(cfg.remote.base_path, safe)
            try:
                self._store.mkdir(directory)
            except RemoteStoreError as exc:
                logger.warning(f"WARNING: mkdir {directory} failed ({exc}); attempting upload anyway", phase="backup")

            remote_path = remote_join(directory, descriptor.remote_filename)
            run_transfer(
                descriptor,
                remote_path,
                snapshots=self._snapshots,
                compressor=self._compressor,
                store=self._store,
                logger=logger,
            )
            logger.info(f"SUCCESS: Upload of {descriptor.remote_filename} completed.", phase="backup")

            try:
                outcome.size_bytes = int(self._store.total_size(remote_path))
            except (RemoteStoreError, ValueError) as exc:
                logger.warning(f"WARNING: cannot determine size of {remote_path}: {exc}", phase="backup")
                outcome.size_bytes = 0

            self._advance_state(safe, descriptor.new_snapshot_name, descriptor.kind, descriptor.set_id, run_timestamp)
            if descriptor.kind is BackupKind.FULL:
                outcome.days_since_full = 0
            outcome.ok = True

            if cfg.manifests:
                entry = ManifestEntry(
                    filename=descriptor.remote_filename,
                    kind=descriptor.kind,
                    size=outcome.size_bytes,
                    snapshot=descriptor.new_snapshot_name,
                    prev_snapshot=descriptor.base_snapshot_name,
                    timestamp=run_timestamp,
                )
                try:
                    manifests.record(dataset, safe, descriptor.set_id, entry)
                except ManifestError as exc:
                    outcome.ok = False
                    outcome.error = str(exc)
                    logger.error(f"ERROR: manifest update failed for {dataset}: {exc}", phase="manifest")
        except BackupError as exc:
            outcome.ok = False
            outcome.error = str(exc)
            logger.error(f"ERROR: {dataset}: {exc}", phase="backup")
        return outcome

    def _advance_state(self, safe: str, snapshot: str, kind: BackupKind, set_id: str, run_timestamp: str) -> None:
        def _apply(state: PersistedState) -> None:
            state.last_successful_snapshot_suffix = snapshot
            if kind is BackupKind.FULL:
                state.current_set_id = set_id
                state.last_full_backup_timestamp = run_timestamp

        self._state.update(safe, _apply)

    def _cleanup_local_snapshots(self, logger: RunLogger) -> None:
        prefix = f"{self._config.snapshot_prefix}_"
        for dataset in self._config.datasets:
            safe = dataset_safe_name(dataset)
            keep = self._state.load(safe).last_successful_snapshot_suffix
            if not keep:
                logger.debug(f"LocalCleanup: no confirmed snapshot for {dataset}; skipping", phase="cleanup")
                continue
            try:
                if not self._snapshots.dataset_exists(dataset):
                    continue
                names = self._snapshots.list_snapshots(dataset)
            except SnapshotError as exc:
                logger.warning(f"LocalCleanup: cannot list snapshots of {dataset}: {exc}", phase="cleanup")
                continue
            stale: List[str] = []
            for full_name in names:
                owner, _, snap = full_name.partition("@")
                if owner == dataset and snap.startswith(prefix) and snap != keep:
                    stale.append(full_name)
            for full_name in stale:
                try:
                    self._snapshots.destroy(full_name)
                except SnapshotError as exc:
                    logger.warning(f"LocalCleanup: failed to destroy {full_name}: {exc}", phase="cleanup")
                else:
                    logger.info(f"LocalCleanup: destroyed old snapshot {full_name}", phase="cleanup", summarize=False)

    # ------------------------------------------------------------------
    def _run_verify(self, request: RunRequest, report: RunReport, logger: RunLogger) -> None:
        logger.phase = "verify"
        verifier = Verifier(
            self._store,
            self._config.remote.base_path,
            self._config.datasets,
            logger=logger,
            extension=self._config.remote.artifact_extension,
        )
        report.verification = verifier.verify(request.dataset_filter, request.set_id)
        report.status = RunStatus.VERIFY_SUCCESS if report.verification.ok else RunStatus.VERIFY_FAILURE

    # ------------------------------------------------------------------
    def _finalize(self, report: RunReport, logger: RunLogger) -> None:
        logger.phase = "finalize"
        report.finished = self._clock()
        if report.status is RunStatus.PENDING:
            logger.error("CRITICAL: run ended without resolving its status", phase="finalize")
        notify = self._config.notifications
        report.summary = self._render(report, logger)

        category = notification_category(report.status)
        if category is not None and self._notifier is not None and notify.allows(category):
            try:
                self._notifier.send(subject_for(report), report.summary, category)
            except NotificationFailure as exc:
                logger.warning(f"WARNING/ERROR: notification issue: {exc}", phase="finalize")
                report.summary = self._render(report, logger)

        if report.status not in _UNPUBLISHED and self._publisher is not None:
            try:
                self._publisher.publish(report)
            except (OSError, BackupError) as exc:
                LOGGER.error("Status file update failed: %s", exc)

        self._lock.release()
        LOGGER.info("Run finished: %s (exit code %d)", report.status.value, report.status.exit_code)

    def _render(self, report: RunReport, logger: RunLogger) -> str:
        log_file = str(self._config.log_file) if self._config.log_file else None
        return render_summary(
            report,
            logger.events,
            detail_level=self._config.notifications.detail_level,
            log_file=log_file,
        )


__all__ = ["RunCoordinator", "RunRequest", "notification_category"]
