from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from core.logging_utils import configure_logging
from core.settings import SettingsError, describe_settings, load_settings
from providers import MailgunNotifier, MotdStatusPublisher, PigzCompressor, RcloneStore, ZfsSnapshotProvider

from .config import BackupConfig
from .coordinator import RunCoordinator, RunRequest
from .types import RunAction, RunReport, RunStatus
from .verify import ALL_DATASETS

LOGGER = logging.getLogger("zfsbackup.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="zfs-rclone-backup",
        description="Stream ZFS snapshots to an rclone remote as full/incremental backup sets",
    )
    parser.add_argument("--config", type=Path, default=None, help="Path to settings.json")
    parser.add_argument("--debug", action="store_true", help="Log debug messages")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--backup", action="store_true", help="Run a backup (default)")
    mode.add_argument(
        "--verify-latest-set",
        metavar="DATASET",
        help="Verify the latest set of DATASET (or ALL)",
    )
    mode.add_argument(
        "--verify-set",
        nargs=2,
        metavar=("DATASET", "SET_ID"),
        help="Verify SET_ID of DATASET (or ALL)",
    )
    mode.add_argument(
        "--verify-all-latest-sets",
        action="store_true",
        help="Verify the latest set of every configured dataset",
    )
    return parser


def request_from_args(args: argparse.Namespace) -> RunRequest:
    if args.verify_latest_set:
        return RunRequest(action=RunAction.VERIFY, dataset_filter=args.verify_latest_set)
    if args.verify_set:
        dataset, set_id = args.verify_set
        return RunRequest(action=RunAction.VERIFY, dataset_filter=dataset, set_id=set_id)
    if args.verify_all_latest_sets:
        return RunRequest(action=RunAction.VERIFY, dataset_filter=ALL_DATASETS)
    return RunRequest(action=RunAction.BACKUP)


def build_coordinator(config: BackupConfig) -> RunCoordinator:
    """Wire the real zfs/pigz/rclone/Mailgun/status-file collaborators."""

    remote = config.remote
    store = RcloneStore(
        remote.name,
        command=remote.command,
        config_path=remote.config_path,
        global_options=remote.global_options,
        rcat_options=remote.rcat_options,
        lsjson_options=remote.lsjson_options,
    )
    notifier = MailgunNotifier(config.notifications.mailgun) if config.notifications.enable else None
    publisher = None
    if config.status_file.enable and config.status_file.path is not None:
        limit = config.retention.max_total_bytes if config.retention.size_limit_enabled else None
        publisher = MotdStatusPublisher(
            config.status_file.path,
            size_limit=limit,
            summary_lines=config.status_file.summary_lines,
        )
    return RunCoordinator(
        config,
        snapshots=ZfsSnapshotProvider(config.zfs_command),
        compressor=PigzCompressor(config.compression_command, config.compression_options),
        store=store,
        notifier=notifier,
        publisher=publisher,
        handle_signals=True,
    )


def _load(config_path: Optional[Path]) -> Dict[str, Any]:
    settings = load_settings(config_path)
    LOGGER.debug("Effective settings from %s: %s", settings.get("_source"), describe_settings(settings))
    return settings


def run(argv: Optional[List[str]] = None) -> RunReport:
    args = build_parser().parse_args(argv)
    config = BackupConfig.from_settings(_load(args.config))
    configure_logging(config.log_file, level=logging.DEBUG if args.debug else logging.INFO)
    coordinator = build_coordinator(config)
    return coordinator.execute(request_from_args(args))


def cli(argv: Optional[List[str]] = None) -> int:
    configure_logging(None)
    try:
        report = run(argv)
    except SystemExit as exc:
        return 0 if exc.code in (0, None) else 1
    except SettingsError as exc:
        LOGGER.error("%s", exc)
        return 1
    if report.status is not RunStatus.SKIPPED_LOCKED:
        print(report.summary)
    return report.status.exit_code


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(cli(sys.argv[1:]))
