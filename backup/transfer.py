"""Send -> compress -> upload pipeline with per-stage exit statuses."""
from __future__ import annotations

from typing import Dict, List, Optional

from .errors import RemoteStoreError, SnapshotError, TransferFailure
from .logs import RunLogger
from .protocols import Compressor, RemoteStore, SnapshotProvider, StreamStage
from .types import BackupDescriptor

STAGE_NAMES = ("send", "compress", "upload")


def _close_quietly(stage: StreamStage) -> None:
    try:
        stage.stdout.close()
    except (OSError, ValueError):
        pass


def _format_codes(status: Dict[str, Optional[int]]) -> str:
    codes = "|".join("-" if status.get(name) is None else str(status[name]) for name in STAGE_NAMES)
    return f"Codes(send|compress|upload): {codes}"


def run_transfer(
    descriptor: BackupDescriptor,
    remote_path: str,
    *,
    snapshots: SnapshotProvider,
    compressor: Compressor,
    store: RemoteStore,
    logger: RunLogger,
) -> None:
    """Stream the snapshot described by *descriptor* to *remote_path*.

    Raises :class:`TransferFailure` when any stage fails; the exception carries
    the exit status of every stage that was started.
    """

    status: Dict[str, Optional[int]] = {name: None for name in STAGE_NAMES}
    stages: List[StreamStage] = []
    upload_error: Optional[str] = None

    try:
        source = snapshots.open_stream(descriptor.base_snapshot_full_name, descriptor.new_snapshot_full_name)
    except SnapshotError as exc:
        raise TransferFailure(f"cannot start send for {descriptor.new_snapshot_full_name}: {exc}", stage_status=status) from exc
    stages.append(source)

    try:
        try:
            compressed = compressor.attach(source.stdout)
        except OSError as exc:
            raise TransferFailure(f"cannot start compressor: {exc}", stage_status=status) from exc
        stages.append(compressed)
        logger.debug(f"Pipeline started for {descriptor.new_snapshot_full_name} -> {remote_path}", phase="backup")
        try:
            store.put(remote_path, compressed.stdout)
            status["upload"] = 0
        except RemoteStoreError as exc:
            status["upload"] = 1
            upload_error = str(exc)
    except BaseException:
        for stage in stages:
            stage.terminate()
        raise
    finally:
        for stage in stages:
            _close_quietly(stage)
        if upload_error is not None:
            for stage in stages:
                stage.terminate()
        for stage in stages:
            status[stage.name] = stage.wait()

    if upload_error is not None or any(status[name] not in (0, None) for name in ("send", "compress")):
        detail = f"; upload error: {upload_error}" if upload_error else ""
        raise TransferFailure(
            f"pipeline failed for {descriptor.new_snapshot_full_name}. {_format_codes(status)}{detail}",
            stage_status=status,
        )
    if status["compress"] is None:
        raise TransferFailure(f"compression stage never started. {_format_codes(status)}", stage_status=status)


__all__ = ["STAGE_NAMES", "run_transfer"]
