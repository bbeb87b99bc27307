from datetime import datetime

import pytest

from backup.errors import TransferFailure
from backup.logs import RunLogger
from backup.strategy import decide_strategy
from backup.transfer import run_transfer
from backup.types import PersistedState

from tests.fakes import FakeCompressor, FakeRemoteStore, FakeSnapshotProvider

REMOTE = "backups/tank_data/full.zfs.gz"


def _descriptor():
    decision = decide_strategy(
        "tank/data",
        PersistedState(),
        run_timestamp="20240101000000",
        snapshot_prefix="zfsstream_snap",
        full_interval_days=7,
        snapshot_exists=lambda name: False,
        now=datetime(2024, 1, 1),
    )
    return decision.descriptor


def _run(snapshots, compressor, store):
    run_transfer(
        _descriptor(),
        REMOTE,
        snapshots=snapshots,
        compressor=compressor,
        store=store,
        logger=RunLogger(),
    )


def test_successful_pipeline_uploads_compressed_stream():
    snapshots = FakeSnapshotProvider(["tank/data"])
    store = FakeRemoteStore()
    _run(snapshots, FakeCompressor(), store)
    assert store.files[REMOTE] == b"gz:->tank/data@zfsstream_snap_20240101000000"
    assert snapshots.streams == [(None, "tank/data@zfsstream_snap_20240101000000")]


def test_send_failure_reports_stage_codes():
    snapshots = FakeSnapshotProvider(["tank/data"])
    snapshots.send_exit["tank/data"] = 1
    with pytest.raises(TransferFailure) as excinfo:
        _run(snapshots, FakeCompressor(), FakeRemoteStore())
    assert excinfo.value.stage_status == {"send": 1, "compress": 0, "upload": 0}
    assert "Codes(send|compress|upload): 1|0|0" in str(excinfo.value)


def test_compressor_failure_is_reported():
    with pytest.raises(TransferFailure) as excinfo:
        _run(FakeSnapshotProvider(["tank/data"]), FakeCompressor(exit_code=2), FakeRemoteStore())
    assert excinfo.value.stage_status["compress"] == 2


def test_upload_failure_terminates_upstream_stages():
    snapshots = FakeSnapshotProvider(["tank/data"])
    compressor = FakeCompressor()
    store = FakeRemoteStore()
    store.fail_put.add(REMOTE)

    with pytest.raises(TransferFailure) as excinfo:
        _run(snapshots, compressor, store)

    assert excinfo.value.stage_status["upload"] == 1
    assert "upload error" in str(excinfo.value)
    assert snapshots.stages[0].terminated
    assert compressor.stages[0].terminated
