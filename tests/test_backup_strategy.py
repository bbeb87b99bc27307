from datetime import datetime, timedelta

from backup.strategy import decide_strategy
from backup.types import BackupKind, PersistedState

NOW = datetime(2024, 1, 10, 3, 0, 0)
RUN_TS = "20240110030000"


def _decide(state, *, existing=(), interval=7, now=NOW, run_ts=RUN_TS):
    return decide_strategy(
        "tank/data",
        state,
        run_timestamp=run_ts,
        snapshot_prefix="zfsstream_snap",
        full_interval_days=interval,
        snapshot_exists=lambda name: name in existing,
        now=now,
    )


def _chain_state(full_ts="20240108030000", last_snap="zfsstream_snap_20240109030000"):
    return PersistedState(
        last_successful_snapshot_suffix=last_snap,
        current_set_id=full_ts,
        last_full_backup_timestamp=full_ts,
    )


def test_empty_state_forces_full_with_run_timestamp_as_set_id():
    decision = _decide(PersistedState())
    descriptor = decision.descriptor
    assert descriptor.kind is BackupKind.FULL
    assert descriptor.set_id == RUN_TS
    assert descriptor.base_snapshot_name is None
    assert descriptor.new_snapshot_name == "zfsstream_snap_20240110030000"
    assert descriptor.remote_filename == "full_tank_data_set-20240110030000_snap-zfsstream_snap_20240110030000.zfs.gz"


def test_intact_chain_continues_incremental_in_same_set():
    decision = _decide(_chain_state(), existing={"tank/data@zfsstream_snap_20240109030000"})
    descriptor = decision.descriptor
    assert descriptor.kind is BackupKind.INCREMENTAL
    assert descriptor.set_id == "20240108030000"
    assert descriptor.base_snapshot_full_name == "tank/data@zfsstream_snap_20240109030000"
    assert descriptor.remote_filename.startswith("inc_tank_data_set-20240108030000_from-zfsstream_snap_20240109030000_to-")
    assert decision.days_since_full == 2
    assert not decision.warnings


def test_elapsed_interval_forces_full():
    state = _chain_state(full_ts="20240103030000")
    decision = _decide(state, existing={"tank/data@zfsstream_snap_20240109030000"})
    assert decision.descriptor.kind is BackupKind.FULL
    assert decision.descriptor.set_id == RUN_TS
    assert decision.days_since_full == 7


def test_missing_base_snapshot_forces_full_with_warning():
    decision = _decide(_chain_state(), existing=set())
    assert decision.descriptor.kind is BackupKind.FULL
    assert decision.warnings


def test_missing_chain_markers_force_full_even_without_interval():
    state = PersistedState(last_successful_snapshot_suffix="zfsstream_snap_20240109030000")
    decision = _decide(state, existing={"tank/data@zfsstream_snap_20240109030000"}, interval=0)
    assert decision.descriptor.kind is BackupKind.FULL


def test_interval_zero_disables_time_based_fulls():
    state = _chain_state(full_ts="20230101000000")
    decision = _decide(state, existing={"tank/data@zfsstream_snap_20240109030000"}, interval=0)
    assert decision.descriptor.kind is BackupKind.INCREMENTAL
    assert decision.descriptor.set_id == "20230101000000"


def test_consecutive_runs_share_set_until_interval_elapses():
    existing = set()
    state = PersistedState()
    now = NOW
    kinds = []
    set_ids = []
    snapshots = []
    for _day in range(9):
        run_ts = now.strftime("%Y%m%d%H%M%S")
        decision = _decide(state, existing=existing, now=now, run_ts=run_ts)
        descriptor = decision.descriptor
        kinds.append(descriptor.kind)
        set_ids.append(descriptor.set_id)
        snapshots.append(descriptor.new_snapshot_name)
        existing.add(descriptor.new_snapshot_full_name)
        state.last_successful_snapshot_suffix = descriptor.new_snapshot_name
        if descriptor.kind is BackupKind.FULL:
            state.current_set_id = descriptor.set_id
            state.last_full_backup_timestamp = run_ts
        now = now + timedelta(days=1)

    assert kinds[0] is BackupKind.FULL
    assert all(kind is BackupKind.INCREMENTAL for kind in kinds[1:7])
    assert kinds[7] is BackupKind.FULL
    assert len(set(set_ids[:7])) == 1
    assert set_ids[7] != set_ids[0]
    assert snapshots == sorted(snapshots)
