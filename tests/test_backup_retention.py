import pytest

from backup.errors import DeletionFailure
from backup.inventory import RemoteSetInventory
from backup.logs import RunLogger
from backup.naming import full_artifact_name
from backup.retention import RetentionEngine, RetentionPolicy

from tests.fakes import FakeRemoteStore, seed_set


def _engine(store, *, datasets=("tank/data", "tank/vm"), on_set_deleted=None, **policy):
    logger = RunLogger()
    inventory = RemoteSetInventory(store, "backups", list(datasets), logger=logger)
    return RetentionEngine(store, inventory, RetentionPolicy(**policy), logger=logger, on_set_deleted=on_set_deleted)


def _remaining(store, safe):
    return sorted({name.split("_set-")[1][:14] for name in store.names_in(f"backups/{safe}") if "_set-" in name})


def test_count_policy_deletes_oldest_sets_per_dataset():
    store = FakeRemoteStore()
    for day in range(1, 6):
        seed_set(store, "tank_data", f"202401{day:02d}000000", [10, 1])
    seed_set(store, "tank_vm", "20231201000000", [10])
    seed_set(store, "tank_vm", "20231202000000", [10])

    outcome = _engine(store, max_sets_per_dataset=3).enforce_count()

    assert outcome.ok
    assert outcome.deleted == [("tank_data", "20240101000000"), ("tank_data", "20240102000000")]
    assert _remaining(store, "tank_data") == ["20240103000000", "20240104000000", "20240105000000"]
    assert _remaining(store, "tank_vm") == ["20231201000000", "20231202000000"]


def test_count_policy_disabled_when_limit_is_zero():
    store = FakeRemoteStore()
    for day in range(1, 4):
        seed_set(store, "tank_data", f"202401{day:02d}000000", [10])
    outcome = _engine(store, max_sets_per_dataset=0).enforce_count()
    assert outcome.deleted == []
    assert store.deleted == []


def test_delete_set_removes_only_matching_files():
    store = FakeRemoteStore()
    seed_set(store, "tank_data", "20240101000000", [10, 2, 2])
    seed_set(store, "tank_data", "20240108000000", [10])
    stray = full_artifact_name("tank_vm", "20240101000000", "zfsstream_snap_20240101000000")
    store.add(f"backups/tank_data/{stray}", 5)
    store.add("backups/tank_data/notes-set-20240101000000.txt", 1)

    result = _engine(store).delete_set("tank_data", "20240101000000")

    assert result.ok
    assert len(result.removed) == 4  # full, two incrementals, manifest
    assert "manifest_set-20240101000000_dataset-tank_data.json" in result.removed
    left = store.names_in("backups/tank_data")
    assert stray in left
    assert "notes-set-20240101000000.txt" in left
    assert _remaining(store, "tank_data") == ["20240101000000", "20240108000000"]  # stray keeps the id visible
    assert all("20240108000000" not in path for path in store.deleted)


def test_delete_set_keeps_going_after_a_file_failure():
    store = FakeRemoteStore()
    seed_set(store, "tank_data", "20240101000000", [10, 2])
    full = full_artifact_name("tank_data", "20240101000000", "zfsstream_snap_20240101000000")
    store.fail_delete.add(f"backups/tank_data/{full}")

    result = _engine(store).delete_set("tank_data", "20240101000000")

    assert not result.ok
    assert result.failed == [full]
    assert len(result.removed) == 2


def test_delete_set_raises_when_directory_cannot_be_listed():
    store = FakeRemoteStore()
    seed_set(store, "tank_data", "20240101000000", [10])
    store.fail_list.add("backups/tank_data")
    with pytest.raises(DeletionFailure):
        _engine(store).delete_set("tank_data", "20240101000000")


def test_delete_callback_reports_removed_sets():
    store = FakeRemoteStore()
    seed_set(store, "tank_data", "20240101000000", [10])
    seen = []
    engine = _engine(store, on_set_deleted=lambda safe, set_id: seen.append((safe, set_id)))
    engine.delete_set("tank_data", "20240101000000")
    engine.delete_set("tank_data", "20230101000000")
    assert seen == [("tank_data", "20240101000000")]


def _three_sets(store):
    seed_set(store, "tank_data", "20240101000000", [100])
    seed_set(store, "tank_vm", "20240102000000", [100])
    seed_set(store, "tank_data", "20240103000000", [100])


def test_size_policy_deletes_globally_oldest_until_within_limit():
    store = FakeRemoteStore()
    _three_sets(store)  # 3 * (100 + 7 byte manifest) = 321

    outcome = _engine(store, max_total_bytes=150).enforce_size()

    assert outcome.ok
    assert outcome.deleted == [("tank_data", "20240101000000"), ("tank_vm", "20240102000000")]
    assert outcome.final_total_bytes == 107
    assert _remaining(store, "tank_data") == ["20240103000000"]


def test_size_policy_respects_attempt_bound():
    store = FakeRemoteStore()
    _three_sets(store)

    outcome = _engine(store, max_total_bytes=50, max_size_prune_attempts=1).enforce_size()

    assert outcome.deleted == [("tank_data", "20240101000000")]
    assert not outcome.ok
    assert "max attempts" in outcome.failures[0]
    assert outcome.final_total_bytes == 214


def test_size_policy_stops_on_deletion_failure():
    store = FakeRemoteStore()
    _three_sets(store)
    full = full_artifact_name("tank_data", "20240101000000", "zfsstream_snap_20240101000000")
    store.fail_delete.add(f"backups/tank_data/{full}")

    outcome = _engine(store, max_total_bytes=150).enforce_size()

    assert not outcome.ok
    assert outcome.deleted == []
    assert _remaining(store, "tank_vm") == ["20240102000000"]


def test_size_policy_disabled_does_nothing():
    store = FakeRemoteStore()
    _three_sets(store)
    outcome = _engine(store, size_limit_enabled=False, max_total_bytes=1).enforce_size()
    assert outcome.ok and outcome.deleted == []
    assert outcome.final_total_bytes is None


def _proactive_store():
    store = FakeRemoteStore()
    seed_set(store, "tank_data", "20240101000000", [400], manifest=False)
    seed_set(store, "tank_vm", "20240102000000", [300], manifest=False)
    return store


def test_proactive_prune_below_threshold_is_a_no_op():
    store = _proactive_store()
    seed_set(store, "tank_data", "20240103000000", [100], manifest=False)  # 800 of 1000

    outcome = _engine(store, max_total_bytes=1000, proactive_trigger_pct=90).proactive_prune()

    assert outcome.deleted == []
    assert outcome.final_total_bytes == 800


def test_proactive_prune_above_threshold_prunes_to_margin():
    store = _proactive_store()
    seed_set(store, "tank_data", "20240103000000", [250], manifest=False)  # 950 of 1000

    policy = dict(max_total_bytes=1000, proactive_trigger_pct=90, proactive_margin_pct=5)
    assert RetentionPolicy(**policy).proactive_target == 850
    outcome = _engine(store, **policy).proactive_prune()

    assert outcome.ok
    assert outcome.deleted == [("tank_data", "20240101000000")]
    assert outcome.final_total_bytes == 550


def test_proactive_prune_disabled_with_zero_trigger():
    store = _proactive_store()
    outcome = _engine(store, max_total_bytes=10, proactive_trigger_pct=0).proactive_prune()
    assert outcome.deleted == []
    assert store.calls == []
