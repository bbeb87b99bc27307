import json
from datetime import datetime

import pytest

from backup.errors import ManifestError
from backup.logs import RunLogger
from backup.manifest import ManifestManager
from backup.types import BackupKind, ManifestEntry

from tests.fakes import FakeRemoteStore, FixedClock

SET_ID = "20240101000000"
PATH = "backups/tank_data/manifest_set-20240101000000_dataset-tank_data.json"


def _manager(store, clock):
    return ManifestManager(store, "backups", logger=RunLogger(), clock=clock)


def _entry(index, kind=BackupKind.INCREMENTAL):
    snap = f"zfsstream_snap_2024010{index}000000"
    prev = None if kind is BackupKind.FULL else f"zfsstream_snap_2024010{index - 1}000000"
    return ManifestEntry(
        filename=f"file-{index}.zfs.gz",
        kind=kind,
        size=100 * index,
        snapshot=snap,
        prev_snapshot=prev,
        timestamp=f"2024010{index}000000",
    )


def _stored(store):
    return json.loads(store.files[PATH].decode("utf-8"))


def test_each_upload_appends_one_entry_in_order():
    store = FakeRemoteStore()
    clock = FixedClock(datetime(2024, 1, 1, 0, 0, 5))
    manager = _manager(store, clock)

    manager.record("tank/data", "tank_data", SET_ID, _entry(1, BackupKind.FULL))
    for index in (2, 3):
        clock.advance(days=1)
        manager.record("tank/data", "tank_data", SET_ID, _entry(index))

    document = _stored(store)
    assert document["set_id"] == SET_ID
    assert document["dataset"] == "tank/data"
    assert [item["filename"] for item in document["files"]] == ["file-1.zfs.gz", "file-2.zfs.gz", "file-3.zfs.gz"]
    assert document["files"][0]["type"] == "full"
    assert document["files"][0]["prev_snapshot"] == ""
    assert document["files"][2]["prev_snapshot"] == "zfsstream_snap_20240102000000"
    assert document["creation_time"] == "2024-01-01 00:00:05"
    assert document["last_updated"] == "2024-01-03 00:00:05"
    assert document["last_updated"] >= document["creation_time"]


def test_repeated_filename_replaces_previous_entry():
    store = FakeRemoteStore()
    manager = _manager(store, FixedClock(datetime(2024, 1, 1)))
    manager.record("tank/data", "tank_data", SET_ID, _entry(1, BackupKind.FULL))
    retry = _entry(1, BackupKind.FULL)
    retry.size = 999
    manager.record("tank/data", "tank_data", SET_ID, retry)

    files = _stored(store)["files"]
    assert len(files) == 1
    assert files[0]["size"] == 999


def test_corrupt_manifest_is_replaced_with_fresh_document():
    store = FakeRemoteStore()
    store.add(PATH, 10, b"{not-json")
    manager = _manager(store, FixedClock(datetime(2024, 2, 1)))

    document = manager.record("tank/data", "tank_data", SET_ID, _entry(2))

    assert [item["filename"] for item in document["files"]] == ["file-2.zfs.gz"]
    assert document["creation_time"] == "2024-02-01 00:00:00"


def test_unexpected_structure_is_replaced():
    store = FakeRemoteStore()
    store.add(PATH, 10, b'{"files": "nope"}')
    document = _manager(store, FixedClock(datetime(2024, 2, 1))).load("tank/data", "tank_data", SET_ID)
    assert document["files"] == []


def test_fetch_error_raises_manifest_error():
    store = FakeRemoteStore()
    store.fail_get.add(PATH)
    with pytest.raises(ManifestError):
        _manager(store, FixedClock(datetime(2024, 2, 1))).record("tank/data", "tank_data", SET_ID, _entry(1))


def test_upload_error_raises_manifest_error():
    store = FakeRemoteStore()
    store.fail_put.add(PATH)
    with pytest.raises(ManifestError):
        _manager(store, FixedClock(datetime(2024, 2, 1))).record("tank/data", "tank_data", SET_ID, _entry(1))
    assert PATH not in store.files
