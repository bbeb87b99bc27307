from backup.naming import (
    MANIFEST_KIND,
    decode_name,
    find_set_ids,
    full_artifact_name,
    incremental_artifact_name,
    is_valid_set_id,
    is_valid_snapshot_name,
    manifest_name,
    parse_timestamp,
)
from core.paths import dataset_safe_name


def test_full_and_incremental_names_decode_back():
    full = full_artifact_name("tank_data", "20240101020304", "zfsstream_snap_20240101020304")
    assert full == "full_tank_data_set-20240101020304_snap-zfsstream_snap_20240101020304.zfs.gz"
    decoded = decode_name(full)
    assert decoded is not None
    assert decoded.kind == "full"
    assert decoded.dataset == "tank_data"
    assert decoded.set_id == "20240101020304"
    assert decoded.snapshot == "zfsstream_snap_20240101020304"
    assert decoded.is_artifact

    inc = incremental_artifact_name(
        "tank_data",
        "20240101020304",
        "zfsstream_snap_20240101020304",
        "zfsstream_snap_20240102020304",
    )
    decoded = decode_name(inc)
    assert decoded is not None
    assert decoded.kind == "incremental"
    assert decoded.base_snapshot == "zfsstream_snap_20240101020304"
    assert decoded.snapshot == "zfsstream_snap_20240102020304"
    assert decoded.set_id == "20240101020304"


def test_dataset_names_with_underscores_are_kept_whole():
    name = full_artifact_name("pool_vm_disks_a", "20240301000000", "zfsstream_snap_20240301000000")
    decoded = decode_name(name)
    assert decoded is not None
    assert decoded.dataset == "pool_vm_disks_a"


def test_manifest_names_decode_but_are_not_artifacts():
    name = manifest_name("tank_data", "20240101020304")
    assert name == "manifest_set-20240101020304_dataset-tank_data.json"
    decoded = decode_name(name)
    assert decoded is not None
    assert decoded.kind == MANIFEST_KIND
    assert decoded.dataset == "tank_data"
    assert not decoded.is_artifact


def test_nonconforming_names_are_skipped():
    assert decode_name("README.txt") is None
    assert decode_name("full_tank_set-2024_snap-x.zfs.gz") is None
    assert decode_name("full_tank_data_set-20240101020304_snap-zfsstream_snap_20240101020304.tar") is None
    other_ext = "full_tank_data_set-20240101020304_snap-zfsstream_snap_20240101020304.zst"
    assert decode_name(other_ext) is None
    assert decode_name(other_ext, extension=".zst") is not None


def test_timestamp_validation():
    assert parse_timestamp("20240229120000") is not None
    assert parse_timestamp("20230229120000") is None
    assert parse_timestamp("2024") is None
    assert parse_timestamp(None) is None
    assert is_valid_set_id("20240101000000")
    assert not is_valid_set_id("garbage")
    assert is_valid_snapshot_name("zfsstream_snap_20240101000000", "zfsstream_snap")
    assert not is_valid_snapshot_name("other_20240101000000", "zfsstream_snap")
    assert not is_valid_snapshot_name("zfsstream_snap_2024", "zfsstream_snap")


def test_find_set_ids_and_safe_names():
    assert find_set_ids("inc_a_set-20240101000000_from-x_20240101000000_to-x_20240102000000.zfs.gz") == ["20240101000000"]
    assert dataset_safe_name("tank/data/sub") == "tank_data_sub"
    assert dataset_safe_name("tank/my data") == "tank_my_data"
