import os

import pytest

from kubelite.etcd_storage import (
    SNAPSHOT_PREFIX,
    backup_dir_with_retention,
    etcd_db_dir,
    is_initialized,
    load_or_create_name,
    name_file,
    reset_file,
    snapshot_dir,
    snapshot_retention,
    wal_dir,
)


def test_paths(tmp_path):
    data = str(tmp_path)
    assert etcd_db_dir(data) == os.path.join(data, "db", "etcd")
    assert wal_dir(data) == os.path.join(data, "db", "etcd", "member", "wal")
    assert name_file(data) == os.path.join(data, "db", "etcd", "name")
    assert reset_file(data) == os.path.join(data, "db", "reset-flag")


def test_is_initialized(tmp_path):
    data = str(tmp_path)
    assert is_initialized(data) is False
    os.makedirs(wal_dir(data))
    assert is_initialized(data) is True


def test_is_initialized_file_is_not_dir(tmp_path):
    data = str(tmp_path)
    os.makedirs(os.path.dirname(wal_dir(data)))
    with open(wal_dir(data), "w") as handle:
        handle.write("x")
    assert is_initialized(data) is False


def test_load_or_create_name_persists(tmp_path):
    data = str(tmp_path)
    name = load_or_create_name(data, False)
    suffix = name.rsplit("-", 1)[1]
    assert len(suffix) == 8
    int(suffix, 16)
    with open(name_file(data)) as handle:
        assert handle.read() == name
    assert load_or_create_name(data, False) == name


def test_load_or_create_name_force(tmp_path):
    data = str(tmp_path)
    first = load_or_create_name(data, False)
    second = load_or_create_name(data, True)
    assert second != first
    assert load_or_create_name(data, False) == second


def test_load_existing_name(tmp_path):
    data = str(tmp_path)
    os.makedirs(etcd_db_dir(data))
    with open(name_file(data), "w") as handle:
        handle.write("member-a")
    assert load_or_create_name(data, False) == "member-a"


def test_snapshot_dir_default_created(tmp_path):
    result = snapshot_dir(str(tmp_path), "")
    assert result == os.path.join(str(tmp_path), "db", "snapshots")
    assert os.path.isdir(result)


def test_snapshot_dir_configured(tmp_path):
    assert snapshot_dir(str(tmp_path), "/backups") == "/backups"
    assert not os.path.exists(os.path.join(str(tmp_path), "db"))


def _make_snapshots(directory, names):
    for name in names:
        (directory / name).write_text("data")


def test_snapshot_retention_removes_oldest(tmp_path):
    names = [SNAPSHOT_PREFIX + "300", SNAPSHOT_PREFIX + "100", SNAPSHOT_PREFIX + "200"]
    _make_snapshots(tmp_path, names + ["other"])
    removed = snapshot_retention(2, str(tmp_path))
    assert removed == os.path.join(str(tmp_path), SNAPSHOT_PREFIX + "100")
    assert sorted(os.listdir(tmp_path)) == ["other", SNAPSHOT_PREFIX + "200", SNAPSHOT_PREFIX + "300"]


def test_snapshot_retention_within_limit(tmp_path):
    names = [SNAPSHOT_PREFIX + "1", SNAPSHOT_PREFIX + "2"]
    _make_snapshots(tmp_path, names)
    assert snapshot_retention(2, str(tmp_path)) is None
    assert sorted(os.listdir(tmp_path)) == names


def test_snapshot_retention_missing_dir(tmp_path):
    with pytest.raises(FileNotFoundError):
        snapshot_retention(1, str(tmp_path / "missing"))


def test_backup_missing_directory(tmp_path):
    assert backup_dir_with_retention(str(tmp_path / "etcd"), 5) is None


def test_backup_moves_directory(tmp_path):
    target = tmp_path / "etcd"
    target.mkdir()
    (target / "file").write_text("content")
    backup = backup_dir_with_retention(str(target), 5)
    assert backup.startswith(str(target) + "-backup-")
    assert not target.exists()
    with open(os.path.join(backup, "file")) as handle:
        assert handle.read() == "content"


def test_backup_prunes_old_backups(tmp_path):
    old = []
    for index in range(4):
        backup = tmp_path / f"etcd-backup-{index}"
        backup.mkdir()
        os.utime(backup, (1000 + index, 1000 + index))
        old.append(backup.name)
    target = tmp_path / "etcd"
    target.mkdir()
    new_backup = backup_dir_with_retention(str(target), 2)
    remaining = sorted(os.listdir(tmp_path))
    assert remaining == sorted([old[2], old[3], os.path.basename(new_backup)])