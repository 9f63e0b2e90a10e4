import csv
import os
import stat

import pytest

from kubelite import passwd


@pytest.fixture
def sample_file(tmp_path):
    path = tmp_path / "passwd"
    path.write_text("secret,node1,node1,admin\ntoken,node2\n\n")
    return path


def test_missing_file_is_empty(tmp_path):
    assert passwd.read(str(tmp_path / "nope")).users() == []


def test_read_and_check(sample_file):
    entries = passwd.read(str(sample_file))
    assert sorted(entries.users()) == ["node1", "node2"]
    assert entries.check("node1", "secret") == (True, True)
    assert entries.check("node1", "placeholder") == (False, True)
    assert entries.check("nobody", "secret") == (False, False)
    assert entries.password_for("node2") == "token"
    assert entries.password_for("nobody") is None


def test_too_few_columns(tmp_path):
    path = tmp_path / "passwd"
    path.write_text("onlyone\n")
    with pytest.raises(ValueError, match="at least 2 columns"):
        passwd.read(str(path))


def test_write_unchanged_does_nothing(sample_file, tmp_path):
    out = tmp_path / "out"
    passwd.read(str(sample_file)).write(str(out))
    assert not out.exists()


def test_round_trip(tmp_path):
    path = tmp_path / "passwd"
    entries = passwd.read(str(path))
    password = "password"
    entries.ensure_user("node1", "node", password=password)
    entries.write(str(path))
    again = passwd.read(str(path))
    assert again.check("node1", password) == (True, True)
    assert stat.S_IMODE(os.stat(path).st_mode) == 0o600
    assert not (tmp_path / "passwd.tmp").exists()


def test_role_change_is_written(sample_file):
    entries = passwd.read(str(sample_file))
    entries.ensure_user("node1", "node", "")
    entries.write(str(sample_file))
    with open(sample_file, newline="") as handle:
        rows = {row[1]: row for row in csv.reader(handle)}
    assert rows["node1"] == ["secret", "node1", "node1", "node"]
    assert rows["node2"] == ["token", "node2", "node2", ""]


def test_empty_password_generates_one(tmp_path):
    entries = passwd.read(str(tmp_path / "passwd"))
    entries.ensure_user("a", "node", "")
    entries.ensure_user("b", "node", "")
    first = entries.password_for("a")
    second = entries.password_for("b")
    assert first and second and first != second
    assert entries.check("a", first) == (True, True)


def test_existing_user_keeps_password_when_empty(sample_file):
    entries = passwd.read(str(sample_file))
    entries.ensure_user("node2", "", "")
    assert entries.password_for("node2") == "token"


def test_token_prefix_is_stripped(tmp_path):
    entries = passwd.read(str(tmp_path / "passwd"))
    token_value = "K10abcdef::node1:" + "token"
    entries.ensure_user("node1", "node", token_value)
    assert entries.password_for("node1") == "token"


def test_token_without_k10_kept_whole(tmp_path):
    entries = passwd.read(str(tmp_path / "passwd"))
    token_value = "X10abcdef::node1:" + "token"
    entries.ensure_user("node1", "node", token_value)
    assert entries.password_for("node1") == token_value