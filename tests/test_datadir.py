import os

from kubelite import datadir


def test_resolve_expands_home_marker(monkeypatch, tmp_path):
    monkeypatch.setenv("HOME", str(tmp_path))
    assert datadir.resolve("${HOME}/data") == str(tmp_path / "data")


def test_resolve_expands_plain_home_variable(monkeypatch, tmp_path):
    monkeypatch.setenv("HOME", str(tmp_path))
    assert datadir.resolve("$HOME/other") == str(tmp_path / "other")


def test_resolve_expands_tilde(monkeypatch, tmp_path):
    monkeypatch.setenv("HOME", str(tmp_path))
    assert datadir.resolve("~/tilde") == str(tmp_path / "tilde")


def test_relative_path_becomes_absolute(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    result = datadir.resolve("relative")
    assert os.path.isabs(result)
    assert result == str(tmp_path / "relative")


def test_default_for_root(monkeypatch):
    monkeypatch.setattr(os, "getuid", lambda: 0, raising=False)
    assert datadir.local_home("", False) == datadir.DEFAULT_DATA_DIR


def test_force_local_uses_home_for_root(monkeypatch, tmp_path):
    monkeypatch.setattr(os, "getuid", lambda: 0, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path))
    expected = str(tmp_path / ".rancher" / datadir.PROGRAM)
    assert datadir.local_home("", True) == expected


def test_default_for_regular_user(monkeypatch, tmp_path):
    monkeypatch.setattr(os, "getuid", lambda: 1000, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path))
    assert datadir.resolve("") == str(tmp_path / ".rancher" / datadir.PROGRAM)


def test_explicit_dir_ignores_root(monkeypatch, tmp_path):
    monkeypatch.setattr(os, "getuid", lambda: 0, raising=False)
    target = tmp_path / "explicit"
    assert datadir.local_home(str(target), False) == str(target)