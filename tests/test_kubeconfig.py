import logging
from unittest import mock

import pytest

from kubelite.kubeconfig import check_read_config_permissions, select_kubeconfig


def test_existing_kubeconfig_is_kept(tmp_path):
    home = tmp_path / "home.yaml"
    home.write_text("apiVersion: v1\n")
    environ = {"KUBECONFIG": "/custom/config"}
    assert select_kubeconfig(environ, str(home)) == "/custom/config"
    assert environ == {"KUBECONFIG": "/custom/config"}


def test_home_config_is_exported(tmp_path):
    home = tmp_path / "home.yaml"
    home.write_text("apiVersion: v1\n")
    environ = {}
    assert select_kubeconfig(environ, str(home)) == str(home)
    assert environ["KUBECONFIG"] == str(home)


def test_empty_kubeconfig_counts_as_unset(tmp_path):
    home = tmp_path / "home.yaml"
    home.write_text("apiVersion: v1\n")
    environ = {"KUBECONFIG": ""}
    assert select_kubeconfig(environ, str(home)) == str(home)
    assert environ["KUBECONFIG"] == str(home)


def test_missing_home_config_is_not_exported(tmp_path):
    environ = {}
    assert select_kubeconfig(environ, str(tmp_path / "missing.yaml")) is None
    assert "KUBECONFIG" not in environ


def test_missing_file_has_no_permission_problem(tmp_path):
    assert check_read_config_permissions(str(tmp_path / "missing.yaml")) is None


def test_unreadable_file_raises_permission_error(tmp_path):
    config = tmp_path / "home.yaml"
    config.write_text("apiVersion: v1\n")
    with mock.patch("os.open", side_effect=PermissionError(13, "denied")):
        with pytest.raises(PermissionError, match="--write-kubeconfig-mode"):
            check_read_config_permissions(str(config))


def test_unreadable_home_config_is_warned_about(tmp_path, caplog):
    config = tmp_path / "home.yaml"
    config.write_text("apiVersion: v1\n")
    environ = {}
    with caplog.at_level(logging.WARNING, logger="kubelite.kubeconfig"):
        with mock.patch("os.open", side_effect=PermissionError(13, "denied")):
            result = select_kubeconfig(environ, str(config))
    assert result == str(config)
    assert any("Unable to read" in record.getMessage() for record in caplog.records)