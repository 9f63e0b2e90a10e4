"""Locating the data directory and well-known configuration paths."""

import os
from pathlib import Path

PROGRAM = "k3s"
PROGRAM_UPPER = PROGRAM.upper()

DEFAULT_DATA_DIR = "/var/lib/rancher/" + PROGRAM
DEFAULT_HOME_DATA_DIR = "${HOME}/.rancher/" + PROGRAM
HOME_CONFIG = "${HOME}/.kube/" + PROGRAM + ".yaml"
GLOBAL_CONFIG = "/etc/rancher/" + PROGRAM + "/" + PROGRAM + ".yaml"

_HOME_MARKERS = ("${HOME}", "$HOME")


def _is_root() -> bool:
    getuid = getattr(os, "getuid", None)
    return getuid is not None and getuid() == 0


def _home_dir() -> str:
    home = os.environ.get("HOME")
    if home:
        return home
    return str(Path.home())


def _resolve_home(path: str) -> str:
    needs_home = path.startswith("~") or any(marker in path for marker in _HOME_MARKERS)
    if not needs_home:
        return path
    home = _home_dir()
    for marker in _HOME_MARKERS:
        path = path.replace(marker, home)
    if path.startswith("~"):
        path = home + path[1:]
    return path


def resolve(data_dir: str) -> str:
    """Return the absolute data directory, choosing a default when empty."""
    return local_home(data_dir, False)


def local_home(data_dir: str, force_local: bool) -> str:
    """Return the absolute data directory, preferring the home directory unless root."""
    if not data_dir:
        data_dir = DEFAULT_DATA_DIR if _is_root() and not force_local else DEFAULT_HOME_DATA_DIR
    try:
        resolved = _resolve_home(data_dir)
    except (RuntimeError, KeyError) as exc:
        raise RuntimeError(f"resolving {data_dir}: {exc}") from exc
    return os.path.abspath(resolved)