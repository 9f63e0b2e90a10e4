"""On-disk layout of the embedded etcd: names, snapshots and backups."""

import logging
import os
import shutil
import socket
import stat
import time
import uuid
from collections.abc import Iterator

log = logging.getLogger(__name__)

SNAPSHOT_PREFIX = "etcd-snapshot-"
MAX_BACKUP_RETENTION = 5


def etcd_db_dir(data_dir: str) -> str:
    """Return data_dir/db/etcd."""
    return os.path.join(data_dir, "db", "etcd")


def wal_dir(data_dir: str) -> str:
    """Return the etcd write-ahead log directory."""
    return os.path.join(etcd_db_dir(data_dir), "member", "wal")


def name_file(data_dir: str) -> str:
    """Return the file holding this member's name."""
    return os.path.join(etcd_db_dir(data_dir), "name")


def reset_file(data_dir: str) -> str:
    """Return the flag file written after a cluster reset."""
    return os.path.join(data_dir, "db", "reset-flag")


def is_initialized(data_dir: str) -> bool:
    """Return whether etcd has run here before, judged by its WAL directory."""
    directory = wal_dir(data_dir)
    try:
        info = os.stat(directory)
    except FileNotFoundError:
        return False
    except OSError as exc:
        raise OSError(f"invalid state for wal directory {directory}: {exc}") from exc
    return stat.S_ISDIR(info.st_mode)


def _write_private(path: str, text: str) -> None:
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as handle:
        handle.write(text)


def load_or_create_name(data_dir: str, force: bool = False) -> str:
    """Return the persisted member name, generating and saving a new one if needed."""
    path = name_file(data_dir)
    if not force:
        try:
            with open(path, encoding="utf-8") as handle:
                return handle.read()
        except FileNotFoundError:
            pass
    name = socket.gethostname().split(".", 1)[0] + "-" + str(uuid.uuid4())[:8]
    os.makedirs(os.path.dirname(path), 0o700, exist_ok=True)
    _write_private(path, name)
    return name


def snapshot_dir(data_dir: str, configured: str = "") -> str:
    """Return the snapshot directory, creating the default one when needed."""
    if not configured:
        default = os.path.join(data_dir, "db", "snapshots")
        try:
            info = os.stat(default)
        except FileNotFoundError:
            os.makedirs(default, 0o700, exist_ok=True)
            return default
        if stat.S_ISDIR(info.st_mode):
            return default
    return configured


def _walk_names(path: str, name: str) -> Iterator[str]:
    """Yield the names of path and everything below it; errors propagate."""
    info = os.lstat(path)
    yield name
    if stat.S_ISDIR(info.st_mode):
        for entry in sorted(os.listdir(path)):
            yield from _walk_names(os.path.join(path, entry), entry)


def snapshot_retention(retention: int, directory: str) -> str | None:
    """Remove the oldest snapshot when more than retention exist; return its path."""
    root_name = os.path.basename(os.path.normpath(directory))
    names = [name for name in _walk_names(directory, root_name)
             if name.startswith(SNAPSHOT_PREFIX)]
    if len(names) <= retention:
        return None
    oldest = os.path.join(directory, min(names))
    os.remove(oldest)
    return oldest


def backup_dir_with_retention(directory: str,
                              max_backup_retention: int = MAX_BACKUP_RETENTION) -> str | None:
    """Move directory aside to a timestamped backup, pruning old backups.

    Returns the backup path, or None when the directory does not exist.
    """
    backup = f"{directory}-backup-{int(time.time())}"
    try:
        os.stat(directory)
    except OSError:
        return None
    parent = os.path.dirname(directory)
    prefix = os.path.basename(directory) + "-backup"
    with os.scandir(parent or ".") as entries:
        listing = [(entry.stat(follow_symlinks=False).st_mtime, entry) for entry in entries]
    listing.sort(key=lambda item: item[0], reverse=True)
    count = 0
    for _mtime, entry in listing:
        if entry.name.startswith(prefix) and entry.is_dir(follow_symlinks=False):
            count += 1
            if count > max_backup_retention:
                shutil.rmtree(os.path.join(parent, entry.name))
    os.rename(directory, backup)
    return backup