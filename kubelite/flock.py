"""Exclusive advisory file locks held for the life of the process."""

import os

try:
    import fcntl
except ImportError:  # platforms without flock
    fcntl = None


def acquire(path: str) -> int:
    """Open (creating if needed) and exclusively lock a file; return its descriptor.

    On platforms without flock no lock is taken and -1 is returned.
    """
    if fcntl is None:
        return -1
    flags = os.O_CREAT | os.O_RDWR | getattr(os, "O_CLOEXEC", 0)
    fd = os.open(path, flags, 0o600)
    try:
        fcntl.flock(fd, fcntl.LOCK_EX)
    except OSError:
        os.close(fd)
        raise
    return fd


def release(lock: int) -> None:
    """Release a lock taken by acquire."""
    if fcntl is None or lock < 0:
        return
    fcntl.flock(lock, fcntl.LOCK_UN)