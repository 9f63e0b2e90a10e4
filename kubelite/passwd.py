"""Reading and writing CSV password files of (password, name, name, role) rows."""

import csv
import os
import secrets
from dataclasses import dataclass


@dataclass
class _Entry:
    password: str
    role: str = ""


class Passwd:
    """Password entries keyed by user name."""

    def __init__(self) -> None:
        self._names: dict[str, _Entry] = {}
        self._changed = False

    def check(self, name: str, password: str) -> tuple[bool, bool]:
        """Return (matches, exists) for the given user and password."""
        entry = self._names.get(name)
        if entry is None:
            return False, False
        return entry.password == password, True

    def ensure_user(self, name: str, role: str, password: str) -> None:
        """Add or update a user; an empty password keeps or generates one."""
        token_prefix = f"::{name}:"
        idx = password.find(token_prefix)
        if idx > 0 and password.startswith("K10"):
            password = password[idx + len(token_prefix):]

        entry = self._names.get(name)
        if entry is not None:
            if password and entry.password != password:
                self._changed = True
                entry.password = password
            if entry.role != role:
                self._changed = True
                entry.role = role
            return

        if not password:
            password = secrets.token_hex(16)
        self._changed = True
        self._names[name] = _Entry(password, role)

    def users(self) -> list[str]:
        """Return the names of all users."""
        return list(self._names)

    def password_for(self, name: str) -> str | None:
        """Return the password of a user, or None if there is no such user."""
        entry = self._names.get(name)
        return None if entry is None else entry.password

    def write(self, path: str) -> None:
        """Write the entries to path if anything changed since reading."""
        if not self._changed:
            return
        records = [[e.password, name, name, e.role] for name, e in self._names.items()]
        tmp = f"{path}.tmp"
        with open(tmp, "w", newline="", encoding="utf-8") as out:
            os.chmod(tmp, 0o600)
            csv.writer(out, lineterminator="\n").writerows(records)
        os.replace(tmp, path)


def read(path: str) -> Passwd:
    """Read a password file; a missing file gives an empty set of users."""
    result = Passwd()
    try:
        handle = open(path, newline="", encoding="utf-8")
    except FileNotFoundError:
        return result
    with handle:
        for record in csv.reader(handle):
            if not record:
                continue
            if len(record) < 2:
                raise ValueError(
                    f"password file '{path}' must have at least 2 columns "
                    f"(password, name), found {len(record)}"
                )
            role = record[3] if len(record) > 3 else ""
            result._names[record[1]] = _Entry(record[0], role)
    return result