"""Node password secrets: storing and checking scrypt hashes of node passwords."""

import base64
import hashlib
import hmac
import logging
import os
import time
from collections.abc import Mapping
from typing import Protocol

from . import passwd as passwd_file
from .datadir import PROGRAM

log = logging.getLogger(__name__)

NAMESPACE_SYSTEM = "kube-system"


class NotFoundError(LookupError):
    """Raised by a secret client when a secret does not exist."""


class AlreadyExistsError(Exception):
    """Raised by a secret client when a secret already exists."""


class NodePasswordError(Exception):
    """Raised when a node password cannot be verified."""


class HashMismatchError(NodePasswordError):
    """Raised when a password does not match its stored hash."""


class SecretClient(Protocol):
    def get(self, namespace: str, name: str) -> Mapping[str, bytes]: ...

    def create(self, namespace: str, name: str, data: Mapping[str, bytes], immutable: bool) -> None: ...

    def delete(self, namespace: str, name: str) -> None: ...


class NodeClient(Protocol):
    def list_names(self) -> list[str]: ...


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


class ScryptHasher:
    """Creates and verifies salted scrypt password hashes."""

    _SCHEME = "scrypt"

    def __init__(self, n: int = 2**14, r: int = 8, p: int = 1,
                 key_length: int = 32, salt_length: int = 16) -> None:
        self.n = n
        self.r = r
        self.p = p
        self.key_length = key_length
        self.salt_length = salt_length

    @staticmethod
    def _derive(password: str, salt: bytes, n: int, r: int, p: int, length: int) -> bytes:
        return hashlib.scrypt(
            password.encode("utf-8"),
            salt=salt,
            n=n,
            r=r,
            p=p,
            maxmem=2 * 128 * r * (n + p + 2),
            dklen=length,
        )

    def create_hash(self, password: str) -> str:
        """Return an encoded hash of password with a fresh random salt."""
        salt = os.urandom(self.salt_length)
        key = self._derive(password, salt, self.n, self.r, self.p, self.key_length)
        params = f"n={self.n},r={self.r},p={self.p}"
        return f"${self._SCHEME}${params}${_b64(salt)}${_b64(key)}"

    def verify_hash(self, hashed: str, password: str) -> None:
        """Raise HashMismatchError unless password matches the encoded hash."""
        parts = hashed.split("$")
        if len(parts) != 5 or parts[0] or parts[1] != self._SCHEME:
            raise HashMismatchError("hash is not in a recognised format")
        try:
            params = dict(item.split("=", 1) for item in parts[2].split(","))
            n, r, p = int(params["n"]), int(params["r"]), int(params["p"])
            salt = base64.b64decode(parts[3], validate=True)
            expected = base64.b64decode(parts[4], validate=True)
        except (ValueError, KeyError) as exc:
            raise HashMismatchError(f"hash is not in a recognised format: {exc}") from exc
        actual = self._derive(password, salt, n, r, p, len(expected))
        if not hmac.compare_digest(actual, expected):
            raise HashMismatchError("hash does not match password")


hasher = ScryptHasher()


def secret_name(node_name: str) -> str:
    """Return the name of the secret holding a node's password hash."""
    return f"{node_name}.node-password.{PROGRAM}".lower()


def _verify_hash(secret_client: SecretClient, node_name: str, password: str) -> None:
    name = secret_name(node_name)
    data = secret_client.get(NAMESPACE_SYSTEM, name)
    stored = data.get("hash")
    if stored is None:
        raise NodePasswordError(f"unable to locate hash data for node secret '{name}'")
    if isinstance(stored, bytes):
        stored = stored.decode("utf-8")
    try:
        hasher.verify_hash(stored, password)
    except HashMismatchError as exc:
        raise HashMismatchError(f"unable to verify hash for node '{node_name}': {exc}") from exc


def ensure(secret_client: SecretClient, node_name: str, password: str) -> None:
    """Verify the node's password secret, creating it when it does not exist."""
    try:
        _verify_hash(secret_client, node_name, password)
        return
    except NotFoundError:
        pass
    hashed = hasher.create_hash(password)
    try:
        secret_client.create(
            NAMESPACE_SYSTEM,
            secret_name(node_name),
            {"hash": hashed.encode("utf-8")},
            True,
        )
    except AlreadyExistsError:
        _verify_hash(secret_client, node_name, password)


def delete(secret_client: SecretClient, node_name: str) -> None:
    """Remove a node's password secret."""
    secret_client.delete(NAMESPACE_SYSTEM, secret_name(node_name))


def migrate_file(secret_client: SecretClient, node_client: NodeClient, password_file: str) -> int:
    """Move password file entries into secrets and remove the file.

    Returns the number of entries migrated; a missing file migrates nothing.
    """
    if not os.path.exists(password_file):
        return 0
    entries = passwd_file.read(password_file)

    try:
        node_names = list(node_client.list_names())
    except Exception:  # an unreachable node list falls back to the file's users
        node_names = []
    if not node_names:
        node_names = entries.users()

    log.info("Migrating node password entries from '%s'", password_file)
    ensured = 0
    start = time.monotonic()
    for node_name in node_names:
        password = entries.password_for(node_name)
        if password is None:
            continue
        try:
            ensure(secret_client, node_name, password)
        except (NodePasswordError, NotFoundError, AlreadyExistsError, OSError) as exc:
            log.warning("error migrating node password entry for node '%s': %s", node_name, exc)
        else:
            ensured += 1
    elapsed_ms = int((time.monotonic() - start) * 1000)
    log.info(
        "Migrated %d node password entries in %d milliseconds, average %d ms",
        ensured,
        elapsed_ms,
        elapsed_ms // max(ensured, 1),
    )
    os.remove(password_file)
    return ensured