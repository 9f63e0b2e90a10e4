"""Applying manifest files from watched directories as cluster addons."""

import hashlib
import logging
import os
import stat
import threading
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

import yaml

from .nodepassword import NotFoundError

log = logging.getLogger(__name__)

NAMESPACE = "kube-system"
DEFAULT_INTERVAL = 15.0

_MANIFEST_SUFFIXES = (".json", ".yml", ".yaml")


@dataclass
class Addon:
    """The record of a deployed manifest file."""

    name: str
    namespace: str = NAMESPACE
    uid: str = ""
    source: str = ""
    checksum: str = ""
    gvks: list[tuple[str, str]] = field(default_factory=list)


class AddonClient(Protocol):
    def get(self, namespace: str, name: str) -> Addon: ...

    def create(self, addon: Addon) -> None: ...

    def update(self, addon: Addon) -> None: ...

    def delete(self, namespace: str, name: str) -> None: ...


class Applier(Protocol):
    def apply(self, owner: Addon, objects: list[dict[str, Any]],
              gvks: Iterable[tuple[str, str]] = ()) -> None: ...


class DeployError(Exception):
    """Raised when one or more manifests could not be processed."""

    def __init__(self, message: str, errors: Iterable[Exception] = ()) -> None:
        super().__init__(message)
        self.errors = list(errors)


def _raise_all(errors: list[Exception]) -> None:
    if not errors:
        return
    if len(errors) == 1:
        raise errors[0]
    raise DeployError(", ".join(str(error) for error in errors), errors)


def _ext(name: str) -> str:
    base = name.rsplit("/", 1)[-1].rsplit(os.sep, 1)[-1]
    index = base.rfind(".")
    return base[index:] if index >= 0 else ""


def name_from_path(path: str) -> str:
    """Return the addon name of a file: its base name up to the first dot."""
    return os.path.basename(path).split(".", 1)[0]


def checksum(content: bytes) -> str:
    """Return the hex sha256 digest of content."""
    return hashlib.sha256(content).hexdigest()


def is_empty_yaml(text: str | bytes) -> bool:
    """Return whether a YAML document holds only separators, comments and blanks."""
    if isinstance(text, bytes):
        text = text.decode("utf-8")
    for line in text.split("\n"):
        stripped = line.strip()
        if stripped and stripped != "---" and not stripped.startswith("#"):
            return False
    return True


def _documents(text: str) -> Iterator[str]:
    lines: list[str] = []
    for line in text.splitlines(keepends=True):
        if line.startswith("---") and not line[3:].strip():
            yield "".join(lines)
            lines = []
        else:
            lines.append(line)
    yield "".join(lines)


def _to_objects(document: str) -> list[dict[str, Any]]:
    obj = yaml.safe_load(document)
    if not isinstance(obj, dict):
        raise ValueError(f"manifest document is not an object: {document!r}")
    if "items" in obj:
        items = obj["items"] or []
        if not isinstance(items, list) or not all(isinstance(item, dict) for item in items):
            raise ValueError("list manifest items must be objects")
        return list(items)
    if not obj.get("kind"):
        raise ValueError(f"Object 'Kind' is missing in {document!r}")
    return [obj]


def yaml_to_objects(content: str | bytes) -> list[dict[str, Any]]:
    """Parse every non-empty document of a manifest, expanding lists."""
    if isinstance(content, bytes):
        content = content.decode("utf-8")
    result: list[dict[str, Any]] = []
    for document in _documents(content):
        if not is_empty_yaml(document):
            result.extend(_to_objects(document))
    return result


def skip_file(file_name: str, skips: Mapping[str, bool]) -> bool:
    """Return whether a file should not be deployed."""
    if file_name.startswith("."):
        return True
    if skips.get(file_name):
        return True
    return not file_name.endswith(_MANIFEST_SUFFIXES)


def should_disable_service(base: str, file_name: str, disables: Mapping[str, bool]) -> bool:
    """Return whether a file belongs to a disabled directory or component."""
    rel_file = file_name[len(base):] if file_name.startswith(base) else file_name
    parts = rel_file.split(os.sep)
    if any(disables.get(os.sep.join(p for p in parts[:i] if p)) for i in range(1, len(parts))):
        return True
    if not file_name.endswith(_MANIFEST_SUFFIXES):
        return False
    base_file = os.path.basename(file_name)
    suffix = _ext(base_file)
    base_name = base_file[: len(base_file) - len(suffix)]
    return bool(disables.get(base_name))


def _walk(path: str) -> Iterator[tuple[str, os.stat_result]]:
    """Yield path and everything below it with lstat results; errors propagate."""
    info = os.lstat(path)
    yield path, info
    if stat.S_ISDIR(info.st_mode):
        for entry in sorted(os.listdir(path)):
            yield from _walk(os.path.join(path, entry))


class Watcher:
    """Polls manifest directories and applies or removes their contents."""

    def __init__(self, applier: Applier, addons: AddonClient, bases: Iterable[str],
                 disables: Mapping[str, bool] | None = None,
                 interval: float = DEFAULT_INTERVAL) -> None:
        self.applier = applier
        self.addons = addons
        self.bases = list(bases)
        self.disables = dict(disables or {})
        self.interval = interval
        self._mod_times: dict[str, int] = {}

    def _addon(self, name: str) -> Addon:
        try:
            return self.addons.get(NAMESPACE, name)
        except NotFoundError:
            return Addon(name=name)

    def run(self, stop_event: threading.Event) -> None:
        """Process the directories until stop_event is set."""
        force = True
        while True:
            try:
                self.list_files(force)
                force = False
            except Exception as exc:  # keep polling whatever a pass fails with
                log.error("Failed to process config: %s", exc)
            if stop_event.wait(self.interval):
                return

    def list_files(self, force: bool) -> None:
        """Process every watched directory."""
        errors: list[Exception] = []
        for base in self.bases:
            try:
                self.list_files_in(base, force)
            except Exception as exc:  # collected and raised together below
                errors.append(exc)
        _raise_all(errors)

    def list_files_in(self, base: str, force: bool) -> None:
        """Deploy changed manifests under base and remove disabled ones."""
        files = dict(_walk(base))

        skips = {
            os.path.basename(path)[: -len(".skip")]: True
            for path in files
            if os.path.basename(path).endswith(".skip")
        }

        errors: list[Exception] = []
        for path in sorted(files):
            if should_disable_service(base, path, self.disables):
                try:
                    self.delete(path)
                except Exception as exc:  # reported with the others
                    errors.append(DeployError(f"failed to delete {path}: {exc}", [exc]))
                continue
            if skip_file(os.path.basename(path), skips):
                continue
            mod_time = files[path].st_mtime_ns
            if not force and self._mod_times.get(path) == mod_time:
                continue
            try:
                self.deploy(path, not force)
            except Exception as exc:  # reported with the others
                errors.append(DeployError(f"failed to process {path}: {exc}", [exc]))
            else:
                self._mod_times[path] = mod_time
        _raise_all(errors)

    def deploy(self, path: str, compare_checksum: bool) -> bool:
        """Apply a manifest; return False when it was unchanged and skipped."""
        with open(path, "rb") as handle:
            content = handle.read()
        addon = self._addon(name_from_path(path))
        digest = checksum(content)
        if compare_checksum and digest == addon.checksum:
            log.debug("Skipping existing deployment of %s, checksum %s", path, digest)
            return False
        objects = yaml_to_objects(content)
        self.applier.apply(addon, objects)
        addon.source = path
        addon.checksum = digest
        addon.gvks = []
        if addon.uid:
            self.addons.update(addon)
        else:
            self.addons.create(addon)
        return True

    def delete(self, path: str) -> bool:
        """Remove a disabled manifest's addon, then its objects and the file.

        The addon is removed first; only once it is gone are the objects
        removed and the file deleted, which is reported by returning True.
        """
        addon = self._addon(name_from_path(path))
        try:
            self.addons.delete(addon.namespace, addon.name)
            return False
        except NotFoundError:
            pass
        with open(path, "rb") as handle:
            content = handle.read()
        objects = yaml_to_objects(content)
        gvks = sorted({(str(obj.get("apiVersion", "")), str(obj.get("kind", ""))) for obj in objects})
        self.applier.apply(addon, [], gvks)
        os.remove(path)
        return True