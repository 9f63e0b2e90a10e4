"""Writing bundled manifests into the data directory."""

import logging
import os
from collections.abc import Mapping

log = logging.getLogger(__name__)


def _ext(name: str) -> str:
    base = name.rsplit("/", 1)[-1]
    index = base.rfind(".")
    return base[index:] if index >= 0 else ""


def _skipped(name: str, skips: Mapping[str, bool]) -> bool:
    suffix = _ext(name)
    without_ext = name[: len(name) - len(suffix)]
    if skips.get(name) or skips.get(without_ext):
        return True
    parts = name.split("/")
    return any(skips.get("/".join(p for p in parts[:i] if p)) for i in range(1, len(parts)))


def _write(path: str, content: bytes) -> None:
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "wb") as handle:
        handle.write(content)


def stage(data_dir: str, template_vars: Mapping[str, str], skips: Mapping[str, bool],
          assets: Mapping[str, bytes] | None = None) -> list[str]:
    """Write each asset not skipped under data_dir, substituting template variables.

    Asset names are slash-separated relative paths. Returns the paths written;
    without assets nothing is staged.
    """
    if not assets:
        return []
    written: list[str] = []
    for name in sorted(assets):
        if _skipped(name, skips):
            continue
        content = assets[name]
        if isinstance(content, str):
            content = content.encode("utf-8")
        for key, value in template_vars.items():
            content = content.replace(key.encode("utf-8"), value.encode("utf-8"))
        path = os.path.join(data_dir, *name.split("/"))
        try:
            os.makedirs(os.path.dirname(path), 0o700, exist_ok=True)
        except OSError:
            pass
        log.info("Writing manifest: %s", path)
        try:
            _write(path, content)
        except OSError as exc:
            raise OSError(f"failed to write to {name}: {exc}") from exc
        written.append(path)
    return written