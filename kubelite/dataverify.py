"""Verification of checksums and symbolic links listed in a directory."""

import hashlib
import logging
import os

log = logging.getLogger(__name__)


class VerificationError(Exception):
    """Raised when the contents of a directory do not match their lists."""


def verify(directory: str) -> None:
    """Check both the sha256 sums and the links of a directory."""
    failed = False
    try:
        verify_sums(directory, ".sha256sums")
    except (OSError, VerificationError) as exc:
        log.error("Unable to verify sums: %s", exc)
        failed = True
    try:
        verify_links(directory, ".links")
    except (OSError, VerificationError) as exc:
        log.error("Unable to verify links: %s", exc)
        failed = True
    if failed:
        raise VerificationError(f"failed to verify directory {directory}")


def verify_sums(root: str, sum_list_file: str) -> int:
    """Verify every "sum file" line of the list; return how many were checked."""
    sums = _file_map_fields(os.path.join(root, sum_list_file), 1, 0)
    if not sums:
        raise VerificationError(f"no entries found in {sum_list_file}")
    failed = 0
    for sum_file, expected in sums.items():
        actual = _sha256_sum(os.path.join(root, sum_file))
        if actual != expected:
            log.error("Hash for file %s expected to be %s (fail)", sum_file, expected)
            failed += 1
        else:
            log.debug("Verified hash %s is correct", sum_file)
    if failed:
        raise VerificationError(f"failed {failed} hash verifications")
    return len(sums)


def verify_links(root: str, link_list_file: str) -> int:
    """Verify every "link target" line of the list; return how many were checked."""
    links = _file_map_fields(os.path.join(root, link_list_file), 0, 1)
    if not links:
        raise VerificationError(f"no entries found in {link_list_file}")
    failed = 0
    for link_file, expected in links.items():
        try:
            actual = os.readlink(os.path.join(root, link_file))
        except OSError:
            actual = ""
        if actual != expected:
            log.error("Link for file %s expected to be %s (fail)", link_file, expected)
            failed += 1
        else:
            log.debug("Verified link %s is correct", link_file)
    if failed:
        raise VerificationError(f"failed {failed} link verifications")
    return len(links)


def _file_map_fields(file_name: str, key: int, val: int) -> dict[str, str]:
    result: dict[str, str] = {}
    with open(file_name, encoding="utf-8") as handle:
        for line in handle:
            fields = line.split()
            if not fields:
                continue
            if len(fields) <= key or len(fields) <= val:
                raise VerificationError(
                    f"fields for file {file_name} ({len(fields)}) smaller than "
                    f"required index (key: {key}, val: {val})"
                )
            result[fields[key]] = fields[val]
    return result


def _sha256_sum(path: str) -> str:
    digest = hashlib.sha256()
    try:
        with open(path, "rb") as handle:
            for chunk in iter(lambda: handle.read(65536), b""):
                digest.update(chunk)
    except OSError:
        return ""
    return digest.hexdigest()