"""Shared daemon configuration helpers."""

import itertools
from collections.abc import Iterable, Mapping
from enum import Enum

CERTIFICATE_RENEW_DAYS = 90


class FlannelBackend(str, Enum):
    """Supported flannel backends."""

    NONE = "none"
    VXLAN = "vxlan"
    HOST_GW = "host-gw"
    IPSEC = "ipsec"
    WIREGUARD = "wireguard"


def arg_string(args: Iterable[str]) -> str:
    """Join arguments with single spaces, dropping leading empty ones."""
    return " ".join(itertools.dropwhile(lambda arg: arg == "", args))


def get_args_list(args_map: Mapping[str, str], extra_args: Iterable[str]) -> list[str]:
    """Build sorted "--key=value" flags; extra "key=value" args override defaults."""
    merged = dict(args_map)
    for arg in extra_args:
        key, sep, value = arg.partition("=")
        merged[key] = value if sep else "true"
    return sorted(f"--{key}={value}" for key, value in merged.items())