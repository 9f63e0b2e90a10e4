"""Finding the single global unicast IPv4 address of a network interface."""

import ipaddress
import logging
import socket
from collections.abc import Iterable

import psutil

log = logging.getLogger(__name__)

_BROADCAST = ipaddress.IPv4Address("255.255.255.255")


def _is_global_unicast(ip: ipaddress.IPv4Address) -> bool:
    return not (
        ip.is_unspecified
        or ip.is_loopback
        or ip.is_multicast
        or ip.is_link_local
        or ip == _BROADCAST
    )


def select_global_unicast(iface_name: str, addresses: Iterable[str]) -> str:
    """Return the only global unicast IPv4 address among CIDR strings."""
    found: list[str] = []
    for address in addresses:
        try:
            ip = ipaddress.ip_interface(address).ip
        except ValueError as exc:
            raise ValueError(f"unable to parse CIDR for interface {iface_name}: {exc}") from exc
        if isinstance(ip, ipaddress.IPv6Address):
            if ip.ipv4_mapped is None:
                continue
            ip = ip.ipv4_mapped
        if _is_global_unicast(ip):
            found.append(str(ip))
    if len(found) > 1:
        raise ValueError(
            f"multiple global unicast addresses defined for {iface_name}, "
            f"please set ip from one of {found}"
        )
    if not found:
        raise LookupError(f"can't find ip for interface {iface_name}")
    return found[0]


def ip_from_interface(iface_name: str) -> str:
    """Return the interface's global unicast IPv4 address, raising on failure."""
    all_addresses = psutil.net_if_addrs()
    if iface_name not in all_addresses:
        raise LookupError(f"no such network interface {iface_name}")
    cidrs = [
        f"{entry.address}/{entry.netmask}" if entry.netmask else f"{entry.address}/32"
        for entry in all_addresses[iface_name]
        if entry.family == socket.AF_INET
    ]
    stats = psutil.net_if_stats().get(iface_name)
    if stats is None or not stats.isup:
        raise ValueError(f"the interface {iface_name} is not up")
    return select_global_unicast(iface_name, cidrs)


def get_ip_from_interface(iface_name: str) -> str:
    """Return the interface's address, or "" after logging a warning."""
    try:
        ip = ip_from_interface(iface_name)
    except (ValueError, LookupError, OSError) as exc:
        log.warning("unable to get global unicast ip from interface name: %s", exc)
        return ""
    log.info("Found ip %s from iface %s", ip, iface_name)
    return ip