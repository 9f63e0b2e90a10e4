"""Keeping the CoreDNS NodeHosts entry in step with cluster nodes."""

import logging
from collections.abc import Iterable, Mapping
from typing import Protocol

from . import nodepassword

log = logging.getLogger(__name__)

_NAMESPACE = "kube-system"
_CONFIG_MAP = "coredns"
_HOSTS_KEY = "NodeHosts"


class ConfigMapClient(Protocol):
    def get(self, namespace: str, name: str) -> Mapping[str, str] | None: ...

    def update(self, namespace: str, name: str, data: Mapping[str, str]) -> None: ...


def internal_ip(addresses: Iterable[tuple[str, str]]) -> str:
    """Return the first InternalIP among (type, address) pairs, or ""."""
    return next((address for kind, address in addresses if kind == "InternalIP"), "")


def update_node_hosts(hosts: str, node_name: str, node_address: str, removed: bool) -> str | None:
    """Return new hosts text for the node, or None when it is already current."""
    hosts_map: dict[str, str] = {}
    for line in hosts.split("\n"):
        if not line:
            continue
        fields = line.split()
        if len(fields) != 2:
            log.warning("Unknown format for hosts line [%s]", line)
            continue
        ip, host = fields
        if host == node_name:
            if removed:
                continue
            if ip == node_address:
                return None
        hosts_map[host] = ip
    if not removed:
        hosts_map[node_name] = node_address
    return "".join(f"{ip} {host}\n" for host, ip in hosts_map.items())


class NodeHostsHandler:
    """Reacts to node changes by updating CoreDNS hosts and node passwords."""

    def __init__(self, mod_core_dns: bool, secret_client: nodepassword.SecretClient,
                 config_maps: ConfigMapClient) -> None:
        self.mod_core_dns = mod_core_dns
        self.secret_client = secret_client
        self.config_maps = config_maps

    def on_change(self, node_name: str, addresses: Iterable[tuple[str, str]]) -> bool:
        """Handle a node being added or changed."""
        return self.update_hosts(node_name, internal_ip(addresses), False)

    def on_remove(self, node_name: str, addresses: Iterable[tuple[str, str]]) -> bool:
        """Handle a node being removed."""
        return self.update_hosts(node_name, internal_ip(addresses), True)

    def update_hosts(self, node_name: str, node_address: str, removed: bool) -> bool:
        """Apply a node change; return whether the hosts entry was rewritten."""
        if removed:
            try:
                nodepassword.delete(self.secret_client, node_name)
            except (nodepassword.NotFoundError, OSError) as exc:
                log.warning("Unable to remove node password: %s", exc)
        if not self.mod_core_dns:
            return False
        return self._update_core_dns(node_name, node_address, removed)

    def _update_core_dns(self, node_name: str, node_address: str, removed: bool) -> bool:
        if not node_address and not removed:
            log.error("No InternalIP found for node %s", node_name)
            return False
        try:
            current = self.config_maps.get(_NAMESPACE, _CONFIG_MAP)
        except LookupError as exc:
            log.warning("Unable to fetch coredns config map: %s", exc)
            return False
        if current is None:
            log.warning("Unable to fetch coredns config map")
            return False
        data = dict(current)
        new_hosts = update_node_hosts(data.get(_HOSTS_KEY, ""), node_name, node_address, removed)
        if new_hosts is None:
            return False
        data[_HOSTS_KEY] = new_hosts
        self.config_maps.update(_NAMESPACE, _CONFIG_MAP, data)
        action = "Removed" if removed else "Updated"
        log.info("%s coredns node hosts entry [%s %s]", action, node_address, node_name)
        return True