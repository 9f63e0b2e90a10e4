"""Forwarding load-balanced service ports from the parent to the rootless namespace."""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Protocol

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServicePort:
    """A port a service exposes."""

    port: int
    protocol: str = "TCP"


@dataclass
class Service:
    """The parts of a service that decide which ports to bind."""

    ports: list[ServicePort] = field(default_factory=list)
    ingress_ips: list[str] = field(default_factory=list)


class PortManager(Protocol):
    def list_ports(self) -> Iterable[tuple[int, int]]: ...

    def add_port(self, proto: str, parent_port: int, child_port: int) -> None: ...

    def remove_port(self, port_id: int) -> None: ...


def to_bind_ports(services: Iterable[Service], https_port: int, enabled: bool) -> dict[int, int]:
    """Return parent port to child port for everything that should be bound."""
    ports = {https_port: https_port}
    if not enabled:
        return ports
    for service in services:
        for ingress_ip in service.ingress_ips:
            if not ingress_ip:
                continue
            for service_port in service.ports:
                if service_port.protocol != "TCP" or service_port.port == 0:
                    continue
                port = service_port.port
                parent = 10000 + port if port <= 1024 else port
                ports[parent] = port
    return ports


def sync_ports(port_manager: PortManager, services: Iterable[Service], https_port: int,
               enabled: bool) -> tuple[dict[int, int], list[int]]:
    """Bind missing ports and unbind stale ones; return (added, removed parent ports)."""
    bound = {parent_port: port_id for port_id, parent_port in port_manager.list_ports()}
    added: dict[int, int] = {}
    for parent, child in to_bind_ports(services, https_port, enabled).items():
        if parent in bound:
            log.debug("Parent port %d to child already bound", parent)
            del bound[parent]
            continue
        port_manager.add_port("tcp", parent, child)
        added[parent] = child
        log.info("Bound parent port %d to child namespace port %d", parent, child)
    removed: list[int] = []
    for parent, port_id in bound.items():
        port_manager.remove_port(port_id)
        removed.append(parent)
        log.info("Removed parent port %d to child namespace", parent)
    return added, removed