"""Labelling the local node as an etcd member and removing peers of deleted nodes."""

import copy
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Protocol

from .etcd_cluster import ETCD

log = logging.getLogger(__name__)

NODE_ID = "etcd.k3s.cattle.io/node-name"
NODE_ADDRESS = "etcd.k3s.cattle.io/node-address"
MASTER_ROLE = "node-role.kubernetes.io/master"
CONTROL_PLANE_ROLE = "node-role.kubernetes.io/control-plane"
ETCD_ROLE = "node-role.kubernetes.io/etcd"

RETRY_DELAY = 5.0


@dataclass
class Node:
    """The parts of a cluster node that the etcd controller reads and writes."""

    name: str
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)


class NodeController(Protocol):
    def update(self, node: Node) -> Node: ...

    def enqueue_after(self, key: str, delay: float) -> None: ...


class EtcdNodeHandler:
    """Keeps the local node's etcd labels current and drops peers of removed nodes."""

    def __init__(self, etcd: ETCD, node_controller: NodeController,
                 environ: Mapping[str, str] | None = None) -> None:
        self.etcd = etcd
        self.node_controller = node_controller
        self.environ = os.environ if environ is None else environ

    def sync(self, key: str, node: Node | None) -> Node | None:
        """Handle a node change; only the local node is acted on."""
        if node is None:
            return None
        node_name = self.environ.get("NODE_NAME", "")
        if not node_name:
            log.debug("waiting for node to be assigned for etcd controller")
            self.node_controller.enqueue_after(key, RETRY_DELAY)
            return node
        if key == node_name:
            return self.handle_self(node)
        return node

    def handle_self(self, node: Node) -> Node:
        """Make sure the local node carries this member's annotations and roles."""
        if (node.annotations.get(NODE_ID) == self.etcd.name
                and node.annotations.get(NODE_ADDRESS) == self.etcd.address
                and node.labels.get(ETCD_ROLE) == "true"
                and node.labels.get(CONTROL_PLANE_ROLE) == "true"):
            return node

        updated = copy.deepcopy(node)
        updated.annotations[NODE_ID] = self.etcd.name
        updated.annotations[NODE_ADDRESS] = self.etcd.address
        updated.labels[ETCD_ROLE] = "true"
        updated.labels[MASTER_ROLE] = "true"
        updated.labels[CONTROL_PLANE_ROLE] = "true"
        return self.node_controller.update(updated)

    def on_remove(self, key: str, node: Node) -> Node:
        """Remove the etcd peer of a deleted etcd node."""
        if ETCD_ROLE not in node.labels:
            return node
        member_name = node.annotations.get(NODE_ID, "")
        address = node.annotations.get(NODE_ADDRESS, "")
        if not address:
            return node
        self.etcd.remove_peer(member_name, address)
        return node