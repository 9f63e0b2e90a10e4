from dataclasses import dataclass, field

import pytest

from kubelite.etcd_cluster import ETCD, ClusterMembershipError, Member
from kubelite.etcd_node import (
    CONTROL_PLANE_ROLE,
    ETCD_ROLE,
    MASTER_ROLE,
    NODE_ADDRESS,
    NODE_ID,
    EtcdNodeHandler,
    Node,
)


@dataclass
class FakeClient:
    members: list[Member] = field(default_factory=list)
    removed: list[int] = field(default_factory=list)
    listed: int = 0

    def member_list(self):
        self.listed += 1
        return list(self.members)

    def member_remove(self, member_id):
        self.removed.append(member_id)


@dataclass
class FakeController:
    updated: list[Node] = field(default_factory=list)
    enqueued: list[tuple[str, float]] = field(default_factory=list)

    def update(self, node):
        self.updated.append(node)
        return node

    def enqueue_after(self, key, delay):
        self.enqueued.append((key, delay))


def make_handler(members=(), node_name="server-1", address="10.0.0.1"):
    client = FakeClient(members=list(members))
    etcd = ETCD(client, "server-1-abcd1234", address, "/tmp/data")
    controller = FakeController()
    environ = {"NODE_NAME": node_name} if node_name else {}
    return EtcdNodeHandler(etcd, controller, environ), client, controller


def test_sync_none_node_returns_none():
    handler, _, controller = make_handler()
    assert handler.sync("server-1", None) is None
    assert controller.updated == []


def test_sync_without_node_name_requeues():
    handler, _, controller = make_handler(node_name="")
    node = Node(name="server-1")
    assert handler.sync("server-1", node) is node
    assert controller.enqueued == [("server-1", 5.0)]
    assert controller.updated == []


def test_sync_other_node_is_untouched():
    handler, _, controller = make_handler()
    node = Node(name="server-2")
    assert handler.sync("server-2", node) is node
    assert controller.updated == []


def test_sync_self_sets_labels_and_annotations():
    handler, _, controller = make_handler()
    node = Node(name="server-1", labels={"existing": "x"})
    result = handler.sync("server-1", node)
    assert controller.updated == [result]
    assert result.annotations[NODE_ID] == "server-1-abcd1234"
    assert result.annotations[NODE_ADDRESS] == "10.0.0.1"
    assert result.labels[ETCD_ROLE] == "true"
    assert result.labels[MASTER_ROLE] == "true"
    assert result.labels[CONTROL_PLANE_ROLE] == "true"
    assert result.labels["existing"] == "x"
    assert node.labels == {"existing": "x"}
    assert node.annotations == {}


def test_handle_self_already_current_is_not_updated():
    handler, _, controller = make_handler()
    node = Node(
        name="server-1",
        labels={ETCD_ROLE: "true", CONTROL_PLANE_ROLE: "true"},
        annotations={NODE_ID: "server-1-abcd1234", NODE_ADDRESS: "10.0.0.1"},
    )
    assert handler.handle_self(node) is node
    assert controller.updated == []


def test_on_remove_non_etcd_node_does_nothing():
    handler, client, _ = make_handler()
    node = Node(name="worker", annotations={NODE_ADDRESS: "10.0.0.2"})
    assert handler.on_remove("worker", node) is node
    assert client.listed == 0


def test_on_remove_without_address_does_nothing():
    handler, client, _ = make_handler()
    node = Node(name="server-2", labels={ETCD_ROLE: "true"}, annotations={NODE_ID: "server-2-x"})
    assert handler.on_remove("server-2", node) is node
    assert client.listed == 0


def test_on_remove_removes_matching_peer():
    members = [
        Member(id=7, name="server-2-x", peer_urls=["https://10.0.0.2:2380"]),
        Member(id=9, name="server-3-y", peer_urls=["https://10.0.0.3:2380"]),
    ]
    handler, client, _ = make_handler(members)
    node = Node(
        name="server-2",
        labels={ETCD_ROLE: "true"},
        annotations={NODE_ID: "server-2-x", NODE_ADDRESS: "10.0.0.2"},
    )
    assert handler.on_remove("server-2", node) is node
    assert client.removed == [7]


def test_on_remove_own_address_raises():
    members = [Member(id=3, name="server-1-abcd1234", peer_urls=["https://10.0.0.1:2380"])]
    handler, client, _ = make_handler(members)
    node = Node(
        name="server-1",
        labels={ETCD_ROLE: "true"},
        annotations={NODE_ID: "server-1-abcd1234", NODE_ADDRESS: "10.0.0.1"},
    )
    with pytest.raises(ClusterMembershipError):
        handler.on_remove("server-1", node)
    assert client.removed == []