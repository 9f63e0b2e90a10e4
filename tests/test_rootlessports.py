from kubelite.rootlessports import Service, ServicePort, sync_ports, to_bind_ports


class FakePortManager:
    def __init__(self, bound):
        self.ports = dict(bound)
        self.next_id = max(self.ports, default=0) + 1

    def list_ports(self):
        return list(self.ports.items())

    def add_port(self, proto, parent_port, child_port):
        assert proto == "tcp"
        self.ports[self.next_id] = parent_port
        self.next_id += 1

    def remove_port(self, port_id):
        del self.ports[port_id]


def web_service():
    return Service(
        ports=[ServicePort(80), ServicePort(8080), ServicePort(53, "UDP"), ServicePort(0)],
        ingress_ips=["192.168.1.10"],
    )


def test_https_port_always_bound():
    assert to_bind_ports([], 6443, True) == {6443: 6443}
    assert to_bind_ports([web_service()], 6443, False) == {6443: 6443}


def test_low_ports_are_shifted():
    ports = to_bind_ports([web_service()], 6443, True)
    assert ports == {6443: 6443, 10080: 80, 8080: 8080}
    assert all(child <= 1024 for parent, child in ports.items() if parent != child)


def test_services_without_ingress_ip_are_ignored():
    service = Service(ports=[ServicePort(8080)], ingress_ips=[""])
    assert to_bind_ports([service], 6443, True) == {6443: 6443}
    assert to_bind_ports([Service(ports=[ServicePort(8080)])], 6443, True) == {6443: 6443}


def test_sync_adds_and_removes():
    manager = FakePortManager({1: 6443, 2: 9999})
    service = Service(ports=[ServicePort(8080)], ingress_ips=["192.168.1.10"])
    added, removed = sync_ports(manager, [service], 6443, True)
    assert added == {8080: 8080}
    assert removed == [9999]
    assert sorted(manager.ports.values()) == [6443, 8080]


def test_sync_is_idempotent():
    manager = FakePortManager({})
    services = [web_service()]
    sync_ports(manager, services, 6443, True)
    added, removed = sync_ports(manager, services, 6443, True)
    assert added == {}
    assert removed == []
    assert sorted(manager.ports.values()) == sorted(to_bind_ports(services, 6443, True))