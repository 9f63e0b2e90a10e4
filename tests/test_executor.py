import os
import stat

import pytest
import yaml

from kubelite import executor
from kubelite.executor import (
    ETCDConfig,
    InitialOptions,
    NoExecutorError,
    PeerTrust,
    ServerTrust,
)


class FakeExecutor:
    def __init__(self, options):
        self.calls = []
        self.options = options

    def kubelet(self, args):
        self.calls.append(("kubelet", list(args)))

    def kube_proxy(self, args):
        self.calls.append(("kube-proxy", list(args)))

    def current_etcd_options(self):
        return self.options

    def etcd(self, config):
        self.calls.append(("etcd", config))


@pytest.fixture
def no_executor():
    executor.set_executor(None)
    yield
    executor.set_executor(None)


def sample_config(data_dir):
    return ETCDConfig(
        initial_options=InitialOptions(cluster="node-a=https://10.0.0.1:2380", state="new"),
        name="node-a",
        listen_peer_urls="https://10.0.0.1:2380",
        data_dir=data_dir,
        server_trust=ServerTrust("server.crt", "server.key", True, "server-ca.crt"),
        peer_trust=PeerTrust("peer.crt", "peer.key", True, "peer-ca.crt"),
        heartbeat_interval=500,
        election_timeout=5000,
        logger="zap",
        log_outputs=["stderr"],
    )


def test_default_config_has_only_required_keys():
    assert set(ETCDConfig().to_dict()) == {
        "client-transport-security",
        "peer-transport-security",
        "heartbeat-interval",
        "election-timeout",
        "logger",
        "log-outputs",
    }


def test_to_dict_inlines_initial_options_and_trust(tmp_path):
    data = sample_config(str(tmp_path)).to_dict()
    assert data["initial-cluster"] == "node-a=https://10.0.0.1:2380"
    assert data["initial-cluster-state"] == "new"
    assert "initial-advertise-peer-urls" not in data
    assert data["client-transport-security"] == {
        "cert-file": "server.crt",
        "key-file": "server.key",
        "client-cert-auth": True,
        "trusted-ca-file": "server-ca.crt",
    }
    assert data["election-timeout"] == 5000
    assert "force-new-cluster" not in data


def test_force_new_cluster_is_written_when_set():
    assert ETCDConfig(force_new_cluster=True).to_dict()["force-new-cluster"] is True


def test_config_file_round_trip(tmp_path):
    data_dir = str(tmp_path / "db" / "etcd")
    config = sample_config(data_dir)
    path = config.to_config_file()
    assert path == os.path.join(data_dir, "config")
    with open(path, encoding="utf-8") as handle:
        assert yaml.safe_load(handle) == config.to_dict()
    assert stat.S_IMODE(os.stat(path).st_mode) & 0o077 == 0


def test_calls_are_dispatched_to_executor(no_executor):
    options = InitialOptions(cluster="a=https://10.0.0.1:2380", state="existing")
    fake = FakeExecutor(options)
    executor.set_executor(fake)
    config = ETCDConfig(name="a")
    executor.kubelet(["--node-ip=10.0.0.1"])
    executor.kube_proxy(["--proxy-mode=iptables"])
    executor.etcd(config)
    assert fake.calls == [
        ("kubelet", ["--node-ip=10.0.0.1"]),
        ("kube-proxy", ["--proxy-mode=iptables"]),
        ("etcd", config),
    ]
    assert executor.current_etcd_options() == options


def test_missing_executor_raises(no_executor):
    with pytest.raises(NoExecutorError):
        executor.kubelet([])
    with pytest.raises(NoExecutorError):
        executor.current_etcd_options()