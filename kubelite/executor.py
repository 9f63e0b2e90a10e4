"""Embedded etcd configuration and dispatch to the component executor."""

import os
from dataclasses import dataclass, field
from typing import Any, Protocol

import yaml


@dataclass
class InitialOptions:
    """How an etcd member joins or creates its cluster."""

    advertise_peer_url: str = ""
    cluster: str = ""
    state: str = ""

    def _fields(self) -> dict[str, Any]:
        values = {
            "initial-advertise-peer-urls": self.advertise_peer_url,
            "initial-cluster": self.cluster,
            "initial-cluster-state": self.state,
        }
        return {key: value for key, value in values.items() if value}


@dataclass
class _Trust:
    cert_file: str = ""
    key_file: str = ""
    client_cert_auth: bool = False
    trusted_ca_file: str = ""

    def _fields(self) -> dict[str, Any]:
        return {
            "cert-file": self.cert_file,
            "key-file": self.key_file,
            "client-cert-auth": self.client_cert_auth,
            "trusted-ca-file": self.trusted_ca_file,
        }


@dataclass
class ServerTrust(_Trust):
    """TLS settings for etcd clients."""


@dataclass
class PeerTrust(_Trust):
    """TLS settings for etcd peers."""


@dataclass
class ETCDConfig:
    """Settings written to the embedded etcd configuration file."""

    initial_options: InitialOptions = field(default_factory=InitialOptions)
    name: str = ""
    listen_client_urls: str = ""
    listen_metrics_urls: str = ""
    listen_peer_urls: str = ""
    advertise_client_urls: str = ""
    data_dir: str = ""
    snapshot_count: int = 0
    server_trust: ServerTrust = field(default_factory=ServerTrust)
    peer_trust: PeerTrust = field(default_factory=PeerTrust)
    force_new_cluster: bool = False
    heartbeat_interval: int = 0
    election_timeout: int = 0
    logger: str = ""
    log_outputs: list[str] | None = None

    def to_dict(self) -> dict[str, Any]:
        """Return the configuration keyed as etcd expects, empty optional keys left out."""
        result = self.initial_options._fields()
        optional = {
            "name": self.name,
            "listen-client-urls": self.listen_client_urls,
            "listen-metrics-urls": self.listen_metrics_urls,
            "listen-peer-urls": self.listen_peer_urls,
            "advertise-client-urls": self.advertise_client_urls,
            "data-dir": self.data_dir,
            "snapshot-count": self.snapshot_count,
        }
        result.update((key, value) for key, value in optional.items() if value)
        result["client-transport-security"] = self.server_trust._fields()
        result["peer-transport-security"] = self.peer_trust._fields()
        if self.force_new_cluster:
            result["force-new-cluster"] = True
        result["heartbeat-interval"] = self.heartbeat_interval
        result["election-timeout"] = self.election_timeout
        result["logger"] = self.logger
        result["log-outputs"] = None if self.log_outputs is None else list(self.log_outputs)
        return result

    def to_config_file(self) -> str:
        """Write the configuration as YAML to data_dir/config and return its path."""
        conf_file = os.path.join(self.data_dir, "config")
        text = yaml.safe_dump(self.to_dict(), sort_keys=True, default_flow_style=False)
        os.makedirs(self.data_dir, 0o700, exist_ok=True)
        fd = os.open(conf_file, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(text)
        return conf_file


class Executor(Protocol):
    def kubelet(self, args: list[str]) -> None: ...

    def kube_proxy(self, args: list[str]) -> None: ...

    def current_etcd_options(self) -> InitialOptions: ...

    def etcd(self, config: ETCDConfig) -> None: ...


class NoExecutorError(RuntimeError):
    """Raised when a component is started before an executor is set."""


@dataclass
class _Slot:
    driver: Executor | None = None


_slot = _Slot()


def set_executor(driver: Executor | None) -> Executor | None:
    """Install the executor that starts components; return the one it replaces."""
    previous = _slot.driver
    _slot.driver = driver
    return previous


def _current() -> Executor:
    if _slot.driver is None:
        raise NoExecutorError("no executor has been set")
    return _slot.driver


def kubelet(args: list[str]) -> None:
    """Start the kubelet with the given flags."""
    _current().kubelet(args)


def kube_proxy(args: list[str]) -> None:
    """Start kube-proxy with the given flags."""
    _current().kube_proxy(args)


def current_etcd_options() -> InitialOptions:
    """Return the initial options of an already running etcd."""
    return _current().current_etcd_options()


def etcd(config: ETCDConfig) -> None:
    """Start etcd with the given configuration."""
    _current().etcd(config)