"""Building the flags for, and starting, an agent's kubelet and kube-proxy."""

import logging
import os
from dataclasses import dataclass, field

from . import executor
from .config import arg_string, get_args_list
from .datadir import PROGRAM

log = logging.getLogger(__name__)

MODE_WEBHOOK = "Webhook"

DEFAULT_SELF_CGROUP = "/proc/self/cgroup"
DEFAULT_INIT_CGROUP = "/proc/1/cgroup"
DEFAULT_CGROUP_ROOT = "/sys/fs/cgroup"
_UID_MAP = "/proc/self/uid_map"


@dataclass
class AgentConfig:
    """The agent settings that shape the kubelet and kube-proxy flags."""

    node_name: str = ""
    node_ip: str = ""
    pod_manifests: str = ""
    serving_kubelet_cert: str = ""
    serving_kubelet_key: str = ""
    cluster_cidr: str = ""
    cluster_dns: str = ""
    cluster_domain: str = ""
    resolv_conf: str = ""
    root_dir: str = ""
    kube_config_kubelet: str = ""
    kube_config_kube_proxy: str = ""
    runtime_socket: str = ""
    listen_address: str = ""
    client_ca: str = ""
    cni_bin_dir: str = ""
    cni_conf_dir: str = ""
    extra_kubelet_args: list[str] = field(default_factory=list)
    extra_kube_proxy_args: list[str] = field(default_factory=list)
    pause_image: str = ""
    cni_plugin: bool = False
    node_taints: list[str] = field(default_factory=list)
    node_labels: list[str] = field(default_factory=list)
    disable_ccm: bool = False
    disable_kube_proxy: bool = False
    rootless: bool = False
    protect_kernel_defaults: bool = False


@dataclass(frozen=True)
class CgroupInfo:
    """What the cgroup layout of the running process allows."""

    kubelet_root: str = ""
    runtime_root: str = ""
    has_cfs: bool = False
    has_pids: bool = False


def add_feature_gate(current: str, new: str) -> str:
    """Append a feature gate to a comma-separated list."""
    return new if not current else f"{current},{new}"


def _read_cgroup(path: str) -> list[list[str]] | None:
    try:
        with open(path, encoding="utf-8") as handle:
            text = handle.read()
    except OSError:
        return None
    entries = (line.split(":") for line in text.splitlines())
    return [parts for parts in entries if len(parts) >= 3]


def check_cgroups(self_cgroup: str = DEFAULT_SELF_CGROUP,
                  init_cgroup: str = DEFAULT_INIT_CGROUP,
                  cgroup_root: str = DEFAULT_CGROUP_ROOT) -> CgroupInfo:
    """Inspect cgroup files for CFS and pids support and the roots to use."""
    entries = _read_cgroup(self_cgroup)
    if entries is None:
        return CgroupInfo()

    kubelet_root = ""
    runtime_root = ""
    has_cfs = False
    has_pids = False
    for parts in entries:
        for system in parts[1].split(","):
            if system == "pids":
                has_pids = True
            elif system == "cpu":
                period = os.path.join(cgroup_root, parts[1], parts[2].lstrip("/"),
                                      "cpu.cfs_period_us")
                if os.path.exists(period):
                    has_cfs = True
            elif system == "name=systemd":
                # Started from a login session: keep the kubelet out of user.slice.
                if parts[-1].rfind(".scope") > 0:
                    kubelet_root = "/" + PROGRAM

    if not kubelet_root:
        # A process 1 outside "/" or "/init.scope" means we are in a container.
        init_entries = _read_cgroup(init_cgroup)
        if init_entries is None:
            return CgroupInfo()
        for parts in init_entries:
            if "name=systemd" in parts[1].split(","):
                if parts[-1] not in ("/", "/init.scope"):
                    kubelet_root = "/" + PROGRAM
                    runtime_root = "/" + PROGRAM

    return CgroupInfo(kubelet_root, runtime_root, has_cfs, has_pids)


def _running_in_user_ns() -> bool:
    try:
        with open(_UID_MAP, encoding="utf-8") as handle:
            first = handle.readline()
    except OSError:
        return False
    try:
        inside, outside, length = (int(value) for value in first.split()[:3])
    except ValueError:
        return False
    return not (inside == 0 and outside == 0 and length == 4294967295)


def kube_proxy_args(cfg: AgentConfig) -> list[str]:
    """Return the sorted kube-proxy flags for the agent."""
    args = {
        "proxy-mode": "iptables",
        "healthz-bind-address": "127.0.0.1",
        "kubeconfig": cfg.kube_config_kube_proxy,
        "cluster-cidr": cfg.cluster_cidr,
    }
    if cfg.node_name:
        args["hostname-override"] = cfg.node_name
    return get_args_list(args, cfg.extra_kube_proxy_args)


def kubelet_args(cfg: AgentConfig, default_ip: str | None = None,
                 cgroups: CgroupInfo | None = None,
                 in_user_ns: bool | None = None) -> list[str]:
    """Return the sorted kubelet flags for the agent.

    default_ip is the address of the host's default interface, or None when it
    cannot be determined; the node IP is passed explicitly unless they match.
    """
    if cgroups is None:
        cgroups = check_cgroups()
    if in_user_ns is None:
        in_user_ns = _running_in_user_ns()

    args = {
        "healthz-bind-address": "127.0.0.1",
        "read-only-port": "0",
        "cluster-domain": cfg.cluster_domain,
        "kubeconfig": cfg.kube_config_kubelet,
        "eviction-hard": "imagefs.available<5%,nodefs.available<5%",
        "eviction-minimum-reclaim": "imagefs.available=10%,nodefs.available=10%",
        "fail-swap-on": "false",
        "cgroup-driver": "cgroupfs",
        "authentication-token-webhook": "true",
        "anonymous-auth": "false",
        "authorization-mode": MODE_WEBHOOK,
    }
    if cfg.pod_manifests:
        args["pod-manifest-path"] = cfg.pod_manifests
    if cfg.root_dir:
        args["root-dir"] = cfg.root_dir
        args["cert-dir"] = os.path.join(cfg.root_dir, "pki")
        args["seccomp-profile-root"] = os.path.join(cfg.root_dir, "seccomp")
    if cfg.cni_conf_dir:
        args["cni-conf-dir"] = cfg.cni_conf_dir
    if cfg.cni_bin_dir:
        args["cni-bin-dir"] = cfg.cni_bin_dir
    if cfg.cni_plugin:
        args["network-plugin"] = "cni"
    if cfg.cluster_dns:
        args["cluster-dns"] = cfg.cluster_dns
    if cfg.resolv_conf:
        args["resolv-conf"] = cfg.resolv_conf
    if cfg.runtime_socket:
        args["container-runtime"] = "remote"
        args["container-runtime-endpoint"] = cfg.runtime_socket
        args["containerd"] = cfg.runtime_socket
        args["serialize-image-pulls"] = "false"
    elif cfg.pause_image:
        args["pod-infra-container-image"] = cfg.pause_image
    if cfg.listen_address:
        args["address"] = cfg.listen_address
    if cfg.client_ca:
        args["anonymous-auth"] = "false"
        args["client-ca-file"] = cfg.client_ca
    if cfg.serving_kubelet_cert and cfg.serving_kubelet_key:
        args["tls-cert-file"] = cfg.serving_kubelet_cert
        args["tls-private-key-file"] = cfg.serving_kubelet_key
    if cfg.node_name:
        args["hostname-override"] = cfg.node_name
    if default_ip is None or default_ip != cfg.node_ip:
        args["node-ip"] = cfg.node_ip
    if not cgroups.has_cfs:
        log.warning("Disabling CPU quotas due to missing cpu.cfs_period_us")
        args["cpu-cfs-quota"] = "false"
    if not cgroups.has_pids:
        log.warning("Disabling pod PIDs limit feature due to missing cgroup pids support")
        args["cgroups-per-qos"] = "false"
        args["enforce-node-allocatable"] = ""
        args["feature-gates"] = add_feature_gate(args.get("feature-gates", ""),
                                                 "SupportPodPidsLimit=false")
    if cgroups.kubelet_root:
        args["kubelet-cgroups"] = cgroups.kubelet_root
    if cgroups.runtime_root:
        args["runtime-cgroups"] = cgroups.runtime_root
    if in_user_ns:
        args["feature-gates"] = add_feature_gate(args.get("feature-gates", ""),
                                                 "DevicePlugins=false")

    args["node-labels"] = ",".join(cfg.node_labels)
    if cfg.node_taints:
        args["register-with-taints"] = ",".join(cfg.node_taints)
    if not cfg.disable_ccm:
        args["cloud-provider"] = "external"

    if cfg.rootless:
        args["cgroup-driver"] = "none"
        args["feature-gates=SupportNoneCgroupDriver"] = "true"
        args["cgroups-per-qos"] = "false"
        args["enforce-node-allocatable"] = ""

    if cfg.protect_kernel_defaults:
        args["protect-kernel-defaults"] = "true"

    return get_args_list(args, cfg.extra_kubelet_args)


def start_kube_proxy(cfg: AgentConfig) -> list[str]:
    """Start kube-proxy through the executor; return the flags used."""
    args = kube_proxy_args(cfg)
    log.info("Running kube-proxy %s", arg_string(args))
    executor.kube_proxy(args)
    return args


def start_kubelet(cfg: AgentConfig, default_ip: str | None = None,
                  cgroups: CgroupInfo | None = None,
                  in_user_ns: bool | None = None) -> list[str]:
    """Create the pod manifest directory and start the kubelet; return the flags used."""
    try:
        os.makedirs(cfg.pod_manifests, 0o755, exist_ok=True)
    except OSError as exc:
        log.error("Failed to mkdir %s: %s", cfg.pod_manifests, exc)
    args = kubelet_args(cfg, default_ip, cgroups, in_user_ns)
    log.info("Running kubelet %s", arg_string(args))
    executor.kubelet(args)
    return args