# kubelite

Building blocks for bringing up a node of a small Kubernetes distribution.
The package covers the parts of node bootstrap that are plain data and file
handling, so they can be used and tested on their own. Anything that has to
talk to a cluster (the API server, etcd, the rootless port driver, the
process that runs the daemons) is passed in as an object you supply.

## Modules

- **`kubelite.datadir`**: `resolve` and `local_home` work out the absolute
  data directory: `/var/lib/rancher/k3s` for root, `~/.rancher/k3s`
  otherwise or when `force_local` is set. `${HOME}`, `$HOME` and `~` are
  expanded.
- **`kubelite.dataverify`**: `verify`, `verify_sums` and `verify_links`
  check a directory against its `.sha256sums` and `.links` lists and raise
  `VerificationError` on any mismatch.
- **`kubelite.flock`**: `acquire` takes an exclusive `flock` on a file and
  returns its descriptor; `release` drops it. Where `fcntl` is missing,
  `acquire` returns `-1` and no lock is taken.
- **`kubelite.passwd`**: `read` loads a CSV password file of
  `password,name,name,role` rows into a `Passwd`, with `check`,
  `ensure_user`, `users`, `password_for` and `write` (written only when
  something changed, through a `.tmp` file with mode 0600).
- **`kubelite.config`**: the `FlannelBackend` names, `get_args_list`
  (sorted `--key=value` flags, extra `key=value` arguments overriding the
  defaults) and `arg_string`.
- **`kubelite.nodeconfig`**: `node_args`, `node_env` and
  `set_node_config_annotations` record a node's command line and
  `K3S_*` environment as JSON annotations, with secrets replaced by
  `********` and a base32 sha256 hash of both.
- **`kubelite.nodepassword`**: `ScryptHasher`, `secret_name`, `ensure`,
  `delete` and `migrate_file` keep scrypt-hashed node passwords in a secret
  store and move entries over from an old password file.
- **`kubelite.nodehosts`**: `internal_ip`, `update_node_hosts` and
  `NodeHostsHandler` keep the CoreDNS `NodeHosts` entries in step with the
  nodes and delete a removed node's password secret.
- **`kubelite.rootlessports`**: `Service`, `ServicePort`, `to_bind_ports`
  and `sync_ports` work out which TCP ports to forward in rootless mode
  (ports up to 1024 are bound at 10000 + port) and reconcile them with a
  port manager.
- **`kubelite.netutil`**: `select_global_unicast`, `ip_from_interface` and
  `get_ip_from_interface` find the single global unicast IPv4 address of a
  network interface, using psutil.
- **`kubelite.stage`**: `stage` writes bundled manifests (given as a
  mapping of relative name to content) into a directory, substituting
  template variables and leaving out skipped names and directories.
- **`kubelite.deploy`**: `Watcher` polls manifest directories and applies
  their YAML and JSON files as `Addon` records, skipping unchanged files
  by modification time and checksum, honouring `.skip` files and removing
  disabled ones. Helpers: `name_from_path`, `checksum`, `is_empty_yaml`,
  `yaml_to_objects`, `skip_file`, `should_disable_service`.
- **`kubelite.executor`**: `ETCDConfig` (with `InitialOptions`,
  `ServerTrust`, `PeerTrust`) and its `to_dict` and `to_config_file`; and
  `set_executor`, `kubelet`, `kube_proxy`, `current_etcd_options` and
  `etcd`, which hand off to the executor you install. Calling them before
  one is set raises `NoExecutorError`.
- **`kubelite.agent`**: `AgentConfig`, `check_cgroups` (returning a
  `CgroupInfo`), `add_feature_gate`, `kubelet_args`, `kube_proxy_args`,
  `start_kubelet` and `start_kube_proxy`.
- **`kubelite.etcd_storage`**: paths of the embedded etcd's data
  (`etcd_db_dir`, `wal_dir`, `name_file`, `reset_file`),
  `is_initialized`, `load_or_create_name`, `snapshot_dir`,
  `snapshot_retention` and `backup_dir_with_retention`.
- **`kubelite.etcd_cluster`**: `ETCD`, `Member` and `LearnerProgress`:
  membership checks (`test`, raising `ClusterMembershipError`), join and
  new-cluster options, the member's `ETCDConfig`, peer removal and learner
  promotion or eviction after a minute without progress.
- **`kubelite.etcd_node`**: `Node` and `EtcdNodeHandler`, which labels the
  local node as an etcd and control-plane member and removes the etcd peer
  of a deleted node.
- **`kubelite.tunnel`**: `authorize` admits only `system:node:` users and
  `proxy_target` maps `node:port` to that node's loopback.
- **`kubelite.kubeconfig`**: `select_kubeconfig` and
  `check_read_config_permissions` choose the kubeconfig for kubectl.

## Installation

Python 3.10 or later. The package depends on PyYAML and psutil.

## Examples

Assemble daemon arguments; extra arguments override the defaults and the
result is sorted:

```python
from kubelite.config import arg_string, get_args_list

args = get_args_list({"aaa": "A", "bbb": "B"}, ["bbb=BB", "iii=II"])
assert args == ["--aaa=A", "--bbb=BB", "--iii=II"]
print(arg_string(args))   # --aaa=A --bbb=BB --iii=II
```

Verify an unpacked data directory; a failure raises `VerificationError`:

```python
from kubelite.dataverify import VerificationError, verify

try:
    verify("/var/lib/rancher/k3s/data/current")
except VerificationError as exc:
    print(exc)
```

Maintain the password file:

```python
from kubelite.passwd import read

password = "password"
users = read("/var/lib/rancher/k3s/server/cred/passwd")
users.ensure_user("node", "k3s:agent", password)
users.write("/var/lib/rancher/k3s/server/cred/passwd")
```

Record how a node was started:

```python
from kubelite.nodeconfig import is_secret, set_node_config_annotations

annotations = {}
changed = set_node_config_annotations(annotations, ["k3s", "server", "--no-flannel"], {})
assert changed
assert annotations["k3s.io/node-args"] == '["server","--no-flannel"]'
assert is_secret("--token")
```

Update CoreDNS node hosts:

```python
from kubelite.nodehosts import update_node_hosts

hosts = update_node_hosts("10.0.0.1 a\n", "b", "10.0.0.2", False)
assert hosts == "10.0.0.1 a\n10.0.0.2 b\n"
```

Work out rootless port forwards:

```python
from kubelite.rootlessports import Service, ServicePort, to_bind_ports

services = [Service(ports=[ServicePort(80)], ingress_ips=["192.0.2.10"])]
assert to_bind_ports(services, 6443, True) == {6443: 6443, 10080: 80}
```

Node tunnels:

```python
from kubelite.tunnel import authorize, proxy_target

assert authorize("system:node:worker-1") == ("worker-1", True)
assert proxy_target("worker-1:10250") == ("worker-1", "127.0.0.1:10250")
```

Hold a lock for the length of a critical section:

```python
from kubelite.flock import acquire, release

lock = acquire("/tmp/kubelite.lock")
try:
    ...
finally:
    release(lock)
```

## What the package does not do

- It has no command-line program and no long-running server; it is a
  library to be called from one.
- It does not start kubelet, kube-proxy or etcd. `kubelite.executor` only
  passes flags and configuration to an executor object that you install
  with `set_executor`.
- It has no Kubernetes API or etcd client. Secrets, config maps, addons,
  nodes, the etcd member API and the rootless port manager are objects you
  provide with the methods the modules call.
- It does not take or restore etcd snapshots; `kubelite.etcd_storage`
  only chooses the snapshot directory and prunes old snapshots and
  backups.
- It ships no bundled manifests; `stage` writes the assets it is given.

## Tests

The test suite uses pytest; install the `test` extra to get it.