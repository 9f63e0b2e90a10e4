"""Node bootstrap helpers for a lightweight Kubernetes distribution: data
directories, manifests, node passwords, etcd membership and daemon arguments."""

__version__ = "0.1.0"