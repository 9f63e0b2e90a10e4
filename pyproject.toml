[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "kubelite"
version = "0.1.0"
description = "Node bootstrap helpers for a lightweight Kubernetes distribution: data directories, manifests, node passwords, etcd membership and kubelet arguments"
requires-python = ">=3.10"
dependencies = [
    "pyyaml",
    "psutil",
]
keywords = [
    "kubernetes",
    "etcd",
    "kubelet",
    "cluster",
    "manifests",
    "node",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Developers",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Clustering",
    "Topic :: System :: Systems Administration",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["kubelite"]

[tool.hatch.build.targets.sdist]
include = [
    "kubelite",
    "tests",
]

[tool.pytest.ini_options]
addopts = "-ra"
