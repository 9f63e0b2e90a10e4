"""Choosing the kubeconfig a kubectl invocation uses."""

import logging
import os
from collections.abc import MutableMapping

log = logging.getLogger(__name__)

KUBECONFIG_ENV = "KUBECONFIG"


def check_read_config_permissions(config_file: str) -> None:
    """Raise PermissionError when the config file exists but cannot be read."""
    try:
        fd = os.open(config_file, os.O_RDONLY)
    except PermissionError as exc:
        raise PermissionError(
            f"Unable to read {config_file}, please start server "
            "with --write-kubeconfig-mode to modify kube config permissions"
        ) from exc
    except OSError:
        return
    os.close(fd)


def select_kubeconfig(environ: MutableMapping[str, str] | None = None,
                      home_config: str = "") -> str | None:
    """Return the kubeconfig to use, exporting home_config when none is set.

    An existing KUBECONFIG is kept. Otherwise home_config is exported when it
    exists; an unreadable file is warned about.
    """
    if environ is None:
        environ = os.environ
    current = environ.get(KUBECONFIG_ENV, "")
    if current:
        return current
    selected = None
    if home_config and os.path.exists(home_config):
        environ[KUBECONFIG_ENV] = home_config
        selected = home_config
    try:
        check_read_config_permissions(home_config)
    except PermissionError as exc:
        log.warning("%s", exc)
    return selected