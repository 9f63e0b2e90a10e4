"""Recording a node's command line and environment as annotations."""

import base64
import hashlib
import json
import os
import sys
from collections.abc import Mapping, MutableMapping, Sequence

from .datadir import PROGRAM, PROGRAM_UPPER

NODE_ARGS_ANNOTATION = PROGRAM + ".io/node-args"
NODE_ENV_ANNOTATION = PROGRAM + ".io/node-env"
NODE_CONFIG_HASH_ANNOTATION = PROGRAM + ".io/node-config-hash"

OMITTED_VALUE = "********"

_SECRETS = frozenset(
    {
        PROGRAM_UPPER + "_TOKEN",
        PROGRAM_UPPER + "_DATASTORE_ENDPOINT",
        PROGRAM_UPPER + "_AGENT_TOKEN",
        PROGRAM_UPPER + "_CLUSTER_SECRET",
        "--token",
        "-t",
        "--agent-token",
        "--datastore-endpoint",
        "--cluster-secret",
    }
)

_JSON_ESCAPES = (
    ("<", "\\u003c"),
    (">", "\\u003e"),
    ("&", "\\u0026"),
    ("\u2028", "\\u2028"),
    ("\u2029", "\\u2029"),
)


def _compact_json(value: object) -> str:
    text = json.dumps(value, separators=(",", ":"), ensure_ascii=False, sort_keys=True)
    for char, escaped in _JSON_ESCAPES:
        text = text.replace(char, escaped)
    return text


def is_secret(key: str) -> bool:
    """Return whether a flag or environment variable holds a secret value."""
    return key in _SECRETS


def node_args(argv: Sequence[str] | None = None) -> str:
    """Return the arguments after the program name as JSON, secrets masked."""
    if argv is None:
        argv = sys.argv
    args: list[str] = []
    for arg in argv[1:]:
        if arg.startswith("--") and "=" in arg:
            args.extend(arg.split("=", 1))
        else:
            args.append(arg)
    for index, arg in enumerate(args):
        if is_secret(arg) and index + 1 < len(args):
            args[index + 1] = OMITTED_VALUE
    return _compact_json(args)


def node_env(environ: Mapping[str, str] | None = None) -> str:
    """Return the program's own environment variables as JSON, secrets masked."""
    if environ is None:
        environ = os.environ
    prefix = PROGRAM_UPPER + "_"
    env = {
        key: (OMITTED_VALUE if is_secret(key) else value)
        for key, value in environ.items()
        if key.startswith(prefix)
    }
    return _compact_json(env)


def set_node_config_annotations(
    annotations: MutableMapping[str, str],
    argv: Sequence[str] | None = None,
    environ: Mapping[str, str] | None = None,
) -> bool:
    """Store args, env and their hash in annotations; return whether anything changed."""
    args_json = node_args(argv)
    env_json = node_env(environ)
    digest = hashlib.sha256((args_json + env_json).encode("utf-8")).digest()
    encoded = base64.b32encode(digest).decode("ascii")
    if annotations.get(NODE_CONFIG_HASH_ANNOTATION) == encoded:
        return False
    annotations[NODE_ENV_ANNOTATION] = env_json
    annotations[NODE_ARGS_ANNOTATION] = args_json
    annotations[NODE_CONFIG_HASH_ANNOTATION] = encoded
    return True