"""Deciding which tunnel sessions may connect and where proxied dials go."""

NODE_USER_PREFIX = "system:node:"
LOOPBACK = "127.0.0.1"


def authorize(user_name: str | None) -> tuple[str, bool]:
    """Return (client key, authorized) for an authenticated user name.

    Only node identities may open a tunnel; their key is the node name.
    """
    if user_name is None:
        return "", False
    if user_name.startswith(NODE_USER_PREFIX):
        return user_name[len(NODE_USER_PREFIX):], True
    return "", False


def _port(address: str) -> str:
    if address.startswith("["):
        end = address.find("]")
        if end < 0 or not address[end + 1:].startswith(":"):
            return ""
        rest = address[end + 2:]
        return "" if ":" in rest else rest
    if address.count(":") != 1:
        return ""
    return address.split(":", 1)[1]


def proxy_target(address: str) -> tuple[str, str]:
    """Return (node name, local address) for a dial to "node:port".

    A connection through a node's tunnel reaches the port on that node's loopback.
    """
    port = _port(address)
    target = f"{LOOPBACK}:{port}" if port else LOOPBACK
    node_name = address.split(":", 1)[0]
    return node_name, target