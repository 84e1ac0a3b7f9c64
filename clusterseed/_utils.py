import logging
import socket
from typing import Tuple

logger = logging.getLogger("clusterseed")


def parse_address(address: str) -> Tuple[str, int]:
    """Split ``host:port`` (or ``[v6host]:port``) into its parts."""
    if not address or ":" not in address:
        raise ValueError(f"Address must be host:port, got {address!r}")
    host, _, port = address.rpartition(":")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    if not host:
        raise ValueError(f"Address has no host: {address!r}")
    try:
        return host, int(port)
    except ValueError:
        raise ValueError(f"Address has an invalid port: {address!r}") from None


def format_address(host: str, port: int) -> str:
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def loopback_host(ip_family: str) -> str:
    return "::1" if ip_family == "ipv6" else "127.0.0.1"


def find_free_port(host: str) -> int:
    """Ask the OS for an unused TCP port on ``host``."""
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    with socket.socket(family, socket.SOCK_STREAM) as sock:
        sock.bind((host, 0))
        return sock.getsockname()[1]
