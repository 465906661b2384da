"""
RelayChat - Utility functions.

Provides validation and parsing helpers shared by the config layer,
the node CLI and the viewer.
"""

import ipaddress
import logging
import os
import re
import sys
from pathlib import Path
from typing import Optional, Tuple

from .constants import MAX_NODE_ID_LENGTH

logger = logging.getLogger(__name__)

_NODE_ID_PATTERN = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.\-]*$")


def validate_port(port: int, allow_ephemeral: bool = False) -> bool:
    """
    Validate a port number.

    Args:
        port: Port number to validate
        allow_ephemeral: Accept 0, letting the OS pick a free port

    Returns:
        True if valid, False otherwise
    """
    if allow_ephemeral and port == 0:
        return True
    return 1024 <= port <= 65535


def validate_hostname(hostname: str) -> bool:
    """
    Validate a hostname or dotted IPv4 address.

    Args:
        hostname: Hostname string

    Returns:
        True if valid hostname, False otherwise
    """
    if not hostname:
        return False

    if len(hostname) > 255:
        return False

    if hostname[-1] == ".":
        hostname = hostname[:-1]

    if not hostname:
        return False

    pattern = r"^[a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?(\.[a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*$"
    return bool(re.match(pattern, hostname))


def validate_node_id(node_id: str) -> bool:
    """
    Validate a node identifier such as ``alice`` or ``bob.relay``.

    Args:
        node_id: Node identifier string

    Returns:
        True if the identifier is usable as a conversation key, False otherwise
    """
    if not isinstance(node_id, str) or not node_id:
        return False
    if len(node_id) > MAX_NODE_ID_LENGTH:
        return False
    return bool(_NODE_ID_PATTERN.match(node_id))


def parse_peer_address(address: str) -> Optional[Tuple[str, int]]:
    """
    Parse a ``host:port`` peer address.

    IPv6 literals must be bracketed, as in ``[::1]:9001``.

    Args:
        address: Address string

    Returns:
        (host, port) tuple, or None if the address is invalid
    """
    if not isinstance(address, str) or ":" not in address:
        return None

    host, _, port_str = address.rpartition(":")
    try:
        port = int(port_str)
    except ValueError:
        logger.debug(f"Invalid port in peer address '{address}'")
        return None

    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
        try:
            ipaddress.IPv6Address(host)
        except ValueError:
            return None
    elif not validate_hostname(host):
        return None

    if not validate_port(port, allow_ephemeral=False):
        return None
    return host, port


def parse_peer_spec(spec: str) -> Optional[Tuple[str, str]]:
    """
    Parse a ``NAME=HOST:PORT`` command line peer entry.

    Returns:
        (node_id, address) tuple, or None if the entry is invalid
    """
    name, sep, address = spec.partition("=")
    if not sep or not validate_node_id(name) or parse_peer_address(address) is None:
        return None
    return name, address


def truncate_string(s: str, max_length: int, suffix: str = "...") -> str:
    """
    Truncate a string to a maximum length.

    Args:
        s: String to truncate
        max_length: Maximum length
        suffix: Suffix to add if truncated

    Returns:
        Truncated string
    """
    if len(s) <= max_length:
        return s
    return s[: max_length - len(suffix)] + suffix


def default_data_dir() -> Path:
    """Return the platform-specific default data directory."""
    if sys.platform == "win32":
        data_dir = Path(os.getenv("APPDATA", "~")) / "RelayChat"
    elif sys.platform == "darwin":
        data_dir = Path.home() / "Library" / "Application Support" / "RelayChat"
    else:
        data_dir = Path.home() / ".relaychat"

    return data_dir.expanduser().resolve()
