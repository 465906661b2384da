"""
RelayChat - Peer-to-Peer Chat Relay

A minimal chat relay node: every node archives its conversations in
memory, forwards outbound messages to peer nodes, and serves a local
HTTP/WebSocket API plus a terminal viewer.

Version: 0.3.0
License: MIT
"""

__version__ = "0.3.0"
__author__ = "RelayChat contributors"
__license__ = "MIT"

# Import core modules for easy access
from .config import Config
from .constants import APP_NAME, VERSION
from .errors import (
    ConfigError,
    DecodeError,
    ErrorCode,
    InternalInvariantError,
    NetworkError,
    RelayError,
    RemoteTimeoutError,
    ServerError,
    UnsupportedMethodError,
)
from .message import ChatMessage, MessageArchive, NewMessage

__all__ = [
    "APP_NAME",
    "VERSION",
    "ChatMessage",
    "Config",
    "ConfigError",
    "DecodeError",
    "ErrorCode",
    "InternalInvariantError",
    "MessageArchive",
    "NetworkError",
    "NewMessage",
    "RelayError",
    "RemoteTimeoutError",
    "ServerError",
    "UnsupportedMethodError",
    "__author__",
    "__license__",
    "__version__",
]
