"""
RelayChat - Custom Exception Classes and Error Codes

This module defines the exceptions raised by the relay node. Each error
carries a unique code for logging and debugging. The router and the
transports decide which of them are swallowed, which become HTTP statuses
and which are fatal at startup.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    """Enumeration of all RelayChat error codes."""

    # General Errors (E001-E099)
    E005_INVARIANT_VIOLATED = "E005"

    # Network Errors (E200-E299)
    E200_NETWORK_ERROR = "E200"
    E201_CONNECTION_FAILED = "E201"
    E202_CONNECTION_TIMEOUT = "E202"
    E203_CONNECTION_CLOSED = "E203"
    E204_UNKNOWN_PEER = "E204"
    E206_INVALID_MESSAGE = "E206"
    E207_MESSAGE_TOO_LARGE = "E207"

    # Config Errors (E700-E799)
    E700_CONFIG_ERROR = "E700"
    E702_CONFIG_SAVE_FAILED = "E702"
    E703_INVALID_CONFIG = "E703"
    E704_CONFIG_PARSE_ERROR = "E704"

    # Server Errors (E800-E899)
    E800_SERVER_ERROR = "E800"
    E801_SERVER_START_FAILED = "E801"
    E804_UNSUPPORTED_METHOD = "E804"


class RelayError(Exception):
    """Base exception class for all RelayChat errors.

    Attributes:
        code: Error code from ErrorCode enum
        message: Human-readable error message
        details: Additional error details (optional)
    """

    def __init__(self, code: ErrorCode, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(f"[{code.value}] {message}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to a JSON-ready dictionary.

        Returns:
            Dictionary with code, message and details
        """
        return {"code": self.code.value, "message": self.message, "details": self.details}


class DecodeError(RelayError):
    """Raised when command, response or frame bytes cannot be parsed.

    Never surfaced to a caller: the router and the transports log it at
    debug level and drop the input.
    """

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E206_INVALID_MESSAGE,
        message: str = "Malformed message",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, details)


class NetworkError(RelayError):
    """Exception raised for peer channel failures.

    This includes unknown peers, refused connections and peers that close
    the connection before answering.
    """

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E200_NETWORK_ERROR,
        message: str = "Peer channel operation failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, details)


class RemoteTimeoutError(NetworkError):
    """Raised when a forwarded request is not answered within the timeout."""

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E202_CONNECTION_TIMEOUT,
        message: str = "Remote peer did not respond in time",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, details)


class UnsupportedMethodError(RelayError):
    """Raised for HTTP methods other than GET and POST on the messages path."""

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E804_UNSUPPORTED_METHOD,
        message: str = "Method not allowed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, details)


class InternalInvariantError(RelayError):
    """Raised when archive state contradicts itself. Fatal to one event only."""

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E005_INVARIANT_VIOLATED,
        message: str = "Internal invariant violated",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, details)


class ConfigError(RelayError):
    """Raised when node configuration cannot be loaded, saved or used.

    Always fatal at startup.
    """

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E700_CONFIG_ERROR,
        message: str = "Invalid node configuration",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, details)


class ServerError(RelayError):
    """Exception raised for node server failures.

    This includes listener startup and shutdown errors.
    """

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E800_SERVER_ERROR,
        message: str = "Node listener failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, details)
