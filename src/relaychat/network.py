"""
RelayChat - Peer channel networking using asyncio.

Nodes talk to each other over plain TCP. Every exchange opens a fresh
connection, sends one CHAT_REQUEST frame and reads at most one
CHAT_RESPONSE frame back. Peers are located through a static directory of
node id -> (host, port).
"""

import asyncio
import contextlib
import logging
from typing import Awaitable, Callable, Dict, Optional, Tuple

from .constants import CONNECT_TIMEOUT, DEFAULT_PEER_HOST, DEFAULT_PEER_PORT
from .errors import (
    DecodeError,
    ErrorCode,
    NetworkError,
    RemoteTimeoutError,
    ServerError,
)
from .protocol import FrameType, Protocol

logger = logging.getLogger(__name__)

# (source node id, raw command bytes) -> raw response bytes, or None for no response
RequestHandler = Callable[[str, bytes], Awaitable[Optional[bytes]]]


async def _close_writer(writer: asyncio.StreamWriter) -> None:
    writer.close()
    with contextlib.suppress(ConnectionError, OSError):
        await writer.wait_closed()


class PeerServer:
    """Listens for chat requests from other nodes."""

    def __init__(
        self,
        on_request: RequestHandler,
        host: str = DEFAULT_PEER_HOST,
        port: int = DEFAULT_PEER_PORT,
        read_timeout: float = CONNECT_TIMEOUT,
    ):
        self.on_request = on_request
        self.host = host
        self.port = port
        self.read_timeout = read_timeout

        self.server: Optional[asyncio.Server] = None
        self.running = False

    async def start(self) -> int:
        """
        Start listening for connections.

        Returns:
            The bound port (useful when configured with port 0)

        Raises:
            ServerError: If the listener cannot bind
        """
        try:
            self.server = await asyncio.start_server(self._handle_client, self.host, self.port)
        except OSError as e:
            raise ServerError(
                ErrorCode.E801_SERVER_START_FAILED,
                f"Failed to start peer listener on {self.host}:{self.port}: {e}",
                {"host": self.host, "port": self.port, "error": str(e)},
            )

        self.port = self.server.sockets[0].getsockname()[1]
        self.running = True
        logger.info(f"Peer listener on {self.host}:{self.port}")
        return self.port

    async def stop(self) -> None:
        """Stop listening for connections."""
        self.running = False
        if self.server:
            self.server.close()
            await self.server.wait_closed()
            self.server = None
            logger.info("Peer listener stopped")

    async def _handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        """Handle one incoming request connection."""
        address = writer.get_extra_info("peername")
        logger.debug(f"Incoming peer connection from {address}")

        try:
            frame_type, payload = await asyncio.wait_for(
                Protocol.read_frame(reader), timeout=self.read_timeout
            )
            if frame_type != FrameType.CHAT_REQUEST:
                logger.debug(f"Ignoring {frame_type.name} frame from {address}")
                return

            source, ipc = Protocol.parse_chat_request(payload)
            reply = await self.on_request(source, ipc)

            if reply is not None:
                writer.write(Protocol.create_chat_response(reply))
                await writer.drain()

        except DecodeError as e:
            logger.debug(f"Dropping malformed frame from {address}: {e}")
        except asyncio.TimeoutError:
            logger.debug(f"Timeout reading request from {address}")
        except NetworkError as e:
            if e.code == ErrorCode.E207_MESSAGE_TOO_LARGE:
                logger.warning(f"Reply to {address} not sent: {e}")
            else:
                logger.debug(f"Peer connection from {address} failed: {e}")
        except ConnectionError as e:
            logger.debug(f"Peer connection from {address} failed: {e}")
        finally:
            await _close_writer(writer)


class PeerClient:
    """Delivers chat requests to other nodes and waits for their reply."""

    def __init__(
        self,
        local_identity: str,
        directory: Optional[Dict[str, Tuple[str, int]]] = None,
        connect_timeout: float = CONNECT_TIMEOUT,
    ):
        self.local_identity = local_identity
        self.directory: Dict[str, Tuple[str, int]] = dict(directory or {})
        self.connect_timeout = connect_timeout

    def add_peer(self, node_id: str, host: str, port: int) -> None:
        """Add or replace a directory entry."""
        self.directory[node_id] = (host, port)

    def lookup(self, node_id: str) -> Tuple[str, int]:
        """
        Find a peer's address.

        Raises:
            NetworkError: If the peer is not in the directory
        """
        try:
            return self.directory[node_id]
        except KeyError:
            raise NetworkError(
                ErrorCode.E204_UNKNOWN_PEER,
                f"Unknown peer: {node_id}",
                {"peer": node_id},
            )

    async def send_and_await_response(self, target: str, ipc: bytes, timeout: float) -> bytes:
        """
        Send raw command bytes to ``target`` and wait for the raw reply.

        The whole round trip (connect, send, receive) is bounded by ``timeout``.

        Raises:
            RemoteTimeoutError: If no reply arrives in time
            NetworkError: If the peer is unknown, unreachable or hangs up
            DecodeError: If the reply frame is malformed
        """
        host, port = self.lookup(target)
        try:
            return await asyncio.wait_for(self._round_trip(target, host, port, ipc), timeout=timeout)
        except asyncio.TimeoutError:
            raise RemoteTimeoutError(
                message=f"No response from {target} within {timeout}s",
                details={"peer": target, "timeout": timeout},
            )

    async def _round_trip(self, target: str, host: str, port: int, ipc: bytes) -> bytes:
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(host, port), timeout=self.connect_timeout
            )
        except OSError as e:
            raise NetworkError(
                ErrorCode.E201_CONNECTION_FAILED,
                f"Cannot connect to {target} at {host}:{port}: {e}",
                {"peer": target, "host": host, "port": port},
            )

        try:
            writer.write(Protocol.create_chat_request(self.local_identity, ipc))
            await writer.drain()

            frame_type, payload = await Protocol.read_frame(reader)
            if frame_type != FrameType.CHAT_RESPONSE:
                raise DecodeError(message=f"Expected CHAT_RESPONSE, got {frame_type.name}")
            return Protocol.parse_chat_response(payload)
        except ConnectionError as e:
            raise NetworkError(
                ErrorCode.E203_CONNECTION_CLOSED,
                f"Connection to {target} lost: {e}",
                {"peer": target},
            )
        finally:
            await _close_writer(writer)
