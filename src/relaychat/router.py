"""
RelayChat - Conversation router.

Decides who a chat message is from and to, archives it under the right
counterparty, forwards outbound messages to the target node, acknowledges
messages that arrived from peers, and mirrors every append to the live
channel.

Trust boundary: authorship of inbound messages is taken from the source
identity asserted by the transport. Nothing here verifies it.
"""

import logging
from typing import Awaitable, Callable, Optional, Protocol as TypingProtocol, Tuple

from .constants import FORWARD_TIMEOUT
from .errors import DecodeError, InternalInvariantError, NetworkError, RemoteTimeoutError
from .live_channel import LiveChannelRegistry
from .message import ChatMessage, MessageArchive, NewMessage, Snapshot
from .protocol import (
    AckResponse,
    ChatCommand,
    ChatResponse,
    HistoryResponse,
    Protocol,
    SendCommand,
)

logger = logging.getLogger(__name__)

Responder = Callable[[ChatResponse], Awaitable[None]]


class PeerForwarder(TypingProtocol):
    """Anything that can deliver raw command bytes to another node."""

    async def send_and_await_response(self, target: str, ipc: bytes, timeout: float) -> bytes:
        ...


class ConversationRouter:
    """Routes chat commands against the archive and the live channel.

    One router is created per node at startup. It owns the archive and the
    live channel slot; nothing else mutates them.
    """

    def __init__(
        self,
        local_identity: str,
        archive: Optional[MessageArchive] = None,
        live_channel: Optional[LiveChannelRegistry] = None,
        forwarder: Optional[PeerForwarder] = None,
        forward_timeout: float = FORWARD_TIMEOUT,
    ):
        """
        Initialize router.

        Args:
            local_identity: This node's identifier
            archive: Message archive (a fresh one by default)
            live_channel: Live channel registry (a fresh one by default)
            forwarder: Peer client used for outbound sends
            forward_timeout: Seconds to wait for a forwarded Send to be acknowledged
        """
        self.local_identity = local_identity
        self.archive = archive if archive is not None else MessageArchive()
        self.live_channel = live_channel if live_channel is not None else LiveChannelRegistry()
        self.forwarder = forwarder
        self.forward_timeout = forward_timeout

    def open_live_channel(self, channel_id: int) -> None:
        """Register a newly opened viewer channel (last writer wins)."""
        self.live_channel.attach(channel_id)

    def resolve(self, source_identity: str, target: str) -> Tuple[str, str]:
        """
        Work out the conversation key and author of a Send.

        Returns:
            (counterparty, author)
        """
        if target == self.local_identity:
            return source_identity, source_identity
        return target, self.local_identity

    async def handle_request(
        self,
        source_identity: str,
        ipc: bytes,
        is_local_call: bool,
        respond: Optional[Responder] = None,
    ) -> Optional[ChatCommand]:
        """
        Decode raw command bytes and route them.

        Malformed bytes are dropped: no response, no archive change.

        Args:
            source_identity: Node that issued the command
            ipc: Raw command bytes
            is_local_call: True for the local HTTP/WebSocket surface
            respond: Coroutine that delivers a response to the caller

        Returns:
            The decoded command, or None if it was dropped
        """
        try:
            command = Protocol.decode_command(ipc)
        except DecodeError as e:
            logger.debug(f"Dropping undecodable command from {source_identity}: {e}")
            return None

        if isinstance(command, SendCommand):
            await self.handle_send(
                source_identity,
                command.target,
                command.message,
                is_local_call,
                respond=respond,
                raw=ipc,
            )
        else:
            await self.handle_history(is_local_call, respond=respond)

        return command

    async def handle_send(
        self,
        source_identity: str,
        target: str,
        message: str,
        is_local_call: bool,
        respond: Optional[Responder] = None,
        raw: Optional[bytes] = None,
    ) -> Optional[AckResponse]:
        """
        Archive a Send and carry out its side effects.

        Outbound sends (target is not this node) are forwarded to the target
        first. A failed forward is logged and the message is still archived,
        so the sender's own view stays consistent.

        Args:
            source_identity: Node that issued the command
            target: Destination node (may be this node)
            message: Message text
            is_local_call: True for the local HTTP/WebSocket surface
            respond: Coroutine used to acknowledge a peer
            raw: Original command bytes to forward (re-encoded if omitted)

        Returns:
            The Ack sent to the peer, or None for local calls

        Raises:
            InternalInvariantError: If the archive lost the conversation
        """
        counterparty, author = self.resolve(source_identity, target)

        if target != self.local_identity:
            logger.info(f"new message from {source_identity}: {message}")
            ipc = raw if raw is not None else Protocol.encode_command(SendCommand(target, message))
            await self._forward(target, ipc)

        length = self.archive.append(counterparty, ChatMessage(author=author, content=message))
        if length < 1 or counterparty not in self.archive:
            raise InternalInvariantError(
                message=f"Conversation '{counterparty}' missing after append",
                details={"counterparty": counterparty},
            )

        ack: Optional[AckResponse] = None
        if not is_local_call:
            ack = AckResponse()
            if respond is not None:
                await respond(ack)

        await self.live_channel.push(NewMessage(chat=counterparty, author=author, content=message))
        return ack

    async def handle_history(
        self, is_local_call: bool, respond: Optional[Responder] = None
    ) -> Snapshot:
        """
        Return a copy of the whole archive.

        The copy is also sent to the caller as a History response when a
        responder is supplied.
        """
        snapshot = self.archive.snapshot()
        logger.debug(
            f"History requested ({'local' if is_local_call else 'peer'}): "
            f"{len(snapshot)} conversation(s)"
        )
        if respond is not None:
            await respond(HistoryResponse(messages=snapshot))
        return snapshot

    async def _forward(self, target: str, ipc: bytes) -> Optional[ChatResponse]:
        """Forward command bytes to ``target``. Never raises on delivery failure."""
        if self.forwarder is None:
            logger.warning(f"No peer channel configured, message to {target} not forwarded")
            return None

        try:
            reply = await self.forwarder.send_and_await_response(target, ipc, self.forward_timeout)
        except RemoteTimeoutError as e:
            logger.warning(f"Forward to {target} timed out after {self.forward_timeout}s: {e}")
            return None
        except NetworkError as e:
            logger.warning(f"Forward to {target} failed: {e}")
            return None
        except DecodeError as e:
            logger.debug(f"Malformed reply frame from {target}: {e}")
            return None

        try:
            response = Protocol.decode_response(reply)
        except DecodeError as e:
            logger.debug(f"Undecodable reply from {target}: {e}")
            return None

        if not isinstance(response, AckResponse):
            logger.info(f"got response from {target}: {response!r}")
        return response
