"""
RelayChat - Client API for talking to a relay node.

Used by the terminal viewer: reads the archive over HTTP, sends messages,
and follows the node's live channel over a WebSocket.
"""

import contextlib
import logging
from typing import AsyncIterator, Dict, List, Optional, Union

import aiohttp

from .constants import (
    DEFAULT_HTTP_HOST,
    DEFAULT_HTTP_PORT,
    DEFAULT_MESSAGES_PATH,
    DEFAULT_WS_PATH,
)
from .errors import DecodeError, ErrorCode, NetworkError
from .message import ChatMessage, NewMessage, Snapshot
from .protocol import ChatCommand, ChatResponse, HistoryResponse, Protocol, SendCommand

logger = logging.getLogger(__name__)

LiveFrame = Union[NewMessage, ChatResponse]


class RelayClient:
    """Async client for a relay node's HTTP/WebSocket surface."""

    def __init__(
        self,
        base_url: str = f"http://{DEFAULT_HTTP_HOST}:{DEFAULT_HTTP_PORT}",
        messages_path: str = DEFAULT_MESSAGES_PATH,
        ws_path: str = DEFAULT_WS_PATH,
        timeout: float = 10.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        """
        Initialize client.

        Args:
            base_url: Node URL, e.g. ``http://127.0.0.1:8080``
            messages_path: Path of the messages endpoint
            ws_path: Path of the live channel endpoint
            timeout: Per-request timeout in seconds
            session: Existing aiohttp session to use (not closed by ``close()``)
        """
        self.base_url = base_url.rstrip("/")
        self.messages_path = messages_path
        self.ws_path = ws_path
        self.timeout = aiohttp.ClientTimeout(total=timeout)

        self._session = session
        self._owns_session = session is None
        self.ws: Optional[aiohttp.ClientWebSocketResponse] = None

    @property
    def messages_url(self) -> str:
        return f"{self.base_url}{self.messages_path}"

    @property
    def ws_url(self) -> str:
        return f"{self.base_url}{self.ws_path}"

    @property
    def session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
            self._owns_session = True
        return self._session

    async def get_history(self) -> Snapshot:
        """
        Fetch the node's full archive.

        Raises:
            NetworkError: If the node cannot be reached or answers with an error
            DecodeError: If the body is not a History response
        """
        try:
            async with self.session.get(self.messages_url) as resp:
                resp.raise_for_status()
                body = await resp.read()
        except aiohttp.ClientError as e:
            raise NetworkError(
                ErrorCode.E201_CONNECTION_FAILED,
                f"History request failed: {e}",
                {"url": self.messages_url},
            )

        response = Protocol.decode_response(body)
        if not isinstance(response, HistoryResponse):
            raise DecodeError(message="Expected a History response")
        return response.messages

    async def send(self, target: str, message: str) -> bool:
        """
        Send a message through the node.

        Returns:
            True if the node accepted it (HTTP 201)

        Raises:
            NetworkError: If the node cannot be reached
        """
        body = Protocol.encode_command(SendCommand(target=target, message=message))
        try:
            async with self.session.post(self.messages_url, data=body) as resp:
                accepted = resp.status == 201
                if not accepted:
                    logger.warning(f"Node rejected message to {target}: HTTP {resp.status}")
                return accepted
        except aiohttp.ClientError as e:
            raise NetworkError(
                ErrorCode.E201_CONNECTION_FAILED,
                f"Send request failed: {e}",
                {"url": self.messages_url, "target": target},
            )

    async def open_live_channel(self) -> None:
        """
        Attach to the node's live channel.

        Raises:
            NetworkError: If the WebSocket cannot be opened
        """
        try:
            # history replies over the live channel are not size-bounded
            self.ws = await self.session.ws_connect(self.ws_url, max_msg_size=0)
        except aiohttp.ClientError as e:
            raise NetworkError(
                ErrorCode.E201_CONNECTION_FAILED,
                f"Cannot open live channel: {e}",
                {"url": self.ws_url},
            )
        logger.info(f"Live channel open at {self.ws_url}")

    async def send_ws(self, command: ChatCommand) -> None:
        """Send a command frame over the live channel."""
        if self.ws is None or self.ws.closed:
            raise NetworkError(ErrorCode.E203_CONNECTION_CLOSED, "Live channel is not open")
        await self.ws.send_str(Protocol.encode_command(command).decode("utf-8"))

    async def listen(self) -> AsyncIterator[LiveFrame]:
        """
        Yield pushes and replies from the live channel until it closes.

        Frames that are neither a NewMessage event nor a chat response are
        skipped.
        """
        if self.ws is None:
            raise NetworkError(ErrorCode.E203_CONNECTION_CLOSED, "Live channel is not open")

        async for msg in self.ws:
            if msg.type != aiohttp.WSMsgType.TEXT:
                if msg.type == aiohttp.WSMsgType.ERROR:
                    logger.warning(f"Live channel error: {self.ws.exception()}")
                    break
                continue
            frame = parse_live_frame(msg.data)
            if frame is not None:
                yield frame

        logger.info("Live channel closed")

    async def close(self) -> None:
        """Close the live channel and, if we own it, the HTTP session."""
        if self.ws is not None:
            with contextlib.suppress(aiohttp.ClientError, ConnectionError):
                await self.ws.close()
            self.ws = None

        if self._owns_session and self._session is not None:
            await self._session.close()
        self._session = None


def parse_live_frame(text: str) -> Optional[LiveFrame]:
    """Decode a live-channel text frame, or return None if it is not recognised."""
    try:
        return Protocol.decode_event(text)
    except DecodeError:
        pass
    try:
        return Protocol.decode_response(text)
    except DecodeError as e:
        logger.debug(f"Ignoring unrecognised live frame: {e}")
        return None


class ConversationBook:
    """Viewer-side mirror of a node's archive.

    Loaded from a History snapshot and kept current by NewMessage pushes.
    Conversations opened by the user before any message exists are kept
    as drafts so they can be listed and selected.
    """

    def __init__(self, identity: Optional[str] = None):
        self.identity = identity
        self.conversations: Dict[str, List[ChatMessage]] = {}
        self.drafts: List[str] = []
        self.unread: Dict[str, int] = {}
        self.selected: Optional[str] = None

    def load(self, snapshot: Snapshot) -> None:
        """Replace the mirror with a fresh snapshot."""
        self.conversations = {key: list(messages) for key, messages in snapshot.items()}
        self.drafts = [key for key in self.drafts if key not in self.conversations]
        self.unread = {key: n for key, n in self.unread.items() if key in self.conversations}

    def apply(self, event: NewMessage) -> None:
        """Append a pushed message to its conversation."""
        self.conversations.setdefault(event.chat, []).append(
            ChatMessage(author=event.author, content=event.content)
        )
        if event.chat in self.drafts:
            self.drafts.remove(event.chat)
        if event.chat != self.selected:
            self.unread[event.chat] = self.unread.get(event.chat, 0) + 1

    def open(self, key: str) -> None:
        """Select a conversation, creating a draft if it is new."""
        if key not in self.conversations and key not in self.drafts:
            self.drafts.append(key)
        self.selected = key
        self.unread.pop(key, None)

    def chats(self) -> List[str]:
        """Conversation keys in display order, drafts last."""
        return list(self.conversations) + [key for key in self.drafts if key not in self.conversations]

    def messages(self, key: Optional[str] = None) -> List[ChatMessage]:
        key = key if key is not None else self.selected
        if key is None:
            return []
        return list(self.conversations.get(key, ()))

    def is_mine(self, message: ChatMessage) -> bool:
        return self.identity is not None and message.author == self.identity
