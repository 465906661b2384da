"""
RelayChat - Node event loop.

Every inbound event (peer request, HTTP request, WebSocket open, frame or
close) is queued and handled by a single consumer task, one at a time and
to completion, including any outbound forward. Transport handlers submit an
event and await its reply.

A failure while handling one event is logged and the event resolves to no
reply; the loop keeps going.
"""

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional

from .constants import NO_CHANNEL
from .errors import UnsupportedMethodError
from .protocol import ChatResponse, HistoryResponse, Protocol
from .router import ConversationRouter

logger = logging.getLogger(__name__)


class EventKind(Enum):
    """Inbound event types."""

    PEER_REQUEST = "peer_request"
    HTTP_REQUEST = "http_request"
    WS_OPEN = "ws_open"
    WS_FRAME = "ws_frame"
    WS_CLOSE = "ws_close"


@dataclass
class InboundEvent:
    """One unit of work for the node event loop."""

    kind: EventKind
    source: str
    body: bytes = b""
    method: str = ""
    channel_id: int = NO_CHANNEL
    reply: Optional[asyncio.Future] = field(default=None, repr=False)


@dataclass(frozen=True)
class HttpReply:
    """Status and body for the HTTP surface to send back."""

    status: int
    body: bytes = b""
    content_type: Optional[str] = None


def history_reply(response: HistoryResponse, status: int = 200) -> HttpReply:
    return HttpReply(
        status=status, body=Protocol.encode_response(response), content_type="application/json"
    )


class _ResponseCollector:
    """Responder that keeps what the router sends back."""

    def __init__(self):
        self.responses: List[ChatResponse] = []

    async def __call__(self, response: ChatResponse) -> None:
        self.responses.append(response)

    @property
    def first(self) -> Optional[ChatResponse]:
        return self.responses[0] if self.responses else None


class NodeEventLoop:
    """Serializes all inbound events through one router."""

    def __init__(self, router: ConversationRouter):
        self.router = router
        self.queue: "asyncio.Queue[InboundEvent]" = asyncio.Queue()
        self.task: Optional[asyncio.Task] = None
        self.running = False
        self.processed = 0
        self.failed = 0

    def start(self) -> None:
        """Start the consumer task."""
        if self.task is not None and not self.task.done():
            return
        self.running = True
        self.task = asyncio.create_task(self._consume())

    async def stop(self) -> None:
        """Stop the consumer and release anyone still waiting for a reply."""
        self.running = False
        if self.task is not None and not self.task.done():
            self.task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self.task
        self.task = None

        while not self.queue.empty():
            event = self.queue.get_nowait()
            self._resolve(event, None)

    async def submit(self, event: InboundEvent) -> Any:
        """
        Queue an event and wait for its reply.

        Returns:
            Reply for the transport, or None for "no response"
        """
        if not self.running:
            logger.debug(f"Event loop stopped, dropping {event.kind.value} event")
            return None
        event.reply = asyncio.get_running_loop().create_future()
        await self.queue.put(event)
        return await event.reply

    def post(self, event: InboundEvent) -> None:
        """Queue an event without waiting for it."""
        if self.running:
            self.queue.put_nowait(event)

    async def _consume(self) -> None:
        logger.debug("Event loop started")
        while self.running:
            event = await self.queue.get()
            try:
                result = await self.dispatch(event)
                self.processed += 1
            except asyncio.CancelledError:
                self._resolve(event, None)
                raise
            except Exception as e:
                self.failed += 1
                logger.error(f"Error handling {event.kind.value} event from {event.source}: {e}", exc_info=True)
                result = None
            self._resolve(event, result)

    @staticmethod
    def _resolve(event: InboundEvent, result: Any) -> None:
        if event.reply is not None and not event.reply.done():
            event.reply.set_result(result)

    async def dispatch(self, event: InboundEvent) -> Any:
        """Handle one event. Runs on the consumer task only."""
        if event.kind == EventKind.PEER_REQUEST:
            return await self._handle_peer_request(event)
        if event.kind == EventKind.HTTP_REQUEST:
            return await self._handle_http_request(event)
        if event.kind == EventKind.WS_OPEN:
            self.router.open_live_channel(event.channel_id)
            return None
        if event.kind == EventKind.WS_FRAME:
            return await self._handle_ws_frame(event)
        if event.kind == EventKind.WS_CLOSE:
            # the registry keeps the stale id until another viewer attaches
            logger.info(f"Live channel {event.channel_id} closed")
            return None
        raise ValueError(f"Unknown event kind: {event.kind}")

    async def _handle_peer_request(self, event: InboundEvent) -> Optional[bytes]:
        collector = _ResponseCollector()
        await self.router.handle_request(event.source, event.body, False, respond=collector)
        if collector.first is None:
            return None
        return Protocol.encode_response(collector.first)

    async def _handle_http_request(self, event: InboundEvent) -> HttpReply:
        try:
            if event.method == "GET":
                snapshot = await self.router.handle_history(True)
                return history_reply(HistoryResponse(messages=snapshot))

            if event.method == "POST":
                collector = _ResponseCollector()
                await self.router.handle_request(event.source, event.body, True, respond=collector)
                if isinstance(collector.first, HistoryResponse):
                    return history_reply(collector.first)
                return HttpReply(status=201)

            raise UnsupportedMethodError(
                message=f"Method not allowed: {event.method}", details={"method": event.method}
            )
        except UnsupportedMethodError as e:
            logger.debug(str(e))
            return HttpReply(status=405)

    async def _handle_ws_frame(self, event: InboundEvent) -> Optional[str]:
        collector = _ResponseCollector()
        await self.router.handle_request(event.source, event.body, True, respond=collector)
        if collector.first is None:
            return None
        return Protocol.encode_response(collector.first).decode("utf-8")
