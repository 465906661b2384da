"""
RelayChat - HTTP and WebSocket surface using aiohttp.

Exposes the local client API:

- ``GET  <messages_path>``: full archive as a History response
- ``POST <messages_path>``: Send (201) or History (200) command body
- any other method on ``<messages_path>``: 405
- ``GET  <ws_path>``: WebSocket live channel; text frames carry the same
  commands as POST bodies
- ``<ui_dir>`` served under ``/ui/`` when configured

All work is handed to the node event loop; this module only moves bytes.
"""

import itertools
import logging
from pathlib import Path
from typing import Dict, Optional

from aiohttp import WSMsgType, web

from .constants import (
    DEFAULT_HTTP_HOST,
    DEFAULT_HTTP_PORT,
    DEFAULT_MESSAGES_PATH,
    DEFAULT_WS_PATH,
    MAX_MESSAGE_SIZE,
    UI_STATIC_PREFIX,
)
from .errors import ErrorCode, ServerError
from .events import EventKind, HttpReply, InboundEvent, NodeEventLoop

logger = logging.getLogger(__name__)


class WebSocketHub:
    """Maps live channel ids to open WebSocket responses."""

    def __init__(self):
        self.sockets: Dict[int, web.WebSocketResponse] = {}
        self._ids = itertools.count(1)

    def register(self, ws: web.WebSocketResponse) -> int:
        channel_id = next(self._ids)
        self.sockets[channel_id] = ws
        return channel_id

    def unregister(self, channel_id: int) -> None:
        self.sockets.pop(channel_id, None)

    async def send_text(self, channel_id: int, text: str) -> None:
        """Send a text frame. Pushes to closed or unknown channels are dropped."""
        ws = self.sockets.get(channel_id)
        if ws is None or ws.closed:
            logger.debug(f"Live channel {channel_id} is gone, push dropped")
            return
        try:
            await ws.send_str(text)
        except ConnectionError as e:
            logger.debug(f"Push to live channel {channel_id} failed: {e}")

    async def close_all(self) -> None:
        for ws in list(self.sockets.values()):
            await ws.close()
        self.sockets.clear()


class HttpSurface:
    """aiohttp application bound to the node event loop.

    ``max_body_size`` caps POST bodies and WebSocket frames; 0 leaves them
    unbounded.
    """

    def __init__(
        self,
        events: NodeEventLoop,
        local_identity: str,
        hub: Optional[WebSocketHub] = None,
        messages_path: str = DEFAULT_MESSAGES_PATH,
        ws_path: str = DEFAULT_WS_PATH,
        ui_dir: Optional[str] = None,
        max_body_size: int = MAX_MESSAGE_SIZE,
    ):
        self.events = events
        self.local_identity = local_identity
        self.hub = hub if hub is not None else WebSocketHub()
        self.messages_path = messages_path
        self.ws_path = ws_path
        self.ui_dir = ui_dir
        self.max_body_size = max_body_size

        self.app = self.build_app()
        self.runner: Optional[web.AppRunner] = None
        self.port: Optional[int] = None

    def build_app(self) -> web.Application:
        """Create the aiohttp application and its routes."""
        app = web.Application(client_max_size=self.max_body_size)
        app.router.add_route("*", self.messages_path, self.handle_messages)
        app.router.add_get(self.ws_path, self.handle_websocket)

        if self.ui_dir:
            ui_path = Path(self.ui_dir).expanduser()
            if ui_path.is_dir():
                app.router.add_static(UI_STATIC_PREFIX, ui_path)
                logger.info(f"Serving UI from {ui_path} at {UI_STATIC_PREFIX}/")
            else:
                logger.warning(f"UI directory not found, not serving: {ui_path}")

        app.on_shutdown.append(self._on_shutdown)
        return app

    async def start(self, host: str = DEFAULT_HTTP_HOST, port: int = DEFAULT_HTTP_PORT) -> int:
        """
        Start serving.

        Returns:
            The bound port

        Raises:
            ServerError: If the listener cannot bind
        """
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()
        site = web.TCPSite(self.runner, host, port)
        try:
            await site.start()
        except OSError as e:
            await self.runner.cleanup()
            self.runner = None
            raise ServerError(
                ErrorCode.E801_SERVER_START_FAILED,
                f"Failed to start HTTP server on {host}:{port}: {e}",
                {"host": host, "port": port, "error": str(e)},
            )

        self.port = self.runner.addresses[0][1]
        logger.info(f"HTTP on http://{host}:{self.port}{self.messages_path}, WebSocket on {self.ws_path}")
        return self.port

    async def stop(self) -> None:
        if self.runner is not None:
            await self.runner.cleanup()
            self.runner = None
            logger.info("HTTP server stopped")

    async def _on_shutdown(self, app: web.Application) -> None:
        await self.hub.close_all()

    async def handle_messages(self, request: web.Request) -> web.Response:
        """Handle any method on the messages path."""
        body = await request.read() if request.method == "POST" else b""

        reply = await self.events.submit(
            InboundEvent(
                kind=EventKind.HTTP_REQUEST,
                source=self.local_identity,
                method=request.method,
                body=body,
            )
        )

        if not isinstance(reply, HttpReply):
            return web.Response(status=500)
        return web.Response(status=reply.status, body=reply.body, content_type=reply.content_type)

    async def handle_websocket(self, request: web.Request) -> web.WebSocketResponse:
        """Register a live channel and handle its command frames."""
        ws = web.WebSocketResponse(max_msg_size=self.max_body_size)
        await ws.prepare(request)

        channel_id = self.hub.register(ws)
        await self.events.submit(
            InboundEvent(kind=EventKind.WS_OPEN, source=self.local_identity, channel_id=channel_id)
        )

        try:
            async for msg in ws:
                if msg.type == WSMsgType.TEXT:
                    data = msg.data.encode("utf-8")
                elif msg.type == WSMsgType.BINARY:
                    data = msg.data
                elif msg.type == WSMsgType.ERROR:
                    logger.debug(f"Live channel {channel_id} error: {ws.exception()}")
                    break
                else:
                    continue

                reply = await self.events.submit(
                    InboundEvent(
                        kind=EventKind.WS_FRAME,
                        source=self.local_identity,
                        body=data,
                        channel_id=channel_id,
                    )
                )
                if reply is not None and not ws.closed:
                    await ws.send_str(reply)
        finally:
            self.hub.unregister(channel_id)
            self.events.post(
                InboundEvent(kind=EventKind.WS_CLOSE, source=self.local_identity, channel_id=channel_id)
            )

        return ws
