"""
RelayChat - Relay node daemon using asyncio.

Wires the archive, live channel registry and conversation router to the
peer listener and the HTTP/WebSocket surface, and runs the single event
loop that serializes every inbound event.
"""

import argparse
import asyncio
import logging
import platform
import signal
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from . import __version__
from .config import Config
from .constants import (
    CONFIG_FILENAME,
    LOG_BACKUP_COUNT,
    LOG_DATE_FORMAT,
    LOG_FILENAME,
    LOG_FORMAT,
    LOG_MAX_BYTES,
)
from .errors import ConfigError, ErrorCode, RelayError
from .events import EventKind, InboundEvent, NodeEventLoop
from .http_server import HttpSurface, WebSocketHub
from .live_channel import LiveChannelRegistry
from .message import MessageArchive
from .network import PeerClient, PeerServer
from .router import ConversationRouter
from .utils import default_data_dir, parse_peer_spec

logger = logging.getLogger(__name__)


def setup_logging(config: Config, data_dir: Optional[Path] = None, debug: bool = False) -> None:
    """Configure the root logger from the ``[logging]`` section."""
    level_name = "DEBUG" if debug else str(config.get("logging", "level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT)

    for handler in list(root.handlers):
        root.removeHandler(handler)

    if config.get("logging", "console_logging", True):
        console = logging.StreamHandler()
        console.setFormatter(formatter)
        root.addHandler(console)

    if config.get("logging", "file_logging", False) and data_dir is not None:
        data_dir.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            data_dir / LOG_FILENAME, maxBytes=LOG_MAX_BYTES, backupCount=LOG_BACKUP_COUNT
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    # aiohttp logs every request at INFO
    logging.getLogger("aiohttp.access").setLevel(max(level, logging.WARNING))


class RelayServer:
    """A single relay node."""

    def __init__(self, config: Config, data_dir: Optional[Path] = None):
        """
        Initialize the node. Nothing is bound until ``start()``.

        Args:
            config: Node configuration (identity must be set)
            data_dir: Directory for logs

        Raises:
            ConfigError: If the configuration is invalid
        """
        config.validate()
        if config.get("http", "messages_path") == config.get("http", "ws_path"):
            raise ConfigError(
                ErrorCode.E703_INVALID_CONFIG,
                "messages_path and ws_path must differ",
                {"path": config.get("http", "ws_path")},
            )

        self.config = config
        self.data_dir = Path(data_dir) if data_dir else None
        self.identity: str = config.get("node", "identity")
        self.running = False
        self._stopped = asyncio.Event()

        self.peer_client = PeerClient(
            self.identity,
            directory=config.peers(),
            connect_timeout=config.get("network", "connect_timeout"),
        )
        self.hub = WebSocketHub()
        self.archive = MessageArchive()
        self.live_channel = LiveChannelRegistry(sender=self.hub.send_text)
        self.router = ConversationRouter(
            self.identity,
            archive=self.archive,
            live_channel=self.live_channel,
            forwarder=self.peer_client,
            forward_timeout=config.get("network", "forward_timeout"),
        )
        self.events = NodeEventLoop(self.router)

        self.peer_server = PeerServer(
            self._on_peer_request,
            host=config.get("network", "host"),
            port=config.get("network", "port"),
            read_timeout=config.get("network", "connect_timeout"),
        )
        self.http = HttpSurface(
            self.events,
            self.identity,
            hub=self.hub,
            messages_path=config.get("http", "messages_path"),
            ws_path=config.get("http", "ws_path"),
            ui_dir=config.get("http", "ui_dir") or None,
            max_body_size=config.get("limits", "max_message_size"),
        )

    async def _on_peer_request(self, source: str, ipc: bytes) -> Optional[bytes]:
        return await self.events.submit(
            InboundEvent(kind=EventKind.PEER_REQUEST, source=source, body=ipc)
        )

    @property
    def peer_port(self) -> int:
        return self.peer_server.port

    @property
    def http_port(self) -> Optional[int]:
        return self.http.port

    async def start(self, install_signal_handlers: bool = False) -> None:
        """
        Bind listeners and start the event loop.

        Raises:
            ServerError: If a listener cannot bind
        """
        logger.info(f"{self.identity}: begin")
        self.events.start()
        try:
            await self.peer_server.start()
            await self.http.start(self.config.get("http", "host"), self.config.get("http", "port"))
        except RelayError:
            await self.stop()
            raise

        if install_signal_handlers:
            self._install_signal_handlers()

        self.running = True
        self._stopped.clear()
        logger.info(
            f"Node '{self.identity}' ready (peer port {self.peer_port}, "
            f"http port {self.http_port}, {len(self.peer_client.directory)} known peer(s))"
        )

    async def stop(self) -> None:
        """Stop listeners and the event loop."""
        logger.info("Stopping node...")
        self.running = False
        await self.http.stop()
        await self.peer_server.stop()
        await self.events.stop()
        self._stopped.set()
        logger.info(f"Node stopped ({self.archive.total_messages()} message(s) archived)")

    async def run(self) -> None:
        """Block until the node is stopped."""
        await self._stopped.wait()

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        signals = [signal.SIGINT]
        if platform.system() != "Windows":
            signals.append(signal.SIGTERM)

        for sig in signals:
            try:
                loop.add_signal_handler(sig, lambda s=sig: asyncio.create_task(self._on_signal(s)))
            except NotImplementedError:
                logger.debug(f"Signal handlers not supported for {sig!r}")

    async def _on_signal(self, signum: int) -> None:
        logger.info(f"Received signal {signum}, shutting down")
        if self.running:
            await self.stop()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="RelayChat node - peer-to-peer chat relay with an HTTP/WebSocket API",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  relaychat-node --identity alice
  relaychat-node --identity bob --http-port 8081 --peer-port 9001 --peer alice=127.0.0.1:9000
  relaychat-node --config ~/.relaychat/config.toml
        """,
    )

    parser.add_argument("--version", action="version", version=f"RelayChat {__version__}")
    parser.add_argument("--identity", type=str, default=None, help="This node's identifier")
    parser.add_argument("--config", type=str, default=None, help="Path to config.toml")
    parser.add_argument(
        "--data-dir",
        type=str,
        default=None,
        help="Directory holding config.toml and logs",
    )
    parser.add_argument("--http-port", type=int, default=None, help="HTTP/WebSocket port")
    parser.add_argument("--peer-port", type=int, default=None, help="Peer channel port")
    parser.add_argument(
        "--peer",
        action="append",
        default=[],
        metavar="NAME=HOST:PORT",
        help="Add a peer to the directory (repeatable)",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    return parser


def load_config(args: argparse.Namespace, data_dir: Path) -> Config:
    """Build the node config from the config file and command line overrides."""
    config_path = Path(args.config).expanduser() if args.config else data_dir / CONFIG_FILENAME
    config = Config(config_path)

    if args.identity:
        config.set("node", "identity", args.identity)
    if args.http_port is not None:
        config.set("http", "port", args.http_port)
    if args.peer_port is not None:
        config.set("network", "port", args.peer_port)

    for spec in args.peer:
        parsed = parse_peer_spec(spec)
        if parsed is None:
            raise ConfigError(
                ErrorCode.E703_INVALID_CONFIG,
                f"Invalid --peer value: {spec!r} (expected NAME=HOST:PORT)",
                {"peer": spec},
            )
        config.set("peers", parsed[0], parsed[1])

    return config


async def async_main(argv: Optional[list] = None) -> int:
    """Async main entry point for the node daemon."""
    args = build_parser().parse_args(argv)

    data_dir = Path(args.data_dir).expanduser().resolve() if args.data_dir else default_data_dir()

    try:
        config = load_config(args, data_dir)
        setup_logging(config, data_dir, debug=args.debug)
        server = RelayServer(config, data_dir)
        await server.start(install_signal_handlers=True)
    except RelayError as e:
        logging.basicConfig(format=LOG_FORMAT)
        logger.error(str(e))
        return 1

    await server.run()
    return 0


def main():
    """Main entry point - runs async_main."""
    sys.exit(asyncio.run(async_main()))


if __name__ == "__main__":
    main()
