"""
RelayChat - Main entry point for the terminal viewer.

The viewer attaches to an already running node (see ``relaychat-node``).
"""

import argparse
import logging
import sys

from . import __version__
from .client import RelayClient
from .config import Config
from .constants import CONFIG_FILENAME, DEFAULT_HTTP_HOST, LOG_FILENAME, LOG_FORMAT
from .errors import ConfigError
from .ui import RelayChatApp
from .utils import default_data_dir, validate_node_id


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="RelayChat - terminal viewer for a relay node",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  relaychat --identity alice                          # Node on the default port
  relaychat --url http://127.0.0.1:8081 --identity bob
        """,
    )

    parser.add_argument("--version", action="version", version=f"RelayChat {__version__}")
    parser.add_argument(
        "--url",
        type=str,
        default=None,
        help="Base URL of the node's HTTP surface (default: from config.toml)",
    )
    parser.add_argument(
        "--identity",
        type=str,
        default=None,
        help="The node's identity, used to mark your own messages",
    )
    parser.add_argument("--config", type=str, default=None, help="Path to the node's config.toml")
    parser.add_argument("--debug", action="store_true", help="Log client activity to a file")
    return parser


def main():
    """Main entry point for the RelayChat viewer."""
    args = build_parser().parse_args()
    data_dir = default_data_dir()

    # the terminal belongs to textual, so logs only go to a file
    if args.debug:
        data_dir.mkdir(parents=True, exist_ok=True)
        logging.basicConfig(
            filename=str(data_dir / f"viewer-{LOG_FILENAME}"), level=logging.DEBUG, format=LOG_FORMAT
        )

    try:
        config = Config(args.config) if args.config else Config(data_dir / CONFIG_FILENAME)
    except ConfigError as e:
        print(f"Cannot read configuration: {e}")
        sys.exit(1)

    identity = args.identity or config.get("node", "identity") or None
    if identity is not None and not validate_node_id(identity):
        print(f"Invalid identity: {identity!r}")
        sys.exit(1)

    url = args.url
    if url is None:
        host = config.get("http", "host", DEFAULT_HTTP_HOST)
        if host in ("0.0.0.0", "::"):
            host = DEFAULT_HTTP_HOST
        url = f"http://{host}:{config.get('http', 'port')}"

    client = RelayClient(
        url,
        messages_path=config.get("http", "messages_path"),
        ws_path=config.get("http", "ws_path"),
    )
    app = RelayChatApp(client, identity)
    app.run()


if __name__ == "__main__":
    main()
