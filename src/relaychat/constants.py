"""
RelayChat - Global Constants and Configuration Values

This module defines all constants used throughout the RelayChat node and
viewer. All magic numbers and configuration defaults are centralized here.
"""

# Version Information
VERSION = "0.3.0"
APP_NAME = "RelayChat"

# HTTP / WebSocket Surface
DEFAULT_HTTP_HOST = "127.0.0.1"
DEFAULT_HTTP_PORT = 8080
DEFAULT_MESSAGES_PATH = "/messages"
DEFAULT_WS_PATH = "/"
UI_STATIC_PREFIX = "/ui"

# Peer Channel
DEFAULT_PEER_HOST = "0.0.0.0"
DEFAULT_PEER_PORT = 9000

# Timeouts (seconds)
FORWARD_TIMEOUT = 5
CONNECT_TIMEOUT = 5

# Message Limits
MAX_MESSAGE_SIZE = 0  # HTTP body / WebSocket frame cap, 0 = unbounded
MAX_FRAME_PAYLOAD = 0xFFFFFFFF  # largest length the peer frame header can carry
MAX_NODE_ID_LENGTH = 253

# Live Channel
NO_CHANNEL = 0  # channel ids start at 1

# File Paths
DEFAULT_DATA_DIR = "~/.relaychat"
CONFIG_FILENAME = "config.toml"
LOG_FILENAME = "relaychat.log"

# Logging Configuration
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_MAX_BYTES = 10 * 1024 * 1024  # 10 MB
LOG_BACKUP_COUNT = 5

# Environment override prefix (RELAYCHAT_SECTION_KEY)
ENV_PREFIX = "RELAYCHAT"
