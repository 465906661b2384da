"""
RelayChat - Configuration Management

Node settings come from three layers, later ones winning:

1. ``DEFAULT_CONFIG`` below
2. the TOML config file (``~/.relaychat/config.toml`` by default)
3. ``RELAYCHAT_<SECTION>_<KEY>`` environment variables

The ``[peers]`` table is the static peer directory: ``node_id = "host:port"``.
"""

import copy
import os
import re
import sys
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

# Python 3.11+ has tomllib built-in, older versions need tomli
if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from .constants import (
    CONFIG_FILENAME,
    CONNECT_TIMEOUT,
    DEFAULT_DATA_DIR,
    DEFAULT_HTTP_HOST,
    DEFAULT_HTTP_PORT,
    DEFAULT_MESSAGES_PATH,
    DEFAULT_PEER_HOST,
    DEFAULT_PEER_PORT,
    DEFAULT_WS_PATH,
    ENV_PREFIX,
    FORWARD_TIMEOUT,
    MAX_MESSAGE_SIZE,
)
from .errors import ConfigError, ErrorCode
from .utils import parse_peer_address, validate_node_id, validate_port

_BARE_KEY = re.compile(r"^[A-Za-z0-9_-]+$")
_TRUE_VALUES = ("true", "1", "yes", "on")

DEFAULT_CONFIG: Dict[str, Any] = {
    "node": {
        "identity": "",
    },
    "http": {
        "host": DEFAULT_HTTP_HOST,
        "port": DEFAULT_HTTP_PORT,
        "messages_path": DEFAULT_MESSAGES_PATH,
        "ws_path": DEFAULT_WS_PATH,
        "ui_dir": "",
    },
    "network": {
        "host": DEFAULT_PEER_HOST,
        "port": DEFAULT_PEER_PORT,
        "forward_timeout": FORWARD_TIMEOUT,
        "connect_timeout": CONNECT_TIMEOUT,
    },
    "limits": {
        "max_message_size": MAX_MESSAGE_SIZE,
    },
    "logging": {
        "level": "INFO",
        "file_logging": False,
        "console_logging": True,
    },
    "peers": {},
}


def merge_sections(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Return ``base`` with ``override`` layered on top, recursing into tables."""
    merged = dict(base)
    for key, value in override.items():
        if isinstance(merged.get(key), dict) and isinstance(value, dict):
            merged[key] = merge_sections(merged[key], value)
        else:
            merged[key] = value
    return merged


def _coerce(raw: str, current: Any) -> Any:
    """Convert an environment string to the type of the value it replaces.

    Raises:
        ValueError: If ``raw`` does not parse as that type
    """
    if isinstance(current, bool):
        return raw.strip().lower() in _TRUE_VALUES
    if isinstance(current, int):
        return int(raw)
    if isinstance(current, float):
        return float(raw)
    return raw


def _toml_key(key: str) -> str:
    # dotted node ids must be quoted or TOML reads them as nested tables
    return key if _BARE_KEY.match(key) else f'"{key}"'


def _toml_value(value: Any) -> Optional[str]:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        escaped = value.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    return None


def dump_toml(data: Dict[str, Any]) -> str:
    """Render a two-level config dict (tables of scalars) as TOML text."""
    lines = []
    for section, settings in data.items():
        if not isinstance(settings, dict):
            continue
        lines.append(f"[{section}]")
        for key, value in settings.items():
            rendered = _toml_value(value)
            if rendered is not None:
                lines.append(f"{_toml_key(key)} = {rendered}")
        lines.append("")
    return "\n".join(lines)


class Config:
    """Configuration for one relay node.

    Attributes:
        config_path: Path of the TOML file (it need not exist)
        data: Effective configuration, section -> key -> value
    """

    def __init__(self, config_path: Optional[Path] = None):
        """
        Load configuration.

        Args:
            config_path: TOML file to read; defaults to the per-user data dir

        Raises:
            ConfigError: If the file exists but cannot be read or parsed
        """
        if config_path is None:
            config_path = Path(DEFAULT_DATA_DIR).expanduser() / CONFIG_FILENAME

        self.config_path = Path(config_path)
        self.data = self.load()

    def load(self) -> Dict[str, Any]:
        data = copy.deepcopy(DEFAULT_CONFIG)

        if self.config_path.exists():
            try:
                with open(self.config_path, "rb") as f:
                    data = merge_sections(data, tomllib.load(f))
            except (OSError, tomllib.TOMLDecodeError) as e:
                raise ConfigError(
                    ErrorCode.E704_CONFIG_PARSE_ERROR,
                    f"Failed to parse configuration file: {e}",
                    {"path": str(self.config_path), "error": str(e)},
                )

        self._apply_env_overrides(data)
        return data

    def _apply_env_overrides(self, data: Dict[str, Any]) -> None:
        """Apply ``RELAYCHAT_<SECTION>_<KEY>`` variables to known keys in place.

        A value that does not convert to the key's type is ignored.
        """
        for section, settings in data.items():
            if not isinstance(settings, dict):
                continue
            for key, current in settings.items():
                raw = os.environ.get(f"{ENV_PREFIX}_{section.upper()}_{key.upper()}")
                if raw is None:
                    continue
                try:
                    settings[key] = _coerce(raw, current)
                except ValueError:
                    pass

    def get(self, section: str, key: str, default: Any = None) -> Any:
        return self.data.get(section, {}).get(key, default)

    def set(self, section: str, key: str, value: Any) -> None:
        self.data.setdefault(section, {})[key] = value

    def peers(self) -> Dict[str, Tuple[str, int]]:
        """
        Parse the ``[peers]`` table.

        Returns:
            node id -> (host, port)

        Raises:
            ConfigError: If an entry is not ``node_id = "host:port"``
        """
        directory: Dict[str, Tuple[str, int]] = {}
        for node_id, address in self.data.get("peers", {}).items():
            parsed = parse_peer_address(address)
            if parsed is None or not validate_node_id(node_id):
                raise ConfigError(
                    ErrorCode.E703_INVALID_CONFIG,
                    f"Invalid peer entry: {node_id} = {address!r}",
                    {"peer": node_id, "address": address},
                )
            directory[node_id] = parsed
        return directory

    def validate(self) -> None:
        """
        Check what a node needs before it can start.

        Raises:
            ConfigError: If the identity, a listener port or a peer entry is invalid
        """
        identity = self.get("node", "identity")
        if not validate_node_id(identity):
            raise ConfigError(
                ErrorCode.E703_INVALID_CONFIG,
                f"Invalid node identity: {identity!r}",
                {"identity": identity},
            )

        for section in ("http", "network"):
            port = self.get(section, "port")
            if not isinstance(port, int) or not validate_port(port, allow_ephemeral=True):
                raise ConfigError(
                    ErrorCode.E703_INVALID_CONFIG,
                    f"Invalid {section} port: {port!r}",
                    {"section": section, "port": port},
                )

        self.peers()

    def save(self) -> None:
        """
        Write the effective configuration to ``config_path``.

        Raises:
            ConfigError: If the file cannot be written
        """
        self._write(self.config_path, dump_toml(self.data))

    def to_dict(self) -> Dict[str, Any]:
        return copy.deepcopy(self.data)

    @staticmethod
    def _write(path: Path, text: str) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(text)
        except OSError as e:
            raise ConfigError(
                ErrorCode.E702_CONFIG_SAVE_FAILED,
                f"Failed to write configuration: {e}",
                {"path": str(path), "error": str(e)},
            )

    @classmethod
    def create_example(cls, path: Path) -> None:
        """
        Write an example config for node ``alice`` with one peer, ``bob``.

        Raises:
            ConfigError: If the file cannot be written
        """
        example = copy.deepcopy(DEFAULT_CONFIG)
        example["node"]["identity"] = "alice"
        example["peers"] = {"bob": f"127.0.0.1:{DEFAULT_PEER_PORT + 1}"}

        header = "# RelayChat Configuration File\n# Generated example configuration\n\n"
        cls._write(Path(path), header + dump_toml(example))
