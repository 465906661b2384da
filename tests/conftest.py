"""
Pytest configuration and fixtures for RelayChat tests.

Provides common fixtures and test doubles for the unit and transport tests.
"""

import asyncio
import shutil
import tempfile
from pathlib import Path
from typing import Dict, Generator, List, Optional, Tuple

import pytest

from relaychat.config import Config
from relaychat.errors import RemoteTimeoutError
from relaychat.live_channel import LiveChannelRegistry
from relaychat.message import MessageArchive
from relaychat.protocol import AckResponse, Protocol
from relaychat.router import ConversationRouter


class FakeForwarder:
    """Peer forwarder that records calls and answers with a fixed reply.

    Set ``error`` to make every call raise, or ``hang`` to make every call
    run into its timeout.
    """

    def __init__(self, reply: Optional[bytes] = None, error: Optional[Exception] = None):
        self.reply = reply if reply is not None else Protocol.encode_response(AckResponse())
        self.error = error
        self.hang = False
        self.calls: List[Tuple[str, bytes, float]] = []

    async def send_and_await_response(self, target: str, ipc: bytes, timeout: float) -> bytes:
        self.calls.append((target, ipc, timeout))
        if self.hang:
            try:
                await asyncio.wait_for(asyncio.Event().wait(), timeout=timeout)
            except asyncio.TimeoutError:
                raise RemoteTimeoutError(details={"peer": target, "timeout": timeout})
        if self.error is not None:
            raise self.error
        return self.reply


class RecordingSender:
    """Channel sender that keeps every pushed text frame."""

    def __init__(self, error: Optional[Exception] = None):
        self.frames: List[Tuple[int, str]] = []
        self.error = error

    async def __call__(self, channel_id: int, text: str) -> None:
        if self.error is not None:
            raise self.error
        self.frames.append((channel_id, text))

    def events(self):
        return [Protocol.decode_event(text) for _, text in self.frames]


class RecordingResponder:
    """Responder that keeps every chat response."""

    def __init__(self):
        self.responses = []

    async def __call__(self, response) -> None:
        self.responses.append(response)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """
    Create a temporary directory for test data.

    Yields:
        Path: Temporary directory path

    Cleanup:
        Automatically removes directory after test
    """
    tmp = Path(tempfile.mkdtemp(prefix="relaychat_test_"))
    try:
        yield tmp
    finally:
        shutil.rmtree(tmp, ignore_errors=True)


@pytest.fixture
def archive() -> MessageArchive:
    return MessageArchive()


@pytest.fixture
def sender() -> RecordingSender:
    return RecordingSender()


@pytest.fixture
def live_channel(sender: RecordingSender) -> LiveChannelRegistry:
    return LiveChannelRegistry(sender=sender)


@pytest.fixture
def forwarder() -> FakeForwarder:
    return FakeForwarder()


@pytest.fixture
def responder() -> RecordingResponder:
    return RecordingResponder()


@pytest.fixture
def router(archive, live_channel, forwarder) -> ConversationRouter:
    """Router for node ``alice`` with recording doubles."""
    return ConversationRouter(
        "alice", archive=archive, live_channel=live_channel, forwarder=forwarder
    )


@pytest.fixture
def node_config_factory(temp_dir: Path):
    """
    Build configs for nodes listening on ephemeral localhost ports.

    Returns:
        Callable ``(identity, peers) -> Config``
    """

    def make(identity: str, peers: Optional[Dict[str, str]] = None) -> Config:
        config = Config(temp_dir / f"{identity}.toml")
        config.set("node", "identity", identity)
        config.set("http", "host", "127.0.0.1")
        config.set("http", "port", 0)
        config.set("network", "host", "127.0.0.1")
        config.set("network", "port", 0)
        config.set("network", "forward_timeout", 2)
        config.set("network", "connect_timeout", 2)
        for name, address in (peers or {}).items():
            config.set("peers", name, address)
        return config

    return make


# Pytest marks
def pytest_configure(config):
    """
    Configure pytest markers.

    Args:
        config: Pytest configuration object
    """
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )


# Test collection hooks
def pytest_collection_modifyitems(config, items):
    """
    Add the unit marker to tests in the unit/ directory.

    Args:
        config: Pytest configuration
        items: List of collected test items
    """
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
