"""
RelayChat - Peer channel and multi-node tests.

Runs real listeners on ephemeral localhost ports.
"""

import asyncio
import logging
import socket

import pytest

from relaychat.client import RelayClient
from relaychat.errors import ErrorCode, NetworkError, RemoteTimeoutError
from relaychat.message import ChatMessage, MessageArchive, NewMessage
from relaychat.network import PeerClient, PeerServer
from relaychat.protocol import (
    AckResponse,
    HistoryCommand,
    HistoryResponse,
    Protocol,
    SendCommand,
)
from relaychat.server import RelayServer


def unused_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def client_for(node: RelayServer) -> RelayClient:
    return RelayClient(f"http://127.0.0.1:{node.http_port}")


class TestPeerDirectory:
    """Tests for the static peer directory."""

    def test_add_and_replace(self):
        client = PeerClient("alice", {"bob": ("127.0.0.1", 9001)})
        assert client.lookup("bob") == ("127.0.0.1", 9001)
        client.add_peer("bob", "::1", 9002)
        assert client.lookup("bob") == ("::1", 9002)


@pytest.mark.asyncio
class TestPeerChannel:
    """Tests for PeerServer and PeerClient."""

    async def test_round_trip(self):
        received = []

        async def on_request(source, ipc):
            received.append((source, ipc))
            return Protocol.encode_response(AckResponse())

        server = PeerServer(on_request, host="127.0.0.1", port=0)
        port = await server.start()
        try:
            client = PeerClient("alice", {"bob": ("127.0.0.1", port)})
            ipc = Protocol.encode_command(SendCommand("bob", "hi"))
            reply = await client.send_and_await_response("bob", ipc, timeout=2)
        finally:
            await server.stop()

        assert Protocol.decode_response(reply) == AckResponse()
        assert received == [("alice", ipc)]

    async def test_large_history_reply(self):
        archive = MessageArchive()
        for _ in range(3):
            archive.append("bob", ChatMessage("bob", "x" * (4 * 1024 * 1024)))

        async def on_request(source, ipc):
            return Protocol.encode_response(HistoryResponse(archive.snapshot()))

        server = PeerServer(on_request, host="127.0.0.1", port=0)
        port = await server.start()
        try:
            client = PeerClient("alice", {"bob": ("127.0.0.1", port)})
            reply = await client.send_and_await_response("bob", b'"History"', timeout=10)
        finally:
            await server.stop()

        history = Protocol.decode_response(reply)
        assert len(history.messages["bob"]) == 3
        assert history.messages == archive.snapshot()

    async def test_unsendable_reply_logged(self, monkeypatch, caplog):
        async def on_request(source, ipc):
            return Protocol.encode_response(HistoryResponse({"bob": [ChatMessage("bob", "x" * 64)]}))

        server = PeerServer(on_request, host="127.0.0.1", port=0)
        port = await server.start()
        monkeypatch.setattr(Protocol, "MAX_PAYLOAD_SIZE", 100)
        try:
            client = PeerClient("alice", {"bob": ("127.0.0.1", port)})
            with caplog.at_level(logging.WARNING, logger="relaychat.network"):
                with pytest.raises(NetworkError):
                    await client.send_and_await_response("bob", b'"History"', timeout=2)
        finally:
            await server.stop()

        assert any("not sent" in record.getMessage() for record in caplog.records)

    async def test_no_reply_is_connection_closed(self):
        async def on_request(source, ipc):
            return None

        server = PeerServer(on_request, host="127.0.0.1", port=0)
        port = await server.start()
        try:
            client = PeerClient("alice", {"bob": ("127.0.0.1", port)})
            with pytest.raises(NetworkError) as exc_info:
                await client.send_and_await_response("bob", b'"History"', timeout=2)
        finally:
            await server.stop()

        assert exc_info.value.code == ErrorCode.E203_CONNECTION_CLOSED

    async def test_slow_peer_times_out(self):
        async def on_request(source, ipc):
            await asyncio.sleep(0.5)
            return None

        server = PeerServer(on_request, host="127.0.0.1", port=0)
        port = await server.start()
        try:
            client = PeerClient("alice", {"bob": ("127.0.0.1", port)})
            with pytest.raises(RemoteTimeoutError):
                await client.send_and_await_response("bob", b'"History"', timeout=0.2)
        finally:
            await server.stop()

    async def test_unknown_peer(self):
        client = PeerClient("alice")
        with pytest.raises(NetworkError) as exc_info:
            await client.send_and_await_response("nobody", b'"History"', timeout=1)
        assert exc_info.value.code == ErrorCode.E204_UNKNOWN_PEER

    async def test_unreachable_peer(self):
        client = PeerClient("alice", {"bob": ("127.0.0.1", unused_port())})
        with pytest.raises(NetworkError) as exc_info:
            await client.send_and_await_response("bob", b'"History"', timeout=2)
        assert exc_info.value.code == ErrorCode.E201_CONNECTION_FAILED

    async def test_garbage_does_not_stop_server(self):
        async def on_request(source, ipc):
            return b'"Ack"'

        server = PeerServer(on_request, host="127.0.0.1", port=0)
        port = await server.start()
        try:
            reader, writer = await asyncio.open_connection("127.0.0.1", port)
            writer.write(b"\x07garbage that is not a frame")
            await writer.drain()
            assert await reader.read() == b""
            writer.close()

            client = PeerClient("alice", {"bob": ("127.0.0.1", port)})
            assert await client.send_and_await_response("bob", b'"History"', timeout=2) == b'"Ack"'
        finally:
            await server.stop()


@pytest.mark.asyncio
class TestTwoNodes:
    """End-to-end tests with two relay nodes."""

    async def test_message_delivered_to_peer(self, node_config_factory):
        alice = RelayServer(node_config_factory("alice"))
        bob = RelayServer(node_config_factory("bob"))
        await alice.start()
        await bob.start()
        alice.peer_client.add_peer("bob", "127.0.0.1", bob.peer_port)
        bob.peer_client.add_peer("alice", "127.0.0.1", alice.peer_port)

        alice_client = client_for(alice)
        bob_client = client_for(bob)
        listener = bob_client.listen()
        try:
            await bob_client.open_live_channel()
            # round trip so bob's node has registered the channel
            await bob_client.send_ws(HistoryCommand())
            await anext(listener)

            assert await alice_client.send("bob", "hi bob") is True
            pushed = await asyncio.wait_for(anext(listener), timeout=3)

            assert await bob_client.send("alice", "hi alice") is True

            alice_history = await alice_client.get_history()
            bob_history = await bob_client.get_history()
        finally:
            await listener.aclose()
            await alice_client.close()
            await bob_client.close()
            await alice.stop()
            await bob.stop()

        assert pushed == NewMessage(chat="alice", author="alice", content="hi bob")
        assert alice_history == {
            "bob": [ChatMessage("alice", "hi bob"), ChatMessage("bob", "hi alice")]
        }
        assert bob_history == {
            "alice": [ChatMessage("alice", "hi bob"), ChatMessage("bob", "hi alice")]
        }

    async def test_unreachable_peer_still_archived(self, node_config_factory):
        config = node_config_factory("alice", peers={"carol": f"127.0.0.1:{unused_port()}"})
        alice = RelayServer(config)
        await alice.start()
        client = client_for(alice)
        try:
            assert await client.send("carol", "anyone?") is True
            assert await client.send("dave", "not in the directory") is True
            history = await client.get_history()
        finally:
            await client.close()
            await alice.stop()

        assert history == {
            "carol": [ChatMessage("alice", "anyone?")],
            "dave": [ChatMessage("alice", "not in the directory")],
        }
