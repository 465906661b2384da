"""
RelayChat - Wire protocol tests.

Tests for the chat command/response codec, live-channel events and the
peer frame format.
"""

import asyncio
import json
import struct

import pytest

from relaychat.errors import DecodeError, ErrorCode, NetworkError
from relaychat.message import ChatMessage, NewMessage
from relaychat.protocol import (
    AckResponse,
    FrameType,
    HistoryCommand,
    HistoryResponse,
    Protocol,
    SendCommand,
)


class TestCommandCodec:
    """Tests for chat command encoding and decoding."""

    def test_encode_send(self):
        data = Protocol.encode_command(SendCommand(target="bob", message="hi"))
        assert json.loads(data) == {"Send": {"target": "bob", "message": "hi"}}

    def test_encode_history(self):
        assert json.loads(Protocol.encode_command(HistoryCommand())) == "History"

    def test_decode_send(self):
        command = Protocol.decode_command(b'{"Send": {"target": "bob", "message": "hi"}}')
        assert command == SendCommand(target="bob", message="hi")

    def test_decode_history_forms(self):
        assert Protocol.decode_command(b'"History"') == HistoryCommand()
        assert Protocol.decode_command('{"History": null}') == HistoryCommand()

    def test_decode_unicode_message(self):
        command = Protocol.decode_command(
            json.dumps({"Send": {"target": "bob", "message": "héllo 👋"}}).encode("utf-8")
        )
        assert command.message == "héllo 👋"

    @pytest.mark.parametrize(
        "data",
        [
            b"",
            b"not json",
            b"\xff\xfe",
            b"42",
            b'"Ack"',
            b'{"Send": {"target": "bob"}}',
            b'{"Send": {"target": 1, "message": "hi"}}',
            b'{"Send": "bob"}',
            b'{"Send": {"target": "bob", "message": "hi"}, "History": null}',
            b'{"Delete": {"target": "bob"}}',
        ],
    )
    def test_decode_malformed(self, data):
        with pytest.raises(DecodeError) as exc_info:
            Protocol.decode_command(data)
        assert exc_info.value.code == ErrorCode.E206_INVALID_MESSAGE


class TestResponseCodec:
    """Tests for chat response encoding and decoding."""

    def test_ack(self):
        data = Protocol.encode_response(AckResponse())
        assert json.loads(data) == "Ack"
        assert Protocol.decode_response(data) == AckResponse()

    def test_history(self):
        response = HistoryResponse(
            messages={"bob": [ChatMessage("alice", "hi"), ChatMessage("bob", "hey")]}
        )
        data = Protocol.encode_response(response)
        assert json.loads(data) == {
            "History": {
                "messages": {
                    "bob": [
                        {"author": "alice", "content": "hi"},
                        {"author": "bob", "content": "hey"},
                    ]
                }
            }
        }
        assert Protocol.decode_response(data) == response

    def test_empty_history(self):
        data = Protocol.encode_response(HistoryResponse())
        assert json.loads(data) == {"History": {"messages": {}}}

    def test_decode_malformed_history(self):
        with pytest.raises(DecodeError):
            Protocol.decode_response(b'{"History": {"messages": {"bob": [{"author": "a"}]}}}')
        with pytest.raises(DecodeError):
            Protocol.decode_response(b'{"History": {"messages": []}}')

    def test_decode_command_as_response(self):
        with pytest.raises(DecodeError):
            Protocol.decode_response(b'"History"')


class TestEventCodec:
    """Tests for live-channel events."""

    def test_encode_event(self):
        text = Protocol.encode_event(NewMessage(chat="bob", author="alice", content="hi"))
        assert json.loads(text) == {
            "NewMessage": {"chat": "bob", "author": "alice", "content": "hi"}
        }

    def test_decode_event(self):
        event = NewMessage(chat="carol", author="carol", content="yo")
        assert Protocol.decode_event(Protocol.encode_event(event)) == event

    def test_decode_non_event(self):
        with pytest.raises(DecodeError):
            Protocol.decode_event('"Ack"')
        with pytest.raises(DecodeError):
            Protocol.decode_event('{"NewMessage": {"chat": "bob"}}')


def split_frame(packed: bytes):
    """Return (frame type, payload dict) for one complete packed frame."""
    frame_type, length = Protocol.parse_header(packed[: Protocol.HEADER_SIZE])
    assert len(packed) == Protocol.HEADER_SIZE + length
    return frame_type, json.loads(packed[Protocol.HEADER_SIZE :])


class TestFraming:
    """Tests for the peer frame format."""

    def test_pack(self):
        payload = {"source": "alice", "ipc": '"History"'}
        packed = Protocol.pack_frame(FrameType.CHAT_REQUEST, payload)

        assert packed[0] == Protocol.VERSION
        assert split_frame(packed) == (FrameType.CHAT_REQUEST, payload)

    def test_bad_version(self):
        header = struct.pack(Protocol.HEADER_FORMAT, 99, FrameType.CHAT_REQUEST, 2)
        with pytest.raises(DecodeError):
            Protocol.parse_header(header)

    def test_bad_frame_type(self):
        header = struct.pack(Protocol.HEADER_FORMAT, Protocol.VERSION, 77, 2)
        with pytest.raises(DecodeError):
            Protocol.parse_header(header)

    def test_frame_cap_is_header_limit(self):
        assert Protocol.MAX_PAYLOAD_SIZE == 2**32 - 1

    def test_large_payload_packs(self):
        history = HistoryResponse({"bob": [ChatMessage("bob", "x" * (11 * 1024 * 1024))]})
        ipc = Protocol.encode_response(history)

        frame_type, payload = split_frame(Protocol.create_chat_response(ipc))
        assert frame_type == FrameType.CHAT_RESPONSE
        assert Protocol.decode_response(Protocol.parse_chat_response(payload)) == history

    def test_oversized_frame(self, monkeypatch):
        monkeypatch.setattr(Protocol, "MAX_PAYLOAD_SIZE", 16)
        with pytest.raises(NetworkError) as exc_info:
            Protocol.pack_frame(FrameType.CHAT_RESPONSE, {"ipc": "x" * 32})
        assert exc_info.value.code == ErrorCode.E207_MESSAGE_TOO_LARGE

        header = struct.pack(Protocol.HEADER_FORMAT, Protocol.VERSION, FrameType.CHAT_REQUEST, 17)
        with pytest.raises(NetworkError) as exc_info:
            Protocol.parse_header(header)
        assert exc_info.value.code == ErrorCode.E207_MESSAGE_TOO_LARGE

    def test_chat_request(self):
        ipc = Protocol.encode_command(SendCommand(target="bob", message="hi"))
        frame_type, payload = split_frame(Protocol.create_chat_request("alice", ipc))
        assert frame_type == FrameType.CHAT_REQUEST
        assert Protocol.parse_chat_request(payload) == ("alice", ipc)

    def test_chat_response(self):
        ipc = Protocol.encode_response(AckResponse())
        frame_type, payload = split_frame(Protocol.create_chat_response(ipc))
        assert frame_type == FrameType.CHAT_RESPONSE
        assert Protocol.parse_chat_response(payload) == ipc

    def test_request_without_source(self):
        with pytest.raises(DecodeError):
            Protocol.parse_chat_request({"ipc": '"History"'})
        with pytest.raises(DecodeError):
            Protocol.parse_chat_request({"source": "", "ipc": '"History"'})


@pytest.mark.asyncio
class TestReadFrame:
    """Tests for reading frames from a stream."""

    async def test_read_frame(self):
        reader = asyncio.StreamReader()
        reader.feed_data(Protocol.create_chat_response(b'"Ack"'))
        reader.feed_eof()

        frame_type, payload = await Protocol.read_frame(reader)
        assert frame_type == FrameType.CHAT_RESPONSE
        assert payload == {"ipc": '"Ack"'}

    async def test_read_truncated_frame(self):
        reader = asyncio.StreamReader()
        reader.feed_data(Protocol.create_chat_response(b'"Ack"')[:-2])
        reader.feed_eof()

        with pytest.raises(NetworkError) as exc_info:
            await Protocol.read_frame(reader)
        assert exc_info.value.code == ErrorCode.E203_CONNECTION_CLOSED
