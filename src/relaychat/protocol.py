"""
RelayChat - Wire protocol definitions.

This module defines the JSON chat commands and responses shared by the
peer channel, the HTTP surface and the WebSocket surface, plus the binary
framing used between nodes.

Chat commands and responses use externally tagged JSON:

    {"Send": {"target": "bob", "message": "hi"}}   "History"
    "Ack"   {"History": {"messages": {"bob": [{"author": ..., "content": ...}]}}}

Peer frames are prefixed with a header containing:
- Protocol version (1 byte)
- Frame type (2 bytes)
- Payload length (4 bytes)

Total header size: 7 bytes
"""

import asyncio
import json
import struct
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, Tuple, Union

from .constants import MAX_FRAME_PAYLOAD
from .errors import DecodeError, ErrorCode, NetworkError
from .message import ChatMessage, NewMessage, Snapshot, snapshot_to_dict


class FrameType(IntEnum):
    """Peer frame type definitions."""

    CHAT_REQUEST = 1
    CHAT_RESPONSE = 2


@dataclass(frozen=True)
class SendCommand:
    """Deliver ``message`` to ``target`` (which may be the receiving node)."""

    target: str
    message: str


@dataclass(frozen=True)
class HistoryCommand:
    """Ask for the full archive."""


@dataclass(frozen=True)
class AckResponse:
    """Acknowledges a delivered Send."""


@dataclass(frozen=True)
class HistoryResponse:
    """Carries a full archive snapshot."""

    messages: Snapshot = field(default_factory=dict)


ChatCommand = Union[SendCommand, HistoryCommand]
ChatResponse = Union[AckResponse, HistoryResponse]


def _load_json(data: Union[bytes, str]) -> Any:
    if isinstance(data, bytes):
        try:
            data = data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecodeError(message=f"Payload is not UTF-8: {e}", details={"error": str(e)})
    try:
        return json.loads(data)
    except json.JSONDecodeError as e:
        raise DecodeError(message=f"Payload is not JSON: {e}", details={"error": str(e)})


def _split_tag(value: Any) -> Tuple[str, Any]:
    """Return (variant, body) for an externally tagged enum value."""
    if isinstance(value, str):
        return value, None
    if isinstance(value, dict) and len(value) == 1:
        tag, body = next(iter(value.items()))
        return tag, body
    raise DecodeError(message="Expected a tagged value", details={"value": repr(value)[:80]})


class Protocol:
    """Chat codec and peer frame handler."""

    VERSION = 1
    HEADER_SIZE = 7
    HEADER_FORMAT = "!BHI"
    MAX_PAYLOAD_SIZE = MAX_FRAME_PAYLOAD

    # Chat commands

    @staticmethod
    def encode_command(command: ChatCommand) -> bytes:
        """Encode a chat command as JSON bytes."""
        if isinstance(command, SendCommand):
            value: Any = {"Send": {"target": command.target, "message": command.message}}
        elif isinstance(command, HistoryCommand):
            value = "History"
        else:
            raise TypeError(f"Not a chat command: {command!r}")
        return json.dumps(value).encode("utf-8")

    @staticmethod
    def decode_command(data: Union[bytes, str]) -> ChatCommand:
        """
        Decode a chat command.

        Raises:
            DecodeError: If the bytes are not a valid Send or History command
        """
        tag, body = _split_tag(_load_json(data))

        if tag == "History" and body is None:
            return HistoryCommand()

        if tag == "Send" and isinstance(body, dict):
            target = body.get("target")
            message = body.get("message")
            if isinstance(target, str) and isinstance(message, str):
                return SendCommand(target=target, message=message)
            raise DecodeError(
                message="Send requires string 'target' and 'message'",
                details={"fields": sorted(body)},
            )

        raise DecodeError(message=f"Unknown chat command: {tag}", details={"command": tag})

    # Chat responses

    @staticmethod
    def encode_response(response: ChatResponse) -> bytes:
        """Encode a chat response as JSON bytes."""
        if isinstance(response, AckResponse):
            value: Any = "Ack"
        elif isinstance(response, HistoryResponse):
            value = {"History": {"messages": snapshot_to_dict(response.messages)}}
        else:
            raise TypeError(f"Not a chat response: {response!r}")
        return json.dumps(value).encode("utf-8")

    @staticmethod
    def decode_response(data: Union[bytes, str]) -> ChatResponse:
        """
        Decode a chat response.

        Raises:
            DecodeError: If the bytes are not a valid Ack or History response
        """
        tag, body = _split_tag(_load_json(data))

        if tag == "Ack" and body is None:
            return AckResponse()

        if tag == "History" and isinstance(body, dict) and isinstance(body.get("messages"), dict):
            messages: Snapshot = {}
            try:
                for key, entries in body["messages"].items():
                    messages[key] = [ChatMessage.from_dict(entry) for entry in entries]
            except (KeyError, TypeError, AttributeError) as e:
                raise DecodeError(message=f"Malformed history entry: {e}", details={"error": str(e)})
            return HistoryResponse(messages=messages)

        raise DecodeError(message=f"Unknown chat response: {tag}", details={"response": tag})

    @staticmethod
    def encode_event(event: NewMessage) -> str:
        """Encode a live-channel event as a JSON text frame."""
        return json.dumps(event.to_dict())

    @staticmethod
    def decode_event(data: Union[bytes, str]) -> NewMessage:
        """
        Decode a live-channel event.

        Raises:
            DecodeError: If the frame is not a NewMessage event
        """
        tag, body = _split_tag(_load_json(data))
        if tag != "NewMessage" or not isinstance(body, dict):
            raise DecodeError(message=f"Unknown event: {tag}", details={"event": tag})
        try:
            chat, author, content = body["chat"], body["author"], body["content"]
        except KeyError as e:
            raise DecodeError(message=f"Missing event field: {e}", details={"field": str(e)})
        if not all(isinstance(v, str) for v in (chat, author, content)):
            raise DecodeError(message="Event fields must be strings")
        return NewMessage(chat=chat, author=author, content=content)

    # Peer frames

    @staticmethod
    def pack_frame(frame_type: FrameType, payload: Dict) -> bytes:
        """
        Pack a frame with protocol header.

        Format:
        - Version: 1 byte (unsigned char)
        - Frame Type: 2 bytes (unsigned short, big-endian)
        - Payload Length: 4 bytes (unsigned int, big-endian)
        - Payload: variable length (JSON)

        Raises:
            NetworkError: If the payload is too large
        """
        payload_bytes = json.dumps(payload).encode("utf-8")

        if len(payload_bytes) > Protocol.MAX_PAYLOAD_SIZE:
            raise NetworkError(
                ErrorCode.E207_MESSAGE_TOO_LARGE,
                f"Payload too large: {len(payload_bytes)} bytes",
                {"size": len(payload_bytes), "max_size": Protocol.MAX_PAYLOAD_SIZE},
            )

        header = struct.pack(Protocol.HEADER_FORMAT, Protocol.VERSION, int(frame_type), len(payload_bytes))
        return header + payload_bytes

    @staticmethod
    def parse_header(header: bytes) -> Tuple[FrameType, int]:
        """
        Parse a frame header.

        Returns:
            (frame type, payload length)

        Raises:
            DecodeError: If the version or frame type is unknown
            NetworkError: If the announced payload is too large
        """
        version, frame_type_int, length = struct.unpack(Protocol.HEADER_FORMAT, header)

        if version != Protocol.VERSION:
            raise DecodeError(
                message=f"Unsupported protocol version: {version}",
                details={"version": version, "expected": Protocol.VERSION},
            )

        if length > Protocol.MAX_PAYLOAD_SIZE:
            raise NetworkError(
                ErrorCode.E207_MESSAGE_TOO_LARGE,
                f"Payload too large: {length} bytes",
                {"size": length, "max_size": Protocol.MAX_PAYLOAD_SIZE},
            )

        try:
            frame_type = FrameType(frame_type_int)
        except ValueError:
            raise DecodeError(
                message=f"Invalid frame type: {frame_type_int}", details={"type": frame_type_int}
            )
        return frame_type, length

    @staticmethod
    async def read_frame(reader: asyncio.StreamReader) -> Tuple[FrameType, Dict]:
        """
        Read exactly one frame from a stream.

        Raises:
            DecodeError: If the frame is malformed
            NetworkError: If the stream closes mid-frame or the frame is too large
        """
        try:
            header = await reader.readexactly(Protocol.HEADER_SIZE)
            frame_type, length = Protocol.parse_header(header)
            payload_bytes = await reader.readexactly(length)
        except asyncio.IncompleteReadError as e:
            raise NetworkError(
                ErrorCode.E203_CONNECTION_CLOSED,
                "Connection closed before a full frame arrived",
                {"received": len(e.partial)},
            )

        payload = _load_json(payload_bytes)
        if not isinstance(payload, dict):
            raise DecodeError(message="Frame payload must be an object")
        return frame_type, payload

    @staticmethod
    def create_chat_request(source: str, ipc: bytes) -> bytes:
        """Create a request frame carrying raw command bytes from ``source``."""
        payload = {"source": source, "ipc": ipc.decode("utf-8")}
        return Protocol.pack_frame(FrameType.CHAT_REQUEST, payload)

    @staticmethod
    def create_chat_response(ipc: bytes) -> bytes:
        """Create a response frame carrying raw response bytes."""
        return Protocol.pack_frame(FrameType.CHAT_RESPONSE, {"ipc": ipc.decode("utf-8")})

    @staticmethod
    def parse_chat_request(payload: Dict) -> Tuple[str, bytes]:
        """
        Extract (source, ipc bytes) from a request frame payload.

        Raises:
            DecodeError: If a required field is missing
        """
        source = payload.get("source")
        ipc = payload.get("ipc")
        if not isinstance(source, str) or not source or not isinstance(ipc, str):
            raise DecodeError(
                message="Request frame requires 'source' and 'ipc'",
                details={"fields": sorted(payload)},
            )
        return source, ipc.encode("utf-8")

    @staticmethod
    def parse_chat_response(payload: Dict) -> bytes:
        """
        Extract the ipc bytes from a response frame payload.

        Raises:
            DecodeError: If the field is missing
        """
        ipc = payload.get("ipc")
        if not isinstance(ipc, str):
            raise DecodeError(message="Response frame requires 'ipc'")
        return ipc.encode("utf-8")

