"""
RelayChat - Live channel registry.

Tracks the single WebSocket channel that receives new-message pushes.
Only one viewer is served at a time: attaching a new channel replaces the
previous one (last writer wins). Closing a channel does not clear the slot;
pushes to a closed channel are dropped by the transport.
"""

import logging
from typing import Awaitable, Callable, Optional

from .constants import NO_CHANNEL
from .errors import NetworkError
from .message import NewMessage
from .protocol import Protocol

logger = logging.getLogger(__name__)

ChannelSender = Callable[[int, str], Awaitable[None]]


class LiveChannelRegistry:
    """Optional registration slot for the local live viewer."""

    def __init__(self, sender: Optional[ChannelSender] = None):
        """
        Initialize registry.

        Args:
            sender: Coroutine function ``(channel_id, text)`` that writes a
                text frame on a channel. Without one, pushes are only logged.
        """
        self._channel_id: int = NO_CHANNEL
        self.sender = sender

    @property
    def channel_id(self) -> Optional[int]:
        """Currently registered channel, or None."""
        return self._channel_id if self._channel_id != NO_CHANNEL else None

    @property
    def is_attached(self) -> bool:
        return self._channel_id != NO_CHANNEL

    def attach(self, channel_id: int) -> None:
        """Register ``channel_id``, replacing any previous channel."""
        if channel_id == NO_CHANNEL:
            raise ValueError("channel id 0 is reserved for 'no channel'")
        if self.is_attached and self._channel_id != channel_id:
            logger.info(f"Live channel {self._channel_id} replaced by {channel_id}")
        else:
            logger.info(f"Live channel {channel_id} attached")
        self._channel_id = channel_id

    def detach(self, channel_id: int) -> bool:
        """Clear the slot if ``channel_id`` is the registered channel."""
        if self._channel_id != channel_id or channel_id == NO_CHANNEL:
            return False
        self._channel_id = NO_CHANNEL
        logger.info(f"Live channel {channel_id} detached")
        return True

    async def push(self, event: NewMessage) -> bool:
        """
        Send ``event`` to the registered channel.

        Returns:
            True if the frame was handed to the sender, False if nothing
            is attached or the send failed
        """
        if not self.is_attached:
            return False

        if self.sender is None:
            logger.debug(f"No sender configured, dropping push for channel {self._channel_id}")
            return False

        text = Protocol.encode_event(event)
        try:
            await self.sender(self._channel_id, text)
        except (ConnectionError, NetworkError) as e:
            logger.warning(f"Push to live channel {self._channel_id} failed: {e}")
            return False
        return True
