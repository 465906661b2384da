"""
RelayChat - Message archive.

Holds the chat message types and the in-memory archive that maps each
counterparty to its ordered conversation. The archive lives for the
process lifetime only.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChatMessage:
    """A single archived message."""

    author: str
    content: str

    def to_dict(self) -> Dict[str, str]:
        """Convert message to its wire dictionary."""
        return {"author": self.author, "content": self.content}

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "ChatMessage":
        """Create message from its wire dictionary.

        Raises:
            KeyError, TypeError: If a field is missing or not a string
        """
        author = data["author"]
        content = data["content"]
        if not isinstance(author, str) or not isinstance(content, str):
            raise TypeError("author and content must be strings")
        return ChatMessage(author=author, content=content)


@dataclass(frozen=True)
class NewMessage:
    """Live-channel event announcing an appended message."""

    chat: str
    author: str
    content: str

    def to_dict(self) -> Dict[str, Any]:
        """Convert event to its tagged wire dictionary."""
        return {"NewMessage": {"chat": self.chat, "author": self.author, "content": self.content}}


Snapshot = Dict[str, List[ChatMessage]]


class MessageArchive:
    """Append-only store of conversations keyed by counterparty.

    A key exists only once a message has been appended under it; there is
    no way to create an empty conversation or to remove one.
    """

    def __init__(self):
        self._conversations: Dict[str, List[ChatMessage]] = {}

    def append(self, key: str, message: ChatMessage) -> int:
        """Append a message, creating the conversation on first use.

        Args:
            key: Counterparty node id
            message: Message to append

        Returns:
            Length of the conversation after the append
        """
        messages = self._conversations.setdefault(key, [])
        messages.append(message)
        logger.debug(f"Archived message #{len(messages)} for '{key}' from '{message.author}'")
        return len(messages)

    def snapshot(self) -> Snapshot:
        """Return a full copy of the archive.

        The returned dict and its lists are new objects; messages are
        immutable and shared.
        """
        return {key: list(messages) for key, messages in self._conversations.items()}

    def conversation(self, key: str) -> List[ChatMessage]:
        """Return a copy of one conversation (empty if unknown)."""
        return list(self._conversations.get(key, ()))

    def keys(self) -> List[str]:
        """Return counterparties in first-contact order."""
        return list(self._conversations)

    def __contains__(self, key: object) -> bool:
        return key in self._conversations

    def __len__(self) -> int:
        return len(self._conversations)

    def total_messages(self) -> int:
        """Count messages across all conversations."""
        return sum(len(messages) for messages in self._conversations.values())


def snapshot_to_dict(snapshot: Snapshot) -> Dict[str, List[Dict[str, str]]]:
    """Convert an archive snapshot to plain JSON-ready data."""
    return {key: [m.to_dict() for m in messages] for key, messages in snapshot.items()}
