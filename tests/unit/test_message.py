"""
Unit tests for relaychat.message module.

Tests the message types and the in-memory archive.
"""

import pytest

from relaychat.message import ChatMessage, MessageArchive, NewMessage, snapshot_to_dict


class TestChatMessage:
    """Tests for ChatMessage."""

    def test_to_dict(self):
        msg = ChatMessage(author="alice", content="hi")
        assert msg.to_dict() == {"author": "alice", "content": "hi"}

    def test_from_dict_missing_field(self):
        with pytest.raises(KeyError):
            ChatMessage.from_dict({"author": "alice"})

    def test_from_dict_wrong_type(self):
        with pytest.raises(TypeError):
            ChatMessage.from_dict({"author": "alice", "content": 3})

    def test_new_message_is_tagged(self):
        event = NewMessage(chat="bob", author="alice", content="hi")
        assert event.to_dict() == {
            "NewMessage": {"chat": "bob", "author": "alice", "content": "hi"}
        }


class TestMessageArchive:
    """Tests for MessageArchive."""

    def test_empty(self, archive):
        assert len(archive) == 0
        assert archive.snapshot() == {}
        assert archive.conversation("bob") == []
        assert "bob" not in archive

    def test_append_creates_conversation(self, archive):
        length = archive.append("bob", ChatMessage("alice", "hi"))
        assert length == 1
        assert "bob" in archive
        assert archive.conversation("bob") == [ChatMessage("alice", "hi")]

    def test_append_preserves_order(self, archive):
        archive.append("bob", ChatMessage("alice", "one"))
        archive.append("bob", ChatMessage("bob", "two"))
        assert archive.append("bob", ChatMessage("alice", "three")) == 3
        assert [m.content for m in archive.conversation("bob")] == ["one", "two", "three"]

    def test_conversations_are_independent(self, archive):
        archive.append("bob", ChatMessage("alice", "to bob"))
        archive.append("carol", ChatMessage("carol", "from carol"))
        assert archive.keys() == ["bob", "carol"]
        assert archive.total_messages() == 2
        assert archive.conversation("carol") == [ChatMessage("carol", "from carol")]

    def test_snapshot_is_a_copy(self, archive):
        archive.append("bob", ChatMessage("alice", "hi"))
        snapshot = archive.snapshot()
        snapshot["bob"].append(ChatMessage("mallory", "injected"))
        snapshot["eve"] = []

        assert archive.conversation("bob") == [ChatMessage("alice", "hi")]
        assert "eve" not in archive

    def test_snapshot_to_dict(self, archive):
        archive.append("bob", ChatMessage("alice", "hi"))
        assert snapshot_to_dict(archive.snapshot()) == {
            "bob": [{"author": "alice", "content": "hi"}]
        }
