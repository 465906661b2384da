"""
RelayChat - Textual-based terminal viewer.

Attaches to a relay node as its live viewer: shows every conversation in
the node's archive, follows new messages as they are pushed, and sends
messages through the node's HTTP API.

Type ``/chat NODE`` to open a conversation; any other line is sent to the
selected conversation.
"""

from typing import List, Optional

from rich.text import Text
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Container, Horizontal, ScrollableContainer, Vertical
from textual.widgets import Button, Footer, Header, Input, Label, ListItem, ListView

from .client import ConversationBook, RelayClient
from .errors import DecodeError, NetworkError
from .message import ChatMessage, NewMessage
from .protocol import HistoryResponse
from .utils import truncate_string, validate_node_id

CHAT_COMMAND = "/chat "


def format_message(message: ChatMessage, book: ConversationBook) -> Text:
    """Render one message line."""
    text = Text()
    if book.is_mine(message):
        text.append("You", style="bold cyan")
    else:
        text.append(message.author, style="bold yellow")
    text.append(": ")
    text.append(message.content)
    return text


def format_chat_entry(key: str, book: ConversationBook) -> Text:
    """Render one row of the conversation list."""
    text = Text()
    marker = "▶ " if key == book.selected else "  "
    text.append(marker, style="green")
    text.append(truncate_string(key, 24))
    unread = book.unread.get(key, 0)
    if unread:
        text.append(f" ({unread})", style="bold magenta")
    return text


class ConversationList(ListView):
    """List of counterparties with unread counters."""

    def __init__(self, book: ConversationBook):
        super().__init__(id="conversation-list")
        self.book = book
        self.keys: List[str] = []

    def refresh_chats(self) -> None:
        self.clear()
        self.keys = self.book.chats()
        for key in self.keys:
            self.append(ListItem(Label(format_chat_entry(key, self.book))))


class ChatView(ScrollableContainer):
    """Message pane for the selected conversation."""

    def __init__(self, book: ConversationBook):
        super().__init__(id="chat-view")
        self.book = book

    def display_messages(self) -> None:
        self.remove_children()
        for message in self.book.messages():
            self.mount(Label(format_message(message, self.book)))
        self.scroll_end(animate=False)

    def add_message(self, message: ChatMessage) -> None:
        self.mount(Label(format_message(message, self.book)))
        self.scroll_end(animate=False)


class RelayChatApp(App):
    """Terminal viewer for a relay node."""

    TITLE = "RelayChat"

    CSS = """
    #main-container {
        height: 1fr;
    }

    #conversations-panel {
        width: 30;
        border: solid $accent;
    }

    #chat-panel {
        border: solid $primary;
    }

    #chat-header {
        padding: 0 1;
        text-style: bold;
    }

    #chat-view {
        height: 1fr;
        padding: 0 1;
    }

    #message-input-container {
        height: 3;
    }

    #message-input {
        width: 1fr;
    }
    """

    BINDINGS = [
        Binding("ctrl+r", "reload_history", "Reload"),
        Binding("ctrl+q", "quit", "Quit"),
    ]

    def __init__(self, client: RelayClient, identity: Optional[str] = None):
        super().__init__()
        self.client = client
        self.book = ConversationBook(identity)
        self.sub_title = f"{identity or 'viewer'} @ {client.base_url}"

    def compose(self) -> ComposeResult:
        """Compose the main application layout."""
        yield Header()
        with Container(id="main-container"):
            with Horizontal():
                with Vertical(id="conversations-panel"):
                    yield Label("Conversations")
                    yield ConversationList(self.book)
                with Vertical(id="chat-panel"):
                    yield Label("Type /chat NODE to start a conversation", id="chat-header")
                    yield ChatView(self.book)
                    with Horizontal(id="message-input-container"):
                        yield Input(placeholder="Type a message or /chat NODE", id="message-input")
                        yield Button("Send", variant="primary", id="send-btn")
        yield Footer()

    def on_mount(self) -> None:
        self.run_worker(self.follow_node(), exclusive=True, group="live")

    async def on_unmount(self) -> None:
        await self.client.close()

    async def follow_node(self) -> None:
        """Load history, then apply live pushes until the channel closes."""
        try:
            await self.load_history()
            await self.client.open_live_channel()
            async for frame in self.client.listen():
                if isinstance(frame, NewMessage):
                    self.receive(frame)
                elif isinstance(frame, HistoryResponse):
                    self.book.load(frame.messages)
                    self.refresh_views()
        except (NetworkError, DecodeError) as e:
            self.notify(f"Node connection error: {e.message}", severity="error")
            return

        self.notify("Live channel closed", severity="warning")

    async def load_history(self) -> None:
        self.book.load(await self.client.get_history())
        if self.book.selected is None and self.book.chats():
            self.book.open(self.book.chats()[0])
        self.refresh_views()

    def receive(self, event: NewMessage) -> None:
        """Apply one pushed message to the views."""
        self.book.apply(event)
        if event.chat == self.book.selected:
            self.query_one(ChatView).add_message(ChatMessage(event.author, event.content))
        self.query_one(ConversationList).refresh_chats()

    def refresh_views(self) -> None:
        self.query_one(ConversationList).refresh_chats()
        self.query_one(ChatView).display_messages()
        header = f"Chat with {self.book.selected}" if self.book.selected else "No conversation selected"
        self.query_one("#chat-header", Label).update(header)

    def select_chat(self, key: str) -> None:
        self.book.open(key)
        self.refresh_views()

    async def action_reload_history(self) -> None:
        try:
            await self.load_history()
        except (NetworkError, DecodeError) as e:
            self.notify(f"Reload failed: {e.message}", severity="error")

    def on_list_view_selected(self, event: ListView.Selected) -> None:
        """Handle conversation selection."""
        conversation_list = self.query_one(ConversationList)
        index = event.list_view.index
        if index is not None and index < len(conversation_list.keys):
            self.select_chat(conversation_list.keys[index])

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "send-btn":
            self._submit_input()

    def on_input_submitted(self, event: Input.Submitted) -> None:
        if event.input.id == "message-input":
            self._submit_input()

    def _submit_input(self) -> None:
        message_input = self.query_one("#message-input", Input)
        content = message_input.value.strip()
        if not content:
            return
        message_input.value = ""

        if content.startswith(CHAT_COMMAND):
            target = content[len(CHAT_COMMAND) :].strip()
            if not validate_node_id(target):
                self.notify(f"Invalid node name: {target!r}", severity="error")
                return
            self.select_chat(target)
            return

        if self.book.selected is None:
            self.notify("Open a conversation first: /chat NODE", severity="warning")
            return

        self.run_worker(self._send(self.book.selected, content), group="send")

    async def _send(self, target: str, content: str) -> None:
        # the node pushes the message back on the live channel once archived
        try:
            accepted = await self.client.send(target, content)
        except NetworkError as e:
            self.notify(f"Send failed: {e.message}", severity="error")
            return
        if not accepted:
            self.notify(f"Node rejected message to {target}", severity="error")
