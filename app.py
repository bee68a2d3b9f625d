from __future__ import annotations

import asyncio
from typing import Optional

from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import VerticalScroll
from textual.widgets import Footer, Header, Input, Static
from rich.text import Text

import ai
from chat_session import ChatSession
from chat_tree import Direction
from errors import Busy, ChatTreeError
from node_models import SYSTEM_ROLE
from tree_render import DisplayLine, render


class ChatTreeView(Static, can_focus=True):
    """Focusable panel showing the rendered conversation tree."""

    BINDINGS = [
        Binding("up", "app.navigate('up')", "Up", show=False),
        Binding("down", "app.navigate('down')", "Down", show=False),
        Binding("left", "app.navigate('left')", "Parent", show=False),
        Binding("right", "app.navigate('right')", "Child", show=False),
        Binding("enter", "app.start_editing", "Edit"),
    ]

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.lines: list[DisplayLine] = []

    def show_lines(self, lines: list[DisplayLine]) -> None:
        self.lines = list(lines)
        text = Text(no_wrap=True, overflow="ellipsis")
        for index, line in enumerate(lines):
            if index:
                text.append("\n")
            text.append(line.text, style="reverse" if line.selected else "")
        self.update(text)


class ChatTreeApp(App[None]):
    """Textual shell around a ``ChatSession``."""

    TITLE = "Chat Tree"

    CSS = """
    #tree-panel {
        height: 1fr;
        border: round $secondary;
        border-title-align: left;
    }
    #chat-tree {
        width: 100%;
    }
    #status-bar {
        height: 1;
        color: $warning;
        padding: 0 1;
    }
    #message-input {
        border: round $accent;
    }
    """

    BINDINGS = [
        Binding("escape", "escape", "Quit / cancel edit"),
        Binding("q", "quit", "Quit", show=False),
        Binding("ctrl+c", "quit", "Quit", show=False, priority=True),
        Binding("ctrl+n", "focus_input", "Input"),
        Binding("ctrl+t", "focus_tree", "Tree"),
        Binding("ctrl+o", "focus_tree", "Tree", show=False),
    ]

    def __init__(self, session: Optional[ChatSession] = None) -> None:
        super().__init__()
        self.session = session if session is not None else ChatSession()
        self.editing_node_id: Optional[int] = None
        self._tree_view: Optional[ChatTreeView] = None
        self._status_message = ""
        self.status_text = ""

    def compose(self) -> ComposeResult:
        yield Header()
        with VerticalScroll(id="tree-panel"):
            view = ChatTreeView(id="chat-tree")
            self._tree_view = view
            yield view
        yield Static(id="status-bar")
        yield Input(placeholder="Message (Enter to send)", id="message-input")
        yield Footer()

    def on_mount(self) -> None:
        self.query_one("#tree-panel", VerticalScroll).border_title = "Chat Tree"
        self.sub_title = f"Model: {ai.get_active_model()}"
        if not len(self.session.tree):
            self.session.seed_welcome()
        self.require_input().focus()
        self.update_display()
        self.show_status("Tree-Based Chat TUI Ready - Use arrow keys to navigate")

    def require_tree_view(self) -> ChatTreeView:
        if self._tree_view is None:
            raise RuntimeError("Tree view not initialised")
        return self._tree_view

    def require_input(self) -> Input:
        return self.query_one("#message-input", Input)

    def update_display(self) -> None:
        lines = render(self.session.tree)
        view = self.require_tree_view()
        view.show_lines(lines)
        selected_row = next((index for index, line in enumerate(lines) if line.selected), None)
        if selected_row is not None:
            panel = self.query_one("#tree-panel", VerticalScroll)
            panel.scroll_to(y=max(selected_row - 2, 0), animate=False)

    def show_status(self, message: str | None = None) -> None:
        if message is not None:
            self._status_message = message
        composed = self._status_message
        tree = self.session.tree
        selected = tree.get_selected()
        if selected is not None:
            depth = len(tree.path_to(selected.id)) - 1
            composed += (
                f" | Selected: {selected.role} message #{selected.id}"
                f" (depth {depth}) | {selected.content[:40]}..."
            )
        if self.focused is self.require_input():
            composed += " | [INPUT MODE]"
        elif self.focused is self._tree_view:
            composed += " | [NAVIGATION MODE]"
        self.status_text = composed
        self.query_one("#status-bar", Static).update(Text(composed))

    def action_navigate(self, direction: Direction) -> None:
        tree = self.session.tree
        current_id = tree.selected_id
        next_id = tree.next_node(current_id, direction)
        if next_id is not None and next_id != current_id:
            tree.select(next_id)
            self.update_display()
            self.show_status()

    def action_start_editing(self) -> None:
        selected = self.session.tree.get_selected()
        if selected is None or selected.role == SYSTEM_ROLE:
            self.bell()
            self.show_status("Only user and assistant messages can be edited.")
            return
        self.editing_node_id = selected.id
        field = self.require_input()
        field.value = selected.content
        field.focus()
        self.show_status(f"Editing message {selected.id}...")

    def cancel_edit(self, message: str = "Edit cancelled") -> None:
        self.editing_node_id = None
        self.require_input().value = ""
        self.require_tree_view().focus()
        self.update_display()
        self.show_status(message)

    def action_escape(self) -> None:
        if self.editing_node_id is not None:
            self.cancel_edit()
            return
        self.exit()

    def action_focus_input(self) -> None:
        self.require_input().focus()
        self.show_status()

    def action_focus_tree(self) -> None:
        self.require_tree_view().focus()
        self.show_status()

    def on_input_submitted(self, event: Input.Submitted) -> None:
        event.stop()
        if self.editing_node_id is not None:
            self.submit_edit(event.value.strip())
        else:
            self.send_new_message(event.value.strip())

    def send_new_message(self, message: str) -> None:
        if not message:
            return
        try:
            node_id = self.session.send_message(message)
        except ChatTreeError as exc:
            self.bell()
            self.show_status(str(exc))
            return
        self.require_input().value = ""
        self.update_display()
        self._start_reply(node_id, message)

    def submit_edit(self, new_content: str) -> None:
        node_id = self.editing_node_id
        if node_id is None or not new_content:
            self.cancel_edit()
            return
        try:
            new_id = self.session.submit_edit(node_id, new_content)
        except Busy as exc:
            # The edit stays open until the pending reply finishes.
            self.bell()
            self.show_status(str(exc))
            return
        except ChatTreeError as exc:
            self.cancel_edit(str(exc))
            return
        if new_id is None:
            self.cancel_edit("Message unchanged")
            return
        self.cancel_edit(f"Branched message {node_id} into {new_id}")
        self._start_reply(new_id, new_content)

    def _start_reply(self, node_id: int, prompt: str) -> None:
        self.show_status("Connecting to LLM...")
        self.run_worker(self._fetch_reply(node_id, prompt), group="model")

    async def _fetch_reply(self, node_id: int, prompt: str) -> None:
        try:
            await self.session.fetch_reply(node_id, prompt)
        except ChatTreeError as exc:
            self.handle_ai_error(exc)
        except (asyncio.TimeoutError, TimeoutError):
            self.handle_ai_error(
                TimeoutError(
                    f"no response within {self.session.timeout:g} seconds;"
                    " new messages wait until that request returns"
                )
            )
        except Exception as exc:
            self.handle_ai_error(exc)
        else:
            self.show_status("Message sent successfully")
        self.update_display()
        self.show_status()

    def handle_ai_error(self, exc: Exception) -> None:
        """Provide a consistent error experience for model failures."""
        self.bell()
        self.show_status(f"Error: {exc}")


def main() -> None:
    ai.reset_prompt_log()
    ai.reset_connection_log()
    ChatTreeApp().run()


if __name__ == "__main__":
    main()
