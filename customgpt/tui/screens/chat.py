"""
Chat screen — the transcript, the prompt line and the chat list.
Renders SessionState on every change the controller pushes.
Enter sends, Esc cancels the message in flight, ctrl+n starts a new chat.
Prompt commands: /new, /rename <name>.
"""
from __future__ import annotations
from rich.markup import escape
from textual.app import ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical, VerticalScroll
from textual.widgets import Input, OptionList, Static
from textual.widgets.option_list import Option
from customgpt.errors import ConsoleError
from customgpt.session import SessionState
from customgpt.tui.screens.base import ConsolePane
_ROLE_STYLE: dict[str, str] = {
    "user":      "bold cyan",
    "assistant": "bold yellow",
    "system":    "dim",
}
_STATUS_BADGE: dict[str, str] = {
    "failure":     " [bold red]✗ failed[/bold red]",
    "interrupted": " [bold magenta]⏹ interrupted[/bold magenta]",
}
def transcript_markup(state: SessionState) -> str:
    """Render the transcript as Rich markup."""
    if not state.transcript:
        return "[dim]No messages yet. Type below and press Enter.[/dim]"
    blocks = []
    for msg in state.transcript:
        style = _ROLE_STYLE.get(msg.role, "white")
        badge = _STATUS_BADGE.get(msg.status, "")
        header = f"[{style}]{msg.role.upper()}[/{style}]{badge}"
        blocks.append(f"{header}\n{escape(msg.message_content)}")
    if state.pending:
        blocks.append("[dim italic]… waiting for the target (Esc to cancel)[/dim italic]")
    return "\n\n".join(blocks)
def status_markup(state: SessionState) -> str:
    target = state.target
    if target is None or not state.target_saved:
        target_part = "[bold red]no target saved[/bold red] [dim](tab 2)[/dim]"
    else:
        target_part = f"[green]{escape(target.name)}[/green] [dim]{target.method.upper()} {escape(target.url)}[/dim]"
    chat_part = escape(state.chat_name)
    if not state.chat_id:
        chat_part += " [dim](unsaved)[/dim]"
    line = f"{chat_part}  │  {target_part}"
    if state.notice:
        line += f"\n[yellow]{escape(state.notice)}[/yellow]"
    return line
class ChatScreen(ConsolePane):
    """Transcript + prompt + chat list."""
    BINDINGS = [
        Binding("escape", "cancel", "Cancel", show=True),
        Binding("ctrl+n", "new_chat", "New chat", show=True),
    ]
    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self._unsubscribe = None
    def compose(self) -> ComposeResult:
        with Horizontal():
            with Vertical(id="chat-sidebar"):
                yield Static(self.section("Chats"), markup=True)
                yield OptionList(id="chat-list")
            with Vertical(id="chat-main"):
                yield Static("", id="chat-status", markup=True)
                with VerticalScroll(id="chat-scroll"):
                    yield Static("", id="chat-transcript", markup=True)
                yield Input(placeholder="Type a message…  (/new, /rename <name>)", id="chat-input")
    def on_mount(self) -> None:
        self._unsubscribe = self.controller.subscribe(self._on_state)
        self._on_state(self.controller.state)
        self.refresh_content()
    def on_unmount(self) -> None:
        if self._unsubscribe:
            self._unsubscribe()
    def _on_state(self, state: SessionState) -> None:
        self.query_one("#chat-status", Static).update(status_markup(state))
        self.query_one("#chat-transcript", Static).update(transcript_markup(state))
        self.query_one("#chat-input", Input).disabled = state.pending
        self.query_one("#chat-scroll", VerticalScroll).scroll_end(animate=False)
    def refresh_content(self) -> None:
        self.run_worker(self._load_chat_list(), exclusive=True, group="chat-list")
    async def _load_chat_list(self) -> None:
        option_list = self.query_one("#chat-list", OptionList)
        try:
            chats, total = await self.controller.list_chats()
        except ConsoleError as e:
            option_list.clear_options()
            option_list.add_option(Option(f"✗ {e.message}", disabled=True))
            return
        option_list.clear_options()
        option_list.add_options([
            Option(chat.get("chat_name") or chat["chat_id"], id=chat["chat_id"])
            for chat in chats
        ])
    # ── Events ───────────────────────────────────────────────────────────────
    def on_input_submitted(self, event: Input.Submitted) -> None:
        text = event.value
        event.input.value = ""
        if text.strip() == "/new":
            self.action_new_chat()
        elif text.startswith("/rename "):
            self.run_worker(self._rename(text[len("/rename "):]), group="chat-meta")
        else:
            self.run_worker(self._send(text), exclusive=True, group="submit")
    def on_option_list_option_selected(self, event: OptionList.OptionSelected) -> None:
        chat_id = event.option.id
        if chat_id:
            self.run_worker(self._load(chat_id), exclusive=True, group="chat-load")
    def action_cancel(self) -> None:
        self.workers.cancel_group(self, "submit")
    def action_new_chat(self) -> None:
        try:
            self.controller.new_chat()
        except ConsoleError as e:
            self.app.notify(e.message, severity="warning")
    # ── Workers ──────────────────────────────────────────────────────────────
    async def _send(self, prompt: str) -> None:
        try:
            await self.controller.submit(prompt)
        except ConsoleError as e:
            self.app.notify(e.message, severity="warning")
            return
        self.refresh_content()
    async def _load(self, chat_id: str) -> None:
        try:
            await self.controller.load_chat(chat_id)
        except ConsoleError as e:
            self.app.notify(e.message, severity="error")
    async def _rename(self, name: str) -> None:
        try:
            await self.controller.rename_chat(name)
        except ConsoleError as e:
            self.app.notify(e.message, severity="error")
            return
        self.refresh_content()
