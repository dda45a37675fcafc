"""
CustomGPT Console — chat with any HTTP model endpoint from the terminal.
Textual-based TUI over a SessionController; the controller talks to the
console server, the panes just render its state.
Entry point: customgpt console (alias: tui, jack)
"""
from __future__ import annotations
from pathlib import Path
from typing import ClassVar
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.widget import Widget
from textual.widgets import Footer, Header, TabbedContent, TabPane
from customgpt.session import SessionController
from customgpt.target import TargetConfig
from customgpt.tui.screens.chat import ChatScreen
from customgpt.tui.screens.tap import TapScreen
from customgpt.tui.screens.target import TargetScreen

# ---------------------------------------------------------------------------
# Screen registry: add new panes here to extend the TUI
# Each entry: (key, label, tab_id, pane_class)
# ---------------------------------------------------------------------------
SCREEN_REGISTRY: list[tuple[str, str, str, type[Widget]]] = [
    ("1", "Chat",   "chat",   ChatScreen),
    ("2", "Target", "target", TargetScreen),
    ("3", "Tap",    "tap",    TapScreen),
]
class CustomGPTApp(App):
    """CustomGPT console TUI."""
    CSS_PATH = str(Path(__file__).parent / "styles" / "main.tcss")
    TITLE = "CustomGPT Console"
    SUB_TITLE = "any endpoint · one console"
    BINDINGS: ClassVar[list[Binding]] = [
        Binding("ctrl+q", "quit", "Quit", priority=True),
        Binding("f1", "switch_tab('chat')",   "Chat",    show=True),
        Binding("f2", "switch_tab('target')", "Target",  show=True),
        Binding("f3", "switch_tab('tap')",    "Tap",     show=True),
        Binding("ctrl+r", "refresh_all",      "Refresh", show=True),
    ]
    def __init__(self, controller: SessionController, target: TargetConfig | None = None, **kwargs):
        super().__init__(**kwargs)
        self.controller = controller
        self.initial_target = target
    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)
        with TabbedContent(initial=""):
            for _key, label, tab_id, pane_cls in SCREEN_REGISTRY:
                with TabPane(label, id=tab_id):
                    yield pane_cls()
        yield Footer()
    def on_mount(self) -> None:
        """Open on the target tab until a target has been saved."""
        first = "chat" if self.controller.state.target_saved else "target"
        tabs = self.query_one(TabbedContent)
        self.call_after_refresh(setattr, tabs, "active", first)
    def action_switch_tab(self, tab_id: str) -> None:
        self.query_one(TabbedContent).active = tab_id
    def action_refresh_all(self) -> None:
        for _key, _label, _tab_id, pane_cls in SCREEN_REGISTRY:
            for pane in self.query(pane_cls):
                pane.refresh_content()
