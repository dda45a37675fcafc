"""
ConsolePane: the common parent of the chat, target and tap panes.
Gives every pane the app's SessionController, a refresh_content() hook the
app's ctrl+r action calls, and the green section-header markup.
"""
from __future__ import annotations
from textual.widget import Widget
from customgpt.session import SessionController
class ConsolePane(Widget):
    """A tab body. Subclasses compose their widgets and re-render in refresh_content()."""
    DEFAULT_CSS = """
    ConsolePane {
        height: 1fr;
        width: 1fr;
    }
    """
    @property
    def controller(self) -> SessionController:
        return self.app.controller
    def refresh_content(self) -> None:
        self.refresh()
    @staticmethod
    def section(title: str) -> str:
        return f"[bold green]── {title} ──[/bold green]"
