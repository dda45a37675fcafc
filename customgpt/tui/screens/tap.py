"""
Tap pane: the wiretap, inside the console.
Shows the last few proxied calls from the server's wire log, then tails the
file once a second and appends whatever complete lines were added.
"""
from __future__ import annotations
from pathlib import Path
from rich.markup import escape
from textual.app import ComposeResult
from textual.widgets import RichLog, Static
from customgpt.config import get_config
from customgpt.tui.screens.base import ConsolePane
from customgpt.wiretap import DIR_ARROWS, ROLE_ICONS, parse_line, read_entries
_ROLE_STYLE = {"request": "bold cyan", "response": "bold yellow", "error": "bold red"}
def entry_markup(entry: dict, max_content: int = 300) -> str:
    """Rich markup for one wire entry: a header line, then up to 8 indented body lines."""
    ts = entry.get("ts", "")
    clock = ts[11:19] if len(ts) >= 19 else "??:??:??"
    role = entry.get("role", "?")
    style = _ROLE_STYLE.get(role, "white")
    parts = [
        f"[dim]{clock} {DIR_ARROWS.get(entry.get('dir'), '───')}[/dim]",
        f"[{style}]{ROLE_ICONS.get(role, '?')} {escape(role.upper())}[/{style}]",
    ]
    if entry.get("method"):
        parts.append(f"[magenta]{escape(entry['method'])} {escape(entry.get('url', ''))}[/magenta]")
    status = entry.get("status")
    if status:
        colour = "green" if 200 <= status < 300 else "red"
        parts.append(f"[{colour}]{status}[/{colour}]")
    parts.append(f"[dim]({entry.get('len', 0)}c)[/dim]")
    content = entry.get("content", "")
    if len(content) > max_content:
        content = content[:max_content] + "…"
    body = "\n    ".join(escape(line) for line in content.split("\n")[:8])
    return " ".join(parts) + f"\n    {body}"
class TapScreen(ConsolePane):
    """Wire feed; ctrl+r reloads the backlog."""
    BACKLOG = 40
    POLL_SECONDS = 1.0
    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self._path = Path(get_config().get("wiretap", {}).get("path", "./data/wire.jsonl"))
        self._offset = 0
        self._online = False
        self._shown = 0
    def compose(self) -> ComposeResult:
        yield Static("", id="tap-status", markup=True)
        yield RichLog(id="tap-log", markup=True, wrap=True)
    def on_mount(self) -> None:
        self.refresh_content()
        self.set_interval(self.POLL_SECONDS, self._drain)
    def _status(self) -> None:
        status = self.query_one("#tap-status", Static)
        if not self._online:
            status.update("[dim]── offline ──[/dim]")
            return
        status.update(
            f"[dim]wire: {escape(str(self._path))}  │  {self._shown} entries shown  │  "
            f"tailing every {self.POLL_SECONDS:.0f}s[/dim]"
        )
    def refresh_content(self) -> None:
        log = self.query_one("#tap-log", RichLog)
        log.clear()
        self._shown = 0
        self._online = self._path.exists()
        if not self._online:
            self._offset = 0
            log.write("[bold red]✗ No wire log found.[/bold red]\n"
                      "[dim]  Start the server first: [/dim][bold cyan]customgpt serve[/bold cyan]")
            self._status()
            return
        self._offset = self._path.stat().st_size
        entries = read_entries(self._path, last_n=self.BACKLOG)
        if not entries:
            log.write("[dim]No traffic yet. Test a target or send a message to see the wire.[/dim]")
        for entry in entries:
            log.write(entry_markup(entry))
        self._shown = len(entries)
        self._status()
    def _drain(self) -> None:
        """Append entries written since the last read; only whole lines are consumed."""
        try:
            size = self._path.stat().st_size
        except OSError:
            return
        if not self._online or size < self._offset:
            # appeared, or was truncated: start over
            self.refresh_content()
            return
        if size == self._offset:
            return
        with open(self._path, "rb") as f:
            f.seek(self._offset)
            chunk = f.read(size - self._offset)
        end = chunk.rfind(b"\n")
        if end < 0:
            return
        self._offset += end + 1
        log = self.query_one("#tap-log", RichLog)
        for line in chunk[:end].decode("utf-8", errors="replace").split("\n"):
            entry = parse_line(line)
            if entry is not None:
                log.write(entry_markup(entry))
                self._shown += 1
        self._status()
