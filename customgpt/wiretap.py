"""
Wiretap: a JSONL record of every call the proxy makes.

The server appends one line per event (the outbound request, the inbound
response, or the transport error that replaced it). `customgpt tap` and the
TUI's Tap pane read the same file back. It is kept apart from the debug log
so that "what exactly did the target get, and what did it send back" has a
single answer when a response mapping comes up empty.

Line format:
    {"ts": "...", "dir": "outbound|inbound|internal", "role": "request|response|error",
     "method": "POST", "url": "...", "len": 123, "status": 200, "content": "..."}
`status` is only present on responses.
"""

import json
import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

logger = logging.getLogger(__name__)

CLIP_AT = 2000
CLIP_KEEP = 1000

ROLE_ICONS = {
    "request": "▶",
    "response": "◀",
    "error": "✗",
}

DIR_ARROWS = {
    "outbound": "──▶",
    "inbound": "◀──",
    "internal": "─●─",
}

# ANSI
_RESET = "\033[0m"
_PALETTE = {
    "bold": "\033[1m",
    "dim": "\033[2m",
    "gray": "\033[90m",
    "red": "\033[91m",
    "green": "\033[92m",
    "yellow": "\033[93m",
    "magenta": "\033[95m",
    "cyan": "\033[96m",
}
_ROLE_COLOR = {"request": "cyan", "response": "yellow", "error": "red"}


def _paint(text: str, *styles: str) -> str:
    codes = "".join(_PALETTE[s] for s in styles)
    return f"{codes}{text}{_RESET}"


def _clip(content: str) -> str:
    """Long bodies keep their head and tail."""
    if len(content) <= CLIP_AT:
        return content
    dropped = len(content) - 2 * CLIP_KEEP
    return f"{content[:CLIP_KEEP]}\n\n[... {dropped} chars truncated ...]\n\n{content[-CLIP_KEEP:]}"


class WireLog:
    """Append-only JSONL writer. The file is opened lazily and line-buffered."""

    def __init__(self, log_path: str):
        self.log_path = Path(log_path)
        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        self._fh = None

    def log(
        self,
        direction: str,
        role: str,
        content: str,
        method: str = "",
        url: str = "",
        status: int = 0,
    ):
        entry = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "dir": direction,
            "role": role,
            "method": method,
            "url": url,
            "len": len(content),
        }
        if status:
            entry["status"] = status
        entry["content"] = _clip(content)

        if self._fh is None:
            self._fh = open(self.log_path, "a", buffering=1)
        self._fh.write(json.dumps(entry, ensure_ascii=False) + "\n")

    def close(self):
        if self._fh is not None:
            self._fh.close()
            self._fh = None


def parse_line(line: str) -> dict | None:
    """One JSONL line as a dict, or None for blanks and garbage."""
    line = line.strip()
    if not line:
        return None
    try:
        entry = json.loads(line)
    except json.JSONDecodeError:
        return None
    return entry if isinstance(entry, dict) else None


def read_entries(log_path: str | Path, last_n: int = 50, role_filter: str | None = None) -> list[dict]:
    """The last `last_n` well-formed entries (all of them when last_n is 0)."""
    path = Path(log_path)
    if not path.exists():
        return []
    with open(path) as f:
        entries = [
            e for e in map(parse_line, f)
            if e is not None and (not role_filter or e.get("role") == role_filter)
        ]
    return entries[-last_n:] if last_n else entries


def _follow(path: Path, role_filter: str | None = None, poll: float = 0.1) -> Iterator[dict]:
    """Yield entries appended after the call, like `tail -f`."""
    with open(path) as f:
        f.seek(0, 2)
        while True:
            line = f.readline()
            if not line:
                time.sleep(poll)
                continue
            entry = parse_line(line)
            if entry is None:
                continue
            if role_filter and entry.get("role") != role_filter:
                continue
            yield entry


def _clock(ts: str) -> str:
    try:
        return datetime.fromisoformat(ts).strftime("%H:%M:%S")
    except (TypeError, ValueError):
        return "??:??:??"


def format_entry(entry: dict, raw: bool = False) -> str:
    """One entry as terminal text; raw=True gives the JSON line back."""
    if raw:
        return json.dumps(entry, ensure_ascii=False)

    role = entry.get("role", "?")
    color = _ROLE_COLOR.get(role, "dim")
    parts = [
        _paint(_clock(entry.get("ts", "")), "gray"),
        _paint(DIR_ARROWS.get(entry.get("dir"), "───"), "dim"),
        _paint(f"{ROLE_ICONS.get(role, '?')} {role.upper()}", color, "bold"),
    ]
    if entry.get("method"):
        parts.append(_paint(f"{entry['method']} {entry.get('url', '')}", "magenta"))
    status = entry.get("status")
    if status:
        parts.append(_paint(str(status), "green" if 200 <= status < 300 else "red"))
    parts.append(_paint(f"({entry.get('len', 0)} chars)", "dim"))

    out = ["  " + " ".join(parts)]
    content = entry.get("content", "")
    if content:
        body_lines = content[:500].split("\n")
        for line in body_lines[:15]:
            out.append(f"      {line}")
        hidden = len(body_lines) - 15
        if hidden > 0:
            out.append("      " + _paint(f"[... {hidden} more lines]", "dim"))
        if len(content) > 500:
            out.append("      " + _paint("[... truncated]", "dim"))
    out.append("  " + _paint("─" * 60, "gray"))
    return "\n".join(out)


def live_tap(
    log_path: str | None = None,
    follow: bool = True,
    last_n: int = 20,
    role_filter: str | None = None,
    raw: bool = False,
):
    """
    Print the recent wire traffic, then keep printing new entries until Ctrl+C.
    With log_path=None the path comes from the `wiretap` config block.
    """
    if log_path is None:
        from customgpt.config import get_config
        log_path = get_config().get("wiretap", {}).get("path", "./data/wire.jsonl")
    path = Path(log_path)

    if not path.exists():
        print(f"  ✗  No wire log found at {path}")
        print("     Start the server first: customgpt serve")
        return

    if not raw:
        print(f"  ☎  Tapping into {path}")
        print("  " + _paint("═" * 60, "gray"))
    for entry in read_entries(path, last_n=last_n, role_filter=role_filter):
        print(format_entry(entry, raw=raw))
    if not follow:
        return

    if not raw:
        print("\n  " + _paint("[listening for new traffic... Ctrl+C to hang up]", "dim") + "\n")
    try:
        for entry in _follow(path, role_filter):
            print(format_entry(entry, raw=raw))
    except KeyboardInterrupt:
        if not raw:
            print("\n  " + _paint("[line disconnected]", "dim"))
