#!/usr/bin/env python3
"""
CustomGPT CLI — point a console at any HTTP model endpoint.

Every command has a short name and standard aliases:

    COMMAND         ALIASES         WHAT IT DOES
    -------         -------         ----------------------------------
    serve           start, up       Start the console server (proxy + chat API)
    console         tui, jack       Launch the interactive TUI console
    probe           test            Test a target config through the proxy
    ask             send            Send one prompt with a target, print the reply
    chats           ls, list        List stored chats
    show            cat             Print one chat in display order
    tap             log, tail       Live wiretap — watch proxied traffic
    ring            status, ping    Ping a running server
    banner          tone            Print the banner
"""

import argparse
import asyncio
import sys

from customgpt import __version__

BANNER = r"""
    ╔══════════════════════════════════════════════════╗
    ║                                                  ║
    ║    ██████ ██    ██ ███████ ████████  ██████ ███  ║
    ║   ██      ██    ██ ██         ██    ██      ████ ║
    ║   ██      ██    ██ ███████    ██    ██  ███ ██ █ ║
    ║   ██      ██    ██      ██    ██    ██   ██ ██   ║
    ║    ██████  ██████  ███████    ██     ██████ ██   ║
    ║                                                  ║
    ║   Any endpoint. One console.           v""" + __version__ + r"""  ║
    ║                                                  ║
    ╚══════════════════════════════════════════════════╝
"""


def _load_config(args) -> dict:
    from customgpt.config import get_config, load_config
    if getattr(args, "config", None):
        return load_config(args.config)
    return get_config()


def _server_url(args, cfg: dict) -> str:
    return (getattr(args, "url", None) or cfg["console"]["server_url"]).rstrip("/")


def _controller(args, cfg: dict):
    from customgpt.client import ConsoleClient
    from customgpt.session import SessionController
    client = ConsoleClient(_server_url(args, cfg), timeout=float(cfg["console"]["timeout"]))
    return SessionController(client)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def cmd_serve(args):
    """Start the console server."""
    import uvicorn

    cfg = _load_config(args)
    host = args.host or cfg["server"]["host"]
    port = args.port or cfg["server"]["port"]

    print(BANNER)
    print(f"  Serving on {host}:{port}")
    print(f"  Chats: {cfg['storage']['sqlite_path']}")
    print(f"  Proxy timeout: {cfg['proxy']['timeout']}s")
    print()

    uvicorn.run(
        "customgpt.main:app",
        host=host,
        port=port,
        reload=args.reload,
        log_level="info",
    )


def cmd_console(args):
    """Launch the TUI console."""
    from customgpt.config import setup_logging
    from customgpt.target import load_target
    from customgpt.tui.app import CustomGPTApp

    cfg = _load_config(args)
    # Keep stderr clean while Textual owns the terminal
    setup_logging(cfg, stream=False)
    target = load_target(args.target) if args.target else None
    app = CustomGPTApp(controller=_controller(args, cfg), target=target)
    app.run()


def cmd_probe(args):
    """Test a target config through the proxy and show what the mapping extracts."""
    from customgpt.target import load_target

    cfg = _load_config(args)
    controller = _controller(args, cfg)
    target = load_target(args.target)

    print(f"  ☎  Probing '{target.name}': {target.method.upper()} {target.url}")
    result = asyncio.run(controller.test_target(target))

    if result.error:
        print(f"  ✗  {result.error}")
        sys.exit(1)

    mark = "✓" if result.ok else "✗"
    print(f"  {mark}  Response: {result.status} {result.status_text}")
    print("  " + "─" * 56)
    print("  Extracted value:")
    for line in result.display().splitlines() or [""]:
        print(f"      {line}")
    if args.envelope and result.envelope is not None:
        import json
        print("  " + "─" * 56)
        print("  Full envelope:")
        print(json.dumps(result.envelope.to_dict(), indent=2, ensure_ascii=False))
    if not result.ok:
        sys.exit(1)


def cmd_ask(args):
    """Test + save a target, then send one prompt and print the reply."""
    from customgpt.target import load_target

    cfg = _load_config(args)
    controller = _controller(args, cfg)
    target = load_target(args.target)
    prompt = " ".join(args.prompt)

    async def run():
        result = await controller.test_target(target)
        if not result.ok:
            return None, result.error or f"Target test failed: {result.status} {result.status_text}"
        await controller.save_target(target)
        if args.chat:
            await controller.load_chat(args.chat)
        reply = await controller.submit(prompt)
        return reply, controller.state.notice

    reply, notice = asyncio.run(run())
    if reply is None:
        print(f"  ✗  {notice}")
        sys.exit(1)
    print(reply.message_content)
    if controller.state.chat_id:
        print(f"\n  [chat {controller.state.chat_id}]", file=sys.stderr)
    if reply.status != "success":
        sys.exit(1)


def cmd_chats(args):
    """List stored chats, most recent first."""
    from customgpt.errors import ConsoleError

    cfg = _load_config(args)
    controller = _controller(args, cfg)
    try:
        chats, total = asyncio.run(controller.list_chats(limit=args.limit, skip=args.skip))
    except ConsoleError as e:
        print(f"  ✗  {e.message}")
        sys.exit(1)

    print(f"  📼 Chats: {total}")
    print("  " + "─" * 56)
    if not chats:
        print("  No chats yet.")
        return
    for chat in chats:
        updated = chat.get("last_updated_at", "")[:19].replace("T", " ")
        print(f"  {chat['chat_id']}  {updated}  {chat.get('chat_name', '')}")


def cmd_show(args):
    """Print a chat in display order."""
    from customgpt.errors import ConsoleError

    cfg = _load_config(args)
    controller = _controller(args, cfg)
    try:
        chat = asyncio.run(controller.load_chat(args.chat_id))
    except ConsoleError as e:
        print(f"  ✗  {e.message}")
        sys.exit(1)

    print(f"  💬 {chat.chat_name}  ({chat.config_name})")
    print("  " + "─" * 56)
    for msg in controller.state.transcript:
        role_color = "\033[96m" if msg.role == "user" else "\033[93m"
        reset = "\033[0m"
        flag = "" if msg.status == "success" else f" [{msg.status}]"
        print(f"\n  {role_color}{msg.role.upper()}{reset}{flag}")
        for line in msg.message_content.splitlines() or [""]:
            print(f"      {line}")


def cmd_tap(args):
    """Live wiretap — watch proxied traffic."""
    from customgpt.wiretap import live_tap
    if args.config:
        _load_config(args)
    live_tap(
        log_path=args.log,
        follow=not args.no_follow,
        last_n=args.last,
        role_filter=args.role,
        raw=args.raw,
    )


def cmd_ring(args):
    """Ping a running console server."""
    import httpx

    cfg = _load_config(args)
    url = _server_url(args, cfg)
    try:
        resp = httpx.get(f"{url}/health", timeout=5)
        if resp.status_code == 200:
            print(f"  ☎  Ring ring... {url} is UP")
            db = httpx.get(f"{url}/api/dbhealth", timeout=5)
            print(f"  📼 Database: {'healthy' if db.status_code == 200 else 'UNAVAILABLE'}")
        else:
            print(f"  ✗  No answer — got HTTP {resp.status_code}")
            sys.exit(1)
    except httpx.ConnectError:
        print(f"  ✗  Dead line — nothing at {url}")
        sys.exit(1)
    except httpx.HTTPError as e:
        print(f"  ✗  Error: {e}")
        sys.exit(1)


def cmd_banner(args):
    """Print the banner."""
    print(BANNER)


# ---------------------------------------------------------------------------
# Parser with aliases
# ---------------------------------------------------------------------------

def _add_command(subparsers, names, help_text, func, setup_fn=None):
    """Register a command under multiple names."""
    p = subparsers.add_parser(names[0], help=help_text, aliases=names[1:])
    p.set_defaults(func=func)
    p.add_argument("--config", "-c", default=None, help="Path to config.yaml")
    if setup_fn:
        setup_fn(p)
    return p


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="customgpt",
        description="CustomGPT — point a console at any HTTP model endpoint.",
        epilog=(
            "Each command has standard aliases.\n"
            "Example: 'customgpt serve' and 'customgpt start' do the same thing.\n"
            "Run 'customgpt <command> --help' for command-specific options."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--version", "-V", action="version",
        version=f"customgpt {__version__}",
    )

    sub = parser.add_subparsers(dest="command", metavar="<command>")

    def add_url(p):
        p.add_argument("--url", "-u", default=None, help="Console server URL (default: console.server_url)")

    # serve / start / up
    def setup_serve(p):
        p.add_argument("--host", default=None, help="Override listen host")
        p.add_argument("--port", "-p", type=int, default=None, help="Override listen port")
        p.add_argument("--reload", action="store_true", help="Auto-reload on code changes (dev)")

    _add_command(sub, ["serve", "start", "up"],
                 "Start the console server", cmd_serve, setup_serve)

    # console / tui / jack
    def setup_console(p):
        add_url(p)
        p.add_argument("--target", "-t", default=None, help="Target config YAML to preload")

    _add_command(sub, ["console", "tui", "jack"],
                 "Launch the interactive TUI console", cmd_console, setup_console)

    # probe / test
    def setup_probe(p):
        add_url(p)
        p.add_argument("target", help="Target config YAML")
        p.add_argument("--envelope", "-e", action="store_true", help="Also print the full envelope")

    _add_command(sub, ["probe", "test"],
                 "Test a target config through the proxy", cmd_probe, setup_probe)

    # ask / send
    def setup_ask(p):
        add_url(p)
        p.add_argument("target", help="Target config YAML")
        p.add_argument("prompt", nargs="+", help="Prompt text")
        p.add_argument("--chat", default=None, help="Continue an existing chat by id")

    _add_command(sub, ["ask", "send"],
                 "Send one prompt with a target and print the reply", cmd_ask, setup_ask)

    # chats / ls / list
    def setup_chats(p):
        add_url(p)
        p.add_argument("--limit", "-n", type=int, default=50, help="Max chats to list (1-500)")
        p.add_argument("--skip", type=int, default=0, help="Skip this many chats")

    _add_command(sub, ["chats", "ls", "list"],
                 "List stored chats", cmd_chats, setup_chats)

    # show / cat
    def setup_show(p):
        add_url(p)
        p.add_argument("chat_id", help="Chat id")

    _add_command(sub, ["show", "cat"],
                 "Print one chat in display order", cmd_show, setup_show)

    # tap / log / tail
    def setup_tap(p):
        p.add_argument("--log", default=None, help="Path to wire.jsonl (default: from config)")
        p.add_argument("--last", "-n", type=int, default=20, help="Show last N entries before following")
        p.add_argument("--role", "-r", choices=["request", "response", "error"], default=None,
                       help="Filter by role")
        p.add_argument("--no-follow", action="store_true", help="Don't follow, just show last entries")
        p.add_argument("--raw", action="store_true", help="Raw JSONL output, no formatting")

    _add_command(sub, ["tap", "log", "tail"],
                 "Live wiretap — watch proxied traffic", cmd_tap, setup_tap)

    # ring / status / ping
    _add_command(sub, ["ring", "status", "ping"],
                 "Ping a running console server", cmd_ring, add_url)

    # banner / tone
    _add_command(sub, ["banner", "tone"],
                 "Print the banner", cmd_banner)

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        cmd_banner(args)
        parser.print_help()
        return

    args.func(args)


if __name__ == "__main__":
    main()
