import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime
from typing import Any, Dict, Optional

from . import messages as m
from .config import RelayConfig, parse_address, validate_port
from .errors import BindError, ConnectError
from .node import ChatServer, RelayClient

"""
run_node.py — single entry point to run the chat relay in different modes.

What you can do here:
- Server:   host the room on a port and print the address others should use
- Client:   join a room interactively (type to chat, /name, /users, /quit)
- CLI:      one-shot helpers (list users, send a single line)
"""

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"

HELP_TEXT = "Commands: /name <new name>  /users  /quit"


def configure_logging(level: str) -> None:
    """Console logging for the whole package, set up once per process."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt=LOG_DATEFMT,
    )


# -------------------------
# Display helpers
# -------------------------

def _clock(timestamp: Any) -> str:
    try:
        return datetime.fromtimestamp(int(timestamp) / 1000).strftime("%H:%M:%S")
    except (TypeError, ValueError, OverflowError, OSError):
        return "--:--:--"


def format_message(msg: Dict[str, Any]) -> str:
    """One printable line for an inbound envelope."""
    mt = msg.get("type")
    if mt == m.MESSAGE:
        line = f"[{_clock(msg.get('timestamp'))}] {msg.get('username', '?')}: {msg.get('message', '')}"
        if msg.get("encrypted"):
            # Still sealed: decryption failed or we never got the key.
            line += "  <could not decrypt>"
        return line
    if mt == m.SYSTEM:
        return f"* {msg.get('message', '')}"
    if mt == m.USER_LIST:
        users = msg.get("userList") or []
        names = ", ".join(f"{u.get('username')} ({u.get('ip')})" for u in users)
        return f"Users online ({len(users)}): {names}"
    # For anything we don't special-case, dump the raw JSON.
    return json.dumps(msg, ensure_ascii=False)


# -------------------------
# Process runners (thin wrappers)
# -------------------------

async def run_server(config: RelayConfig) -> None:
    """Start the room and serve until cancelled (Ctrl+C), then stop cleanly."""
    server = ChatServer(config.port, config.host, max_frame_size=config.max_frame_size)
    await server.start()
    print(f"Chat server started. Others can connect to {server.hostname}:{server.port}", flush=True)
    try:
        await asyncio.Future()
    finally:
        await server.stop()


async def handle_input(client: RelayClient, line: str, username: str = "") -> bool:
    """
    Act on one line typed by the user. Returns False when the user wants out.
    """
    if not line:
        return True
    if line == "/quit":
        return False
    if line == "/users":
        await client.request_user_list()
        return True
    if line.startswith("/name"):
        new_name = line[len("/name"):].strip()
        if not new_name:
            print("Usage: /name <new name>", flush=True)
        else:
            await client.set_username(new_name)
        return True
    if line in ("/help", "/?"):
        print(HELP_TEXT, flush=True)
        return True
    await client.send_chat(line, username)
    return True


async def run_client(host: str, port: int, name: Optional[str], config: RelayConfig) -> None:
    """
    Join a room and chat from the terminal. Incoming messages are printed as
    they arrive; stdin lines are sent (or treated as /commands).
    """
    client = RelayClient(host, port, connect_timeout=config.connect_timeout,
                         max_frame_size=config.max_frame_size)
    client.on_message(lambda msg: print(format_message(msg), flush=True))
    client.on_close(lambda: print("* Disconnected from server. Press Enter to exit.", flush=True))

    await client.connect()
    print(f"Connected to {host}:{port}. {HELP_TEXT}", flush=True)
    if name:
        await client.set_username(name)

    loop = asyncio.get_running_loop()
    try:
        while client.is_connected:
            line = await loop.run_in_executor(None, sys.stdin.readline)
            if not line:
                break  # EOF
            if not client.is_connected:
                break
            if not await handle_input(client, line.strip(), name or ""):
                break
    finally:
        await client.disconnect()


# -------------------------
# One-shot CLI (handy for tests and scripts)
# -------------------------

async def run_cli(args: argparse.Namespace, config: RelayConfig) -> None:
    """
    Minimal CLI client for quick checks:
      - users:   print the current user list as JSON
      - send:    post one chat line (optionally under --name)
    """
    host, port = parse_address(args.connect)
    client = RelayClient(host, port, connect_timeout=config.connect_timeout,
                         max_frame_size=config.max_frame_size)
    user_lists: asyncio.Queue = asyncio.Queue()

    def collect(msg: Dict[str, Any]) -> None:
        if msg.get("type") == m.USER_LIST:
            user_lists.put_nowait(msg.get("userList") or [])

    client.on_message(collect)
    await client.connect()
    try:
        if not await client.wait_for_key(timeout=config.connect_timeout):
            logging.getLogger(__name__).warning("No encryption key received; sending without it")

        if args.name:
            await client.set_username(args.name)

        if args.command == "users":
            # Skip the snapshots pushed at join time; we want the reply to our request.
            while not user_lists.empty():
                user_lists.get_nowait()
            await client.request_user_list()
            try:
                users = await asyncio.wait_for(user_lists.get(), timeout=config.connect_timeout)
            except asyncio.TimeoutError:
                raise SystemExit("Server did not answer the user list request")
            print(json.dumps(users, indent=2, ensure_ascii=False))

        elif args.command == "send":
            await client.send_chat(args.message, args.name or "")
            print(f"Sent message to {host}:{port}")
    finally:
        # Clean shutdown of the one-shot connection.
        await client.disconnect()


# -------------------------
# Argument parsing
# -------------------------

def parse_args(argv=None) -> argparse.Namespace:
    """
    Parse modes and subcommands.

    Quick examples:
      Server:       python -m relaychat.run_node --mode server --port 9080
      Client:       python -m relaychat.run_node --mode client --connect 192.168.1.100:9080 --name alice
      CLI users:    python -m relaychat.run_node --mode cli --connect localhost:9080 users
      CLI send:     python -m relaychat.run_node --mode cli --connect localhost:9080 --name bob send hello there
    """
    p = argparse.ArgumentParser(prog="relaychat")
    p.add_argument("--mode", choices=["server", "client", "cli"], required=True)
    p.add_argument("--host", help="Interface to bind in server mode (default 0.0.0.0)")
    p.add_argument("--port", help="Port to listen on in server mode (1024-65535)")
    p.add_argument("--connect", help="host:port of the server (client/cli modes)")
    p.add_argument("--name", help="Display name to use in the room")
    p.add_argument("--timeout", type=float, help="Connect timeout in seconds")
    p.add_argument("--log-level", help="DEBUG, INFO, WARNING, ...")

    sub = p.add_subparsers(dest="command")
    sub.required = False

    sub.add_parser("users")

    sp = sub.add_parser("send")
    sp.add_argument("message", nargs=argparse.REMAINDER)

    return p.parse_args(argv)


def build_config(args: argparse.Namespace) -> RelayConfig:
    """Environment first, then command-line flags on top."""
    config = RelayConfig.from_env()
    if args.host:
        config.host = args.host
    if args.port:
        config.port = validate_port(args.port)
    if args.timeout:
        config.connect_timeout = args.timeout
    if args.log_level:
        config.log_level = args.log_level.upper()
    return config


# -------------------------
# Main entrypoint
# -------------------------

def main(argv=None) -> None:
    """Dispatch into the chosen mode; keep top-level code very small."""
    args = parse_args(argv)
    try:
        config = build_config(args)
    except ValueError as exc:
        raise SystemExit(str(exc))
    configure_logging(config.log_level)

    try:
        if args.mode == "server":
            asyncio.run(run_server(config))

        elif args.mode == "client":
            if not args.connect:
                raise SystemExit("--connect host:port is required for client mode")
            host, port = parse_address(args.connect)
            asyncio.run(run_client(host, port, args.name, config))

        elif args.mode == "cli":
            if not args.connect:
                raise SystemExit("--connect host:port is required for cli mode")
            if args.command not in ("users", "send"):
                raise SystemExit("cli mode needs a command: users | send <message>")
            if args.command == "send":
                # Collect the rest of the args into a single string.
                args.message = " ".join(args.message or [])
                if not args.message:
                    raise SystemExit("send needs a message")
            asyncio.run(run_cli(args, config))

    except ValueError as exc:
        raise SystemExit(str(exc))
    except BindError as exc:
        raise SystemExit(f"Server start failed: {exc}")
    except ConnectError as exc:
        raise SystemExit(f"Server connection failed: {exc}")
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
