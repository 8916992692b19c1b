"""Command line front end: offline simulation and a live typing watcher."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Dict, Iterable, List, Mapping, TextIO

from .config import ClientConfig, ws_base_for
from .events import Identity
from .scheduler import VirtualScheduler
from .transport import RecordingTransport
from .view import MessagingView, format_typing_label, mount

DEFAULT_DRAIN_MS = 10_000


class _StreamingTransport(RecordingTransport):
    def __init__(self, scheduler: VirtualScheduler, output: TextIO) -> None:
        super().__init__()
        self._scheduler = scheduler
        self._output = output

    def send_json(self, payload: Dict[str, Any]) -> bool:
        sent = super().send_json(payload)
        if sent:
            _write(self._output, {"t": "outbound", "at": self._scheduler.now_ms(), "frame": payload})
        return sent


def _write(output: TextIO, record: Dict[str, Any]) -> None:
    output.write(json.dumps(record, sort_keys=True) + "\n")


def simulate(
    steps: Iterable[Dict[str, Any]],
    output: TextIO,
    *,
    identity: Identity,
    config: ClientConfig | None = None,
    until_ms: int | None = None,
) -> None:
    """Replay a timed script through a view driven by virtual time.

    Each step is ``{"t": kind, "at": ms, ...}`` with ``kind`` one of
    ``remote`` (``frame``), ``select`` (``conv_id``), ``keystroke``, ``send``,
    ``disconnect`` and ``connect``. Outbound frames and typing changes of the
    selected conversation are written as JSON lines.
    """

    scheduler = VirtualScheduler()
    transport = _StreamingTransport(scheduler, output)

    def on_typing_change(conversation_id: str, names: List[str]) -> None:
        _write(output, {"t": "typing", "at": scheduler.now_ms(), "conv_id": conversation_id, "users": names})

    view = MessagingView(identity, transport, scheduler, config=config, on_typing_change=on_typing_change)
    last_at = 0
    try:
        for step in steps:
            at = int(step.get("at", last_at))
            if at < last_at:
                raise ValueError(f"steps must be ordered by time: {at} after {last_at}")
            scheduler.advance_to(at)
            last_at = at

            kind = step.get("t")
            if kind == "remote":
                transport.deliver(step.get("frame"))
            elif kind == "select":
                view.select_conversation(step.get("conv_id"))
            elif kind == "keystroke":
                view.keystroke()
            elif kind == "send":
                view.outbound.stop_now(view.conversation_id)
            elif kind == "disconnect":
                transport.open = False
            elif kind == "connect":
                transport.open = True
            else:
                raise ValueError(f"unsupported step type: {kind}")

        scheduler.advance_to(max(last_at, until_ms if until_ms is not None else last_at + DEFAULT_DRAIN_MS))
    finally:
        view.close()


def _load_steps(handle: TextIO) -> List[Dict[str, Any]]:
    content = handle.read()
    if not content.strip():
        return []

    try:
        parsed = json.loads(content)
    except json.JSONDecodeError:
        parsed = None

    if parsed is None:
        return [json.loads(line) for line in content.splitlines() if line.strip()]
    if isinstance(parsed, list):
        return parsed
    return [parsed]


def _identity_from_args(args: argparse.Namespace) -> Identity:
    return Identity(user_id=args.user_id, display_name=args.user_name or args.user_id)


def _run_simulation(args: argparse.Namespace, output: TextIO) -> int:
    steps = _load_steps(args.file or sys.stdin)
    simulate(steps, output, identity=_identity_from_args(args), until_ms=args.until)
    return 0


def _watch_config(args: argparse.Namespace, environ: Mapping[str, str] | None = None) -> ClientConfig:
    config = ClientConfig.from_env(environ)
    if args.api_url:
        config.api_url = args.api_url.rstrip("/")
        config.ws_url = ws_base_for(config.api_url)
    if args.ws_url:
        config.ws_url = args.ws_url.rstrip("/")
    return config


async def _watch(args: argparse.Namespace, output: TextIO) -> int:
    config = _watch_config(args)

    def on_typing_change(_: str, names: List[str]) -> None:
        output.write((format_typing_label(names) or "-") + "\n")
        output.flush()

    async with mount(config, _identity_from_args(args), args.token, on_typing_change=on_typing_change) as view:
        view.select_conversation(args.conversation)
        if args.history:
            page = await view.load_history()
            for message in page.chronological() if page is not None else []:
                output.write(f"[{message.created_at or ''}] {message.sender_name or message.sender_id}: {message.content}\n")
        await view.transport.wait_closed()
    return 0


def _run_watch(args: argparse.Namespace, output: TextIO) -> int:
    try:
        return asyncio.run(_watch(args, output))
    except KeyboardInterrupt:
        return 130


def main(argv: list[str] | None = None, output: TextIO | None = None) -> int:
    """Entry point for CLI commands."""

    if argv is None:
        argv = sys.argv[1:]

    parser = argparse.ArgumentParser(description="Typing presence client")
    parser.add_argument("--log-level", default="WARNING", help="Logging level (DEBUG, INFO, ...)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    simulate_parser = subparsers.add_parser("simulate", help="Replay a timed script offline")
    simulate_parser.add_argument(
        "-f",
        "--file",
        type=argparse.FileType("r"),
        default=None,
        help="Path to JSON steps file; defaults to stdin",
    )
    simulate_parser.add_argument("--user-id", required=True, help="Local user id")
    simulate_parser.add_argument("--user-name", default=None, help="Local display name")
    simulate_parser.add_argument("--until", type=int, default=None, help="Virtual time (ms) to run timers until")

    watch_parser = subparsers.add_parser("watch", help="Print who is typing in a conversation")
    watch_parser.add_argument("--token", required=True, help="Bearer token for the API")
    watch_parser.add_argument("--conversation", required=True, help="Conversation (client) id")
    watch_parser.add_argument("--user-id", required=True, help="Local user id")
    watch_parser.add_argument("--user-name", default=None, help="Local display name")
    watch_parser.add_argument("--api-url", default=None, help="Overrides MESSAGING_API_URL")
    watch_parser.add_argument("--ws-url", default=None, help="Overrides MESSAGING_WS_URL")
    watch_parser.add_argument("--history", action="store_true", help="Print the latest page of messages first")

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "simulate":
        return _run_simulation(args, output or sys.stdout)
    return _run_watch(args, output or sys.stdout)


if __name__ == "__main__":  # pragma: no cover - convenience execution
    raise SystemExit(main())
