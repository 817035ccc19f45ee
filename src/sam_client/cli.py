"""Command-line entry point: curses client, development backend, offline tools."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import TextIO

from sam_client import navigation
from sam_client.backend_client import BackendError, HttpCommandChannel
from sam_client.projector import project, screen_lines
from sam_client.settings import (
    DEFAULT_SETTINGS_FILE,
    ClientSettings,
    load_settings,
    persist_settings,
    resolve_settings,
)
from sam_client.snapshot import REVISION_DIRECTORY, REVISION_INLINE, SnapshotDecodeError, decode_snapshot

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str, log_path: str | None = None) -> None:
    handlers: list[logging.Handler]
    if log_path:
        path = Path(log_path).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers = [logging.FileHandler(path, encoding="utf-8")]
    else:
        handlers = [logging.StreamHandler(sys.stderr)]
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT, handlers=handlers, force=True)


def _write(output: TextIO | None, text: str) -> None:
    stream = output or sys.stdout
    stream.write(text + "\n")


def _client_settings(args: argparse.Namespace) -> ClientSettings:
    settings_path = Path(args.settings)
    stored = load_settings(settings_path)
    settings = resolve_settings(stored, {"base_url": args.base_url})
    if args.base_url and stored.get("base_url") != settings.base_url:
        stored["base_url"] = settings.base_url
        persist_settings(stored, settings_path)
    return settings


def _run_tui(args: argparse.Namespace) -> int:
    from sam_client import tui_app

    settings = _client_settings(args)
    # curses owns the terminal, so logs always go to a file.
    configure_logging(args.log_level, settings.log_path)
    return tui_app.main(settings)


def _run_serve_mock(args: argparse.Namespace) -> int:
    from aiohttp import web

    from sam_client.mock_backend import MockBackend, create_app

    configure_logging(args.log_level)
    backend = MockBackend(revision=args.revision, positional=args.positional)
    web.run_app(create_app(backend), host=args.host, port=args.port)
    return 0


def _run_project(args: argparse.Namespace, output: TextIO | None) -> int:
    configure_logging(args.log_level)
    try:
        payload = json.load(args.snapshot)
        snapshot = decode_snapshot(payload)
    except (json.JSONDecodeError, SnapshotDecodeError) as exc:
        _write(sys.stderr, f"invalid snapshot: {exc}")
        return 2
    nav = navigation.open_conversation(args.conversation) if args.conversation else navigation.HOME
    for line in screen_lines(project(snapshot, nav)):
        _write(output, line)
    return 0


async def _fetch_own_did_key(settings: ClientSettings) -> str:
    channel = HttpCommandChannel(settings.base_url, timeout_s=settings.request_timeout_s)
    try:
        value = await channel.invoke("get_own_did_key_command")
    finally:
        await channel.close()
    return str(value)


def _run_did(args: argparse.Namespace, output: TextIO | None) -> int:
    import aiohttp

    configure_logging(args.log_level)
    settings = _client_settings(args)
    try:
        did_key = asyncio.run(_fetch_own_did_key(settings))
    except (BackendError, aiohttp.ClientError, asyncio.TimeoutError) as exc:
        _write(sys.stderr, f"could not fetch did_key: {exc}")
        return 1
    _write(output, did_key)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="sam-client", description="Peer-to-peer messaging client")
    parser.add_argument("--settings", default=str(DEFAULT_SETTINGS_FILE), help="Path to the settings JSON file")
    parser.add_argument("--base-url", default=None, help="Backend base URL (persisted when given)")
    parser.add_argument("--log-level", default="INFO", help="Logging level")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("tui", help="Run the curses client (default)")

    serve_parser = subparsers.add_parser("serve-mock", help="Run the in-memory development backend")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Host to bind")
    serve_parser.add_argument("--port", type=int, default=8788, help="Port to bind")
    serve_parser.add_argument(
        "--revision",
        choices=[REVISION_DIRECTORY, REVISION_INLINE],
        default=REVISION_DIRECTORY,
        help="Snapshot payload revision to emit",
    )
    serve_parser.add_argument("--positional", action="store_true", help="Emit snapshots as positional tuples")

    project_parser = subparsers.add_parser("project", help="Project a snapshot JSON file to text")
    project_parser.add_argument(
        "--snapshot",
        type=argparse.FileType("r"),
        default=sys.stdin,
        help="Path to a snapshot JSON file; defaults to stdin",
    )
    project_parser.add_argument("--conversation", default="", help="Counterparty did_key to navigate to")

    subparsers.add_parser("did", help="Print the local identity's did_key")
    return parser


def main(argv: list[str] | None = None, output: TextIO | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "serve-mock":
        return _run_serve_mock(args)
    if args.command == "project":
        return _run_project(args, output)
    if args.command == "did":
        return _run_did(args, output)
    return _run_tui(args)


if __name__ == "__main__":  # pragma: no cover - convenience execution
    raise SystemExit(main())
