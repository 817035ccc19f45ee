"""Curses front end: draws projected screens and feeds key actions to the dispatcher."""

from __future__ import annotations

import asyncio
import curses
import logging
from typing import Iterable, List, Set

from sam_client.backend_client import EventStream, HttpCommandChannel
from sam_client.dispatcher import CommandFailed, CommandOk, CommandResult, Dispatcher
from sam_client.projector import MessageLine
from sam_client.settings import ClientSettings
from sam_client.tui_model import ACTION_QUIT, TARGET_INPUT, Action, RenderState, TuiModel

logger = logging.getLogger(__name__)

HELP_LINE = "Tab/Up/Down: focus | Enter: activate | Esc: back | Ctrl-Q: quit"
POLL_INTERVAL_S = 0.03


_NAMED_KEYS = {
    curses.KEY_BTAB: "SHIFT_TAB",
    353: "SHIFT_TAB",
    9: "TAB",
    curses.KEY_UP: "UP",
    curses.KEY_DOWN: "DOWN",
    curses.KEY_ENTER: "ENTER",
    10: "ENTER",
    13: "ENTER",
    curses.KEY_BACKSPACE: "BACKSPACE",
    127: "BACKSPACE",
    8: "BACKSPACE",
    curses.KEY_DC: "DELETE",
    3: "CTRL_C",
    17: "CTRL_Q",
    27: "ESC",
}


def _normalize_key(key: int) -> tuple[str, str | None]:
    """Key name plus the typed character for printable ASCII."""

    name = _NAMED_KEYS.get(key)
    if name is not None:
        return name, None
    if 32 <= key <= 126:
        return "CHAR", chr(key)
    return "UNKNOWN", None


def _put_line(window: curses.window, row: int, col: int, text: str, attr: int = 0) -> None:
    # Rows past the bottom are dropped; text stops one cell short of the right edge.
    height, width = window.getmaxyx()
    room = width - col - 1
    if row < 0 or row >= height or room <= 0:
        return
    window.addnstr(row, col, text, room, attr)


def _init_default_colors(stdscr: curses.window) -> None:
    if not curses.has_colors():
        return
    try:
        curses.start_color()
        curses.use_default_colors()
    except curses.error:
        return


def format_message_line(message: MessageLine) -> str:
    lines = message.value.split("\n") or [""]
    rendered = f"{message.sender_name}: {lines[0]}"
    if len(lines) > 1:
        rendered += " " + " / ".join(lines[1:])
    return rendered


def format_target_line(render: RenderState, idx: int) -> str:
    target = render.targets[idx]
    if target.kind == TARGET_INPUT:
        value = render.buffers.get(target.key, "")
        if not value:
            placeholder = target.affordance.placeholder or target.field_name
            return f"{target.label}: <{placeholder}>"
        return f"{target.label}: {value}"
    return f"[ {target.label} ]"


def _visible_messages(entries: Iterable[MessageLine], height: int) -> List[MessageLine]:
    items = list(entries)
    if height <= 0:
        return []
    return items[-height:]


def draw_screen(stdscr: curses.window, model: TuiModel) -> None:
    stdscr.erase()
    max_y, _ = stdscr.getmaxyx()
    render = model.render()
    screen = render.screen

    _put_line(stdscr, 0, 1, f"sam client | {screen.heading}", curses.A_BOLD)
    _put_line(stdscr, 1, 1, HELP_LINE)
    status = render.status_line or screen.notice
    if status:
        _put_line(stdscr, 2, 1, status, curses.A_REVERSE)

    y = 4
    target_idx = 0
    for section in screen.sections:
        _put_line(stdscr, y, 1, section.heading, curses.A_UNDERLINE)
        y += 1
        for entry in section.entries:
            line = f"  {entry.username}  <{entry.did_key}>"
            attr = 0
            if entry.affordance is not None:
                line = f"{line}  [{entry.affordance.label}]"
                attr = curses.A_REVERSE if target_idx == render.focus else 0
                target_idx += 1
            _put_line(stdscr, y, 1, line, attr)
            y += 1
        y += 1

    remaining = len(render.targets) - target_idx
    message_height = max_y - y - remaining - 1
    for message in _visible_messages(screen.messages, message_height):
        _put_line(stdscr, y, 2, format_message_line(message))
        y += 1
    if screen.messages:
        y += 1

    for idx in range(target_idx, len(render.targets)):
        attr = curses.A_REVERSE if idx == render.focus else 0
        _put_line(stdscr, y, 2, format_target_line(render, idx), attr)
        y += 1
    stdscr.refresh()


def describe_result(result: CommandResult | None) -> str:
    """Status line text for a completed command, or empty when nothing to say."""

    if result is None:
        return ""
    if isinstance(result, CommandFailed):
        return result.hint()
    if isinstance(result, CommandOk) and result.command == "get_own_did_key_command":
        return f"own did_key: {result.value}"
    if isinstance(result, CommandOk) and result.command == "delete_identity_command":
        return "Identity deleted"
    return ""


async def perform_action(dispatcher: Dispatcher, model: TuiModel, action: Action) -> None:
    try:
        result = await dispatcher.perform(action.command, action.args)
    except ValueError as exc:
        model.set_status(str(exc))
        return
    text = describe_result(result)
    if text:
        model.set_status(text)


async def run_tui(stdscr: curses.window, settings: ClientSettings) -> int:
    curses.curs_set(0)
    _init_default_colors(stdscr)
    stdscr.nodelay(True)
    stdscr.keypad(True)

    channel = HttpCommandChannel(settings.base_url, timeout_s=settings.request_timeout_s)
    dispatcher = Dispatcher(channel)
    model = TuiModel(dispatcher.current_screen())
    dispatcher.subscribe(model.set_screen)
    events = EventStream(
        settings.base_url,
        dispatcher.handle_event,
        reconnect_max_s=settings.reconnect_max_s,
        on_error=lambda error: model.set_status(f"Event stream error: {error}"),
    )
    pending: Set[asyncio.Task] = set()

    def _spawn(coro) -> None:
        task = asyncio.create_task(coro)
        pending.add(task)
        task.add_done_callback(pending.discard)

    events.start()
    _spawn(dispatcher.bootstrap())
    try:
        while True:
            draw_screen(stdscr, model)
            key = stdscr.getch()
            if key == -1:
                await asyncio.sleep(POLL_INTERVAL_S)
                continue
            name, char = _normalize_key(key)
            action = model.handle_key(name, char)
            if action is None:
                continue
            if action.command == ACTION_QUIT:
                break
            _spawn(perform_action(dispatcher, model, action))
    finally:
        await events.stop()
        for task in list(pending):
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        await channel.close()
    return 0


def main(settings: ClientSettings) -> int:
    def _runner(stdscr: curses.window) -> int:
        return asyncio.run(run_tui(stdscr, settings))

    return curses.wrapper(_runner)
