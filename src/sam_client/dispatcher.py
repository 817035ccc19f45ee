"""Dispatcher and event bridge: the only code that mutates application state.

Command responses and pushed events both replace the whole snapshot and
re-project with whatever navigation is current. Nothing is merged: the last
install wins. All mutation happens on the asyncio loop that owns the
dispatcher, so the state cell never has two concurrent writers.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, ClassVar, Dict, List, Optional, Union

import aiohttp

from sam_client import navigation as nav
from sam_client.backend_client import EVENT_TEST, EVENT_WARP, BackendError, CommandChannel
from sam_client.navigation import HOME, Navigation
from sam_client.projector import ACTION_BACK, ACTION_OPEN_CONVERSATION, Screen, project
from sam_client.redact import redact_mapping, redact_text
from sam_client.snapshot import Snapshot, SnapshotDecodeError, decode_snapshot

logger = logging.getLogger(__name__)

FAILURE_HINTS = {
    "login_command": "Password wrong",
    "send_friend_request_command": "Friend request failed",
    "create_identity_command": "Identity creation failed",
    "send_message_command": "Message not sent",
    "send_initial_message_command": "Message not sent",
}

RenderCallback = Callable[[Screen], None]


@dataclass(frozen=True)
class CommandOk:
    ok: ClassVar[bool] = True

    command: str
    snapshot: Optional[Snapshot] = None
    value: Any = None


@dataclass(frozen=True)
class CommandFailed:
    ok: ClassVar[bool] = False

    command: str
    reason: str

    def hint(self) -> str:
        prefix = FAILURE_HINTS.get(self.command, f"{self.command} failed")
        return f"{prefix}: {self.reason}" if self.reason else prefix


CommandResult = Union[CommandOk, CommandFailed]


@dataclass
class AppState:
    snapshot: Snapshot = field(default_factory=Snapshot)
    navigation: Navigation = HOME
    last_result: Optional[CommandResult] = None
    installs: int = 0
    last_source: str = ""


def _failure_reason(exc: BaseException) -> str:
    if isinstance(exc, BackendError):
        return exc.code
    if isinstance(exc, asyncio.TimeoutError):
        return "timeout"
    if isinstance(exc, SnapshotDecodeError):
        return "invalid_snapshot"
    return exc.__class__.__name__


def _force_logged_out(snapshot: Snapshot) -> Snapshot:
    return snapshot.with_logged_in(False)


class Dispatcher:
    def __init__(
        self,
        channel: CommandChannel,
        *,
        state: AppState | None = None,
        on_render: RenderCallback | None = None,
    ) -> None:
        self.channel = channel
        self.state = state if state is not None else AppState()
        self._renderers: List[RenderCallback] = []
        self.own_did_key = ""
        if on_render is not None:
            self._renderers.append(on_render)

    def subscribe(self, callback: RenderCallback) -> None:
        self._renderers.append(callback)

    def current_screen(self) -> Screen:
        notice = ""
        result = self.state.last_result
        if isinstance(result, CommandFailed):
            notice = result.hint()
        return project(self.state.snapshot, self.state.navigation, notice)

    def _render(self) -> Screen:
        screen = self.current_screen()
        for callback in list(self._renderers):
            callback(screen)
        return screen

    def install(self, snapshot: Snapshot, *, source: str) -> None:
        self.state.snapshot = snapshot
        self.state.installs += 1
        self.state.last_source = source
        logger.debug("installed snapshot #%d from %s", self.state.installs, source)
        self._render()

    async def _round_trip(
        self,
        command: str,
        args: Optional[Dict[str, Any]] = None,
        *,
        transform: Callable[[Snapshot], Snapshot] | None = None,
    ) -> CommandResult:
        try:
            payload = await self.channel.invoke(command, args)
            snapshot = decode_snapshot(payload)
        except (BackendError, aiohttp.ClientError, asyncio.TimeoutError, SnapshotDecodeError) as exc:
            result = CommandFailed(command=command, reason=_failure_reason(exc))
            self.state.last_result = result
            logger.warning("%s failed: %s (args=%s)", command, redact_text(str(exc)), redact_mapping(dict(args or {})))
            return result
        if transform is not None:
            snapshot = transform(snapshot)
        result = CommandOk(command=command, snapshot=snapshot)
        self.state.last_result = result
        self.install(snapshot, source=command)
        return result

    async def start_backend(self) -> CommandResult:
        return await self._round_trip("start_sam_command", transform=_force_logged_out)

    async def check_for_identity(self) -> CommandResult:
        return await self._round_trip("check_for_identity_command", transform=_force_logged_out)

    async def bootstrap(self) -> List[CommandResult]:
        """Issue both startup requests concurrently.

        Each response installs as soon as it arrives, so whichever completes
        last determines the installed snapshot.
        """

        results = await asyncio.gather(self.start_backend(), self.check_for_identity())
        return list(results)

    async def create_identity(self, username: str, password: str) -> CommandResult:
        return await self._round_trip("create_identity_command", {"username": username, "password": password})

    async def login(self, password: str) -> CommandResult:
        return await self._round_trip("login_command", {"password": password})

    async def delete_identity(self) -> CommandResult:
        return await self._round_trip("delete_identity_command", {})

    async def send_friend_request(self, did_key: str) -> CommandResult:
        return await self._round_trip("send_friend_request_command", {"did_key": did_key.strip()})

    async def accept_friend_request(self, did_key: str) -> CommandResult:
        # Accepting is sending a request back to the requester.
        return await self.send_friend_request(did_key)

    async def send_initial_message(self, did_key: str, message: str) -> CommandResult:
        return await self._round_trip("send_initial_message_command", {"did_key": did_key, "message": message})

    async def send_message(self, conv_id: str, message: str) -> CommandResult:
        return await self._round_trip("send_message_command", {"conv_id": conv_id, "message": message})

    async def increment_counter(self, step: int = 1) -> CommandResult:
        return await self._round_trip("increment_counter_command", {"step": int(step)})

    async def get_own_did_key(self) -> CommandResult:
        command = "get_own_did_key_command"
        try:
            value = await self.channel.invoke(command)
        except (BackendError, aiohttp.ClientError, asyncio.TimeoutError) as exc:
            result: CommandResult = CommandFailed(command=command, reason=_failure_reason(exc))
            self.state.last_result = result
            logger.warning("%s failed: %s", command, exc)
            return result
        if not isinstance(value, str) or not value:
            result = CommandFailed(command=command, reason="invalid_response")
            self.state.last_result = result
            return result
        self.own_did_key = value
        result = CommandOk(command=command, value=value)
        self.state.last_result = result
        return result

    def open_conversation(self, did_key: str) -> Screen:
        self.state.navigation = nav.open_conversation(did_key)
        self.state.last_result = None
        return self._render()

    def back(self) -> Screen:
        self.state.navigation = nav.back()
        self.state.last_result = None
        return self._render()

    async def handle_event(self, name: str, payload: Any) -> None:
        if name == EVENT_TEST:
            logger.debug("test-event received: %r", payload)
            return
        if name != EVENT_WARP:
            logger.debug("ignoring unknown event %s", name)
            return
        try:
            snapshot = decode_snapshot(payload)
        except SnapshotDecodeError as exc:
            logger.warning("dropping %s: %s", name, exc)
            return
        self.install(snapshot, source=name)

    async def perform(self, command: str, args: Optional[Dict[str, str]] = None) -> Optional[CommandResult]:
        """Route a projected affordance's command name to its operation."""

        args = dict(args or {})
        if command == ACTION_OPEN_CONVERSATION:
            self.open_conversation(args.get("did_key", ""))
            return None
        if command == ACTION_BACK:
            self.back()
            return None
        if command == "create_identity_command":
            return await self.create_identity(args.get("username", ""), args.get("password", ""))
        if command == "login_command":
            return await self.login(args.get("password", ""))
        if command == "delete_identity_command":
            return await self.delete_identity()
        if command == "send_friend_request_command":
            return await self.send_friend_request(args.get("did_key", ""))
        if command == "send_initial_message_command":
            return await self.send_initial_message(args.get("did_key", ""), args.get("message", ""))
        if command == "send_message_command":
            return await self.send_message(args.get("conv_id", ""), args.get("message", ""))
        if command == "get_own_did_key_command":
            return await self.get_own_did_key()
        if command == "start_sam_command":
            return await self.start_backend()
        if command == "check_for_identity_command":
            return await self.check_for_identity()
        if command == "increment_counter_command":
            return await self.increment_counter(int(args.get("step", "1") or 1))
        raise ValueError(f"unknown command: {command}")
