"""In-memory development backend speaking the command and push-event protocol.

``MockBackend`` holds the state a real identity/contacts/chat service would
own and answers the same commands. ``create_app`` serves it over aiohttp so
the client can run end to end without the real service.
"""

from __future__ import annotations

import asyncio
import json
import logging
import secrets
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from aiohttp import WSMsgType, web

from sam_client.backend_client import COMMANDS_PATH, EVENT_TEST, EVENT_WARP, EVENTS_PATH, BackendError
from sam_client.snapshot import (
    REVISION_DIRECTORY,
    Chat,
    Friends,
    Identity,
    Message,
    Snapshot,
    encode_snapshot,
)
from sam_client.validation import validate_credential, validate_did_key

logger = logging.getLogger(__name__)

Listener = Callable[[str, Any], None]


def generate_did_key() -> str:
    return f"did:key:z6Mk{secrets.token_urlsafe(24)}"


def _invalid_request(message: str) -> BackendError:
    return BackendError("invalid_request", message, status=400)


@dataclass
class _ChatRecord:
    id: str
    participants: List[str]
    messages: List[Message] = field(default_factory=list)


class MockBackend:
    def __init__(self, *, revision: str = REVISION_DIRECTORY, positional: bool = False) -> None:
        self.revision = revision
        self.positional = positional
        self._reset()
        self._listeners: List[Listener] = []
        self.counter = 0
        self.configuration: Dict[str, Any] = {"notifications": {"friends_notifications": True}}

    def _reset(self) -> None:
        self.own: Optional[Identity] = None
        self.password = ""
        self.logged_in = False
        self.identities: Dict[str, Identity] = {}
        self.friends_all: List[str] = []
        self.incoming: List[str] = []
        self.outgoing: List[str] = []
        self.chats: Dict[str, _ChatRecord] = {}

    # -- state ---------------------------------------------------------

    def snapshot(self) -> Snapshot:
        return Snapshot(
            identity_exists=self.own is not None,
            logged_in=self.logged_in,
            identities=dict(self.identities),
            friends=Friends(
                all=tuple(self.friends_all),
                incoming_requests=tuple(self.incoming),
                outgoing_requests=tuple(self.outgoing),
            ),
            chats={
                chat_id: Chat(id=record.id, participants=tuple(record.participants), messages=tuple(record.messages))
                for chat_id, record in self.chats.items()
            },
            configuration=self.configuration,
            counter=self.counter,
            account={"did_key": self.own.did_key} if self.own is not None else None,
        )

    def payload(self) -> Any:
        return encode_snapshot(self.snapshot(), revision=self.revision, positional=self.positional)

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            return

    def push(self, name: str = EVENT_WARP, payload: Any = None) -> None:
        if payload is None and name == EVENT_WARP:
            payload = self.payload()
        for listener in list(self._listeners):
            listener(name, payload)

    # -- helpers -------------------------------------------------------

    def _register(self, did_key: str, username: str = "") -> None:
        current = self.identities.get(did_key)
        if current is None or (username and not current.username):
            self.identities[did_key] = Identity(did_key=did_key, username=username)

    def _require_identity(self) -> Identity:
        if self.own is None:
            raise BackendError("identity_missing", "no local identity", status=409)
        return self.own

    def _require_login(self) -> Identity:
        own = self._require_identity()
        if not self.logged_in:
            raise BackendError("not_logged_in", "identity is locked", status=409)
        return own

    def _chat_with(self, did_key: str) -> Optional[_ChatRecord]:
        for record in self.chats.values():
            if did_key in record.participants:
                return record
        return None

    @staticmethod
    def _text(args: Dict[str, Any], key: str) -> str:
        value = args.get(key)
        if not isinstance(value, str):
            raise _invalid_request(f"{key} must be a string")
        return value

    # -- commands ------------------------------------------------------

    def handle(self, command: str, args: Dict[str, Any] | None = None) -> Any:
        args = dict(args or {})
        handler = getattr(self, f"_cmd_{command}", None)
        if handler is None:
            raise BackendError("unknown_command", command, status=404)
        return handler(args)

    def _cmd_start_sam_command(self, args: Dict[str, Any]) -> Any:
        return self.payload()

    def _cmd_check_for_identity_command(self, args: Dict[str, Any]) -> Any:
        return self.payload()

    def _cmd_create_identity_command(self, args: Dict[str, Any]) -> Any:
        username = self._text(args, "username")
        password = self._text(args, "password")
        for kind, value in (("username", username), ("password", password)):
            error = validate_credential(kind, value)
            if error:
                raise _invalid_request(error)
        if self.own is not None:
            raise BackendError("identity_exists", "identity already created", status=409)
        self.own = Identity(did_key=generate_did_key(), username=username)
        self.password = password
        self.logged_in = True
        self.identities[self.own.did_key] = self.own
        return self.payload()

    def _cmd_login_command(self, args: Dict[str, Any]) -> Any:
        password = self._text(args, "password")
        self._require_identity()
        if not secrets.compare_digest(password.encode("utf-8"), self.password.encode("utf-8")):
            raise BackendError("invalid_password", "password rejected", status=403)
        self.logged_in = True
        return self.payload()

    def _cmd_delete_identity_command(self, args: Dict[str, Any]) -> Any:
        self._reset()
        return self.payload()

    def _cmd_get_own_did_key_command(self, args: Dict[str, Any]) -> Any:
        return self._require_identity().did_key

    def _cmd_send_friend_request_command(self, args: Dict[str, Any]) -> Any:
        own = self._require_login()
        did_key = self._text(args, "did_key").strip()
        error = validate_did_key(did_key)
        if error:
            raise _invalid_request(error)
        if did_key == own.did_key:
            raise _invalid_request("cannot befriend own identity")
        if did_key in self.incoming:
            self.incoming.remove(did_key)
            self.friends_all.append(did_key)
        elif did_key not in self.friends_all and did_key not in self.outgoing:
            self._register(did_key)
            self.outgoing.append(did_key)
        return self.payload()

    def _cmd_send_initial_message_command(self, args: Dict[str, Any]) -> Any:
        own = self._require_login()
        did_key = self._text(args, "did_key").strip()
        message = self._text(args, "message")
        if not message:
            raise _invalid_request("message must not be empty")
        error = validate_did_key(did_key)
        if error:
            raise _invalid_request(error)
        record = self._chat_with(did_key)
        if record is None:
            self._register(did_key)
            record = _ChatRecord(id=str(uuid.uuid4()), participants=[own.did_key, did_key])
            self.chats[record.id] = record
        record.messages.append(Message(sender=own.did_key, value=message))
        return self.payload()

    def _cmd_send_message_command(self, args: Dict[str, Any]) -> Any:
        own = self._require_login()
        conv_id = self._text(args, "conv_id")
        message = self._text(args, "message")
        if not message:
            raise _invalid_request("message must not be empty")
        record = self.chats.get(conv_id)
        if record is None:
            raise BackendError("not_found", f"unknown conversation {conv_id}", status=404)
        record.messages.append(Message(sender=own.did_key, value=message))
        return self.payload()

    def _cmd_increment_counter_command(self, args: Dict[str, Any]) -> Any:
        step = args.get("step", 1)
        if not isinstance(step, int):
            raise _invalid_request("step must be an integer")
        self.counter += step
        return self.payload()

    # -- simulated network activity -----------------------------------

    def add_peer(self, username: str, did_key: str | None = None) -> str:
        did_key = did_key or generate_did_key()
        self._register(did_key, username)
        return did_key

    def simulate_incoming_request(self, did_key: str, username: str = "") -> None:
        self._register(did_key, username)
        if did_key not in self.friends_all and did_key not in self.incoming:
            if did_key in self.outgoing:
                self.outgoing.remove(did_key)
                self.friends_all.append(did_key)
            else:
                self.incoming.append(did_key)
        self.push()

    def simulate_friend_accepted(self, did_key: str) -> None:
        if did_key in self.outgoing:
            self.outgoing.remove(did_key)
        if did_key in self.incoming:
            self.incoming.remove(did_key)
        if did_key not in self.friends_all:
            self.friends_all.append(did_key)
        self.push()

    def simulate_friend_removed(self, did_key: str) -> None:
        for category in (self.friends_all, self.incoming, self.outgoing):
            if did_key in category:
                category.remove(did_key)
        self.push()

    def simulate_incoming_message(self, did_key: str, text: str) -> str:
        own = self._require_identity()
        record = self._chat_with(did_key)
        if record is None:
            # Chats opened by the peer list the peer first.
            record = _ChatRecord(id=str(uuid.uuid4()), participants=[did_key, own.did_key])
            self.chats[record.id] = record
        record.messages.append(Message(sender=did_key, value=text))
        self.push()
        return record.id

    def push_test_event(self, value: Any) -> None:
        self.push(EVENT_TEST, value)


async def handle_health(_: web.Request) -> web.Response:
    return web.Response(text="ok")


def _error_response(exc: BackendError) -> web.Response:
    return web.json_response({"code": exc.code, "message": exc.message}, status=exc.status or 500)


async def handle_command(request: web.Request) -> web.Response:
    backend: MockBackend = request.app["backend"]
    command = request.match_info["command"]
    try:
        body = await request.json() if request.can_read_body else {}
    except json.JSONDecodeError:
        return _error_response(_invalid_request("body must be JSON"))
    if not isinstance(body, dict):
        return _error_response(_invalid_request("body must be a JSON object"))
    try:
        result = backend.handle(command, body)
    except BackendError as exc:
        logger.info("command %s rejected: %s", command, exc.code)
        return _error_response(exc)
    return web.json_response(result)


async def events_handler(request: web.Request) -> web.WebSocketResponse:
    backend: MockBackend = request.app["backend"]
    ws = web.WebSocketResponse()
    outbound: asyncio.Queue[Dict[str, Any]] = asyncio.Queue(maxsize=1000)

    def listener(name: str, payload: Any) -> None:
        try:
            outbound.put_nowait({"event": name, "payload": payload})
        except asyncio.QueueFull:
            logger.warning("event subscriber backlogged; dropping %s", name)

    async def writer() -> None:
        while True:
            frame = await outbound.get()
            await ws.send_json(frame)

    # Subscribe before the handshake completes so no push is missed.
    backend.subscribe(listener)
    writer_task: asyncio.Task | None = None
    try:
        await ws.prepare(request)
        writer_task = asyncio.create_task(writer())
        async for msg in ws:
            if msg.type in (WSMsgType.CLOSE, WSMsgType.ERROR):
                break
    finally:
        backend.unsubscribe(listener)
        if writer_task is not None:
            writer_task.cancel()
            try:
                await writer_task
            except (asyncio.CancelledError, ConnectionResetError):
                pass
    return ws


def create_app(backend: MockBackend | None = None) -> web.Application:
    app = web.Application()
    app["backend"] = backend or MockBackend()
    app.router.add_get("/healthz", handle_health)
    app.router.add_post(f"{COMMANDS_PATH}/{{command}}", handle_command)
    app.router.add_get(EVENTS_PATH, events_handler)
    return app
