"""aiohttp transport for the backend command and push-event channels."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol

import aiohttp

from sam_client.redact import redact_mapping

logger = logging.getLogger(__name__)

COMMANDS_PATH = "/v1/commands"
EVENTS_PATH = "/v1/events"
EVENT_WARP = "warp-event"
EVENT_TEST = "test-event"

EventHandler = Callable[[str, Any], Awaitable[None]]


class BackendError(Exception):
    def __init__(self, code: str, message: str = "", *, status: int = 0) -> None:
        self.code = code
        self.message = message
        self.status = status
        super().__init__(f"{code}: {message}" if message else code)


class CommandChannel(Protocol):
    async def invoke(self, command: str, args: Optional[Dict[str, Any]] = None) -> Any:
        ...


def _build_url(base_url: str, path: str) -> str:
    return f"{base_url.rstrip('/')}{path}"


def _parse_error_body(raw: str, status: int) -> BackendError:
    try:
        payload = json.loads(raw) if raw else {}
    except json.JSONDecodeError:
        payload = {}
    if not isinstance(payload, dict):
        payload = {}
    code = str(payload.get("code") or f"http_{status}")
    message = str(payload.get("message") or "")
    return BackendError(code, message, status=status)


class HttpCommandChannel:
    """Issues one POST per backend command and returns the decoded JSON result."""

    def __init__(
        self,
        base_url: str,
        *,
        session: aiohttp.ClientSession | None = None,
        timeout_s: float = 30.0,
    ) -> None:
        self.base_url = base_url
        self._session = session
        self._owns_session = session is None
        self._timeout = aiohttp.ClientTimeout(total=timeout_s)

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def invoke(self, command: str, args: Optional[Dict[str, Any]] = None) -> Any:
        payload = dict(args or {})
        logger.debug("invoke %s %s", command, redact_mapping(payload))
        session = await self._get_session()
        url = _build_url(self.base_url, f"{COMMANDS_PATH}/{command}")
        async with session.post(url, json=payload, timeout=self._timeout) as response:
            body = await response.read()
            status = response.status
        if status >= 400:
            raise _parse_error_body(body.decode("utf-8", errors="replace"), status)
        try:
            raw = body.decode("utf-8")
            return json.loads(raw) if raw else None
        except ValueError as exc:
            # UnicodeDecodeError and JSONDecodeError are both ValueErrors.
            raise BackendError("invalid_response", str(exc), status=status) from exc

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()


class LocalCommandChannel:
    """Calls an in-process backend object exposing ``handle(command, args)``."""

    def __init__(self, backend: Any) -> None:
        self.backend = backend

    async def invoke(self, command: str, args: Optional[Dict[str, Any]] = None) -> Any:
        logger.debug("invoke %s %s (local)", command, redact_mapping(dict(args or {})))
        result = self.backend.handle(command, dict(args or {}))
        # Yield so local round trips complete on a later loop turn, like a network call.
        await asyncio.sleep(0)
        return result


class EventStream:
    """Subscribes to backend push events over a WebSocket, reconnecting with backoff."""

    def __init__(
        self,
        base_url: str,
        handler: EventHandler,
        *,
        session: aiohttp.ClientSession | None = None,
        heartbeat_s: float = 20.0,
        reconnect_initial_s: float = 0.5,
        reconnect_max_s: float = 5.0,
        on_error: Callable[[str], None] | None = None,
    ) -> None:
        self.base_url = base_url
        self.handler = handler
        self._session = session
        self.heartbeat_s = heartbeat_s
        self.reconnect_initial_s = reconnect_initial_s
        self.reconnect_max_s = reconnect_max_s
        self.on_error = on_error
        self._stop = asyncio.Event()
        self._task: asyncio.Task | None = None
        self.connected = asyncio.Event()

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._stop.clear()
            self._task = asyncio.create_task(self.run(), name="sam-events")
        return self._task

    async def stop(self) -> None:
        self._stop.set()
        task = self._task
        self._task = None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _dispatch_frame(self, raw: str) -> None:
        try:
            frame = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("dropping non-JSON event frame")
            return
        if not isinstance(frame, dict):
            return
        name = frame.get("event")
        if not isinstance(name, str):
            return
        try:
            await self.handler(name, frame.get("payload"))
        except Exception:
            # A bad frame must not end the subscription.
            logger.exception("event handler failed for %s", name)

    async def _consume(self, session: aiohttp.ClientSession) -> None:
        url = _build_url(self.base_url, EVENTS_PATH)
        async with session.ws_connect(url, heartbeat=self.heartbeat_s) as ws:
            self.connected.set()
            logger.info("event stream connected to %s", url)
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    await self._dispatch_frame(msg.data)
                elif msg.type in (aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.ERROR):
                    break
                if self._stop.is_set():
                    break
        self.connected.clear()

    async def run(self) -> None:
        backoff_s = self.reconnect_initial_s
        while not self._stop.is_set():
            try:
                if self._session is not None:
                    await self._consume(self._session)
                else:
                    async with aiohttp.ClientSession() as session:
                        await self._consume(session)
                backoff_s = self.reconnect_initial_s
            except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as exc:
                self.connected.clear()
                logger.warning("event stream error: %s", exc)
                if self.on_error is not None:
                    self.on_error(str(exc))
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=backoff_s)
                break
            except asyncio.TimeoutError:
                pass
            backoff_s = min(backoff_s * 2, self.reconnect_max_s)
