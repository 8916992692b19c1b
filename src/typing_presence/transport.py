from __future__ import annotations

import asyncio
import json
import logging
import urllib.parse
from typing import Any, Callable, Dict, List, Optional, Protocol, Union

import aiohttp

logger = logging.getLogger(__name__)

WS_PATH = "/api/v1/ws"

Frame = Union[str, bytes, Dict[str, Any]]
Listener = Callable[[Frame], Any]


class Transport(Protocol):
    @property
    def is_open(self) -> bool: ...

    def send_json(self, payload: Dict[str, Any]) -> bool: ...

    def add_listener(self, listener: Listener) -> None: ...

    def remove_listener(self, listener: Listener) -> None: ...


def build_ws_url(base_url: str, token: str) -> str:
    """Return ``ws(s)://host/api/v1/ws?token=...`` for an http(s) or ws(s) base."""

    parsed = urllib.parse.urlsplit(base_url.rstrip("/"))
    scheme = {"http": "ws", "https": "wss"}.get(parsed.scheme, parsed.scheme)
    path = f"{parsed.path}{WS_PATH}"
    query = urllib.parse.urlencode({"token": token})
    return urllib.parse.urlunsplit((scheme, parsed.netloc, path, query, ""))


class _Listeners:
    def __init__(self) -> None:
        self._listeners: List[Listener] = []

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            return

    def _dispatch(self, frame: Frame) -> None:
        for listener in list(self._listeners):
            try:
                listener(frame)
            except Exception:
                logger.exception("listener %r failed on inbound frame", listener)


class WebSocketTransport(_Listeners):
    """Single WebSocket connection shared by everything on the messaging view.

    Inbound TEXT frames are handed to listeners in arrival order. Outbound
    frames are queued and written by one writer task, so ``send_json`` never
    blocks and never raises. Reconnection is left to the caller.
    """

    def __init__(
        self,
        url: str,
        *,
        session: aiohttp.ClientSession | None = None,
        heartbeat_s: float | None = 30.0,
        queue_size: int = 256,
        flush_timeout_s: float = 1.0,
    ) -> None:
        super().__init__()
        self.url = url
        self._flush_timeout_s = flush_timeout_s
        self._session = session
        self._owns_session = session is None
        self._heartbeat_s = heartbeat_s
        self._outbound: asyncio.Queue[Optional[Dict[str, Any]]] = asyncio.Queue(maxsize=queue_size)
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._reader_task: asyncio.Task | None = None
        self._writer_task: asyncio.Task | None = None
        self._closed = False
        self._send_failed = False

    @property
    def is_open(self) -> bool:
        if self._closed or self._send_failed:
            return False
        return self._ws is not None and not self._ws.closed

    async def connect(self) -> None:
        if self._ws is not None:
            return
        if self._session is None:
            self._session = aiohttp.ClientSession()
        self._ws = await self._session.ws_connect(self.url, heartbeat=self._heartbeat_s)
        self._reader_task = asyncio.create_task(self._reader())
        self._writer_task = asyncio.create_task(self._writer())
        logger.debug("websocket connected")

    def send_json(self, payload: Dict[str, Any]) -> bool:
        if not self.is_open:
            logger.debug("transport not open, dropping %s frame", payload.get("type"))
            return False
        try:
            self._outbound.put_nowait(payload)
        except asyncio.QueueFull:
            logger.warning("outbound queue full, dropping %s frame", payload.get("type"))
            return False
        return True

    async def wait_closed(self) -> None:
        if self._reader_task is not None:
            await asyncio.gather(self._reader_task, return_exceptions=True)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._reader_task is not None:
            self._reader_task.cancel()
        if self._writer_task is not None:
            # Let frames queued before close (a final stop_typing) go out first.
            try:
                self._outbound.put_nowait(None)
            except asyncio.QueueFull:
                self._writer_task.cancel()
            _, pending = await asyncio.wait({self._writer_task}, timeout=self._flush_timeout_s)
            for task in pending:
                task.cancel()
        tasks = [task for task in (self._reader_task, self._writer_task) if task is not None]
        await asyncio.gather(*tasks, return_exceptions=True)
        if self._ws is not None and not self._ws.closed:
            await self._ws.close()
        if self._owns_session and self._session is not None:
            await self._session.close()
        logger.debug("websocket transport closed")

    async def __aenter__(self) -> "WebSocketTransport":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def _reader(self) -> None:
        assert self._ws is not None
        try:
            async for msg in self._ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self._dispatch(msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    logger.warning("websocket error: %s", self._ws.exception())
                    break
                elif msg.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSING, aiohttp.WSMsgType.CLOSED):
                    break
        except asyncio.CancelledError:
            return
        logger.debug("websocket reader finished")

    async def _writer(self) -> None:
        assert self._ws is not None
        try:
            while True:
                payload = await self._outbound.get()
                if payload is None:
                    break
                if self._ws.closed:
                    continue
                try:
                    await self._ws.send_str(json.dumps(payload))
                except (ConnectionResetError, aiohttp.ClientError, RuntimeError) as exc:
                    logger.warning("failed to send %s frame, closing writer: %s", payload.get("type"), exc)
                    self._send_failed = True
                    break
        except asyncio.CancelledError:
            return


class RecordingTransport(_Listeners):
    """In-memory transport that records outbound frames."""

    def __init__(self, *, is_open: bool = True) -> None:
        super().__init__()
        self.open = is_open
        self.sent: List[Dict[str, Any]] = []

    @property
    def is_open(self) -> bool:
        return self.open

    def send_json(self, payload: Dict[str, Any]) -> bool:
        if not self.open:
            return False
        self.sent.append(payload)
        return True

    def deliver(self, frame: Frame) -> None:
        self._dispatch(frame)

    def frames_of(self, kind: str) -> List[Dict[str, Any]]:
        return [frame for frame in self.sent if frame.get("type") == kind]
