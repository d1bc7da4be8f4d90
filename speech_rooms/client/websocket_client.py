"""
WebSocket Room Log Client

Implements the shared ordered log contract against the room-log service.

Protocol (one connection per room handle, ws://host:port/rooms/{room_id}):
1. Client sends operations: {"op": "push", "ref": 1, "entry": {...}}
2. Server replies, correlated by ref: {"ref": 1, "ok": true, "id": "m0000000001"}
   or {"ref": 1, "ok": false, "error": "..."}
3. While subscribed, server sends events: {"event": "added", "id": ..., "entry": {...}}

Clearing a room's messages goes through HTTP: DELETE /rooms/{room_id}/messages
"""

import asyncio
import contextlib
import itertools
import json
import logging
from dataclasses import dataclass
from typing import Any

import httpx
import websockets
from pydantic import ValidationError
from websockets.exceptions import ConnectionClosed, WebSocketException

from speech_rooms.config import MAX_MESSAGES
from speech_rooms.core.models import LogEvent, LogReply, LogRequest, RoomMeta, Utterance
from speech_rooms.rooms.log import (
    BackendUnavailableError,
    EntryCallback,
    LogWriteRejectedError,
    RoomLog,
    SharedLog,
)

logger = logging.getLogger(__name__)

# Failures that mean the service cannot be reached
CONNECTION_ERRORS = (OSError, TimeoutError, WebSocketException)


@dataclass
class ConnectionConfig:
    """Room-log service connection configuration."""

    host: str = "localhost"
    port: int = 8020
    endpoint: str = "/rooms"
    timeout: float = 10.0

    @property
    def uri(self) -> str:
        """Get WebSocket base URI."""
        return f"ws://{self.host}:{self.port}{self.endpoint}"

    @property
    def http_url(self) -> str:
        return f"http://{self.host}:{self.port}"

    def room_uri(self, room_id: str) -> str:
        return f"{self.uri}/{room_id}"


class WebSocketLog(SharedLog):
    """
    Shared log hosted by the room-log service.

    Usage:
        log = WebSocketLog(host="localhost", port=8020)
        room = log.room("K7QXMA")
        await room.subscribe(on_added, on_changed)
        await room.push(Utterance(text="hello", from_=session_id))
        await log.close()
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 8020,
        endpoint: str = "/rooms",
        timeout: float = 10.0,
    ):
        """
        Initialize room-log client.

        Args:
            host: room-log service hostname
            port: room-log service port
            endpoint: WebSocket endpoint prefix
            timeout: Connect and reply timeout in seconds
        """
        self.config = ConnectionConfig(host=host, port=port, endpoint=endpoint, timeout=timeout)
        self._handles: list[WebSocketRoomLog] = []
        self._http: httpx.AsyncClient | None = None

    @classmethod
    def from_server_config(cls, server_config: dict[str, Any]) -> "WebSocketLog":
        """
        Create client from server configuration dictionary.

        Args:
            server_config: Config dict with host, port, endpoint, timeout keys
        """
        return cls(
            host=server_config.get("host", "localhost"),
            port=server_config.get("port", 8020),
            endpoint=server_config.get("endpoint", "/rooms"),
            timeout=server_config.get("timeout", 10.0),
        )

    def room(self, room_id: str) -> "WebSocketRoomLog":
        self._handles = [h for h in self._handles if not h.closed]
        handle = WebSocketRoomLog(self, room_id)
        self._handles.append(handle)
        return handle

    async def get_http(self) -> httpx.AsyncClient:
        """Lazy-init HTTP client with connection pooling."""
        if self._http is None:
            self._http = httpx.AsyncClient(base_url=self.config.http_url, timeout=self.config.timeout)
        return self._http

    async def check_health(self) -> bool:
        """Check if the room-log service is reachable."""
        try:
            http = await self.get_http()
            response = await http.get("/health")
            if response.status_code == 200:
                logger.info(f"Room log connected: {self.config.http_url}")
                return True
            logger.warning(f"Room log health check returned {response.status_code}")
        except httpx.HTTPError as e:
            logger.warning(f"Room log not available: {e}")
        return False

    async def close(self) -> None:
        for handle in self._handles:
            await handle.close()
        self._handles.clear()
        if self._http:
            await self._http.aclose()
            self._http = None


class WebSocketRoomLog(RoomLog):
    """Client handle on one room of the room-log service."""

    def __init__(self, log: WebSocketLog, room_id: str):
        super().__init__(room_id)
        self._log = log
        self.config = log.config

        self._ws = None
        self._receiver: asyncio.Task | None = None
        self._connect_lock = asyncio.Lock()
        self._refs = itertools.count(1)
        self._pending: dict[int, asyncio.Future] = {}

        self._on_added: EntryCallback | None = None
        self._on_changed: EntryCallback | None = None
        self.closed = False

    @property
    def uri(self) -> str:
        return self.config.room_uri(self.room_id)

    @property
    def subscribed(self) -> bool:
        return self._on_added is not None

    # ---- connection -------------------------------------------------------

    async def _ensure_connected(self):
        async with self._connect_lock:
            if self._ws is not None:
                return self._ws
            if self.closed:
                raise BackendUnavailableError(f"Handle on {self.room_id} is closed")

            logger.info(f"Connecting to room log: {self.uri}")
            try:
                self._ws = await websockets.connect(self.uri, open_timeout=self.config.timeout)
            except CONNECTION_ERRORS as e:
                raise BackendUnavailableError(f"Cannot connect to {self.uri}: {e}") from e

            self._receiver = asyncio.create_task(self._receive_loop(self._ws))
            return self._ws

    async def _request(self, op: str, **fields: Any) -> LogReply:
        ws = await self._ensure_connected()
        ref = next(self._refs)
        future = asyncio.get_running_loop().create_future()
        self._pending[ref] = future

        request = LogRequest(op=op, ref=ref, **fields)
        try:
            await ws.send(request.model_dump_json(exclude_none=True))
            reply = await asyncio.wait_for(future, timeout=self.config.timeout)
        except CONNECTION_ERRORS as e:
            raise BackendUnavailableError(f"{op} failed on {self.room_id}: {e}") from e
        finally:
            self._pending.pop(ref, None)

        if not reply.ok:
            raise LogWriteRejectedError(reply.error or f"{op} rejected")
        return reply

    async def _receive_loop(self, ws) -> None:
        """Route replies to waiting requests and events to subscribers."""
        try:
            async for message in ws:
                self._process_message(message)
            logger.warning("Room log connection closed by server")
        except ConnectionClosed as e:
            logger.warning(f"Room log connection closed: {e}")
        except Exception as e:
            logger.error(f"Room log receive error: {e}")
        finally:
            if self._ws is ws:
                self._ws = None
            for future in self._pending.values():
                if not future.done():
                    future.set_exception(BackendUnavailableError("Room log connection lost"))
        # Not reached when close() cancels the receiver
        self._connection_lost()

    def _connection_lost(self) -> None:
        if self.closed or not self.subscribed:
            return
        logger.warning(f"Subscription to {self.messages_path} lost")
        self._on_added = self._on_changed = None
        if self.on_disconnect:
            self.on_disconnect()

    def _process_message(self, message: str | bytes) -> None:
        try:
            data = json.loads(message)
            if not isinstance(data, dict):
                return
            if "ref" in data:
                reply = LogReply.model_validate(data)
                future = self._pending.get(reply.ref)
                if future and not future.done():
                    future.set_result(reply)
            elif "event" in data:
                self._dispatch(LogEvent.model_validate(data))
        except (json.JSONDecodeError, ValidationError) as e:
            logger.warning(f"Ignoring malformed room log message: {e}")

    def _dispatch(self, event: LogEvent) -> None:
        callback = self._on_added if event.event == "added" else self._on_changed
        if callback is None:
            return
        try:
            callback(event.id, Utterance.model_validate(event.entry))
        except Exception:
            logger.exception(f"Subscriber callback failed for {event.id}")

    async def close(self) -> None:
        """Close the connection; the handle cannot be reused."""
        self.closed = True
        self._on_added = self._on_changed = None
        ws, self._ws = self._ws, None
        if self._receiver is not None:
            self._receiver.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._receiver
            self._receiver = None
        if ws is not None:
            with contextlib.suppress(*CONNECTION_ERRORS):
                await ws.close()

    # ---- log contract -----------------------------------------------------

    async def push(self, utterance: Utterance) -> str:
        reply = await self._request("push", entry=utterance.to_entry())
        return reply.id

    async def update(self, entry_id: str, changes: dict[str, Any]) -> None:
        await self._request("update", id=entry_id, patch=changes)

    async def subscribe(
        self,
        on_added: EntryCallback,
        on_changed: EntryCallback,
        limit_to_last: int = MAX_MESSAGES,
    ) -> None:
        await self.unsubscribe()
        # Snapshot events arrive before the reply
        self._on_added, self._on_changed = on_added, on_changed
        try:
            await self._request("subscribe", limit=limit_to_last)
        except Exception:
            self._on_added = self._on_changed = None
            raise

    async def unsubscribe(self) -> None:
        if not self.subscribed:
            return
        self._on_added = self._on_changed = None
        if self._ws is not None:
            await self._request("unsubscribe")

    async def create_meta(self, meta: RoomMeta) -> bool:
        reply = await self._request("meta", meta=meta.model_dump())
        return bool(reply.created)

    async def clear_messages(self) -> None:
        http = await self._log.get_http()
        try:
            response = await http.delete(f"{self.config.endpoint}/{self.room_id}/messages")
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise LogWriteRejectedError(f"Clear rejected: {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise BackendUnavailableError(f"Clear failed on {self.room_id}: {e}") from e
        logger.info(f"Cleared {self.messages_path}: {response.json().get('removed', 0)} entries")
