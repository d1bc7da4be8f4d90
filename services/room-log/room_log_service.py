"""
Room Log Service - shared ordered log for speech rooms

Hosts every room's utterance log in memory and fans writes out to all
subscribed clients over WebSockets.

Features:
- Insertion-ordered entries with server-assigned ids
- Subscribers receive the most recent entries, then every add and change
- Backend rules: text cap, create-if-absent metadata, finalized entries are
  immutable, updates to unknown ids are rejected

Protocol:
1. Client connects to /rooms/{room_id}
2. Client sends: {"op": "push"|"update"|"subscribe"|"unsubscribe"|"meta", "ref": n, ...}
3. Server replies: {"ref": n, "ok": true, ...} or {"ref": n, "ok": false, "error": "..."}
4. Subscribed clients receive: {"event": "added"|"changed", "id": "...", "entry": {...}}
"""

import asyncio
import contextlib
import json
import os
from contextlib import asynccontextmanager
from typing import Any

import uvicorn
from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError

from speech_rooms.config import MAX_MESSAGES, MAX_TEXT_LENGTH, ROOM_ID_LENGTH
from speech_rooms.core.models import (
    HealthResponse,
    LogEvent,
    LogReply,
    LogRequest,
    RoomMeta,
    Utterance,
)
from speech_rooms.rooms.log import InMemoryLog, LogWriteRejectedError
from speech_rooms.utils import setup_logging

# Configure logging
logger = setup_logging(__name__)

# =============================================================================
# Configuration
# =============================================================================

__version__ = "1.0"

TEXT_LIMIT = int(os.getenv("ROOM_LOG_MAX_TEXT_LENGTH", str(MAX_TEXT_LENGTH)))
PORT = int(os.getenv("ROOM_LOG_PORT", "8020"))

# Global log shared by every connection
store = InMemoryLog(max_text_length=TEXT_LIMIT)


# =============================================================================
# FastAPI App
# =============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown."""
    logger.info(f"Room log ready (text limit {TEXT_LIMIT}, history {MAX_MESSAGES})")
    yield
    logger.info(f"Room log shutting down with {store.room_count} rooms")


app = FastAPI(title="Room Log Service", version=__version__, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health", response_model=HealthResponse)
async def health_check():
    return HealthResponse(rooms=store.room_count)


@app.get("/info")
async def info():
    """Return service limits for client config display."""
    return {
        "service": "room-log",
        "version": __version__,
        "max_text_length": store.max_text_length,
        "history_limit": MAX_MESSAGES,
        "room_id_length": ROOM_ID_LENGTH,
        "rooms": store.room_count,
    }


@app.get("/rooms/{room_id}/meta")
async def get_room_meta(room_id: str):
    meta = store.get_meta(room_id)
    if meta is None:
        raise HTTPException(status_code=404, detail=f"No metadata for room {room_id}")
    return meta.model_dump()


@app.delete("/rooms/{room_id}/messages")
async def clear_room_messages(room_id: str):
    """Delete every entry of a room. Metadata is kept."""
    removed = store.clear(room_id)
    return {"room_id": room_id, "removed": removed}


# =============================================================================
# WebSocket protocol
# =============================================================================


class RoomConnection:
    """Per-connection state: the room, its subscription and the outbox."""

    def __init__(self, log: InMemoryLog, room_id: str):
        self.log = log
        self.room_id = room_id
        self.outbox: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        self.subscriber = None

    def _event(self, kind: str, entry_id: str, utterance: Utterance) -> None:
        event = LogEvent(event=kind, id=entry_id, entry=utterance.to_entry())
        self.outbox.put_nowait(event.model_dump())

    def on_added(self, entry_id: str, utterance: Utterance) -> None:
        self._event("added", entry_id, utterance)

    def on_changed(self, entry_id: str, utterance: Utterance) -> None:
        self._event("changed", entry_id, utterance)

    def handle(self, raw: str) -> dict[str, Any]:
        """Apply one client operation and build its reply."""
        try:
            request = LogRequest.model_validate_json(raw)
        except ValidationError as e:
            return self._reply(_ref_of(raw), ok=False, error=f"Invalid request: {e.errors()[0]['msg']}")

        try:
            return self._apply(request)
        except (LogWriteRejectedError, ValidationError) as e:
            logger.info(f"[{self.room_id}] {request.op} rejected: {e}")
            return self._reply(request.ref, ok=False, error=str(e))

    def _apply(self, request: LogRequest) -> dict[str, Any]:
        op = request.op

        if op == "push":
            if request.entry is None:
                return self._reply(request.ref, ok=False, error="push requires 'entry'")
            entry_id = self.log.append(self.room_id, Utterance.model_validate(request.entry))
            return self._reply(request.ref, id=entry_id)

        if op == "update":
            if request.id is None or request.patch is None:
                return self._reply(request.ref, ok=False, error="update requires 'id' and 'patch'")
            self.log.modify(self.room_id, request.id, request.patch)
            return self._reply(request.ref, id=request.id)

        if op == "subscribe":
            self.unsubscribe()
            limit = request.limit if request.limit is not None else MAX_MESSAGES
            self.subscriber = self.log.add_subscriber(
                self.room_id, self.on_added, self.on_changed, limit
            )
            return self._reply(request.ref)

        if op == "unsubscribe":
            self.unsubscribe()
            return self._reply(request.ref)

        # op == "meta"
        if request.meta is None:
            return self._reply(request.ref, ok=False, error="meta requires 'meta'")
        created = self.log.register_meta(self.room_id, RoomMeta.model_validate(request.meta))
        return self._reply(request.ref, created=created)

    def _reply(self, ref: int, **fields: Any) -> dict[str, Any]:
        return LogReply(ref=ref, **fields).model_dump(exclude_none=True)

    def unsubscribe(self) -> None:
        if self.subscriber is not None:
            self.log.remove_subscriber(self.room_id, self.subscriber)
            self.subscriber = None


def _ref_of(raw: str) -> int:
    """Best-effort ref of a malformed request, 0 if none."""
    try:
        ref = json.loads(raw).get("ref", 0)
        return ref if isinstance(ref, int) else 0
    except (json.JSONDecodeError, AttributeError):
        return 0


async def _send_loop(websocket: WebSocket, outbox: asyncio.Queue) -> None:
    while True:
        message = await outbox.get()
        await websocket.send_json(message)


@app.websocket("/rooms/{room_id}")
async def room_stream(websocket: WebSocket, room_id: str):
    """
    Room log endpoint.

    Protocol:
    1. Connect to /rooms/{room_id}
    2. Send operations as JSON text frames
    3. Receive replies (by ref) and, while subscribed, added/changed events
    """
    await websocket.accept()
    logger.info(f"[{room_id}] Connection established")

    connection = RoomConnection(store, room_id)
    # Replies and events share one outbox so events queued by an operation
    # are sent before its reply
    sender = asyncio.create_task(_send_loop(websocket, connection.outbox))

    try:
        while True:
            raw = await websocket.receive_text()
            connection.outbox.put_nowait(connection.handle(raw))
    except WebSocketDisconnect:
        logger.info(f"[{room_id}] Disconnected")
    except Exception as e:
        logger.error(f"[{room_id}] Stream error: {e}")
    finally:
        connection.unsubscribe()
        sender.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sender


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=PORT)
