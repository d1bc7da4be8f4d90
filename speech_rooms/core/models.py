"""
Shared Models for Speech Rooms

Defines the data structures written to the shared ordered log and the JSON
messages exchanged with the room-log service. These models are used by:
- The in-memory log and the room-log service
- The WebSocket log client
- The utterance merger and the room transcript view

Protocol:
- Entries live under rooms/{room_id}/messages, keyed by a log-assigned id
- Metadata lives under rooms/{room_id}/meta and is written at most once
"""

import time
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class Utterance(BaseModel):
    """One streamed speech turn as stored in the room log.

    The log entry is mutated in place while `streaming` is true and frozen
    once it becomes false.
    """

    model_config = ConfigDict(populate_by_name=True)

    text: str
    from_: str = Field(alias="from")  # Session id of the speaker
    timestamp: int = Field(default_factory=now_ms)  # Last update, epoch ms
    streaming: bool = True

    def to_entry(self) -> dict[str, Any]:
        """Serialize to the log's wire representation."""
        return self.model_dump(by_alias=True)

    def merged(self, changes: dict[str, Any]) -> "Utterance":
        """Return a copy with a partial update applied."""
        data = self.to_entry()
        data.update(changes)
        return Utterance.model_validate(data)


class RoomMeta(BaseModel):
    """Room metadata, registered once by the creating client."""

    creator: str
    created: int = Field(default_factory=now_ms)


class LastRoom(BaseModel):
    """Persisted record used to restore room membership on restart."""

    model_config = ConfigDict(populate_by_name=True)

    room_id: str = Field(alias="roomId")
    is_creator: bool = Field(default=False, alias="isCreator")
    timestamp: int = Field(default_factory=now_ms)


# =============================================================================
# room-log WebSocket protocol
# =============================================================================


class LogRequest(BaseModel):
    """Client -> server operation on one room."""

    op: Literal["push", "update", "subscribe", "unsubscribe", "meta"]
    ref: int
    id: str | None = None
    entry: dict[str, Any] | None = None
    patch: dict[str, Any] | None = None
    limit: int | None = None
    meta: dict[str, Any] | None = None


class LogReply(BaseModel):
    """Server -> client reply correlated by `ref`."""

    ref: int
    ok: bool = True
    id: str | None = None
    created: bool | None = None
    error: str | None = None


class LogEvent(BaseModel):
    """Server -> client subscription event."""

    event: Literal["added", "changed"]
    id: str
    entry: dict[str, Any]


class HealthResponse(BaseModel):
    """Health check response from the room-log service."""

    status: str = "healthy"
    service: str = "room-log"
    rooms: int = 0
    api_version: str = "1.0"


__all__ = [
    "HealthResponse",
    "LastRoom",
    "LogEvent",
    "LogReply",
    "LogRequest",
    "RoomMeta",
    "Utterance",
    "now_ms",
]
