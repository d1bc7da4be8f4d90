"""Shared core models for Speech Rooms."""

from speech_rooms.core.models import (
    HealthResponse,
    LastRoom,
    LogEvent,
    LogReply,
    LogRequest,
    RoomMeta,
    Utterance,
    now_ms,
)

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
