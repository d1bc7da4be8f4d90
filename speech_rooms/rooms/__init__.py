"""
Rooms Module

Room ids, session identity, the shared ordered log contract and the
synchronizer that keeps one client subscribed to one room.
"""

from .ids import InvalidRoomIdError, generate_room_id, normalize_room_id
from .last_room import clear_last_room, get_last_room_path, load_last_room, save_last_room
from .log import (
    BackendUnavailableError,
    InMemoryLog,
    InMemoryRoomLog,
    LogError,
    LogWriteRejectedError,
    RoomLog,
    SharedLog,
)
from .session import DisplayNames, Session, generate_session_id
from .synchronizer import RoomSynchronizer

__all__ = [
    "BackendUnavailableError",
    "DisplayNames",
    "InMemoryLog",
    "InMemoryRoomLog",
    "InvalidRoomIdError",
    "LogError",
    "LogWriteRejectedError",
    "RoomLog",
    "RoomSynchronizer",
    "Session",
    "SharedLog",
    "clear_last_room",
    "generate_room_id",
    "generate_session_id",
    "get_last_room_path",
    "load_last_room",
    "normalize_room_id",
    "save_last_room",
]
