"""Persisted "last room" record used to restore membership on restart.

The record is a small JSON file: {"roomId": ..., "isCreator": ..., "timestamp": ...}.
It is considered fresh for LAST_ROOM_MAX_AGE_SEC after it was written.
"""

import json
import logging
from pathlib import Path

from pydantic import ValidationError

from speech_rooms.config import LAST_ROOM_MAX_AGE_SEC
from speech_rooms.config.settings import LAST_ROOM_FILENAME, get_state_dir
from speech_rooms.core.models import LastRoom, now_ms

logger = logging.getLogger(__name__)


def get_last_room_path() -> Path:
    """Get the path for the last-room record."""
    return get_state_dir() / LAST_ROOM_FILENAME


def save_last_room(room_id: str, is_creator: bool, path: Path | None = None) -> LastRoom:
    """Write the last-room record and return it."""
    record = LastRoom(room_id=room_id, is_creator=is_creator, timestamp=now_ms())
    path = path or get_last_room_path()
    try:
        with open(path, "w") as f:
            json.dump(record.model_dump(by_alias=True), f)
    except OSError as e:
        logger.warning(f"Failed to save last room: {e}")
    return record


def load_last_room(
    max_age_sec: float = LAST_ROOM_MAX_AGE_SEC, path: Path | None = None
) -> LastRoom | None:
    """Read the last-room record.

    Returns:
        The record, or None if missing, unreadable or older than max_age_sec.
    """
    path = path or get_last_room_path()
    if not path.exists():
        return None

    try:
        with open(path, "r") as f:
            record = LastRoom.model_validate(json.load(f))
    except (OSError, json.JSONDecodeError, ValidationError) as e:
        logger.debug(f"Ignoring unreadable last room record: {e}")
        return None

    age_sec = (now_ms() - record.timestamp) / 1000
    if age_sec > max_age_sec:
        logger.info(f"Last room {record.room_id} is stale ({age_sec / 3600:.1f}h old)")
        return None
    return record


def clear_last_room(path: Path | None = None) -> None:
    """Remove the last-room record if present."""
    path = path or get_last_room_path()
    try:
        if path.exists():
            path.unlink()
    except OSError as e:
        logger.debug(f"Failed to clear last room: {e}")
