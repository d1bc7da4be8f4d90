"""Room identifier generation and normalization."""

import secrets

from speech_rooms.config import ROOM_ID_ALPHABET, ROOM_ID_LENGTH


class InvalidRoomIdError(ValueError):
    """Raised when user input cannot be used as a room id."""


def generate_room_id(length: int = ROOM_ID_LENGTH) -> str:
    """
    Generate a random room id from the unambiguous alphabet.

    Examples:
        generate_room_id() -> "K7QXMA"
    """
    return "".join(secrets.choice(ROOM_ID_ALPHABET) for _ in range(length))


def normalize_room_id(raw: str | None) -> str:
    """
    Normalize a user-typed room id.

    Input is case-insensitive; surrounding whitespace is ignored. Only the
    length is checked, membership of a room is not validated.

    Raises:
        InvalidRoomIdError: If the id is empty or not ROOM_ID_LENGTH long.
    """
    room_id = (raw or "").strip().upper()
    if len(room_id) != ROOM_ID_LENGTH:
        raise InvalidRoomIdError(
            f"Please enter a valid {ROOM_ID_LENGTH}-character room ID (got '{raw}')"
        )
    return room_id
