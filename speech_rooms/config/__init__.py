"""
Speech Rooms Configuration Module

Protocol constants and room-log server definitions.
"""

from .settings import (
    AUTO_RESTART_DELAY_SEC,
    DEFAULT_LANGUAGE,
    LAST_ROOM_MAX_AGE_SEC,
    MAX_MESSAGES,
    MAX_TEXT_LENGTH,
    ROOM_ID_ALPHABET,
    ROOM_ID_LENGTH,
    ROOM_LOG_SERVER,
    SCROLL_RESUME_DELAY_SEC,
    SERVERS,
    START_RETRY_DELAY_SEC,
    get_display_info,
    get_server_config,
    get_state_dir,
    list_servers,
)

__all__ = [
    "AUTO_RESTART_DELAY_SEC",
    "DEFAULT_LANGUAGE",
    "LAST_ROOM_MAX_AGE_SEC",
    "MAX_MESSAGES",
    "MAX_TEXT_LENGTH",
    "ROOM_ID_ALPHABET",
    "ROOM_ID_LENGTH",
    "ROOM_LOG_SERVER",
    "SCROLL_RESUME_DELAY_SEC",
    "SERVERS",
    "START_RETRY_DELAY_SEC",
    "get_display_info",
    "get_server_config",
    "get_state_dir",
    "list_servers",
]
