"""
Speech Rooms Settings

Single source of truth for protocol constants and room-log server endpoints.
Change ROOM_LOG_SERVER (or the env var of the same name) to switch servers.

Architecture:
- Protocol constants: room ids, history bound, message size, timers
- Room-log servers: where the shared ordered log is hosted
"""

import os
from pathlib import Path
from typing import Any

# ============== Protocol Constants ==============
# Unambiguous alphabet: no 0/O, no 1/I
ROOM_ID_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
ROOM_ID_LENGTH = 6

# Entries delivered to a newly subscribing client
MAX_MESSAGES = 200

# Enforced by the log backend, not the client
MAX_TEXT_LENGTH = 500

# ============== Capture Timing ==============
AUTO_RESTART_DELAY_SEC = 0.05  # Desktop restart after an unexpected engine end
START_RETRY_DELAY_SEC = 0.5  # Single retry after an invalid-state start failure
SCROLL_RESUME_DELAY_SEC = 3.0  # Auto-scroll resumes after user scrolling stops

# ============== Persisted Local State ==============
LAST_ROOM_MAX_AGE_SEC = 24 * 60 * 60
LAST_ROOM_FILENAME = "speech_rooms_last_room.json"

DEFAULT_LANGUAGE = "en-US"

# ============== Room-Log Servers ==============
# Local development settings (localhost)
SERVERS_LOCAL: dict[str, dict[str, Any]] = {
    "room-log": {
        "name": "Room Log",
        "host": "localhost",
        "port": 8020,
        "endpoint": "/rooms",
        "timeout": 10.0,
        "description": "In-memory shared ordered log over WebSockets",
    },
    "asr": {
        "name": "Transcription Gateway",
        "host": "localhost",
        "port": 8000,
        "endpoint": "/stream",
        "timeout": 30.0,
        "description": "Streaming ASR used as the recognition engine",
    },
}

# Docker internal settings (service names)
SERVERS_DOCKER: dict[str, dict[str, Any]] = {
    "room-log": {
        "name": "Room Log",
        "host": "room-log",  # Docker service name
        "port": 8000,  # Docker internal port
        "endpoint": "/rooms",
        "timeout": 10.0,
        "description": "In-memory shared ordered log over WebSockets",
    },
    "asr": {
        "name": "Transcription Gateway",
        "host": "transcription",  # Docker service name
        "port": 8000,
        "endpoint": "/stream",
        "timeout": 30.0,
        "description": "Streaming ASR used as the recognition engine",
    },
}

# Auto-detect environment: use Docker config if running in container
IS_DOCKER = os.path.exists("/.dockerenv") or os.getenv("DOCKER_CONTAINER", "").lower() == "true"
SERVERS = SERVERS_DOCKER if IS_DOCKER else SERVERS_LOCAL

# ========== SWITCH ROOM-LOG SERVER HERE ==========
ROOM_LOG_SERVER = os.getenv("ROOM_LOG_SERVER", "room-log")
# =================================================


def get_server_config(name: str | None = None) -> dict[str, Any]:
    """
    Get configuration for a server.

    Args:
        name: Server name ('room-log' or 'asr'). Uses ROOM_LOG_SERVER if None.

    Returns:
        Server configuration dictionary.

    Raises:
        KeyError: If server name is not found.
    """
    key = name or ROOM_LOG_SERVER
    if key not in SERVERS:
        raise KeyError(f"Unknown server: {key}. Available: {list(SERVERS.keys())}")
    return SERVERS[key]


def get_state_dir() -> Path:
    """Directory holding persisted local client state."""
    return Path(os.environ.get("SPEECH_ROOMS_STATE_DIR") or os.environ.get("TEMP", "/tmp"))


def get_display_info(name: str | None = None) -> str:
    """
    Get human-readable display string for a server.

    Returns:
        Formatted string like "Room Log @ ws://localhost:8020/rooms"
    """
    cfg = get_server_config(name)
    return f"{cfg['name']} @ ws://{cfg['host']}:{cfg['port']}{cfg['endpoint']}"


def list_servers() -> dict[str, str]:
    """
    List all configured servers with descriptions.

    Returns:
        Dict mapping server name to description.
    """
    return {name: cfg["description"] for name, cfg in SERVERS.items()}
