"""
Speech Rooms

Shared rooms in which participants see each other's speech appear word by
word while it is spoken:
- capture: provider adapter, error taxonomy, capture state machine
- client: utterance merger, transcript view, WebSocket log client, client context
- rooms: room ids, sessions, shared ordered log, room synchronizer
- config: protocol constants and server definitions
- utils: logging setup

Usage:
    from speech_rooms import InMemoryLog, SpeechRoomsClient
    from speech_rooms.utils import setup_logging

    logger = setup_logging(__name__)
    client = SpeechRoomsClient(InMemoryLog(), engine_factory=make_engine)
"""

__version__ = "1.0.0"

from .capture import CaptureMachine, CaptureState, ErrorKind, PlatformPolicy, ProviderOptions
from .client import RoomTranscript, SpeechRoomsClient, UtteranceMerger, WebSocketLog
from .config import get_display_info, get_server_config
from .core import RoomMeta, Utterance
from .rooms import InMemoryLog, InvalidRoomIdError, RoomSynchronizer, Session
from .utils import get_logger, setup_logging

__all__ = [
    "CaptureMachine",
    "CaptureState",
    "ErrorKind",
    "InMemoryLog",
    "InvalidRoomIdError",
    "PlatformPolicy",
    "ProviderOptions",
    "RoomMeta",
    "RoomSynchronizer",
    "RoomTranscript",
    "Session",
    "SpeechRoomsClient",
    "Utterance",
    "UtteranceMerger",
    "WebSocketLog",
    "get_display_info",
    "get_logger",
    "get_server_config",
    "setup_logging",
]
