"""
Speech Rooms Client Module

Provides RoomTranscript for ID-based append/replace display, the utterance
merger, the WebSocket room-log client and the per-client session context.

Protocol:
  Log delivers: added(id, utterance)    -> append at the end
  Log delivers: changed(id, utterance)  -> replace in place

Usage:
    from speech_rooms.client import SpeechRoomsClient

    client = SpeechRoomsClient(log, engine_factory=make_engine)
    client.view.on_change = lambda: redraw(client.view.get_text())
"""

from .merger import UtteranceMerger
from .room_client import SpeechRoomsClient
from .transcript import RoomTranscript, TranscriptLine
from .websocket_client import ConnectionConfig, WebSocketLog, WebSocketRoomLog

__all__ = [
    "ConnectionConfig",
    "RoomTranscript",
    "SpeechRoomsClient",
    "TranscriptLine",
    "UtteranceMerger",
    "WebSocketLog",
    "WebSocketRoomLog",
]
