"""
Speech Rooms Client

One object per connected client. Owns the session identity, the speech
provider, the capture machine, the utterance merger, the room synchronizer
and the transcript view; nothing is kept at module level.

Usage:
    log = InMemoryLog()   # or WebSocketLog.from_server_config(get_server_config())
    async with SpeechRoomsClient(log, engine_factory=make_engine) as client:
        room_id = await client.create_room()
        await client.start_capture()
        ...
        await client.stop_capture()
"""

import logging
from collections.abc import Callable
from pathlib import Path

from speech_rooms.capture.errors import ErrorKind
from speech_rooms.capture.machine import CaptureMachine, CaptureState
from speech_rooms.capture.provider import (
    EngineFactory,
    PermissionProbe,
    ProviderOptions,
    create_provider,
)
from speech_rooms.rooms.log import SharedLog
from speech_rooms.rooms.session import Session
from speech_rooms.rooms.synchronizer import RoomSynchronizer

from .merger import UtteranceMerger
from .transcript import RoomTranscript

logger = logging.getLogger(__name__)


class SpeechRoomsClient:
    """Client session context wiring capture, merging and room sync."""

    def __init__(
        self,
        log: SharedLog,
        engine_factory: EngineFactory | None = None,
        options: ProviderOptions | None = None,
        permission_probe: PermissionProbe | None = None,
        session: Session | None = None,
        persist_last_room: bool = True,
        last_room_path: Path | None = None,
        on_state_change: Callable[[CaptureState, CaptureState], None] | None = None,
    ):
        """
        Initialize client.

        Args:
            log: Shared log backend
            engine_factory: Builds the platform recognition engine; None if
                the host has no speech recognition
            options: Recognition options and platform policy
            permission_probe: Async microphone permission check
            session: Session identity, generated if None
            persist_last_room: Save the last-room record on enter/leave
            last_room_path: Override the last-room record location
            on_state_change: Called with (old, new) capture states
        """
        self.log = log
        self.session = session or Session()
        self.view = RoomTranscript(self.session)
        self.merger = UtteranceMerger(self.session.session_id, on_notice=self.view.add_notice)

        self.provider = create_provider(
            engine_factory, options, permission_probe, on_error=self._on_provider_error
        )
        self.capture = CaptureMachine(
            self.provider,
            self.merger,
            on_state_change=on_state_change,
            on_notice=self.view.add_notice,
        )
        self.rooms = RoomSynchronizer(
            log,
            self.session,
            self.merger,
            self.view,
            capture=self.capture,
            persist_last_room=persist_last_room,
            last_room_path=last_room_path,
        )

    def _on_provider_error(self, kind: ErrorKind) -> None:
        self.view.add_notice(kind.notice)

    @property
    def session_id(self) -> str:
        return self.session.session_id

    @property
    def room_id(self) -> str | None:
        return self.rooms.room_id

    @property
    def state(self) -> CaptureState:
        return self.capture.state

    # ---- lifecycle --------------------------------------------------------

    async def open(self) -> None:
        """Start processing capture events in the background."""
        self.capture.start_processing()

    async def close(self) -> None:
        """Stop capture, leave the room view and release timers."""
        await self.stop_capture()
        await self.capture.settle()
        await self.capture.stop_processing()
        await self.rooms.disconnect()
        self.view.cancel_timers()
        logger.info(f"Client {self.session_id} closed")

    async def __aenter__(self) -> "SpeechRoomsClient":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    # ---- capture ----------------------------------------------------------

    async def start_capture(self) -> bool:
        if not self.rooms.in_room:
            logger.warning("start_capture() outside a room")
            self.view.add_notice("Join or create a room first.")
            return False
        return await self.capture.start()

    async def stop_capture(self) -> None:
        await self.capture.stop()

    # ---- rooms ------------------------------------------------------------

    async def create_room(self) -> str:
        return await self.rooms.create_room()

    async def join_room(self, raw_room_id: str) -> str:
        return await self.rooms.join_room(raw_room_id)

    async def restore_last_room(self) -> str | None:
        return await self.rooms.restore_last_room()

    async def leave_room(self) -> None:
        await self.rooms.leave_room()
