"""
Room Log Synchronizer

Maps room entry and exit onto the shared log: exactly one room subscription
per client, metadata registration for creators, and all reads and writes of
the current room.

Flow:
  enter_room(id)  -> stop capture, finalize the open utterance, unsubscribe
                     the previous room, register metadata (creator only),
                     subscribe added -> view.append / changed -> view.update
  leave_room()    -> same teardown; the room and its log are kept
"""

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from speech_rooms.capture.errors import ErrorKind
from speech_rooms.config import MAX_MESSAGES
from speech_rooms.core.models import RoomMeta, Utterance

from .ids import generate_room_id, normalize_room_id
from .last_room import clear_last_room, load_last_room, save_last_room
from .log import LogError, RoomLog, SharedLog
from .session import Session

if TYPE_CHECKING:
    from speech_rooms.capture.machine import CaptureMachine
    from speech_rooms.client.merger import UtteranceMerger
    from speech_rooms.client.transcript import RoomTranscript

logger = logging.getLogger(__name__)


class RoomSynchronizer:
    """Publishes and subscribes the current room's utterances."""

    def __init__(
        self,
        log: SharedLog,
        session: Session,
        merger: "UtteranceMerger",
        view: "RoomTranscript",
        capture: "CaptureMachine | None" = None,
        persist_last_room: bool = True,
        last_room_path: Path | None = None,
        history_limit: int = MAX_MESSAGES,
    ):
        """
        Initialize synchronizer.

        Args:
            log: Shared log backend
            session: Local session (entry attribution, own-message check)
            merger: Bound to the current room's log while in a room
            view: Receives added/changed events and notices
            capture: Stopped before the room changes
            persist_last_room: Save/clear the last-room record on enter/leave
            last_room_path: Override the last-room record location
            history_limit: Entries delivered on subscribe
        """
        self.log = log
        self.session = session
        self.merger = merger
        self.view = view
        self.capture = capture
        self.persist_last_room = persist_last_room
        self.last_room_path = last_room_path
        self.history_limit = history_limit

        self.room_id: str | None = None
        self.is_creator = False
        self.room_log: RoomLog | None = None

    @property
    def in_room(self) -> bool:
        return self.room_log is not None

    def _notice(self, text: str) -> None:
        self.view.add_notice(text)

    async def enter_room(
        self, room_id: str, is_creator: bool = False, register_meta: bool | None = None
    ) -> str:
        """
        Enter a room, leaving the current one first.

        Args:
            room_id: Room id (normalized)
            is_creator: True if this client created the room
            register_meta: Write room metadata; defaults to is_creator

        Returns:
            The normalized room id
        """
        room_id = normalize_room_id(room_id)
        await self._teardown()

        room_log = self.log.room(room_id)
        self.room_log = room_log
        self.room_id = room_id
        self.is_creator = is_creator
        logger.info(f"Entering room {room_id} (creator={is_creator})")

        if is_creator if register_meta is None else register_meta:
            await self._register_meta(room_log)

        room_log.on_disconnect = self._subscription_lost
        try:
            await room_log.subscribe(self.view.append, self.view.update, self.history_limit)
        except LogError as e:
            logger.warning(f"Failed to subscribe to {room_log.messages_path}: {e}")
            self._notice(ErrorKind.BACKEND_UNAVAILABLE.notice)

        self.merger.bind(room_log)

        if self.persist_last_room:
            save_last_room(room_id, is_creator, path=self.last_room_path)
        return room_id

    def _subscription_lost(self) -> None:
        logger.warning(f"Lost subscription to room {self.room_id}")
        self._notice(ErrorKind.BACKEND_UNAVAILABLE.notice)

    async def _register_meta(self, room_log: RoomLog) -> None:
        meta = RoomMeta(creator=self.session.session_id)
        try:
            created = await room_log.create_meta(meta)
        except LogError as e:
            logger.warning(f"Failed to register {room_log.meta_path}: {e}")
            self._notice(ErrorKind.BACKEND_UNAVAILABLE.notice)
            return
        if not created:
            logger.info(f"{room_log.meta_path} already registered")

    async def create_room(self) -> str:
        """Generate a new room id and enter it as creator."""
        return await self.enter_room(generate_room_id(), is_creator=True)

    async def join_room(self, raw_room_id: str) -> str:
        """
        Join an existing room by user-typed id.

        Raises:
            InvalidRoomIdError: If the id is not ROOM_ID_LENGTH characters
        """
        return await self.enter_room(normalize_room_id(raw_room_id), is_creator=False)

    async def restore_last_room(self) -> str | None:
        """Re-enter the room from a fresh last-room record, if any."""
        record = load_last_room(path=self.last_room_path)
        if record is None:
            return None
        logger.info(f"Restoring last room {record.room_id}")
        try:
            return await self.enter_room(
                record.room_id, is_creator=record.is_creator, register_meta=False
            )
        except ValueError as e:
            logger.warning(f"Ignoring invalid last room record: {e}")
            clear_last_room(path=self.last_room_path)
            return None

    async def leave_room(self) -> None:
        """Leave the current room. The room and its log are kept."""
        if self.room_id is not None:
            logger.info(f"Leaving room {self.room_id}")
        await self._teardown()
        self.room_id = None
        self.is_creator = False
        if self.persist_last_room:
            clear_last_room(path=self.last_room_path)

    async def disconnect(self) -> None:
        """Tear down the room subscription, keeping the last-room record."""
        await self._teardown()
        self.room_id = None
        self.is_creator = False

    async def _teardown(self) -> None:
        if self.capture is not None:
            if self.capture.is_capturing:
                await self.capture.stop()
            # Results already queued belong to the room being left
            await self.capture.settle()

        # Close the open utterance in the room it belongs to
        await self.merger.finalize_open()
        self.merger.unbind()

        if self.room_log is not None:
            room_log, self.room_log = self.room_log, None
            room_log.on_disconnect = None
            try:
                await room_log.unsubscribe()
            except LogError as e:
                logger.warning(f"Failed to unsubscribe from {room_log.messages_path}: {e}")
            await room_log.close()

        self.view.cancel_timers()
        self.view.clear()

    def is_own(self, utterance: Utterance) -> bool:
        """True if the entry was written by this client. Display only."""
        return self.session.is_own(utterance.from_)

    def clear_view(self) -> None:
        """Clear the local display; the room log is untouched."""
        self.view.clear()

    async def clear_room_log(self) -> None:
        """Delete every entry of the current room for all participants."""
        if self.room_log is None:
            return
        try:
            await self.room_log.clear_messages()
        except LogError as e:
            logger.warning(f"Failed to clear {self.room_log.messages_path}: {e}")
            self._notice(ErrorKind.BACKEND_UNAVAILABLE.notice)
            return
        self.merger.reset()
        self.view.clear()
