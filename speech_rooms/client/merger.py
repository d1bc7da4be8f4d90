"""
Utterance Streaming Merger

Turns a stream of (final, interim) recognition results into log writes, one
evolving entry per utterance:

  interim, nothing open    -> push {text, streaming: true}, remember its id
  interim, entry open      -> update text and timestamp of the open entry
  final, entry open        -> update with final text, streaming: false, close
  final, nothing open      -> push {text, streaming: false}
  finalize_open()          -> close the open entry with the last interim text

At most one entry is open per client. Write failures surface a notice and are
not retried.
"""

import logging
from collections.abc import Callable
from typing import Any

from speech_rooms.capture.errors import ErrorKind
from speech_rooms.core.models import Utterance, now_ms
from speech_rooms.rooms.log import LogError, RoomLog

logger = logging.getLogger(__name__)


class UtteranceMerger:
    """Single open-utterance slot bound to the current room's log."""

    def __init__(
        self,
        session_id: str,
        on_notice: Callable[[str], None] | None = None,
        clock: Callable[[], int] = now_ms,
    ):
        """
        Initialize merger.

        Args:
            session_id: Written as the `from` field of every entry
            on_notice: Called with user-facing text when a write fails
            clock: Epoch-millisecond clock for entry timestamps
        """
        self.session_id = session_id
        self.on_notice = on_notice
        self.clock = clock

        self.room_log: RoomLog | None = None
        self._open_id: str | None = None
        self.last_interim = ""
        self._write_failed = False

    @property
    def open_id(self) -> str | None:
        """Log id of the open utterance, if any."""
        return self._open_id

    def bind(self, room_log: RoomLog) -> None:
        self.reset()
        self.room_log = room_log

    def unbind(self) -> None:
        self.reset()
        self.room_log = None

    def reset(self) -> None:
        """Drop the open utterance without writing to the log."""
        self._open_id = None
        self.last_interim = ""

    async def handle_result(self, final_text: str, interim_text: str) -> None:
        """Apply one result event. Final text is applied before interim text."""
        if self.room_log is None:
            logger.debug("Not in a room, dropping result")
            return
        if final_text:
            await self._finalize(final_text)
        if interim_text:
            await self._stream(interim_text)

    async def finalize_open(self) -> None:
        """Close the open utterance with the best known interim text."""
        if self._open_id is None:
            return
        entry_id, text = self._open_id, self.last_interim
        self.reset()
        logger.debug(f"Finalizing open utterance {entry_id} with '{text[:50]}'")
        await self._update(entry_id, {"text": text, "streaming": False})

    async def _stream(self, text: str) -> None:
        self.last_interim = text
        if self._open_id is not None:
            await self._update(self._open_id, {"text": text})
            return

        room_log = self.room_log
        entry_id = await self._push(text, streaming=True)
        # The slot belongs to the room the entry was written to
        if entry_id is not None and self.room_log is room_log:
            self._open_id = entry_id

    async def _finalize(self, text: str) -> None:
        if self._open_id is None:
            await self._push(text, streaming=False)
            return
        entry_id = self._open_id
        self.reset()
        await self._update(entry_id, {"text": text, "streaming": False})

    async def _push(self, text: str, streaming: bool) -> str | None:
        if self.room_log is None:
            return None
        utterance = Utterance(
            text=text, from_=self.session_id, timestamp=self.clock(), streaming=streaming
        )
        try:
            entry_id = await self.room_log.push(utterance)
        except LogError as e:
            self._write_error(e)
            return None
        self._write_failed = False
        return entry_id

    async def _update(self, entry_id: str, changes: dict[str, Any]) -> None:
        if self.room_log is None:
            return
        changes = {**changes, "timestamp": self.clock()}
        try:
            await self.room_log.update(entry_id, changes)
        except LogError as e:
            self._write_error(e)
            return
        self._write_failed = False

    def _write_error(self, error: LogError) -> None:
        logger.warning(f"Room log write failed: {error}")
        # One notice per run of consecutive failures
        if not self._write_failed and self.on_notice:
            self.on_notice(ErrorKind.BACKEND_UNAVAILABLE.notice)
        self._write_failed = True
