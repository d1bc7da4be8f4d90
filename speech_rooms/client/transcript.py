"""
Room Transcript

Display-side state for one room: an ordered list of utterance lines addressed
by log entry id, plus inline notices. Decoupled from the log and the UI.

Protocol:
  Log delivers: added(id, utterance)     -> append at the end
  Log delivers: changed(id, utterance)   -> replace in place, never reorder

Client logic:
  - Order is the order in which added events arrive, not the timestamps
  - A changed event for an id that is not displayed is ignored; entries
    outside the initial window are not fetched retroactively
"""

import asyncio
import html
import itertools
import logging
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from speech_rooms.config import SCROLL_RESUME_DELAY_SEC
from speech_rooms.core.models import Utterance, now_ms
from speech_rooms.rooms.session import Session

logger = logging.getLogger(__name__)

STREAMING_SUFFIX = " ..."
NOTICE_PREFIX = "⚠️ "


@dataclass
class TranscriptLine:
    """One rendered line: an utterance or an inline notice."""

    key: str
    text: str
    timestamp: int
    sender: str | None = None
    display_name: str | None = None
    streaming: bool = False
    is_own: bool = False
    is_notice: bool = False

    def render(self) -> str:
        if self.is_notice:
            return f"{NOTICE_PREFIX}{self.text}"
        time_str = datetime.fromtimestamp(self.timestamp / 1000).strftime("%H:%M:%S")
        suffix = STREAMING_SUFFIX if self.streaming else ""
        return f"[{time_str}] {self.display_name}: {self.text}{suffix}"


class RoomTranscript:
    """
    Manages the displayed lines of a room with ID-based append/replace.

    Simple API:
        transcript = RoomTranscript(session)
        transcript.append("m1", utterance)   # New line at the end
        transcript.update("m1", utterance)   # Replaces m1 in place
        transcript.add_notice("Microphone permission denied.")

        print(transcript.get_text())

    Callbacks:
        transcript.on_change = lambda: redraw(transcript.get_text())
    """

    def __init__(self, session: Session, max_lines: int | None = None):
        """
        Initialize room transcript.

        Args:
            session: Local session, used for own-message detection and names
            max_lines: Maximum lines to keep (oldest removed first), None for all
        """
        self.session = session
        self._lines: OrderedDict[str, TranscriptLine] = OrderedDict()
        self._max_lines = max_lines
        self._notice_ids = itertools.count()

        # Auto-scroll pauses while the user scrolls, then resumes
        self.auto_scroll = True
        self._scroll_handle: asyncio.TimerHandle | None = None

        # Callback when transcript changes
        self.on_change: Callable[[], None] | None = None

    def _line_for(self, entry_id: str, utterance: Utterance) -> TranscriptLine:
        return TranscriptLine(
            key=entry_id,
            text=utterance.text,
            timestamp=utterance.timestamp,
            sender=utterance.from_,
            display_name=self.session.display_name(utterance.from_),
            streaming=utterance.streaming,
            is_own=self.session.is_own(utterance.from_),
        )

    def _changed(self) -> None:
        if self.on_change:
            try:
                self.on_change()
            except Exception:
                logger.debug("on_change callback failed", exc_info=True)

    def append(self, entry_id: str, utterance: Utterance) -> bool:
        """
        Handle an added event.

        Returns:
            True if a new line was appended, False if the id was already shown
            (the existing line is refreshed in place)
        """
        is_new = entry_id not in self._lines
        self._lines[entry_id] = self._line_for(entry_id, utterance)
        logger.debug(f"[{'APPEND' if is_new else 'REPLACE'}] {entry_id} = '{utterance.text[:50]}'")

        while self._max_lines is not None and len(self._lines) > self._max_lines:
            self._lines.popitem(last=False)

        self._changed()
        return is_new

    def update(self, entry_id: str, utterance: Utterance) -> bool:
        """
        Handle a changed event.

        Returns:
            True if the displayed line was updated, False if the id is unknown
        """
        if entry_id not in self._lines:
            logger.debug(f"[SKIP] {entry_id} not displayed, ignoring change")
            return False

        self._lines[entry_id] = self._line_for(entry_id, utterance)
        self._changed()
        return True

    def add_notice(self, text: str) -> None:
        """Show an inline, non-blocking notice in the stream."""
        key = f"!notice{next(self._notice_ids)}"
        self._lines[key] = TranscriptLine(key=key, text=text, timestamp=now_ms(), is_notice=True)
        logger.debug(f"[NOTICE] {text}")
        self._changed()

    def get_line(self, entry_id: str) -> TranscriptLine | None:
        return self._lines.get(entry_id)

    def get_lines(self) -> list[TranscriptLine]:
        """All lines in display order."""
        return list(self._lines.values())

    def get_entry_ids(self) -> list[str]:
        """Displayed utterance ids in order, notices excluded."""
        return [key for key, line in self._lines.items() if not line.is_notice]

    def get_text(self) -> str:
        """Render every line, one per row."""
        return "\n".join(line.render() for line in self._lines.values())

    def clear(self) -> None:
        """Clear all lines."""
        self._lines.clear()
        self._changed()

    # ---- auto-scroll ------------------------------------------------------

    def user_scrolled(self, delay: float = SCROLL_RESUME_DELAY_SEC) -> None:
        """Pause auto-scroll; it resumes `delay` seconds after the last call."""
        self.auto_scroll = False
        self.cancel_timers()
        loop = asyncio.get_running_loop()
        self._scroll_handle = loop.call_later(delay, self._resume_auto_scroll)

    def _resume_auto_scroll(self) -> None:
        self._scroll_handle = None
        self.auto_scroll = True

    def cancel_timers(self) -> None:
        """Cancel a pending scroll resume."""
        if self._scroll_handle is not None:
            self._scroll_handle.cancel()
            self._scroll_handle = None

    # ---- rendering --------------------------------------------------------

    @property
    def line_count(self) -> int:
        return len(self._lines)

    @property
    def is_empty(self) -> bool:
        return len(self._lines) == 0

    def to_html(self) -> str:
        """
        Render as list items carrying the entry id and streaming state.

        Returns:
            HTML string
        """
        parts = []
        for line in self._lines.values():
            if line.is_notice:
                parts.append(f'<li class="notice">{html.escape(line.render())}</li>')
                continue
            css = "message own" if line.is_own else "message"
            streaming = "true" if line.streaming else "false"
            parts.append(
                f'<li class="{css}" data-msg-id="{line.key}" data-streaming="{streaming}">'
                f"{html.escape(line.render())}</li>"
            )
        return "\n".join(parts)

    def __repr__(self) -> str:
        return f"RoomTranscript({self.line_count} lines)"

    def __len__(self) -> int:
        return self.line_count
