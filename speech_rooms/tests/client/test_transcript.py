"""
Unit tests for speech_rooms.client.transcript module.
"""

import asyncio
from datetime import datetime
from unittest.mock import MagicMock

import pytest

from speech_rooms.client.transcript import RoomTranscript, TranscriptLine
from speech_rooms.core.models import Utterance
from speech_rooms.rooms.session import Session

TS = 1_700_000_000_000


def utterance(text, sender="user_other", streaming=False, timestamp=TS):
    return Utterance(text=text, from_=sender, timestamp=timestamp, streaming=streaming)


@pytest.fixture
def transcript():
    return RoomTranscript(Session("user_local"))


class TestTranscriptLine:
    """Tests for TranscriptLine rendering."""

    def test_render_final(self):
        """Test finalized lines have no streaming marker."""
        line = TranscriptLine(key="m1", text="hello", timestamp=TS, display_name="You")
        time_str = datetime.fromtimestamp(TS / 1000).strftime("%H:%M:%S")
        assert line.render() == f"[{time_str}] You: hello"

    def test_render_streaming(self):
        """Test streaming lines carry a trailing marker."""
        line = TranscriptLine(
            key="m1", text="hel", timestamp=TS, display_name="Speaker 1", streaming=True
        )
        assert line.render().endswith("Speaker 1: hel ...")

    def test_render_notice(self):
        """Test notices render without time or speaker."""
        line = TranscriptLine(key="!notice0", text="Offline", timestamp=TS, is_notice=True)
        assert line.render() == "⚠️ Offline"


class TestRoomTranscript:
    """Tests for RoomTranscript class."""

    def test_init_empty(self, transcript):
        """Test transcript initializes empty."""
        assert transcript.is_empty
        assert transcript.line_count == 0
        assert transcript.get_text() == ""

    def test_append_new_entry(self, transcript):
        """Test added events append a line."""
        assert transcript.append("m1", utterance("hello")) is True
        assert transcript.get_entry_ids() == ["m1"]

    def test_append_existing_entry_refreshes(self, transcript):
        """Test a repeated added event refreshes in place."""
        transcript.append("m1", utterance("hello"))
        assert transcript.append("m1", utterance("hello again")) is False
        assert transcript.line_count == 1
        assert transcript.get_line("m1").text == "hello again"

    def test_order_follows_arrival(self, transcript):
        """Test lines keep arrival order, not timestamp order."""
        transcript.append("m2", utterance("later", timestamp=TS + 5000))
        transcript.append("m1", utterance("earlier", timestamp=TS))
        assert transcript.get_entry_ids() == ["m2", "m1"]

    def test_update_in_place(self, transcript):
        """Test changed events replace without reordering."""
        transcript.append("m1", utterance("one", streaming=True))
        transcript.append("m2", utterance("two"))
        assert transcript.update("m1", utterance("one more")) is True

        assert transcript.get_entry_ids() == ["m1", "m2"]
        line = transcript.get_line("m1")
        assert line.text == "one more"
        assert line.streaming is False

    def test_update_unknown_ignored(self, transcript):
        """Test changed events for ids not displayed are ignored."""
        assert transcript.update("m9", utterance("ghost")) is False
        assert transcript.is_empty

    def test_own_detection_and_names(self, transcript):
        """Test own entries render as You and others as numbered speakers."""
        transcript.append("m1", utterance("mine", sender="user_local"))
        transcript.append("m2", utterance("theirs", sender="user_a"))
        transcript.append("m3", utterance("third", sender="user_b"))
        transcript.append("m4", utterance("again", sender="user_a"))

        lines = transcript.get_lines()
        assert [line.display_name for line in lines] == ["You", "Speaker 1", "Speaker 2", "Speaker 1"]
        assert [line.is_own for line in lines] == [True, False, False, False]

    def test_max_lines(self):
        """Test the oldest lines are dropped beyond max_lines."""
        transcript = RoomTranscript(Session("user_local"), max_lines=2)
        for i in range(3):
            transcript.append(f"m{i}", utterance(str(i)))
        assert transcript.get_entry_ids() == ["m1", "m2"]

    def test_notices_inline(self, transcript):
        """Test notices appear in the stream but not in entry ids."""
        transcript.append("m1", utterance("hello"))
        transcript.add_notice("Microphone permission denied.")
        transcript.add_notice("Microphone permission denied.")

        assert transcript.line_count == 3
        assert transcript.get_entry_ids() == ["m1"]
        assert transcript.get_text().endswith("⚠️ Microphone permission denied.")

    def test_clear(self, transcript):
        """Test clear() removes every line."""
        transcript.append("m1", utterance("hello"))
        transcript.clear()
        assert transcript.is_empty
        assert len(transcript) == 0

    def test_on_change_callback(self, transcript):
        """Test on_change fires for every visible change."""
        transcript.on_change = MagicMock()
        transcript.append("m1", utterance("a", streaming=True))
        transcript.update("m1", utterance("ab"))
        transcript.update("m9", utterance("x"))
        transcript.add_notice("n")
        assert transcript.on_change.call_count == 3

    def test_on_change_failure_is_contained(self, transcript):
        """Test a failing on_change does not break updates."""
        transcript.on_change = MagicMock(side_effect=RuntimeError("redraw failed"))
        assert transcript.append("m1", utterance("a")) is True

    def test_to_html(self, transcript):
        """Test HTML rendering carries ids, ownership and streaming state."""
        transcript.append("m1", utterance("<hi>", sender="user_local", streaming=True))
        transcript.add_notice("Offline")
        rendered = transcript.to_html()

        assert 'class="message own" data-msg-id="m1" data-streaming="true"' in rendered
        assert "&lt;hi&gt;" in rendered
        assert '<li class="notice">' in rendered

    def test_repr(self, transcript):
        """Test string representation."""
        transcript.append("m1", utterance("a"))
        assert repr(transcript) == "RoomTranscript(1 lines)"


class TestAutoScroll:
    """Tests for auto-scroll pausing."""

    @pytest.mark.asyncio
    async def test_scroll_pauses_then_resumes(self, transcript):
        """Test auto-scroll resumes after the delay."""
        transcript.user_scrolled(delay=0.01)
        assert transcript.auto_scroll is False
        await asyncio.sleep(0.03)
        assert transcript.auto_scroll is True

    @pytest.mark.asyncio
    async def test_repeated_scroll_restarts_timer(self, transcript):
        """Test each scroll pushes the resume time back."""
        transcript.user_scrolled(delay=0.02)
        await asyncio.sleep(0.01)
        transcript.user_scrolled(delay=0.05)
        await asyncio.sleep(0.02)
        assert transcript.auto_scroll is False

    @pytest.mark.asyncio
    async def test_cancel_timers(self, transcript):
        """Test cancel_timers() drops a pending resume."""
        transcript.user_scrolled(delay=0.01)
        transcript.cancel_timers()
        await asyncio.sleep(0.03)
        assert transcript.auto_scroll is False
