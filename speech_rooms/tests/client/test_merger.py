"""Unit tests for the utterance streaming merger."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from speech_rooms.capture.errors import ErrorKind
from speech_rooms.client.merger import UtteranceMerger
from speech_rooms.rooms.log import BackendUnavailableError, InMemoryLog

ROOM = "AB12CD"


class Clock:
    """Deterministic millisecond clock advancing by 10ms per call."""

    def __init__(self, start=1_000):
        self.value = start

    def __call__(self):
        self.value += 10
        return self.value


@pytest.fixture
def log():
    return InMemoryLog()


@pytest.fixture
def merger(log):
    merger = UtteranceMerger("user_local", on_notice=MagicMock(), clock=Clock())
    merger.bind(log.room(ROOM))
    return merger


def texts(log):
    return [(u.text, u.streaming) for _, u in log.entries(ROOM)]


class TestStreaming:
    """Tests for interim/final merging."""

    @pytest.mark.asyncio
    async def test_interim_pushes_streaming_entry(self, merger, log):
        """The first interim text creates an open, streaming entry."""
        await merger.handle_result("", "hello")

        [(entry_id, utterance)] = log.entries(ROOM)
        assert merger.open_id == entry_id
        assert utterance.text == "hello"
        assert utterance.from_ == "user_local"
        assert utterance.streaming is True

    @pytest.mark.asyncio
    async def test_interim_updates_open_entry(self, merger, log):
        """Further interim text updates the same entry."""
        await merger.handle_result("", "hello")
        first_ts = log.entries(ROOM)[0][1].timestamp
        await merger.handle_result("", "hello wor")

        [(_, utterance)] = log.entries(ROOM)
        assert utterance.text == "hello wor"
        assert utterance.streaming is True
        assert utterance.timestamp > first_ts

    @pytest.mark.asyncio
    async def test_final_closes_open_entry(self, merger, log):
        """A final result finalizes the open entry in place."""
        await merger.handle_result("", "hello wor")
        await merger.handle_result("hello world", "")

        assert texts(log) == [("hello world", False)]
        assert merger.open_id is None

    @pytest.mark.asyncio
    async def test_final_without_open_entry(self, merger, log):
        """A final with nothing open pushes a finalized entry."""
        await merger.handle_result("done", "")
        assert texts(log) == [("done", False)]
        assert merger.open_id is None

    @pytest.mark.asyncio
    async def test_final_applied_before_interim(self, merger, log):
        """One event carrying both closes the entry, then opens a new one."""
        await merger.handle_result("", "first")
        await merger.handle_result("first sentence", "second")

        assert texts(log) == [("first sentence", False), ("second", True)]
        assert merger.open_id == log.entries(ROOM)[1][0]

    @pytest.mark.asyncio
    async def test_interim_after_final_is_new_entry(self, merger, log):
        """Speech after a final result never modifies the finalized entry."""
        await merger.handle_result("one", "")
        await merger.handle_result("", "two")
        assert texts(log) == [("one", False), ("two", True)]

    @pytest.mark.asyncio
    async def test_unbound_drops_results(self, log):
        """Results outside a room are dropped."""
        merger = UtteranceMerger("user_local")
        await merger.handle_result("lost", "")
        assert log.room_count == 0


class TestFinalizeOpen:
    """Tests for finalize_open()."""

    @pytest.mark.asyncio
    async def test_finalizes_with_last_interim(self, merger, log):
        """The open entry is closed with the last interim text."""
        await merger.handle_result("", "hello")
        await merger.handle_result("", "hello wor")
        await merger.finalize_open()

        assert texts(log) == [("hello wor", False)]
        assert merger.open_id is None
        assert merger.last_interim == ""

    @pytest.mark.asyncio
    async def test_nothing_open(self, merger, log):
        """finalize_open() without an open entry writes nothing."""
        await merger.finalize_open()
        assert log.entries(ROOM) == []

    @pytest.mark.asyncio
    async def test_bind_resets_slot(self, merger, log):
        """Binding to another room forgets the open entry."""
        await merger.handle_result("", "hello")
        merger.bind(log.room("ZZZZZZ"))
        assert merger.open_id is None
        assert merger.last_interim == ""


class TestWriteFailures:
    """Tests for backend failures during writes."""

    @pytest.mark.asyncio
    async def test_push_failure_notifies_once(self):
        """Consecutive failures surface a single notice."""
        room_log = MagicMock()
        room_log.push = AsyncMock(side_effect=BackendUnavailableError("down"))
        on_notice = MagicMock()
        merger = UtteranceMerger("user_local", on_notice=on_notice)
        merger.bind(room_log)

        await merger.handle_result("", "one")
        await merger.handle_result("", "two")

        on_notice.assert_called_once_with(ErrorKind.BACKEND_UNAVAILABLE.notice)
        assert merger.open_id is None

    @pytest.mark.asyncio
    async def test_notice_again_after_recovery(self):
        """A success resets the failure run."""
        room_log = MagicMock()
        room_log.push = AsyncMock(
            side_effect=[BackendUnavailableError("down"), "m1", BackendUnavailableError("down")]
        )
        room_log.update = AsyncMock()
        on_notice = MagicMock()
        merger = UtteranceMerger("user_local", on_notice=on_notice)
        merger.bind(room_log)

        await merger.handle_result("a", "")
        await merger.handle_result("b", "")
        await merger.handle_result("c", "")

        assert on_notice.call_count == 2

    @pytest.mark.asyncio
    async def test_rejected_update_is_not_retried(self, merger, log):
        """An update rejected by the log is dropped with a notice."""
        await merger.handle_result("", "hello")
        entry_id = merger.open_id
        log.modify(ROOM, entry_id, {"streaming": False})

        await merger.handle_result("", "hello again")

        merger.on_notice.assert_called_once_with(ErrorKind.BACKEND_UNAVAILABLE.notice)
        assert texts(log) == [("hello", False)]

    @pytest.mark.asyncio
    async def test_push_landing_after_unbind(self, log):
        """A push completing after leaving the room does not reopen the slot."""
        merger = UtteranceMerger("user_local")
        room_log = log.room(ROOM)
        original_push = room_log.push

        async def push_then_leave(utterance):
            entry_id = await original_push(utterance)
            merger.unbind()
            return entry_id

        room_log.push = push_then_leave
        merger.bind(room_log)
        await merger.handle_result("", "late")

        assert merger.open_id is None
