"""Unit tests for the in-memory shared ordered log."""

from unittest.mock import MagicMock

import pytest

from speech_rooms.core.models import RoomMeta, Utterance
from speech_rooms.rooms.log import InMemoryLog, LogWriteRejectedError

ROOM = "AB12CD"


def utterance(text, streaming=True, sender="user_1"):
    return Utterance(text=text, from_=sender, timestamp=1, streaming=streaming)


@pytest.fixture
def log():
    return InMemoryLog()


class TestPaths:
    """Tests for the log layout."""

    def test_room_paths(self, log):
        """Messages and metadata live under the room id."""
        room = log.room(ROOM)
        assert room.messages_path == "rooms/AB12CD/messages"
        assert room.meta_path == "rooms/AB12CD/meta"


class TestWrites:
    """Tests for push and update."""

    @pytest.mark.asyncio
    async def test_push_assigns_ordered_ids(self, log):
        """Entry ids sort in insertion order."""
        room = log.room(ROOM)
        ids = [await room.push(utterance(str(i))) for i in range(12)]
        assert ids == sorted(ids)
        assert [u.text for _, u in log.entries(ROOM)] == [str(i) for i in range(12)]

    @pytest.mark.asyncio
    async def test_update_merges_fields(self, log):
        """Updates are partial."""
        room = log.room(ROOM)
        entry_id = await room.push(utterance("hel"))
        await room.update(entry_id, {"text": "hello", "timestamp": 9})

        [(_, stored)] = log.entries(ROOM)
        assert stored.text == "hello"
        assert stored.timestamp == 9
        assert stored.from_ == "user_1"
        assert stored.streaming is True

    @pytest.mark.asyncio
    async def test_update_cannot_change_sender(self, log):
        """The author of an entry is fixed."""
        room = log.room(ROOM)
        entry_id = await room.push(utterance("hi"))
        await room.update(entry_id, {"from": "user_2", "text": "hi!"})
        assert log.entries(ROOM)[0][1].from_ == "user_1"

    @pytest.mark.asyncio
    async def test_finalized_entry_is_frozen(self, log):
        """An entry can no longer change once streaming is false."""
        room = log.room(ROOM)
        entry_id = await room.push(utterance("done", streaming=False))
        with pytest.raises(LogWriteRejectedError, match="finalized"):
            await room.update(entry_id, {"text": "changed"})

    @pytest.mark.asyncio
    async def test_unknown_entry(self, log):
        """Updates to unknown ids are rejected."""
        with pytest.raises(LogWriteRejectedError, match="Unknown"):
            await log.room(ROOM).update("m404", {"text": "x"})

    @pytest.mark.asyncio
    async def test_text_limit(self):
        """Text beyond the limit is rejected on push and update."""
        log = InMemoryLog(max_text_length=5)
        room = log.room(ROOM)
        with pytest.raises(LogWriteRejectedError):
            await room.push(utterance("toolong"))
        entry_id = await room.push(utterance("ok"))
        with pytest.raises(LogWriteRejectedError):
            await room.update(entry_id, {"text": "toolong"})
        assert log.entries(ROOM)[0][1].text == "ok"

    @pytest.mark.asyncio
    async def test_invalid_update(self, log):
        """Updates that do not validate are rejected."""
        room = log.room(ROOM)
        entry_id = await room.push(utterance("hi"))
        with pytest.raises(LogWriteRejectedError):
            await room.update(entry_id, {"timestamp": "yesterday"})


class TestMeta:
    """Tests for room metadata."""

    @pytest.mark.asyncio
    async def test_create_if_absent(self, log):
        """Only the first metadata write succeeds."""
        first, second = log.room(ROOM), log.room(ROOM)
        assert await first.create_meta(RoomMeta(creator="user_1", created=1)) is True
        assert await second.create_meta(RoomMeta(creator="user_2", created=2)) is False
        assert log.get_meta(ROOM).creator == "user_1"

    def test_missing_meta(self, log):
        """Rooms without metadata report None."""
        assert log.get_meta("ZZZZZZ") is None


class TestSubscriptions:
    """Tests for added/changed delivery."""

    @pytest.mark.asyncio
    async def test_snapshot_limited_to_last(self, log):
        """A new subscriber receives only the most recent entries."""
        writer = log.room(ROOM)
        for i in range(5):
            await writer.push(utterance(str(i), streaming=False))

        on_added = MagicMock()
        await log.room(ROOM).subscribe(on_added, MagicMock(), limit_to_last=3)
        assert [c.args[1].text for c in on_added.call_args_list] == ["2", "3", "4"]

    @pytest.mark.asyncio
    async def test_live_events(self, log):
        """Appends arrive as added and updates as changed, in write order."""
        reader, writer = log.room(ROOM), log.room(ROOM)
        events = []
        await reader.subscribe(
            lambda i, u: events.append(("added", i, u.text)),
            lambda i, u: events.append(("changed", i, u.text)),
        )
        entry_id = await writer.push(utterance("a"))
        await writer.update(entry_id, {"text": "ab"})

        assert events == [("added", entry_id, "a"), ("changed", entry_id, "ab")]

    @pytest.mark.asyncio
    async def test_unsubscribe(self, log):
        """No events after unsubscribe; unsubscribe is idempotent."""
        reader = log.room(ROOM)
        on_added = MagicMock()
        await reader.subscribe(on_added, MagicMock())
        await reader.unsubscribe()
        await reader.unsubscribe()
        await log.room(ROOM).push(utterance("late"))

        assert not reader.subscribed
        on_added.assert_not_called()

    @pytest.mark.asyncio
    async def test_resubscribe_replaces(self, log):
        """A handle carries at most one subscription."""
        reader = log.room(ROOM)
        first, second = MagicMock(), MagicMock()
        await reader.subscribe(first, MagicMock())
        await reader.subscribe(second, MagicMock())
        await log.room(ROOM).push(utterance("x"))

        first.assert_not_called()
        second.assert_called_once()

    @pytest.mark.asyncio
    async def test_failing_subscriber_isolated(self, log):
        """A failing callback does not block other subscribers or the write."""
        good = MagicMock()
        await log.room(ROOM).subscribe(MagicMock(side_effect=RuntimeError("boom")), MagicMock())
        await log.room(ROOM).subscribe(good, MagicMock())
        entry_id = await log.room(ROOM).push(utterance("x"))

        good.assert_called_once()
        assert log.entries(ROOM)[0][0] == entry_id


class TestClear:
    """Tests for clearing a room's messages."""

    @pytest.mark.asyncio
    async def test_clear_messages(self, log):
        """Clearing removes entries but keeps metadata."""
        room = log.room(ROOM)
        await room.create_meta(RoomMeta(creator="user_1"))
        await room.push(utterance("a"))
        await room.push(utterance("b"))

        assert log.clear(ROOM) == 2
        assert log.entries(ROOM) == []
        assert log.get_meta(ROOM) is not None

    def test_clear_unknown_room(self, log):
        """Clearing a room that never existed removes nothing."""
        assert log.clear("ZZZZZZ") == 0
        assert log.room_count == 0
