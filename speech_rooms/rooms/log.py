"""
Shared Ordered Log

Contract for the per-room log that the synchronizer reads and writes, plus an
in-memory implementation that also enforces the backend-side rules.

Layout:
  rooms/{room_id}/messages   insertion-ordered utterances keyed by entry id
  rooms/{room_id}/meta       {creator, created}, written at most once

Backend rules:
  - text is capped at MAX_TEXT_LENGTH characters
  - metadata is create-if-absent
  - an entry whose streaming flag is false can no longer be updated
  - updates to unknown entry ids are rejected
"""

import itertools
import logging
from abc import ABC, abstractmethod
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from speech_rooms.config import MAX_MESSAGES, MAX_TEXT_LENGTH
from speech_rooms.core.models import RoomMeta, Utterance

logger = logging.getLogger(__name__)

# (entry_id, utterance)
EntryCallback = Callable[[str, Utterance], None]


class LogError(Exception):
    """Base class for shared log failures."""


class BackendUnavailableError(LogError):
    """The log backend could not be reached or dropped the connection."""


class LogWriteRejectedError(LogError):
    """The log backend refused a write."""


def messages_path(room_id: str) -> str:
    return f"rooms/{room_id}/messages"


def meta_path(room_id: str) -> str:
    return f"rooms/{room_id}/meta"


class RoomLog(ABC):
    """One client's handle on a room: its message collection and metadata.

    A handle carries at most one subscription.
    """

    def __init__(self, room_id: str):
        self.room_id = room_id
        # Called when the backend drops an active subscription
        self.on_disconnect: Callable[[], None] | None = None

    @property
    def messages_path(self) -> str:
        return messages_path(self.room_id)

    @property
    def meta_path(self) -> str:
        return meta_path(self.room_id)

    @property
    @abstractmethod
    def subscribed(self) -> bool:
        """True while added/changed events are being delivered."""

    @abstractmethod
    async def push(self, utterance: Utterance) -> str:
        """Append an entry and return its log-assigned id."""

    @abstractmethod
    async def update(self, entry_id: str, changes: dict[str, Any]) -> None:
        """Apply a partial update to an existing entry."""

    @abstractmethod
    async def subscribe(
        self,
        on_added: EntryCallback,
        on_changed: EntryCallback,
        limit_to_last: int = MAX_MESSAGES,
    ) -> None:
        """Deliver the most recent `limit_to_last` entries as added events,
        then every later append as added and every update as changed."""

    @abstractmethod
    async def unsubscribe(self) -> None:
        """Stop delivering events. Idempotent."""

    @abstractmethod
    async def create_meta(self, meta: RoomMeta) -> bool:
        """Write room metadata if none exists. Returns False if rejected."""

    @abstractmethod
    async def clear_messages(self) -> None:
        """Delete every entry in the room's message collection."""

    async def close(self) -> None:
        """Release the handle's connection. The handle cannot be reused."""


class SharedLog(ABC):
    """Factory for room handles on one log backend."""

    @abstractmethod
    def room(self, room_id: str) -> RoomLog:
        """Open a new handle on `room_id`."""

    async def close(self) -> None:
        """Release backend resources."""


# =============================================================================
# In-memory implementation
# =============================================================================


@dataclass
class _Subscriber:
    on_added: EntryCallback
    on_changed: EntryCallback


@dataclass
class _RoomStore:
    messages: "OrderedDict[str, Utterance]" = field(default_factory=OrderedDict)
    meta: RoomMeta | None = None
    subscribers: list[_Subscriber] = field(default_factory=list)


class InMemoryLog(SharedLog):
    """
    Process-local shared log.

    Every client handle opened on the same InMemoryLog sees the same rooms,
    so several clients in one process (tests, the room-log service) share
    state through it. Events are delivered synchronously, in write order.

    Usage:
        log = InMemoryLog()
        room = log.room("K7QXMA")
        await room.subscribe(on_added, on_changed)
        entry_id = await room.push(Utterance(text="hello", from_="user_1"))
    """

    def __init__(self, max_text_length: int = MAX_TEXT_LENGTH):
        self.max_text_length = max_text_length
        self._rooms: dict[str, _RoomStore] = {}
        self._ids = itertools.count()

    def room(self, room_id: str) -> "InMemoryRoomLog":
        return InMemoryRoomLog(self, room_id)

    @property
    def room_count(self) -> int:
        return len(self._rooms)

    def _store(self, room_id: str) -> _RoomStore:
        store = self._rooms.get(room_id)
        if store is None:
            store = self._rooms[room_id] = _RoomStore()
        return store

    def _next_entry_id(self) -> str:
        # Zero-padded so lexical order matches insertion order
        return f"m{next(self._ids):010d}"

    def _check_text(self, text: str) -> None:
        if len(text) > self.max_text_length:
            raise LogWriteRejectedError(
                f"Text exceeds {self.max_text_length} characters ({len(text)})"
            )

    # ---- writes -----------------------------------------------------------

    def append(self, room_id: str, utterance: Utterance) -> str:
        """Store a new entry and notify subscribers. Returns the entry id."""
        self._check_text(utterance.text)
        store = self._store(room_id)
        entry_id = self._next_entry_id()
        store.messages[entry_id] = utterance
        logger.debug(f"[PUSH] {messages_path(room_id)}/{entry_id} = '{utterance.text[:50]}'")

        for subscriber in list(store.subscribers):
            self._notify(subscriber.on_added, entry_id, utterance)
        return entry_id

    def modify(self, room_id: str, entry_id: str, changes: dict[str, Any]) -> Utterance:
        """Apply a partial update and notify subscribers."""
        store = self._store(room_id)
        current = store.messages.get(entry_id)
        if current is None:
            raise LogWriteRejectedError(f"Unknown entry: {entry_id}")
        if not current.streaming:
            raise LogWriteRejectedError(f"Entry {entry_id} is finalized")

        changes = {k: v for k, v in changes.items() if k != "from"}
        try:
            updated = current.merged(changes)
        except ValidationError as e:
            raise LogWriteRejectedError(f"Invalid update for {entry_id}: {e}") from e
        self._check_text(updated.text)

        store.messages[entry_id] = updated
        logger.debug(
            f"[UPDATE] {messages_path(room_id)}/{entry_id} = '{updated.text[:50]}' "
            f"(streaming={updated.streaming})"
        )

        for subscriber in list(store.subscribers):
            self._notify(subscriber.on_changed, entry_id, updated)
        return updated

    def register_meta(self, room_id: str, meta: RoomMeta) -> bool:
        store = self._store(room_id)
        if store.meta is not None:
            logger.info(f"{meta_path(room_id)} already exists, write rejected")
            return False
        store.meta = meta
        return True

    def clear(self, room_id: str) -> int:
        """Delete all entries of a room. Returns the number removed."""
        store = self._rooms.get(room_id)
        if store is None:
            return 0
        count = len(store.messages)
        store.messages.clear()
        logger.info(f"Cleared {count} entries from {messages_path(room_id)}")
        return count

    # ---- reads ------------------------------------------------------------

    def get_meta(self, room_id: str) -> RoomMeta | None:
        store = self._rooms.get(room_id)
        return store.meta if store else None

    def entries(self, room_id: str, limit_to_last: int | None = None) -> list[tuple[str, Utterance]]:
        """Entries in insertion order, optionally only the last N."""
        store = self._rooms.get(room_id)
        if store is None:
            return []
        items = list(store.messages.items())
        if limit_to_last is not None:
            items = items[-limit_to_last:] if limit_to_last > 0 else []
        return items

    # ---- subscriptions ----------------------------------------------------

    def add_subscriber(
        self,
        room_id: str,
        on_added: EntryCallback,
        on_changed: EntryCallback,
        limit_to_last: int = MAX_MESSAGES,
    ) -> _Subscriber:
        subscriber = _Subscriber(on_added=on_added, on_changed=on_changed)
        for entry_id, utterance in self.entries(room_id, limit_to_last):
            self._notify(on_added, entry_id, utterance)
        self._store(room_id).subscribers.append(subscriber)
        return subscriber

    def remove_subscriber(self, room_id: str, subscriber: _Subscriber) -> None:
        store = self._rooms.get(room_id)
        if store and subscriber in store.subscribers:
            store.subscribers.remove(subscriber)

    @staticmethod
    def _notify(callback: EntryCallback, entry_id: str, utterance: Utterance) -> None:
        try:
            callback(entry_id, utterance)
        except Exception:
            logger.exception(f"Subscriber callback failed for {entry_id}")


class InMemoryRoomLog(RoomLog):
    """Client handle on one room of an InMemoryLog."""

    def __init__(self, log: InMemoryLog, room_id: str):
        super().__init__(room_id)
        self._log = log
        self._subscriber: _Subscriber | None = None

    @property
    def subscribed(self) -> bool:
        return self._subscriber is not None

    async def push(self, utterance: Utterance) -> str:
        return self._log.append(self.room_id, utterance)

    async def update(self, entry_id: str, changes: dict[str, Any]) -> None:
        self._log.modify(self.room_id, entry_id, changes)

    async def subscribe(
        self,
        on_added: EntryCallback,
        on_changed: EntryCallback,
        limit_to_last: int = MAX_MESSAGES,
    ) -> None:
        await self.unsubscribe()
        self._subscriber = self._log.add_subscriber(
            self.room_id, on_added, on_changed, limit_to_last
        )

    async def unsubscribe(self) -> None:
        if self._subscriber is not None:
            self._log.remove_subscriber(self.room_id, self._subscriber)
            self._subscriber = None

    async def create_meta(self, meta: RoomMeta) -> bool:
        return self._log.register_meta(self.room_id, meta)

    async def clear_messages(self) -> None:
        self._log.clear(self.room_id)
