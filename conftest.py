"""Shared pytest fixtures: a scriptable recognition engine and client factories."""

import pytest

from speech_rooms.capture.errors import InvalidStateError
from speech_rooms.capture.provider import ProviderOptions, RecognitionEngine
from speech_rooms.client.room_client import SpeechRoomsClient
from speech_rooms.rooms.log import InMemoryLog


class FakeEngine(RecognitionEngine):
    """Engine driven by the test: fire_* methods emulate platform events."""

    def __init__(self, options: ProviderOptions | None = None):
        options = options or ProviderOptions()
        super().__init__(options.language, options.continuous, options.interim_results)
        self.running = False
        self.start_calls = 0
        self.stop_calls = 0
        self.abort_calls = 0
        # Exceptions raised by the next start() calls, in order
        self.start_errors: list[Exception] = []

    def start(self) -> None:
        self.start_calls += 1
        if self.start_errors:
            raise self.start_errors.pop(0)
        if self.running:
            raise InvalidStateError("recognition has already started")
        self.running = True

    def stop(self) -> None:
        self.stop_calls += 1
        self.fire_end()

    def abort(self) -> None:
        self.abort_calls += 1
        self.fire_end()

    def fire_start(self) -> None:
        self.on_start()

    def fire_result(self, final: str = "", interim: str = "") -> None:
        self.on_result(final, interim)

    def fire_error(self, code: str) -> None:
        self.on_error(code)

    def fire_end(self) -> None:
        if self.running:
            self.running = False
            self.on_end()


@pytest.fixture
def engine_factory():
    """Engine factory recording every engine it builds in `.created`."""
    created = []

    def factory(options):
        engine = FakeEngine(options)
        created.append(engine)
        return engine

    factory.created = created
    return factory


@pytest.fixture
def fake_engine():
    return FakeEngine()


@pytest.fixture
def shared_log():
    """One in-memory log shared by every client of a test."""
    return InMemoryLog()


@pytest.fixture
def make_client(shared_log, engine_factory, tmp_path):
    """Build clients on the shared log, each with its own last-room file."""
    counter = iter(range(1000))

    def make(**kwargs):
        kwargs.setdefault("engine_factory", engine_factory)
        kwargs.setdefault("last_room_path", tmp_path / f"last_room_{next(counter)}.json")
        return SpeechRoomsClient(kwargs.pop("log", shared_log), **kwargs)

    return make
