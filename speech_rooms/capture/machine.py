"""
Capture State Machine

Owns the lifecycle of "is this client currently trying to listen".

    IDLE -> STARTING -> LISTENING -> (RESTARTING) -> STOPPING -> IDLE
    ERROR is entered from STARTING, LISTENING or RESTARTING on a fatal error

Provider callbacks are turned into typed events on an asyncio.Queue and
processed one at a time, either by the run() loop or by drain().
"""

import asyncio
import contextlib
import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Union

from .errors import ErrorKind
from .provider import SpeechProvider

if TYPE_CHECKING:
    from speech_rooms.client.merger import UtteranceMerger

logger = logging.getLogger(__name__)


class CaptureState(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    LISTENING = "listening"
    RESTARTING = "restarting"
    STOPPING = "stopping"
    ERROR = "error"


# States in which recognition results are acted upon
CAPTURING_STATES = frozenset(
    {
        CaptureState.STARTING,
        CaptureState.LISTENING,
        CaptureState.RESTARTING,
        CaptureState.STOPPING,
    }
)


@dataclass(frozen=True)
class EngineStarted:
    pass


@dataclass(frozen=True)
class EngineEnded:
    pass


@dataclass(frozen=True)
class RestartScheduled:
    pass


@dataclass(frozen=True)
class ResultReceived:
    final_text: str = ""
    interim_text: str = ""


@dataclass(frozen=True)
class ErrorRaised:
    kind: ErrorKind


CaptureEvent = Union[EngineStarted, EngineEnded, RestartScheduled, ResultReceived, ErrorRaised]


class CaptureMachine:
    """
    Explicit capture lifecycle on top of a SpeechProvider.

    Usage:
        machine = CaptureMachine(provider, merger, on_notice=view.add_notice)
        machine.start_processing()       # or await machine.drain() in tests
        await machine.start()
        ...
        await machine.stop()
    """

    def __init__(
        self,
        provider: SpeechProvider | None,
        merger: "UtteranceMerger",
        on_state_change: Callable[[CaptureState, CaptureState], None] | None = None,
        on_notice: Callable[[str], None] | None = None,
    ):
        """
        Initialize capture machine.

        Args:
            provider: Provider adapter, or None if recognition is unsupported
            merger: Receives results and finalizes the open utterance
            on_state_change: Called with (old, new) on every transition
            on_notice: Called with user-facing text for surfaced errors
        """
        self.provider = provider
        self.merger = merger
        self.on_state_change = on_state_change
        self.on_notice = on_notice

        self._state = CaptureState.IDLE
        self._events: asyncio.Queue[CaptureEvent] = asyncio.Queue()
        self._runner: asyncio.Task | None = None
        # Room log the merger was bound to when stop() was requested
        self._stopping_log = None

        if provider is not None:
            provider.on_start = lambda: self.post(EngineStarted())
            provider.on_end = lambda: self.post(EngineEnded())
            provider.on_restart = lambda: self.post(RestartScheduled())
            provider.on_result = lambda final, interim: self.post(ResultReceived(final, interim))
            provider.on_error = lambda kind: self.post(ErrorRaised(kind))

    @property
    def state(self) -> CaptureState:
        return self._state

    @property
    def is_capturing(self) -> bool:
        return self._state in CAPTURING_STATES

    def _set_state(self, state: CaptureState) -> None:
        if state is self._state:
            return
        old, self._state = self._state, state
        logger.info(f"Capture state: {old.value} -> {state.value}")
        if self.on_state_change:
            self.on_state_change(old, state)

    def _notice(self, text: str) -> None:
        if self.on_notice:
            self.on_notice(text)

    # ---- commands ---------------------------------------------------------

    async def start(self) -> bool:
        """
        Begin capture. Valid from IDLE and ERROR only.

        Returns:
            True if the provider accepted the request
        """
        if self._state not in (CaptureState.IDLE, CaptureState.ERROR):
            logger.debug(f"start() ignored in state {self._state.value}")
            return False

        if self.provider is None:
            logger.warning("start() without a speech provider")
            self._set_state(CaptureState.ERROR)
            self._notice(ErrorKind.UNSUPPORTED_PLATFORM.notice)
            return False

        # Set before awaiting so an immediate second start() is a no-op
        self._set_state(CaptureState.STARTING)
        return await self.provider.start()

    async def stop(self) -> None:
        """Request a stop. The engine's end event completes it."""
        if self._state in (CaptureState.IDLE, CaptureState.STOPPING, CaptureState.ERROR):
            return
        self._set_state(CaptureState.STOPPING)
        self._stopping_log = self.merger.room_log
        if self.provider is not None:
            self.provider.stop()

    # ---- event queue ------------------------------------------------------

    def post(self, event: CaptureEvent) -> None:
        self._events.put_nowait(event)

    async def dispatch(self, event: CaptureEvent) -> None:
        """Apply one event to the machine."""
        state = self._state

        if isinstance(event, EngineStarted):
            if state in (CaptureState.STARTING, CaptureState.RESTARTING):
                self._set_state(CaptureState.LISTENING)

        elif isinstance(event, ResultReceived):
            if state is CaptureState.STOPPING and self.merger.room_log is not self._stopping_log:
                logger.debug("Result from a previous room dropped")
            elif state in CAPTURING_STATES:
                await self.merger.handle_result(event.final_text, event.interim_text)
            else:
                logger.debug(f"Result ignored in state {state.value}")

        elif isinstance(event, RestartScheduled):
            if state in (CaptureState.STARTING, CaptureState.LISTENING):
                # The next recognition session starts a new utterance
                await self.merger.finalize_open()
                self._set_state(CaptureState.RESTARTING)

        elif isinstance(event, EngineEnded):
            if state is CaptureState.ERROR:
                return
            await self.merger.finalize_open()
            self._set_state(CaptureState.IDLE)

        elif isinstance(event, ErrorRaised):
            await self._handle_error(event.kind)

    async def _handle_error(self, kind: ErrorKind) -> None:
        if kind.is_recoverable:
            logger.debug(f"Recoverable error {kind.value}, state unchanged")
            return

        if not kind.is_fatal:
            self._notice(kind.notice)
            return

        logger.error(f"Fatal capture error: {kind.value}")
        await self.merger.finalize_open()
        self._set_state(CaptureState.ERROR)
        self._notice(kind.notice)

    async def drain(self) -> None:
        """Process every queued event, including ones queued while draining."""
        while not self._events.empty():
            event = self._events.get_nowait()
            try:
                await self.dispatch(event)
            finally:
                self._events.task_done()

    async def run(self) -> None:
        """Process events until cancelled."""
        while True:
            event = await self._events.get()
            try:
                await self.dispatch(event)
            except Exception:
                logger.exception(f"Failed to process {event}")
            finally:
                self._events.task_done()

    def start_processing(self) -> asyncio.Task:
        """Run the event loop in a background task."""
        if self._runner is None or self._runner.done():
            self._runner = asyncio.create_task(self.run())
        return self._runner

    async def stop_processing(self) -> None:
        if self._runner is not None:
            self._runner.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._runner
            self._runner = None

    async def settle(self) -> None:
        """Wait until every queued event has been processed."""
        if self._runner is not None and not self._runner.done():
            await self._events.join()
        else:
            await self.drain()
