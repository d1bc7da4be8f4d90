"""
Transcript Provider Adapter

Wraps a platform speech-recognition engine behind a uniform
start/stop/result/error contract and absorbs device-specific behavior:

- Permission: platforms that require it acquire microphone permission
  through an async probe before every start
- Auto-restart: when the engine stops on its own while the caller still wants
  to listen, desktop-class platforms restart it after a short delay (at most
  one pending restart); mobile-class platforms clear the intent instead,
  avoiding repeated permission prompts and notification sounds
- Errors: engine codes are classified, recoverable ones are swallowed

Usage:
    provider = create_provider(lambda opts: MyEngine(opts.language))
    provider.on_result = lambda final, interim: ...
    await provider.start()
    provider.stop()
"""

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from speech_rooms.config import AUTO_RESTART_DELAY_SEC, DEFAULT_LANGUAGE, START_RETRY_DELAY_SEC

from .errors import ErrorKind, InvalidStateError, classify_error

logger = logging.getLogger(__name__)

MOBILE_USER_AGENT = re.compile(
    r"Android|webOS|iPhone|iPad|iPod|BlackBerry|IEMobile|Opera Mini", re.IGNORECASE
)

PermissionProbe = Callable[[], Awaitable[bool]]


class RecognitionEngine(ABC):
    """
    A platform speech-recognition capability.

    Engines report through four callbacks, all invoked on the event loop:
        on_start()                 recognition began
        on_end()                   recognition ended (always follows a start
                                   or a stop request)
        on_result(final, interim)  trimmed transcripts for one result event
        on_error(code)             engine error code, e.g. "no-speech"
    """

    def __init__(
        self,
        language: str = DEFAULT_LANGUAGE,
        continuous: bool = True,
        interim_results: bool = True,
    ):
        self.language = language
        self.continuous = continuous
        self.interim_results = interim_results

        self.on_start: Callable[[], None] | None = None
        self.on_end: Callable[[], None] | None = None
        self.on_result: Callable[[str, str], None] | None = None
        self.on_error: Callable[[str], None] | None = None

    @abstractmethod
    def start(self) -> None:
        """Begin recognition. Raises InvalidStateError if already started."""

    @abstractmethod
    def stop(self) -> None:
        """Stop recognition; pending results may still be delivered."""

    def abort(self) -> None:
        """Stop recognition, discarding pending results."""
        self.stop()


@dataclass(frozen=True)
class PlatformPolicy:
    """Device-class behavior injected into the provider."""

    auto_restart: bool = True
    requires_permission: bool = False

    @classmethod
    def desktop(cls) -> "PlatformPolicy":
        return cls(auto_restart=True, requires_permission=False)

    @classmethod
    def mobile(cls) -> "PlatformPolicy":
        return cls(auto_restart=False, requires_permission=True)

    @classmethod
    def from_user_agent(cls, user_agent: str | None) -> "PlatformPolicy":
        """Classify a user agent string as mobile- or desktop-class."""
        if user_agent and MOBILE_USER_AGENT.search(user_agent):
            return cls.mobile()
        return cls.desktop()


@dataclass
class ProviderOptions:
    """Recognition options and platform policy."""

    language: str = DEFAULT_LANGUAGE
    continuous: bool = True
    interim_results: bool = True
    policy: PlatformPolicy = field(default_factory=PlatformPolicy.desktop)
    restart_delay: float = AUTO_RESTART_DELAY_SEC
    start_retry_delay: float = START_RETRY_DELAY_SEC
    permission_timeout: float = 10.0


EngineFactory = Callable[[ProviderOptions], RecognitionEngine | None]


class SpeechProvider:
    """Uniform wrapper around a RecognitionEngine."""

    def __init__(
        self,
        engine: RecognitionEngine,
        options: ProviderOptions | None = None,
        permission_probe: PermissionProbe | None = None,
    ):
        """
        Initialize provider.

        Args:
            engine: The platform recognition engine to drive
            options: Recognition options and platform policy
            permission_probe: Async callable returning True if the microphone
                may be used; consulted before each start when the policy
                requires permission
        """
        self.engine = engine
        self.options = options or ProviderOptions()
        self.permission_probe = permission_probe

        # Callbacks
        self.on_start: Callable[[], None] | None = None
        self.on_end: Callable[[], None] | None = None
        self.on_result: Callable[[str, str], None] | None = None
        self.on_error: Callable[[ErrorKind], None] | None = None
        self.on_restart: Callable[[], None] | None = None

        # Recognition state
        self._running = False  # Start requested, end not yet reported
        self._should_be_active = False  # Caller's intent
        self._engine_running = False  # engine.start() accepted, awaiting end
        self._recognizing = False  # Between engine start and end events
        self._start_generation = 0

        # Timers
        self._restart_handle: asyncio.TimerHandle | None = None
        self._retry_handle: asyncio.TimerHandle | None = None

        engine.on_start = self._handle_start
        engine.on_end = self._handle_end
        engine.on_result = self._handle_result
        engine.on_error = self._handle_error

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_active(self) -> bool:
        """True if the caller wants to listen and the engine is recognizing."""
        return self._should_be_active and self._recognizing

    @property
    def should_be_active(self) -> bool:
        return self._should_be_active

    @property
    def restart_pending(self) -> bool:
        return self._restart_handle is not None

    # ---- control ----------------------------------------------------------

    async def start(self) -> bool:
        """
        Request activation.

        Returns:
            True if the engine was (or will be, after a retry) started,
            False if ignored or refused
        """
        if self._running:
            logger.warning("Already recognizing, ignoring start()")
            return False

        self._running = True
        self._should_be_active = True
        self._start_generation += 1
        generation = self._start_generation

        if self.options.policy.requires_permission:
            logger.info("Requesting microphone permission...")
            granted = await self._acquire_permission()

            if generation != self._start_generation or not self._should_be_active:
                logger.info("start() superseded while acquiring permission")
                return False

            if not granted:
                logger.error("Microphone permission required")
                self._running = False
                self._should_be_active = False
                self._emit_error(ErrorKind.PERMISSION_DENIED)
                return False

        return self._start_engine()

    def stop(self) -> None:
        """Request deactivation. Idempotent; clears any pending restart."""
        self._deactivate(abort=False)

    def abort(self) -> None:
        """Like stop(), but the engine discards pending results."""
        self._deactivate(abort=True)

    def _deactivate(self, abort: bool) -> None:
        logger.info(f"{'abort' if abort else 'stop'}() called, running={self._running}")
        self._should_be_active = False
        self._cancel_timers()

        if self._engine_running:
            try:
                self.engine.abort() if abort else self.engine.stop()
                return
            except Exception as e:
                logger.warning(f"Engine stop failed: {e}")
                self._engine_running = False
                self._recognizing = False

        if self._running:
            # No engine session to wait for (permission probe, pending
            # restart or failed stop): report the end directly
            self._running = False
            self._emit_end()

    async def _acquire_permission(self) -> bool:
        if self.permission_probe is None:
            logger.warning("No microphone permission probe available")
            return False
        try:
            return bool(
                await asyncio.wait_for(
                    self.permission_probe(), timeout=self.options.permission_timeout
                )
            )
        except TimeoutError:
            logger.error("Microphone permission request timed out")
            return False
        except Exception as e:
            logger.error(f"Microphone permission denied: {e}")
            return False

    def _start_engine(self) -> bool:
        try:
            self.engine.start()
            self._engine_running = True
            return True
        except InvalidStateError as e:
            delay = self.options.start_retry_delay
            logger.warning(f"Start failed ({e}), retrying in {delay * 1000:.0f}ms...")
            loop = asyncio.get_running_loop()
            self._retry_handle = loop.call_later(delay, self._retry_start)
            return True
        except Exception as e:
            logger.error(f"Start failed: {e}")
            self._running = False
            self._should_be_active = False
            self._emit_error(ErrorKind.AUDIO_CAPTURE_UNAVAILABLE)
            return False

    def _retry_start(self) -> None:
        self._retry_handle = None
        if not self._should_be_active or self._engine_running:
            return
        try:
            self.engine.start()
            self._engine_running = True
            logger.info("Start retry succeeded")
        except Exception as e:
            logger.error(f"Retry failed: {e}")
            self._running = False
            self._should_be_active = False
            self._emit_error(ErrorKind.AUDIO_CAPTURE_UNAVAILABLE)

    def _schedule_restart(self) -> None:
        delay = self.options.restart_delay
        logger.info(f"Auto-restarting in {delay * 1000:.0f}ms")
        loop = asyncio.get_running_loop()
        self._restart_handle = loop.call_later(delay, self._restart)
        if self.on_restart:
            self.on_restart()

    def _restart(self) -> None:
        self._restart_handle = None
        if not self._should_be_active or self._engine_running:
            return
        try:
            logger.info("Auto-restarting after unexpected end")
            self.engine.start()
            self._engine_running = True
        except Exception as e:
            logger.warning(f"Failed to auto-restart: {e}")
            self._should_be_active = False
            self._running = False
            self._emit_end()

    def _cancel_timers(self) -> None:
        if self._restart_handle is not None:
            self._restart_handle.cancel()
            self._restart_handle = None
        if self._retry_handle is not None:
            self._retry_handle.cancel()
            self._retry_handle = None

    # ---- engine events ----------------------------------------------------

    def _handle_start(self) -> None:
        self._recognizing = True
        self._engine_running = True
        logger.info("Recognition started")
        if self.on_start:
            self.on_start()

    def _handle_end(self) -> None:
        self._recognizing = False
        self._engine_running = False
        logger.info(f"Recognition ended, should_be_active={self._should_be_active}")

        if self._should_be_active and self.options.policy.auto_restart:
            if self._restart_handle is None:
                self._schedule_restart()
            return

        if self._should_be_active:
            logger.info("Unexpected end with auto-restart disabled, clearing intent")
            self._should_be_active = False

        self._cancel_timers()
        if self._running:
            self._running = False
            self._emit_end()

    def _handle_result(self, final_text: str, interim_text: str) -> None:
        if self.on_result:
            self.on_result(final_text, interim_text)

    def _handle_error(self, code: str) -> None:
        kind = classify_error(code)
        if kind.is_recoverable:
            logger.info(f"Recoverable recognition error: {code}")
            return

        logger.error(f"Recognition error: {code}")
        self._should_be_active = False
        self._cancel_timers()
        if not self._engine_running:
            self._running = False
        self._emit_error(kind)

    def _emit_end(self) -> None:
        if self.on_end:
            self.on_end()

    def _emit_error(self, kind: ErrorKind) -> None:
        if self.on_error:
            self.on_error(kind)


def create_provider(
    engine_factory: EngineFactory | None,
    options: ProviderOptions | None = None,
    permission_probe: PermissionProbe | None = None,
    on_error: Callable[[ErrorKind], None] | None = None,
) -> SpeechProvider | None:
    """
    Create a provider for the host's recognition engine.

    Args:
        engine_factory: Builds an engine from the options, or returns None
            (or is None) when the host has no recognition capability
        options: Recognition options and platform policy
        permission_probe: See SpeechProvider
        on_error: Receives ErrorKind.UNSUPPORTED_PLATFORM if no engine exists

    Returns:
        SpeechProvider, or None if recognition is unsupported
    """
    options = options or ProviderOptions()
    engine = engine_factory(options) if engine_factory else None

    if engine is None:
        logger.error("Speech recognition not supported on this platform")
        if on_error:
            on_error(ErrorKind.UNSUPPORTED_PLATFORM)
        return None

    logger.info(
        f"Provider created: language={options.language}, "
        f"auto_restart={options.policy.auto_restart}, "
        f"requires_permission={options.policy.requires_permission}"
    )
    return SpeechProvider(engine, options, permission_probe)
