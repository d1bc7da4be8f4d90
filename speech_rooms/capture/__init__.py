"""
Speech Capture Module

Provider adapter, error taxonomy and the capture state machine.

Usage:
    from speech_rooms.capture import CaptureMachine, ProviderOptions, create_provider

    provider = create_provider(engine_factory, ProviderOptions(language="en-US"))
    machine = CaptureMachine(provider, merger)
"""

from .engines import ASRStreamEngine
from .errors import NOTICE_MESSAGES, ErrorKind, InvalidStateError, classify_error
from .machine import (
    CaptureMachine,
    CaptureState,
    EngineEnded,
    EngineStarted,
    ErrorRaised,
    RestartScheduled,
    ResultReceived,
)
from .provider import (
    PlatformPolicy,
    ProviderOptions,
    RecognitionEngine,
    SpeechProvider,
    create_provider,
)

__all__ = [
    "NOTICE_MESSAGES",
    "ASRStreamEngine",
    "CaptureMachine",
    "CaptureState",
    "EngineEnded",
    "EngineStarted",
    "ErrorKind",
    "ErrorRaised",
    "InvalidStateError",
    "PlatformPolicy",
    "ProviderOptions",
    "RecognitionEngine",
    "RestartScheduled",
    "ResultReceived",
    "SpeechProvider",
    "classify_error",
    "create_provider",
]
