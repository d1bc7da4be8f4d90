"""
Capture error taxonomy.

Engine error codes are classified once, at the provider boundary:

  recoverable  no-speech, aborted, network
               swallowed; the "should be listening" intent is kept
  fatal        audio-capture, not-allowed, not-supported (and unknown codes)
               intent is cleared and the error is surfaced to the caller
"""

from enum import Enum


class ErrorKind(str, Enum):
    """Classified capture and backend errors."""

    UNSUPPORTED_PLATFORM = "not-supported"
    PERMISSION_DENIED = "not-allowed"
    AUDIO_CAPTURE_UNAVAILABLE = "audio-capture"
    NO_SPEECH_DETECTED = "no-speech"
    ABORTED = "aborted"
    NETWORK_TRANSIENT = "network"
    BACKEND_UNAVAILABLE = "backend-unavailable"
    UNKNOWN = "unknown"

    @property
    def is_recoverable(self) -> bool:
        return self in RECOVERABLE_ERRORS

    @property
    def is_fatal(self) -> bool:
        """Fatal errors deactivate capture. Backend errors are not capture errors."""
        return not self.is_recoverable and self is not ErrorKind.BACKEND_UNAVAILABLE

    @property
    def notice(self) -> str:
        """User-facing inline notice text."""
        return NOTICE_MESSAGES.get(self, f"Speech error: {self.value}")


RECOVERABLE_ERRORS = frozenset(
    {ErrorKind.NO_SPEECH_DETECTED, ErrorKind.ABORTED, ErrorKind.NETWORK_TRANSIENT}
)

NOTICE_MESSAGES = {
    ErrorKind.UNSUPPORTED_PLATFORM: "Speech recognition not supported.",
    ErrorKind.PERMISSION_DENIED: "Microphone permission denied.",
    ErrorKind.AUDIO_CAPTURE_UNAVAILABLE: "No microphone found. Please check your device.",
    ErrorKind.NO_SPEECH_DETECTED: "No speech detected. Please try again.",
    ErrorKind.NETWORK_TRANSIENT: "Network error occurred.",
    ErrorKind.BACKEND_UNAVAILABLE: "Room connection problem. Recent speech may not have been shared.",
}


def classify_error(code: str | ErrorKind) -> ErrorKind:
    """
    Map an engine error code to an ErrorKind.

    Examples:
        "no-speech" -> ErrorKind.NO_SPEECH_DETECTED
        "language-not-supported" -> ErrorKind.UNKNOWN
    """
    if isinstance(code, ErrorKind):
        return code
    try:
        return ErrorKind(code)
    except ValueError:
        return ErrorKind.UNKNOWN


class InvalidStateError(RuntimeError):
    """Raised by an engine asked to start while it is still running."""
