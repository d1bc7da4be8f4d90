"""
Logging setup for Speech Rooms.

The room-log service and the room-captions app call setup_logging() once at
startup; library modules only use logging.getLogger(__name__) and inherit the
level of the "speech_rooms" package logger.

The WebSocket and HTTP client libraries log every connection and request,
which buries caption output, so their loggers are held at WARNING unless
DEBUG is asked for.
"""

import logging
import os
import sys
from typing import Literal

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

PACKAGE_LOGGER = "speech_rooms"

# Transport libraries used by the room log and ASR clients
TRANSPORT_LOGGERS = ("websockets", "httpx", "httpcore")


def _resolve_level(level: str | None) -> int:
    if level is None:
        level = os.getenv("LOG_LEVEL", "INFO")
    return getattr(logging, level.upper(), logging.INFO)


def _apply_transport_level(log_level: int) -> None:
    transport_level = log_level if log_level <= logging.DEBUG else max(log_level, logging.WARNING)
    for name in TRANSPORT_LOGGERS:
        logging.getLogger(name).setLevel(transport_level)


def setup_logging(
    name: str | None = None,
    level: LogLevel | None = None,
    format: str = DEFAULT_FORMAT,
) -> logging.Logger:
    """
    Configure stdout logging for a service or app and return its logger.

    Args:
        name: Logger name (typically __name__). If None, returns root logger.
        level: Log level. Defaults to the LOG_LEVEL env var, then INFO.
        format: Log format string.

    Returns:
        Configured logger instance.

    Usage:
        from speech_rooms.utils import setup_logging
        logger = setup_logging(__name__)
        logger.info(f"Room log service listening on {host}:{port}")
    """
    log_level = _resolve_level(level)

    # Only the first call configures the root handler
    logging.basicConfig(level=log_level, format=format, stream=sys.stdout)
    _apply_transport_level(log_level)

    logger = logging.getLogger(name)
    logger.setLevel(log_level)
    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger by name. Assumes setup_logging() ran at startup."""
    return logging.getLogger(name)


def set_log_level(level: LogLevel) -> None:
    """
    Change the log level at runtime, e.g. for room-captions --debug.

    Applies to the root logger, the speech_rooms package logger and the
    transport library loggers.
    """
    log_level = _resolve_level(level)
    logging.getLogger().setLevel(log_level)
    logging.getLogger(PACKAGE_LOGGER).setLevel(log_level)
    _apply_transport_level(log_level)
