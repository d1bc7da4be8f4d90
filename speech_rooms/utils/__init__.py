"""Logging helpers shared by the library, the service and the app."""

from .logging import DEFAULT_FORMAT, get_logger, set_log_level, setup_logging

__all__ = ["DEFAULT_FORMAT", "get_logger", "set_log_level", "setup_logging"]
