"""
Unit tests for speech_rooms.utils.logging module.
"""

import logging
import os
from unittest.mock import patch

import pytest

from speech_rooms.utils.logging import (
    DEFAULT_FORMAT,
    TRANSPORT_LOGGERS,
    get_logger,
    set_log_level,
    setup_logging,
)


@pytest.fixture
def restore_levels():
    """Put the root, package and transport logger levels back after a test."""
    loggers = [logging.getLogger(), logging.getLogger("speech_rooms")]
    loggers += [logging.getLogger(name) for name in TRANSPORT_LOGGERS]
    saved = [logger.level for logger in loggers]
    yield
    for logger, level in zip(loggers, saved):
        logger.setLevel(level)


class TestSetupLogging:
    """Tests for setup_logging function."""

    def test_returns_named_logger(self, restore_levels):
        """Test setup_logging returns the logger for the given name."""
        logger = setup_logging("room_log_service")
        assert isinstance(logger, logging.Logger)
        assert logger.name == "room_log_service"

    def test_explicit_level(self, restore_levels):
        """Test an explicit level wins over the environment."""
        with patch.dict(os.environ, {"LOG_LEVEL": "ERROR"}):
            logger = setup_logging("test_explicit_level", level="DEBUG")
        assert logger.level == logging.DEBUG

    def test_level_from_env(self, restore_levels):
        """Test LOG_LEVEL is read case-insensitively."""
        with patch.dict(os.environ, {"LOG_LEVEL": "warning"}):
            logger = setup_logging("test_env_level")
        assert logger.level == logging.WARNING

    def test_default_level_info(self, restore_levels):
        """Test INFO is used without LOG_LEVEL."""
        with patch.dict(os.environ, {}, clear=True):
            logger = setup_logging("test_default_level")
        assert logger.level == logging.INFO

    def test_unknown_level_falls_back(self, restore_levels):
        """Test an unknown level name falls back to INFO."""
        with patch.dict(os.environ, {"LOG_LEVEL": "CHATTY"}):
            logger = setup_logging("test_unknown_level")
        assert logger.level == logging.INFO

    def test_transport_loggers_quiet(self, restore_levels):
        """Test websockets and httpx loggers stay at WARNING for INFO output."""
        setup_logging("test_transport_quiet", level="INFO")
        for name in TRANSPORT_LOGGERS:
            assert logging.getLogger(name).level == logging.WARNING

    def test_transport_loggers_debug(self, restore_levels):
        """Test DEBUG output includes the transport libraries."""
        setup_logging("test_transport_debug", level="DEBUG")
        assert logging.getLogger("websockets").level == logging.DEBUG


class TestGetLogger:
    """Tests for get_logger function."""

    def test_same_instance(self):
        """Test repeated lookups return one logger."""
        assert get_logger("speech_rooms.capture") is get_logger("speech_rooms.capture")


class TestSetLogLevel:
    """Tests for set_log_level function."""

    def test_sets_root_and_package(self, restore_levels):
        """Test root and package loggers follow the new level."""
        set_log_level("DEBUG")
        assert logging.getLogger().level == logging.DEBUG
        assert logging.getLogger("speech_rooms").level == logging.DEBUG

    def test_case_insensitive(self, restore_levels):
        """Test level names are case-insensitive."""
        set_log_level("error")
        assert logging.getLogger().level == logging.ERROR

    def test_module_loggers_inherit(self, restore_levels):
        """Test library module loggers inherit the package level."""
        set_log_level("WARNING")
        assert logging.getLogger("speech_rooms.rooms.log").getEffectiveLevel() == logging.WARNING


class TestDefaultFormat:
    """Tests for DEFAULT_FORMAT constant."""

    def test_contains_required_fields(self):
        """Test DEFAULT_FORMAT carries time, name, level and message."""
        for field in ("%(asctime)s", "%(name)s", "%(levelname)s", "%(message)s"):
            assert field in DEFAULT_FORMAT
