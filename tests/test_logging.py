"""Tests for logging configuration."""

import io
import logging

import pytest
from rich.console import Console
from rich.logging import RichHandler

from defi_portfolio_tracker.logging_config import NOISY_LOGGERS, configure_logging

pytestmark = pytest.mark.usefixtures("restore_root_logger")


def test_sets_level():
    """Test the root logger level follows the argument."""
    configure_logging("DEBUG")
    assert logging.getLogger().level == logging.DEBUG

    configure_logging("warning")
    assert logging.getLogger().level == logging.WARNING


def test_invalid_level_defaults_to_info():
    """Test unknown level names fall back to INFO."""
    configure_logging("NONEXISTENT")

    assert logging.getLogger().level == logging.INFO


def test_installs_single_rich_handler():
    """Test records go through one RichHandler."""
    configure_logging("INFO")
    configure_logging("INFO")

    handlers = logging.getLogger().handlers
    assert len(handlers) == 1
    assert isinstance(handlers[0], RichHandler)


def test_silences_http_libraries():
    """Test chatty client libraries are capped at WARNING."""
    configure_logging("DEBUG")

    for name in NOISY_LOGGERS:
        assert logging.getLogger(name).level == logging.WARNING


def test_writes_to_console():
    """Test records are rendered on the given console."""
    output = io.StringIO()
    configure_logging("INFO", console=Console(file=output, width=120))

    logging.getLogger("defi_portfolio_tracker.test").warning("Redis unreachable")

    assert "Redis unreachable" in output.getvalue()
