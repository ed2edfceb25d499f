"""Tests for logging helpers."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from pathlib import Path

import pytest
from rich.console import Console

from simmer.logging import ROOT_LOGGER, configure_logging, get_logger


@pytest.fixture(autouse=True)
def _reset() -> Iterator[None]:
    yield
    configure_logging("info")


class TestLogging:
    """Tests for configure_logging and get_logger."""

    def test_logger_namespace(self) -> None:
        """Test that component loggers live under simmer."""
        assert get_logger("watch.debouncer").name == "simmer.watch.debouncer"

    def test_log_file(self, tmp_path: Path) -> None:
        """Test that records reach the log file."""
        log_file = tmp_path / "nested" / "simmer.log"
        configure_logging("debug", log_file)

        get_logger("test").debug("hello from the test")

        assert "DEBUG   simmer.test: hello from the test" in log_file.read_text()

    def test_level_filters(self, tmp_path: Path) -> None:
        """Test that records below the level are dropped."""
        log_file = tmp_path / "simmer.log"
        configure_logging("warning", log_file)

        get_logger("test").info("quiet")
        get_logger("test").warning("loud")

        text = log_file.read_text()
        assert "quiet" not in text
        assert "loud" in text

    def test_reconfigure_replaces_handlers(self, tmp_path: Path) -> None:
        """Test that handlers do not pile up."""
        configure_logging("info", tmp_path / "a.log")
        configure_logging("info", tmp_path / "b.log")

        assert len(logging.getLogger(ROOT_LOGGER).handlers) == 1

    def test_console_handler(self) -> None:
        """Test headless logging to a rich console."""
        console = Console(record=True, width=120)
        configure_logging("info", console=console)

        get_logger("test").info("shown on the console")

        assert "shown on the console" in console.export_text()

    def test_no_propagation(self) -> None:
        """Test that records never reach the root logger."""
        configure_logging("info")

        assert logging.getLogger(ROOT_LOGGER).propagate is False

    def test_unknown_level(self) -> None:
        """Test that a bad level name is refused."""
        with pytest.raises(ValueError, match="Unknown log level"):
            configure_logging("chatty")
