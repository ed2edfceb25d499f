"""Logging helpers for simmer.

All modules obtain their logger through :func:`get_logger` so that records
land under the ``simmer`` namespace. The full-screen UI owns the terminal,
which means log records must never be written to stdout/stderr while it is
active: :func:`configure_logging` routes them to a file, or drops them.

Example:
    ```python
    from simmer.logging import configure_logging, get_logger

    configure_logging("debug", log_file=Path("simmer.log"))
    logger = get_logger("executor.scheduler")
    logger.info("instance 3 started")
    ```
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from rich.logging import RichHandler

if TYPE_CHECKING:
    from pathlib import Path

    from rich.console import Console

__all__ = ["ROOT_LOGGER", "configure_logging", "get_logger"]

ROOT_LOGGER = "simmer"

LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"

_installed: list[logging.Handler] = []


def get_logger(name: str) -> logging.Logger:
    """Get a logger below the ``simmer`` namespace.

    Args:
        name: Dotted component name (e.g., "watch.debouncer").

    Returns:
        The ``simmer.<name>`` logger.
    """
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


def _parse_level(level: str | int) -> int:
    if isinstance(level, int):
        return level
    value = logging.getLevelName(level.upper())
    if not isinstance(value, int):
        raise ValueError(f"Unknown log level: {level}")
    return value


def configure_logging(
    level: str | int = "info",
    log_file: Path | None = None,
    *,
    console: Console | None = None,
) -> None:
    """Install handlers on the ``simmer`` logger.

    Calling this again replaces the handlers installed by the previous call.

    Args:
        level: Level name or number.
        log_file: File receiving the records. Takes precedence over console.
        console: Rich console for headless runs. When neither a file nor a
            console is given, records are discarded.
    """
    numeric_level = _parse_level(level)
    root = logging.getLogger(ROOT_LOGGER)
    for old in _installed:
        root.removeHandler(old)
        old.close()
    _installed.clear()

    handler: logging.Handler
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(log_file, encoding="utf-8")
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
    elif console is not None:
        handler = RichHandler(console=console, show_path=False, markup=False)
    else:
        handler = logging.NullHandler()

    root.addHandler(handler)
    root.setLevel(numeric_level)
    # Keep records away from the root logger's stderr handler
    root.propagate = False
    _installed.append(handler)
