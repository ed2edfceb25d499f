"""Error taxonomy for simmer.

Recoverable errors (WatchError, SpawnError, RenderError) are contained by the
component that raises them and reflected in the report model or status line.
Fatal errors (WatchFatal at setup, TerminalUnavailable, ConfigError) end the
process with EXIT_FATAL.
"""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path

__all__ = [
    "EXIT_FAILED",
    "EXIT_FATAL",
    "EXIT_INTERRUPTED",
    "EXIT_OK",
    "ConfigError",
    "InvalidTransition",
    "RenderError",
    "SimmerError",
    "SpawnError",
    "TerminalUnavailable",
    "WatchError",
    "WatchFatal",
]

# Process exit codes
EXIT_OK = 0  # last completed run succeeded without errors (or nothing completed)
EXIT_FAILED = 1  # last completed run failed or reported errors
EXIT_FATAL = 2  # configuration, watcher setup or terminal failure
EXIT_INTERRUPTED = 130  # Ctrl-C outside the UI


class SimmerError(Exception):
    """Base class for all simmer errors."""


class ConfigError(SimmerError):
    """Invalid job definition, settings value or key binding."""


class WatchError(SimmerError):
    """Recoverable watcher problem (e.g., notification channel overflow)."""

    def __init__(self, message: str, root: Path | None = None) -> None:
        super().__init__(message)
        self.root = root


class WatchFatal(WatchError):
    """The watched root became unusable; the watcher unit stops."""


class SpawnError(SimmerError):
    """The command could not be started at all.

    Distinct from a runtime failure: the process never ran, so there is no
    exit status and no output.
    """

    def __init__(self, message: str, command: Sequence[str] = ()) -> None:
        super().__init__(message)
        self.command = list(command)


class RenderError(SimmerError):
    """Transient drawing failure; the renderer retries on its next tick."""


class TerminalUnavailable(SimmerError):
    """No interactive terminal to draw on or read keys from."""


class InvalidTransition(SimmerError):
    """A lifecycle transition that the run state machine forbids."""
