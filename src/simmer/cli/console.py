"""Console setup for simmer.

This module provides:
- SIMMER_THEME: styles for severities, run states and the report chrome
- get_console(): themed Console singleton shared by the UI and --once output
- supports_unicode(): whether the selection marker can be drawn as a glyph
- print_error(): fatal messages printed before or after the full-screen UI

Example:
    ```python
    from simmer.cli.console import get_console, print_error

    console = get_console()
    console.print("[severity.warning]warning[/]: unused variable")
    print_error("cargo: command not found", hint="Is the toolchain installed?")
    ```
"""

from __future__ import annotations

import os
import sys
from functools import lru_cache
from typing import Literal

from rich.console import Console
from rich.text import Text
from rich.theme import Theme

from simmer.executor.instance import RunState
from simmer.output.diagnostics import Severity

__all__ = [
    "SIMMER_THEME",
    "format_duration",
    "get_console",
    "print_error",
    "reset_console",
    "severity_style",
    "state_style",
    "supports_unicode",
]

ColorSystem = Literal["standard", "256", "truecolor"]


# =============================================================================
# Theme
# =============================================================================

EMBER = "#e07a2f"
SLATE = "#64748b"

SIMMER_THEME = Theme(
    {
        "accent": EMBER,
        "accent.bold": f"bold {EMBER}",
        "muted": "dim",
        "hint": "dim italic",
        "error": "bold red",
        "warning": "bold yellow",
        # Severities
        "severity.error": "bold red",
        "severity.warning": "bold yellow",
        "severity.note": "bold cyan",
        "severity.help": "bold green",
        # Run states
        "state.pending": "dim white",
        "state.running": "bold yellow",
        "state.succeeded": "bold green",
        "state.failed": "bold red",
        "state.cancelled": "dim yellow",
        # Chrome
        "header": "bold white",
        "header.job": f"bold {EMBER}",
        "footer": SLATE,
        "footer.key": f"bold {EMBER}",
        "location": f"{EMBER} underline",
        "selected": "reverse",
        "status": "italic yellow",
        "status.degraded": "bold white on red",
        "paused": "bold black on yellow",
    }
)


def severity_style(severity: Severity) -> str:
    return f"severity.{severity.value}"


def state_style(state: RunState | None) -> str:
    return f"state.{state.value}" if state is not None else "muted"


# =============================================================================
# Terminal detection
# =============================================================================


def _color_system() -> ColorSystem | None:
    """Pick a rich color system from the environment; None disables color."""
    if os.environ.get("NO_COLOR"):
        return None
    if os.environ.get("FORCE_COLOR"):
        return "truecolor"
    if os.environ.get("COLORTERM", "").lower() in ("truecolor", "24bit"):
        return "truecolor"

    term = os.environ.get("TERM", "").lower()
    if term == "dumb":
        return None
    if "256color" in term:
        return "256"
    if term or sys.stdout.isatty():
        return "standard"
    return None


@lru_cache(maxsize=1)
def supports_unicode() -> bool:
    """Whether stdout (or the locale) can encode non-ASCII glyphs (cached)."""
    if "utf" in (sys.stdout.encoding or "").lower():
        return True
    locale = " ".join(os.environ.get(var, "") for var in ("LC_ALL", "LC_CTYPE", "LANG")).lower()
    return "utf-8" in locale or "utf8" in locale


# =============================================================================
# Console factory
# =============================================================================

_console: Console | None = None


def get_console(*, force_terminal: bool | None = None) -> Console:
    """Get the themed console singleton.

    The console has no fixed size, so the full-screen view picks up the
    terminal's new dimensions after a resize.

    Args:
        force_terminal: Force terminal mode (for testing).
    """
    global _console

    if _console is None:
        _console = Console(
            theme=SIMMER_THEME,
            force_terminal=force_terminal,
            color_system=_color_system(),
            highlight=False,
        )
    return _console


def reset_console() -> None:
    """Forget the console singleton and the cached unicode check."""
    global _console
    _console = None
    supports_unicode.cache_clear()


# =============================================================================
# Messages
# =============================================================================


def print_error(message: str, hint: str | None = None) -> None:
    """Print a fatal error outside the full-screen view.

    Args:
        message: What went wrong.
        hint: Optional next step for the user.
    """
    text = Text()
    text.append("error: ", style="error")
    text.append(message)
    if hint:
        text.append("\n  ")
        text.append(hint, style="hint")
    get_console().print(text)


def format_duration(seconds: float) -> str:
    """Format a run's elapsed time, e.g. "0.3s", "1m 23s" or "1h 5m"."""
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes, secs = divmod(int(seconds), 60)
    if minutes < 60:
        return f"{minutes}m {secs}s"
    hours, minutes = divmod(minutes, 60)
    return f"{hours}h {minutes}m"
