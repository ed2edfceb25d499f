"""Key decoding and key bindings.

This module provides:
- Action: everything a key can ask simmer to do
- DEFAULT_KEY_BINDINGS: chord -> action table
- KeyBindings: the table in use, with ``chord=action`` overrides
- decode_keys(): raw terminal input -> chord names ("q", "ctrl-c", "pageup")
- KeyReader: puts the terminal in raw input mode and feeds chords to a callback

Example:
    ```python
    bindings = KeyBindings().with_overrides(["x=rerun"])
    bindings.action_for("x")          # Action.RERUN
    decode_keys("\\x1b[Aj\\x03")        # ["up", "j", "ctrl-c"]
    ```
"""

from __future__ import annotations

import asyncio
import codecs
import os
import sys
from collections.abc import Callable, Iterable, Mapping
from enum import Enum
from typing import IO, Any

from simmer.errors import ConfigError, TerminalUnavailable
from simmer.logging import get_logger

__all__ = [
    "DEFAULT_KEY_BINDINGS",
    "Action",
    "KeyBindings",
    "KeyReader",
    "decode_keys",
    "normalize_chord",
]

logger = get_logger("cli.keys")


class Action(str, Enum):
    """Actions bound to keys."""

    QUIT = "quit"
    RERUN = "rerun"
    REFRESH = "refresh"
    TOGGLE_PAUSE = "toggle_pause"
    TOGGLE_SUMMARY = "toggle_summary"
    TOGGLE_WRAP = "toggle_wrap"
    TOGGLE_RAW_OUTPUT = "toggle_raw_output"
    TOGGLE_BACKTRACE = "toggle_backtrace"
    TOGGLE_HELP = "toggle_help"
    CLOSE_HELP = "close_help"
    NEXT_DIAGNOSTIC = "next_diagnostic"
    PREVIOUS_DIAGNOSTIC = "previous_diagnostic"
    SCROLL_UP = "scroll_up"
    SCROLL_DOWN = "scroll_down"
    PAGE_UP = "page_up"
    PAGE_DOWN = "page_down"
    SCROLL_TOP = "scroll_top"
    SCROLL_BOTTOM = "scroll_bottom"
    TOGGLE_ERRORS = "toggle_errors"
    TOGGLE_WARNINGS = "toggle_warnings"
    TOGGLE_NOTES = "toggle_notes"
    TOGGLE_HELP_DIAGNOSTICS = "toggle_help_diagnostics"
    CLEAR_FILTERS = "clear_filters"


# Default key bindings
DEFAULT_KEY_BINDINGS: dict[str, Action] = {
    "q": Action.QUIT,
    "ctrl-c": Action.QUIT,
    "ctrl-q": Action.QUIT,
    "r": Action.RERUN,
    "f5": Action.RERUN,
    "ctrl-r": Action.REFRESH,
    "p": Action.TOGGLE_PAUSE,
    "s": Action.TOGGLE_SUMMARY,
    "w": Action.TOGGLE_WRAP,
    "o": Action.TOGGLE_RAW_OUTPUT,
    "b": Action.TOGGLE_BACKTRACE,
    "?": Action.TOGGLE_HELP,
    "h": Action.TOGGLE_HELP,
    "esc": Action.CLOSE_HELP,
    "j": Action.NEXT_DIAGNOSTIC,
    "down": Action.NEXT_DIAGNOSTIC,
    "k": Action.PREVIOUS_DIAGNOSTIC,
    "up": Action.PREVIOUS_DIAGNOSTIC,
    "ctrl-e": Action.SCROLL_DOWN,
    "ctrl-y": Action.SCROLL_UP,
    "pageup": Action.PAGE_UP,
    "pagedown": Action.PAGE_DOWN,
    "space": Action.PAGE_DOWN,
    "home": Action.SCROLL_TOP,
    "g": Action.SCROLL_TOP,
    "end": Action.SCROLL_BOTTOM,
    "G": Action.SCROLL_BOTTOM,
    "1": Action.TOGGLE_ERRORS,
    "2": Action.TOGGLE_WARNINGS,
    "3": Action.TOGGLE_NOTES,
    "4": Action.TOGGLE_HELP_DIAGNOSTICS,
    "0": Action.CLEAR_FILTERS,
}

_ALIASES = {
    "escape": "esc",
    "return": "enter",
    "pgup": "pageup",
    "page-up": "pageup",
    "pgdn": "pagedown",
    "page-down": "pagedown",
    "del": "delete",
    " ": "space",
}


def normalize_chord(chord: str) -> str:
    """Canonical chord name. Single characters keep their case ("G" != "g")."""
    if len(chord) == 1:
        return _ALIASES.get(chord, chord)
    name = chord.strip().lower().replace("+", "-")
    return _ALIASES.get(name, name)


class KeyBindings:
    """Chord to action table.

    Args:
        table: Bindings to start from. Defaults to DEFAULT_KEY_BINDINGS.
    """

    def __init__(self, table: Mapping[str, Action] | None = None) -> None:
        source = DEFAULT_KEY_BINDINGS if table is None else table
        self._table = {normalize_chord(chord): action for chord, action in source.items()}

    def action_for(self, chord: str) -> Action | None:
        """Action bound to a chord; None for unbound chords."""
        return self._table.get(chord)

    def keys_for(self, action: Action) -> list[str]:
        return [chord for chord, bound in self._table.items() if bound is action]

    def with_overrides(self, overrides: Iterable[str]) -> KeyBindings:
        """Return a copy with ``chord=action`` overrides applied.

        Raises:
            ConfigError: If an override is malformed or names an unknown action.
        """
        table = dict(self._table)
        for binding in overrides:
            chord, sep, name = binding.rpartition("=")
            if not sep or not chord or not name.strip():
                raise ConfigError(f"Invalid key binding {binding!r}, expected chord=action")
            try:
                action = Action(name.strip().lower())
            except ValueError as e:
                choices = ", ".join(a.value for a in Action)
                raise ConfigError(
                    f"Unknown action {name!r} in key binding {binding!r}. Available: {choices}"
                ) from e
            table[normalize_chord(chord)] = action
        return KeyBindings(table)

    def items(self) -> list[tuple[str, Action]]:
        return list(self._table.items())


# =============================================================================
# Decoding
# =============================================================================

ESC = "\x1b"

_SEQUENCES: dict[str, str] = {
    "[A": "up",
    "[B": "down",
    "[C": "right",
    "[D": "left",
    "[H": "home",
    "[F": "end",
    "[1~": "home",
    "[2~": "insert",
    "[3~": "delete",
    "[4~": "end",
    "[5~": "pageup",
    "[6~": "pagedown",
    "[7~": "home",
    "[8~": "end",
    "[11~": "f1",
    "[12~": "f2",
    "[13~": "f3",
    "[14~": "f4",
    "[15~": "f5",
    "[17~": "f6",
    "[18~": "f7",
    "[19~": "f8",
    "[20~": "f9",
    "[21~": "f10",
    "[23~": "f11",
    "[24~": "f12",
    "OA": "up",
    "OB": "down",
    "OC": "right",
    "OD": "left",
    "OH": "home",
    "OF": "end",
    "OP": "f1",
    "OQ": "f2",
    "OR": "f3",
    "OS": "f4",
}

_CONTROL_NAMES = {
    "\r": "enter",
    "\n": "enter",
    "\t": "tab",
    "\x7f": "backspace",
    "\x08": "backspace",
    " ": "space",
}


def _control_chord(char: str) -> str:
    if char in _CONTROL_NAMES:
        return _CONTROL_NAMES[char]
    code = ord(char)
    if 1 <= code <= 26:
        return f"ctrl-{chr(ord('a') + code - 1)}"
    return f"ctrl-{code}"


def decode_keys(data: str) -> list[str]:
    """Split one read of terminal input into chord names.

    Unrecognized escape sequences are skipped; a lone ESC at the end of the
    input is the escape key.
    """
    chords: list[str] = []
    i, n = 0, len(data)
    while i < n:
        char = data[i]
        if char != ESC:
            if char < " " or char == "\x7f" or char == " ":
                chords.append(_control_chord(char))
            else:
                chords.append(char)
            i += 1
            continue

        if i + 1 >= n:
            chords.append("esc")
            break
        intro = data[i + 1]
        if intro == "[":
            j = i + 2
            while j < n and not ("@" <= data[j] <= "~"):
                j += 1
            if j >= n:
                # Truncated sequence, nothing sensible to report
                break
            seq = data[i + 1 : j + 1]
            i = j + 1
        elif intro == "O" and i + 2 < n:
            seq = data[i + 1 : i + 3]
            i += 3
        elif intro == ESC:
            chords.append("esc")
            i += 1
            continue
        else:
            chords.append(f"alt-{intro}")
            i += 2
            continue

        name = _SEQUENCES.get(seq)
        if name is None:
            logger.debug(f"unknown key sequence {seq!r}")
        else:
            chords.append(name)
    return chords


# =============================================================================
# Reader
# =============================================================================


class KeyReader:
    """Reads keys from the terminal without blocking the event loop.

    The terminal is switched to non-canonical, no-echo input with signal
    generation off, so Ctrl-C arrives as a key. Output processing is left
    alone so the renderer's line endings keep working.

    Args:
        on_key: Called with each chord, on the event loop.
        stream: Input stream (defaults to stdin).
    """

    def __init__(self, on_key: Callable[[str], object], stream: IO[str] | None = None) -> None:
        self._on_key = on_key
        self._stream = stream or sys.stdin
        self._fd: int | None = None
        self._saved: list[Any] | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def start(self) -> None:
        """Enter raw input mode and start reading.

        Raises:
            TerminalUnavailable: If input is not an interactive terminal.
        """
        try:
            import termios
        except ImportError as e:
            raise TerminalUnavailable("raw keyboard input is not supported here") from e

        if not self._stream.isatty():
            raise TerminalUnavailable("standard input is not a terminal")

        fd = self._stream.fileno()
        try:
            saved = termios.tcgetattr(fd)
            attrs = termios.tcgetattr(fd)
            attrs[0] &= ~(termios.IXON | termios.ICRNL)
            attrs[3] &= ~(termios.ICANON | termios.ECHO | termios.ISIG | termios.IEXTEN)
            attrs[6][termios.VMIN] = 1
            attrs[6][termios.VTIME] = 0
            termios.tcsetattr(fd, termios.TCSAFLUSH, attrs)
        except termios.error as e:
            raise TerminalUnavailable(f"cannot configure terminal input: {e}") from e

        self._fd, self._saved = fd, saved
        self._loop = asyncio.get_running_loop()
        self._loop.add_reader(fd, self._on_readable)

    def stop(self) -> None:
        """Stop reading and restore the terminal settings."""
        fd, self._fd = self._fd, None
        if fd is None:
            return
        if self._loop is not None:
            self._loop.remove_reader(fd)
        if self._saved is not None:
            import termios

            try:
                termios.tcsetattr(fd, termios.TCSADRAIN, self._saved)
            except termios.error as e:
                logger.warning(f"failed to restore terminal settings: {e}")

    def _on_readable(self) -> None:
        if self._fd is None:
            return
        try:
            data = os.read(self._fd, 1024)
        except BlockingIOError:
            return
        except OSError as e:
            logger.warning(f"keyboard input failed: {e}")
            self.stop()
            return
        if not data:
            self.stop()
            return
        for chord in decode_keys(self._decoder.decode(data)):
            self._on_key(chord)
