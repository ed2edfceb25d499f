"""Incremental decoder for terminal output.

Commands run with forced colors emit ANSI escape sequences. Their output
arrives in arbitrary chunks, which may split a UTF-8 character or an escape
sequence anywhere, so decoding is an explicit state machine: bytes go through
an incremental UTF-8 decoder, then each character advances the escape-state
machine, which keeps the partial sequence and the current style between
chunks.

Recognized:
- SGR (``ESC [ ... m``): bold, dim, italic, underline, reverse, 16/256/true
  colors, resets.
- Other CSI sequences (cursor movement, erase): consumed, no effect.
- OSC (``ESC ] ... BEL`` or ``ESC ] ... ESC \\``) such as titles and
  hyperlinks: consumed.
- Two-character escapes and charset designations: consumed.

Malformed or oversized sequences are not errors: they are emitted as literal
text, with the ESC byte shown as ``^[``, and decoding continues.

Example:
    ```python
    decoder = AnsiDecoder()
    lines = decoder.feed(b"\\x1b[1;31merror\\x1b[0m: oops\\n")
    # [(StyledSpan("error", Style(bold=True, fg="red")), StyledSpan(": oops"))]
    ```
"""

from __future__ import annotations

import codecs
import re
from enum import Enum

from simmer.logging import get_logger
from simmer.output.lines import PLAIN, Style, StyledSpan, merge_spans

__all__ = ["AnsiDecoder", "apply_sgr"]

logger = get_logger("output.ansi")

ESC = "\x1b"
BEL = "\x07"

# Sequences longer than this are treated as garbage
MAX_CSI_LENGTH = 64
MAX_OSC_LENGTH = 4096

# Anything that is not plain printable text in the ground state
_SPECIAL = re.compile(r"[\x00-\x1f\x7f]")

BASIC_COLORS = ("black", "red", "green", "yellow", "blue", "magenta", "cyan", "white")


class _State(Enum):
    GROUND = "ground"
    ESCAPE = "escape"
    CSI = "csi"
    OSC = "osc"
    OSC_ESCAPE = "osc_escape"
    CHARSET = "charset"


# =============================================================================
# SGR
# =============================================================================


def _basic_color(code: int, base: int, bright: bool) -> str:
    name = BASIC_COLORS[code - base]
    return f"bright_{name}" if bright else name


def _extended_color(values: list[str]) -> tuple[str | None, int]:
    """Parse the arguments following 38/48.

    Returns:
        (color, number of values consumed)
    """
    if not values:
        return None, 0
    mode = values[0]
    if mode == "5" and len(values) >= 2:
        try:
            index = int(values[1])
        except ValueError:
            return None, 2
        return (f"color({index})" if 0 <= index <= 255 else None), 2
    if mode == "2" and len(values) >= 4:
        try:
            r, g, b = (max(0, min(255, int(v))) for v in values[1:4])
        except ValueError:
            return None, 4
        return f"#{r:02x}{g:02x}{b:02x}", 4
    return None, 1


def _colon_color(parts: list[str]) -> str | None:
    # 38:5:n and 38:2:[colorspace]:r:g:b
    if len(parts) >= 2 and parts[1] == "2" and len(parts) >= 6:
        parts = [parts[0], "2", *parts[-3:]]
    color, _ = _extended_color(parts[1:])
    return color


def apply_sgr(style: Style, params: str) -> Style:
    """Apply the parameters of one SGR sequence to a style.

    Args:
        style: Style in effect before the sequence.
        params: Text between ``ESC [`` and ``m``.

    Returns:
        The new style. Unknown codes are ignored.
    """
    fields = params.split(";") if params else ["0"]
    i = 0
    while i < len(fields):
        field = fields[i]
        i += 1
        if ":" in field:
            parts = field.split(":")
            if parts[0] == "38":
                style = style.with_(fg=_colon_color(parts))
            elif parts[0] == "48":
                style = style.with_(bg=_colon_color(parts))
            elif parts[0] == "4":
                style = style.with_(underline=parts[1:2] != ["0"])
            continue
        try:
            code = int(field) if field else 0
        except ValueError:
            continue

        if code == 0:
            style = PLAIN
        elif code == 1:
            style = style.with_(bold=True)
        elif code == 2:
            style = style.with_(dim=True)
        elif code == 3:
            style = style.with_(italic=True)
        elif code in (4, 21):
            style = style.with_(underline=True)
        elif code == 7:
            style = style.with_(reverse=True)
        elif code == 22:
            style = style.with_(bold=False, dim=False)
        elif code == 23:
            style = style.with_(italic=False)
        elif code == 24:
            style = style.with_(underline=False)
        elif code == 27:
            style = style.with_(reverse=False)
        elif 30 <= code <= 37:
            style = style.with_(fg=_basic_color(code, 30, bright=False))
        elif code == 38:
            color, used = _extended_color(fields[i:])
            i += used
            style = style.with_(fg=color)
        elif code == 39:
            style = style.with_(fg=None)
        elif 40 <= code <= 47:
            style = style.with_(bg=_basic_color(code, 40, bright=False))
        elif code == 48:
            color, used = _extended_color(fields[i:])
            i += used
            style = style.with_(bg=color)
        elif code == 49:
            style = style.with_(bg=None)
        elif 90 <= code <= 97:
            style = style.with_(fg=_basic_color(code, 90, bright=True))
        elif 100 <= code <= 107:
            style = style.with_(bg=_basic_color(code, 100, bright=True))
    return style


# =============================================================================
# Decoder
# =============================================================================


class AnsiDecoder:
    """Stateful bytes-to-styled-lines decoder for one output stream.

    Completed lines are returned by :meth:`feed` as soon as their terminator
    arrives; the unterminated tail stays buffered until the next chunk or
    :meth:`finish`.
    """

    def __init__(self) -> None:
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._state = _State.GROUND
        self._sequence: list[str] = []
        self._style = PLAIN
        self._spans: list[StyledSpan] = []
        self._pending_cr = False
        self._lines: list[tuple[StyledSpan, ...]] = []

    @property
    def style(self) -> Style:
        """Style currently in effect."""
        return self._style

    def feed(self, data: bytes) -> list[tuple[StyledSpan, ...]]:
        """Decode a chunk.

        Args:
            data: Raw bytes, split anywhere.

        Returns:
            Lines completed by this chunk, in order.
        """
        self._process(self._utf8.decode(data))
        lines, self._lines = self._lines, []
        return lines

    def finish(self) -> list[tuple[StyledSpan, ...]]:
        """Flush at end of stream.

        An unfinished escape sequence is invalidated and kept as literal
        text; an unterminated last line is returned as a line.
        """
        self._process(self._utf8.decode(b"", final=True))
        if self._state is not _State.GROUND:
            self._abandon_sequence()
        if self._spans:
            self._end_line()
        self._pending_cr = False
        lines, self._lines = self._lines, []
        return lines

    # ------------------------------------------------------------------
    # state machine
    # ------------------------------------------------------------------

    def _process(self, text: str) -> None:
        pos = 0
        length = len(text)
        while pos < length:
            if self._state is _State.GROUND:
                match = _SPECIAL.search(text, pos)
                end = match.start() if match else length
                if end > pos:
                    self._settle_cr()
                    self._append(text[pos:end])
                    pos = end
                    continue
            self._step(text[pos])
            pos += 1

    def _step(self, ch: str) -> None:
        state = self._state
        if state is _State.GROUND:
            self._ground(ch)
        elif state is _State.ESCAPE:
            self._escape(ch)
        elif state is _State.CSI:
            self._csi(ch)
        elif state is _State.OSC:
            self._osc(ch)
        elif state is _State.OSC_ESCAPE:
            if ch == "\\":
                self._reset_sequence()
            else:
                # ESC inside an OSC aborts it and starts a new escape
                self._reset_sequence()
                self._start_escape()
                self._escape(ch)
        else:
            self._charset(ch)

    def _ground(self, ch: str) -> None:
        if ch == "\n":
            self._pending_cr = False
            self._end_line()
        elif ch == "\r":
            self._pending_cr = True
        elif ch == ESC:
            self._settle_cr()
            self._start_escape()
        elif ch == "\t":
            self._settle_cr()
            self._append(ch)
        # other C0 controls (BEL, backspace, NUL...) are dropped

    def _escape(self, ch: str) -> None:
        if ch == "[":
            self._sequence.append(ch)
            self._state = _State.CSI
        elif ch == "]":
            self._sequence.append(ch)
            self._state = _State.OSC
        elif ch in "()*+-./":
            self._sequence.append(ch)
            self._state = _State.CHARSET
        elif "\x30" <= ch <= "\x7e":
            # two-character escape (save/restore cursor, keypad modes, ...)
            self._reset_sequence()
        else:
            self._abandon_sequence()
            self._step(ch)

    def _csi(self, ch: str) -> None:
        if "\x20" <= ch <= "\x3f":
            self._sequence.append(ch)
            if len(self._sequence) > MAX_CSI_LENGTH:
                self._abandon_sequence()
        elif "\x40" <= ch <= "\x7e":
            params = "".join(self._sequence[2:])
            self._reset_sequence()
            if ch == "m" and not params.startswith(("<", "=", ">", "?")):
                self._style = apply_sgr(self._style, params)
        else:
            self._abandon_sequence()
            self._step(ch)

    def _osc(self, ch: str) -> None:
        if ch == BEL:
            self._reset_sequence()
        elif ch == ESC:
            self._state = _State.OSC_ESCAPE
        else:
            self._sequence.append(ch)
            if len(self._sequence) > MAX_OSC_LENGTH:
                self._abandon_sequence()

    def _charset(self, ch: str) -> None:
        if "\x20" <= ch <= "\x7e":
            self._reset_sequence()
        else:
            self._abandon_sequence()
            self._step(ch)

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def _start_escape(self) -> None:
        self._sequence = [ESC]
        self._state = _State.ESCAPE

    def _reset_sequence(self) -> None:
        self._sequence = []
        self._state = _State.GROUND

    def _abandon_sequence(self) -> None:
        literal = "".join(self._sequence).replace(ESC, "^[")
        logger.debug(f"malformed escape sequence kept as text: {literal!r}")
        self._reset_sequence()
        self._append(literal)

    def _settle_cr(self) -> None:
        # A lone carriage return restarts the line
        if self._pending_cr:
            self._pending_cr = False
            self._spans = []

    def _append(self, text: str) -> None:
        if not text:
            return
        if self._spans and self._spans[-1].style == self._style:
            self._spans[-1] = StyledSpan(self._spans[-1].text + text, self._style)
        else:
            self._spans.append(StyledSpan(text, self._style))

    def _end_line(self) -> None:
        self._lines.append(merge_spans(self._spans))
        self._spans = []
