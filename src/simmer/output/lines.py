"""Styled text produced by decoding a command's terminal output.

A decoded line is a tuple of StyledSpan runs; adjacent runs never share a
style, so the same bytes always decode to the same spans no matter how they
were chunked.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from enum import Enum

from rich.style import Style as RichStyle
from rich.text import Text

__all__ = ["OutputLine", "Stream", "Style", "StyledSpan", "merge_spans"]


class Stream(str, Enum):
    """Output stream of the supervised process."""

    STDOUT = "stdout"
    STDERR = "stderr"


@dataclass(frozen=True)
class Style:
    """Text attributes set by SGR escape sequences.

    Colors use rich color syntax ("red", "bright_blue", "color(208)",
    "#ff8800") so they can be handed to rich untouched.
    """

    bold: bool = False
    dim: bool = False
    italic: bool = False
    underline: bool = False
    reverse: bool = False
    fg: str | None = None
    bg: str | None = None

    @property
    def is_plain(self) -> bool:
        return self == PLAIN

    def with_(self, **changes: object) -> Style:
        return replace(self, **changes)  # type: ignore[arg-type]

    def to_rich(self) -> RichStyle:
        """Convert to a rich Style."""
        return RichStyle(
            bold=self.bold or None,
            dim=self.dim or None,
            italic=self.italic or None,
            underline=self.underline or None,
            reverse=self.reverse or None,
            color=self.fg,
            bgcolor=self.bg,
        )


PLAIN = Style()


@dataclass(frozen=True)
class StyledSpan:
    """A run of text with one style."""

    text: str
    style: Style = PLAIN


def merge_spans(spans: Iterable[StyledSpan]) -> tuple[StyledSpan, ...]:
    """Drop empty spans and join neighbours that share a style."""
    merged: list[StyledSpan] = []
    for span in spans:
        if not span.text:
            continue
        if merged and merged[-1].style == span.style:
            merged[-1] = StyledSpan(merged[-1].text + span.text, span.style)
        else:
            merged.append(span)
    return tuple(merged)


@dataclass(frozen=True)
class OutputLine:
    """One complete line of command output.

    Attributes:
        instance_id: Run instance the line was parsed from.
        ordinal: Position of the line within the run's output.
        stream: Stream it was read from.
        spans: Styled content, without the line terminator.
    """

    instance_id: int
    ordinal: int
    stream: Stream
    spans: tuple[StyledSpan, ...] = field(default_factory=tuple)

    @property
    def plain(self) -> str:
        """Text with styles removed."""
        return "".join(span.text for span in self.spans)

    @property
    def is_blank(self) -> bool:
        return not self.plain.strip()

    def to_text(self) -> Text:
        """Render as rich Text."""
        text = Text()
        for span in self.spans:
            text.append(span.text, style=None if span.style.is_plain else span.style.to_rich())
        return text
