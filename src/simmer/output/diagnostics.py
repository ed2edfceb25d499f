"""Diagnostic extraction from decoded output lines.

Recognizing tool output is table driven: each LinePattern names a line kind
(header, location, end marker) and a regular expression. New output formats
are supported by adding rows to the table, without touching the extractor.

A diagnostic starts at a header line, collects following lines as its body,
picks up its location from the header or from a location line, and closes at
a blank line, at the next header or at an end marker. Lines outside any
diagnostic stay plain output.

Example:
    ```python
    extractor = DiagnosticExtractor(instance_id=3)
    records = extractor.push(line)  # closed diagnostics, in emission order
    records += extractor.close()
    ```
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum

from simmer.output.lines import OutputLine, Stream, Style, StyledSpan

__all__ = [
    "DEFAULT_PATTERNS",
    "DiagnosticExtractor",
    "DiagnosticRecord",
    "LineKind",
    "LineMatch",
    "LinePattern",
    "Location",
    "Severity",
    "classify",
]


# =============================================================================
# Records
# =============================================================================


class Severity(str, Enum):
    """Diagnostic severity, most severe first."""

    ERROR = "error"
    WARNING = "warning"
    NOTE = "note"
    HELP = "help"

    @classmethod
    def parse(cls, word: str) -> Severity:
        word = word.lower()
        if word in ("fatal error", "fatal"):
            return cls.ERROR
        return cls(word)


@dataclass(frozen=True)
class Location:
    """Source position a diagnostic points at."""

    file: str
    line: int
    column: int | None = None

    def __str__(self) -> str:
        if self.column is None:
            return f"{self.file}:{self.line}"
        return f"{self.file}:{self.line}:{self.column}"


@dataclass(frozen=True)
class DiagnosticRecord:
    """A finding extracted from tool output. Immutable once emitted.

    Attributes:
        instance_id: Run instance the output came from.
        ordinal: Ordinal of the header line within the run's output.
        severity: Error, warning, note or help.
        summary: Header message without severity and location.
        location: Position, when the tool gave one.
        code: Tool-specific code such as "E0308".
        lines: Header plus body lines, styled as the tool printed them.
        synthetic: Produced by simmer itself, not by the tool.
    """

    instance_id: int
    ordinal: int
    severity: Severity
    summary: str
    location: Location | None = None
    code: str | None = None
    lines: tuple[OutputLine, ...] = ()
    synthetic: bool = False

    @classmethod
    def synthetic_error(cls, instance_id: int, message: str) -> DiagnosticRecord:
        """Build a diagnostic explaining a failure of simmer's own."""
        line = OutputLine(
            instance_id=instance_id,
            ordinal=0,
            stream=Stream.STDERR,
            spans=(
                StyledSpan("error", Style(bold=True, fg="red")),
                StyledSpan(f": {message}", Style(bold=True)),
            ),
        )
        return cls(
            instance_id=instance_id,
            ordinal=0,
            severity=Severity.ERROR,
            summary=message,
            lines=(line,),
            synthetic=True,
        )


# =============================================================================
# Pattern table
# =============================================================================


class LineKind(str, Enum):
    """Role of a recognized line."""

    HEADER = "header"
    LOCATION = "location"
    END = "end"


@dataclass(frozen=True)
class LinePattern:
    """One row of the recognition table.

    Named groups used: ``severity``, ``message``, ``code``, ``file``,
    ``line``, ``column``.
    """

    name: str
    kind: LineKind
    regex: re.Pattern[str]


@dataclass(frozen=True)
class LineMatch:
    pattern: LinePattern
    groups: dict[str, str | None]

    @property
    def kind(self) -> LineKind:
        return self.pattern.kind

    def location(self) -> Location | None:
        file, line = self.groups.get("file"), self.groups.get("line")
        if not file or not line:
            return None
        column = self.groups.get("column")
        return Location(file=file.strip(), line=int(line), column=int(column) if column else None)


_SEVERITY = r"(?P<severity>error|warning|note|help|fatal error)"

# Order matters: end markers look like headers and must be tried first
DEFAULT_PATTERNS: tuple[LinePattern, ...] = (
    LinePattern("rustc-aborting", LineKind.END, re.compile(r"^error: aborting due to")),
    LinePattern("could-not-compile", LineKind.END, re.compile(r"^error: could not compile")),
    LinePattern(
        "warnings-emitted",
        LineKind.END,
        re.compile(r"^(?:warning: )?\d+ warnings? emitted"),
    ),
    LinePattern(
        "cargo-generated",
        LineKind.END,
        re.compile(r"^warning: `[^`]+` \(.+\) generated \d+ (?:warnings?|errors?)"),
    ),
    LinePattern(
        "build-failed",
        LineKind.END,
        re.compile(r"^error: (?:build failed|\d+ errors? generated)"),
    ),
    # gcc, clang, go vet, tsc --pretty false, ...: path:line[:col]: severity: message
    LinePattern(
        "path-first",
        LineKind.HEADER,
        re.compile(
            r"^(?P<file>[^\s:][^:]*):(?P<line>\d+):(?:(?P<column>\d+):)?\s+"
            + _SEVERITY
            + r"(?:\[(?P<code>[^\]]+)\])?:\s*(?P<message>.*)$"
        ),
    ),
    # rustc, cargo: severity[code]: message
    LinePattern(
        "severity-first",
        LineKind.HEADER,
        re.compile(r"^" + _SEVERITY + r"(?:\[(?P<code>[^\]]+)\])?:\s*(?P<message>.*)$"),
    ),
    # rustc location arrow:   --> src/lib.rs:3:5
    LinePattern(
        "arrow-location",
        LineKind.LOCATION,
        re.compile(r"^\s*-->\s+(?P<file>.+?):(?P<line>\d+)(?::(?P<column>\d+))?\s*$"),
    ),
)


def classify(text: str, patterns: Sequence[LinePattern] = DEFAULT_PATTERNS) -> LineMatch | None:
    """Find the first pattern matching a plain-text line."""
    for pattern in patterns:
        match = pattern.regex.match(text)
        if match:
            return LineMatch(pattern=pattern, groups=match.groupdict())
    return None


# =============================================================================
# Extractor
# =============================================================================


_SUBORDINATE = frozenset({Severity.NOTE, Severity.HELP})


@dataclass
class _Open:
    header: OutputLine
    severity: Severity
    summary: str
    code: str | None
    location: Location | None
    body: list[OutputLine]


class DiagnosticExtractor:
    """Turns a sequence of lines into DiagnosticRecords, in emission order."""

    def __init__(
        self,
        instance_id: int,
        patterns: Sequence[LinePattern] = DEFAULT_PATTERNS,
    ) -> None:
        self.instance_id = instance_id
        self.patterns = tuple(patterns)
        self._open: _Open | None = None

    def push(self, line: OutputLine) -> list[DiagnosticRecord]:
        """Consume one line.

        Returns:
            Diagnostics closed by this line (zero or one).
        """
        if line.is_blank:
            return self.close()

        found = classify(line.plain, self.patterns)
        if found is None:
            if self._open is not None:
                self._open.body.append(line)
            return []

        if found.kind is LineKind.END:
            return self.close()

        if found.kind is LineKind.LOCATION:
            if self._open is not None:
                if self._open.location is None:
                    self._open.location = found.location()
                self._open.body.append(line)
            return []

        severity = Severity.parse(found.groups["severity"] or "error")
        if (
            self._open is not None
            and severity in _SUBORDINATE
            and self._open.severity not in _SUBORDINATE
        ):
            # "note: ..." right under an error belongs to that error
            self._open.body.append(line)
            return []

        closed = self.close()
        self._open = _Open(
            header=line,
            severity=severity,
            summary=(found.groups.get("message") or "").strip(),
            code=found.groups.get("code"),
            location=found.location(),
            body=[],
        )
        return closed

    def close(self) -> list[DiagnosticRecord]:
        """Close the open diagnostic, if any."""
        current, self._open = self._open, None
        if current is None:
            return []
        return [
            DiagnosticRecord(
                instance_id=self.instance_id,
                ordinal=current.header.ordinal,
                severity=current.severity,
                summary=current.summary,
                location=current.location,
                code=current.code,
                lines=(current.header, *current.body),
            )
        ]
