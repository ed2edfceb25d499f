"""Decoding of command output into styled lines and diagnostics."""

from simmer.output.ansi import AnsiDecoder, apply_sgr
from simmer.output.diagnostics import (
    DEFAULT_PATTERNS,
    DiagnosticExtractor,
    DiagnosticRecord,
    LineKind,
    LinePattern,
    Location,
    Severity,
    classify,
)
from simmer.output.lines import OutputLine, Stream, Style, StyledSpan
from simmer.output.parser import OutputParser, ParsedBatch

__all__ = [
    "DEFAULT_PATTERNS",
    "AnsiDecoder",
    "DiagnosticExtractor",
    "DiagnosticRecord",
    "LineKind",
    "LinePattern",
    "Location",
    "OutputLine",
    "OutputParser",
    "ParsedBatch",
    "Severity",
    "Stream",
    "Style",
    "StyledSpan",
    "apply_sgr",
    "classify",
]
