"""Incremental output parser for one run instance.

Combines per-stream escape decoding with diagnostic extraction. Every batch
it returns is stamped with the instance id it was created for; whether that
instance is still current is decided downstream, so the parser knows nothing
about scheduling.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from simmer.output.ansi import AnsiDecoder
from simmer.output.diagnostics import (
    DEFAULT_PATTERNS,
    DiagnosticExtractor,
    DiagnosticRecord,
    LinePattern,
)
from simmer.output.lines import OutputLine, Stream, StyledSpan

__all__ = ["OutputParser", "ParsedBatch"]


@dataclass(frozen=True)
class ParsedBatch:
    """Lines and diagnostics produced by one feed/finish call."""

    instance_id: int
    lines: tuple[OutputLine, ...] = ()
    diagnostics: tuple[DiagnosticRecord, ...] = ()

    def __bool__(self) -> bool:
        return bool(self.lines or self.diagnostics)


class OutputParser:
    """Stateful parser fed with raw chunks of a running command's output.

    Each stream gets its own decoder because a chunk boundary on stdout says
    nothing about stderr; complete lines from both streams share one ordinal
    counter and one extractor, in arrival order.
    """

    def __init__(
        self,
        instance_id: int,
        patterns: Sequence[LinePattern] = DEFAULT_PATTERNS,
    ) -> None:
        self.instance_id = instance_id
        self._decoders = {stream: AnsiDecoder() for stream in Stream}
        self._extractor = DiagnosticExtractor(instance_id, patterns)
        self._next_ordinal = 0
        self._finished = False

    def feed(self, data: bytes, stream: Stream = Stream.STDERR) -> ParsedBatch:
        """Parse one chunk.

        Args:
            data: Bytes as read from the pipe.
            stream: Stream they came from.

        Returns:
            Lines completed by the chunk and diagnostics closed by them.
        """
        if self._finished:
            raise RuntimeError("parser already finished")
        return self._collect(stream, self._decoders[stream].feed(data))

    def finish(self) -> ParsedBatch:
        """Flush partial lines of both streams and close the open diagnostic."""
        if self._finished:
            return ParsedBatch(self.instance_id)
        self._finished = True
        lines: list[OutputLine] = []
        diagnostics: list[DiagnosticRecord] = []
        for stream, decoder in self._decoders.items():
            batch = self._collect(stream, decoder.finish())
            lines.extend(batch.lines)
            diagnostics.extend(batch.diagnostics)
        diagnostics.extend(self._extractor.close())
        return ParsedBatch(self.instance_id, tuple(lines), tuple(diagnostics))

    def _collect(
        self,
        stream: Stream,
        decoded: list[tuple[StyledSpan, ...]],
    ) -> ParsedBatch:
        lines: list[OutputLine] = []
        diagnostics: list[DiagnosticRecord] = []
        for spans in decoded:
            line = OutputLine(
                instance_id=self.instance_id,
                ordinal=self._next_ordinal,
                stream=stream,
                spans=spans,
            )
            self._next_ordinal += 1
            lines.append(line)
            diagnostics.extend(self._extractor.push(line))
        return ParsedBatch(self.instance_id, tuple(lines), tuple(diagnostics))
