"""Tests for report rendering."""

from __future__ import annotations

import pytest
from rich.console import Console, RenderableType

from simmer.cli.console import SIMMER_THEME
from simmer.cli.keys import KeyBindings
from simmer.cli.renderer import FrameLayout, TerminalRenderer, render_report
from simmer.config import make_job
from simmer.errors import RenderError
from simmer.executor.supervisor import ExitOutcome, ExitStatus
from simmer.output.diagnostics import DiagnosticRecord, Location, Severity
from simmer.output.lines import OutputLine, Stream, StyledSpan
from simmer.output.parser import OutputParser, ParsedBatch
from simmer.report.model import ReportModel, ReportWriter

SAMPLE = b"""\
error[E0308]: mismatched types
 --> a.ext:3:5

warning: unused variable
 --> b.ext:10
"""

JOB = make_job(name="demo", command=("cargo", "check"))


def _console(width: int = 80, height: int = 24) -> Console:
    return Console(record=True, width=width, height=height, theme=SIMMER_THEME, color_system=None)


def _model(data: bytes = SAMPLE, returncode: int = 1) -> tuple[ReportModel, ReportWriter]:
    model = ReportModel()
    writer = model.writer()
    writer.begin(1)
    writer.mark_running(1)
    parser = OutputParser(1)
    writer.accept(parser.feed(data))
    writer.accept(parser.finish())
    outcome = ExitOutcome.SUCCESS if returncode == 0 else ExitOutcome.FAILURE
    writer.complete(ExitStatus(1, outcome, returncode))
    return model, writer


def _many(count: int, instance_id: int = 1) -> ParsedBatch:
    records = []
    lines = []
    for i in range(count):
        header = OutputLine(instance_id, 2 * i, Stream.STDERR, (StyledSpan(f"warning: number {i}"),))
        body = OutputLine(instance_id, 2 * i + 1, Stream.STDERR, (StyledSpan(f" --> f{i}.c:{i + 1}"),))
        lines.extend((header, body))
        records.append(
            DiagnosticRecord(
                instance_id,
                2 * i,
                Severity.WARNING,
                f"number {i}",
                location=Location(f"f{i}.c", i + 1),
                lines=(header, body),
            )
        )
    return ParsedBatch(instance_id, tuple(lines), tuple(records))


class RecordingLive:
    """Stands in for rich.live.Live; keeps the frames it is given."""

    def __init__(self, fail: bool = False) -> None:
        self.frames: list[RenderableType] = []
        self.fail = fail

    def update(self, renderable: RenderableType, *, refresh: bool = False) -> None:
        if self.fail:
            raise OSError("terminal busy")
        self.frames.append(renderable)


def _draw(renderer: TerminalRenderer) -> str:
    console = renderer.console
    console.print(renderer.frame())
    return console.export_text()


class TestFrameLayout:
    """Tests for FrameLayout class."""

    def test_max_offset(self) -> None:
        """Test the last scroll position."""
        assert FrameLayout(total_rows=50, page_height=20).max_offset == 30
        assert FrameLayout(total_rows=5, page_height=20).max_offset == 0


class TestTerminalRenderer:
    """Tests for TerminalRenderer class."""

    def test_frame_shows_diagnostics(self) -> None:
        """Test header counts, state and diagnostic text."""
        model, _ = _model()
        renderer = TerminalRenderer(model, JOB, KeyBindings(), console=_console())

        text = _draw(renderer)

        assert "simmer" in text
        assert "demo" in text
        assert "failed #1" in text
        assert "E1" in text and "W1" in text
        assert "mismatched types" in text
        assert "unused variable" in text
        assert "[q] quit" in text

    def test_frame_fits_screen(self) -> None:
        """Test that a frame is exactly one screen tall."""
        model, _ = _model()
        renderer = TerminalRenderer(model, JOB, KeyBindings(), console=_console(height=12))

        view = renderer.frame()

        assert view.layout.page_height == 10
        assert len(_draw(renderer).splitlines()) == 12

    def test_raw_output_without_diagnostics(self) -> None:
        """Test that plain output is shown when nothing was recognized."""
        model, _ = _model(b"Finished dev profile\n", returncode=0)
        renderer = TerminalRenderer(model, JOB, KeyBindings(), console=_console())

        text = _draw(renderer)

        assert "Finished dev profile" in text
        assert "succeeded" in text

    def test_summary_mode(self) -> None:
        """Test that summary mode shows headers only."""
        model, _ = _model()
        model.toggle_summary()
        renderer = TerminalRenderer(model, JOB, KeyBindings(), console=_console())

        rows = [row.plain for row in renderer.frame().rows]

        assert len(rows) == 2
        assert "a.ext" not in "".join(rows)

    def test_hidden_severity(self) -> None:
        """Test that filtered diagnostics are not drawn."""
        model, _ = _model()
        model.toggle_severity(Severity.WARNING)
        renderer = TerminalRenderer(model, JOB, KeyBindings(), console=_console())

        rows = "".join(row.plain for row in renderer.frame().rows)

        assert "mismatched types" in rows
        assert "unused variable" not in rows

    def test_selection_marker(self) -> None:
        """Test that the selected diagnostic is marked."""
        model, _ = _model()
        model.select_next()
        model.select_next()
        renderer = TerminalRenderer(model, JOB, KeyBindings(), console=_console())

        rows = [row.plain for row in renderer.frame().rows]
        marked = [row for row in rows if row and not row.startswith("  ")]

        assert len(marked) == 1
        assert "unused variable" in marked[0]

    def test_selection_followed(self) -> None:
        """Test that the selected diagnostic is scrolled into view."""
        model = ReportModel()
        writer = model.writer()
        writer.begin(1)
        writer.mark_running(1)
        writer.accept(_many(30))
        for _ in range(21):
            model.select_next()
        renderer = TerminalRenderer(model, JOB, KeyBindings(), console=_console())

        layout = renderer.frame().layout

        top = 20 * 3
        assert layout.offset <= top
        assert top + 2 <= layout.offset + layout.page_height

    def test_scroll_clamped(self) -> None:
        """Test that a scroll offset past the end is clamped."""
        model = ReportModel()
        writer = model.writer()
        writer.begin(1)
        writer.mark_running(1)
        writer.accept(_many(30))
        model.scroll_to(10_000)
        renderer = TerminalRenderer(model, JOB, KeyBindings(), console=_console())

        layout = renderer.frame().layout

        assert layout.offset == layout.max_offset
        assert layout.total_rows == 30 * 3 - 1

    def test_stale_snapshot_ignored(self) -> None:
        """Test that a frame never goes back to an older instance."""
        model, writer = _model()
        old = model.snapshot()
        writer.begin(2)
        writer.mark_running(2)
        renderer = TerminalRenderer(model, JOB, KeyBindings(), console=_console())
        renderer.frame()

        view = renderer.frame(old)

        assert "mismatched types" not in "".join(row.plain for row in view.rows)
        assert "#2" in view.header.plain

    def test_help_overlay(self) -> None:
        """Test that the help overlay lists the bindings."""
        model, _ = _model()
        model.toggle_help()
        renderer = TerminalRenderer(model, JOB, KeyBindings(), console=_console(width=120, height=40))

        text = _draw(renderer)

        assert "KEYS" in text
        assert "Run the job again" in text

    def test_status_and_degraded_footer(self) -> None:
        """Test the footer when watching stopped."""
        model, writer = _model()
        writer.set_watch_disabled("root removed")
        writer.set_paused(True)
        renderer = TerminalRenderer(model, JOB, KeyBindings(), console=_console(width=120))

        view = renderer.frame()

        assert "not watching: root removed" in view.footer.plain
        assert "PAUSED" in view.header.plain

    def test_resize_redraws_with_new_layout(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that a resize clears the screen and lays the frame out for the new size."""
        model, _ = _model()
        renderer = TerminalRenderer(model, JOB, KeyBindings(), console=_console(height=24))
        clears: list[int] = []
        monkeypatch.setattr(renderer.console, "clear", lambda *a, **k: clears.append(1))
        live = RecordingLive()

        renderer.draw(live)  # type: ignore[arg-type]
        renderer.console.size = (80, 12)
        renderer._dirty.clear()
        renderer.request_full_redraw()
        assert renderer._dirty.is_set()
        renderer.draw(live)  # type: ignore[arg-type]
        renderer.draw(live)  # type: ignore[arg-type]

        assert clears == [1]
        assert [frame.layout.page_height for frame in live.frames] == [22, 10, 10]
        assert renderer.frames_drawn == 3

    def test_failed_draw_retried_with_full_redraw(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that a rejected frame is a RenderError and the next draw starts clean."""
        model, _ = _model()
        renderer = TerminalRenderer(model, JOB, KeyBindings(), console=_console())
        clears: list[int] = []
        monkeypatch.setattr(renderer.console, "clear", lambda *a, **k: clears.append(1))

        with pytest.raises(RenderError):
            renderer.draw(RecordingLive(fail=True))  # type: ignore[arg-type]
        live = RecordingLive()
        renderer.draw(live)  # type: ignore[arg-type]

        assert clears == [1]
        assert len(live.frames) == 1

    def test_notify_marks_dirty(self) -> None:
        """Test that model changes wake the renderer."""
        model, _ = _model()
        renderer = TerminalRenderer(model, JOB, KeyBindings(), console=_console())
        renderer._dirty.clear()

        model.toggle_wrap()

        assert renderer._dirty.is_set()


class TestRenderReport:
    """Tests for render_report function."""

    def test_plain_report(self) -> None:
        """Test the headless report."""
        model, _ = _model()
        console = _console(width=100)

        render_report(model.snapshot(), JOB, console)
        text = console.export_text()

        assert "error[E0308]: mismatched types" in text
        assert " --> a.ext:3:5" in text
        assert "failed" in text
        assert "E1" in text
