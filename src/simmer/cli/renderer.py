"""Full-screen report rendering.

This module provides:
- ReportView: rich renderable drawing one frame (header, body, footer)
- FrameLayout: geometry of the last drawn frame, used for paging
- TerminalRenderer: redraws the latest snapshot on change or on a tick
- render_report(): plain, non-interactive report for ``--once`` runs

Every frame is built from a fresh ReportSnapshot; nothing is patched in
place, since a cancellation may clear the diagnostics at any time. Frames
never show diagnostics stamped with an instance id older than the newest id
the renderer has seen.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import TYPE_CHECKING

from rich.box import ROUNDED
from rich.console import Console, ConsoleOptions, RenderResult
from rich.errors import ConsoleError
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from simmer.cli.console import (
    format_duration,
    get_console,
    severity_style,
    state_style,
    supports_unicode,
)
from simmer.cli.keys import Action
from simmer.errors import RenderError
from simmer.logging import get_logger
from simmer.output.diagnostics import DiagnosticRecord, Severity

if TYPE_CHECKING:
    from simmer.cli.keys import KeyBindings
    from simmer.config import Job
    from simmer.report.model import ReportModel, ReportSnapshot

__all__ = ["FrameLayout", "ReportView", "TerminalRenderer", "render_report"]

logger = get_logger("cli.renderer")

HEADER_ROWS = 1
FOOTER_ROWS = 1

_SEVERITY_LETTERS = {
    Severity.ERROR: "E",
    Severity.WARNING: "W",
    Severity.NOTE: "N",
    Severity.HELP: "H",
}

ACTION_DESCRIPTIONS: dict[Action, str] = {
    Action.QUIT: "Quit simmer",
    Action.RERUN: "Run the job again",
    Action.REFRESH: "Clear the report and run again",
    Action.TOGGLE_PAUSE: "Pause or resume runs on file changes",
    Action.TOGGLE_SUMMARY: "Show only diagnostic headers",
    Action.TOGGLE_WRAP: "Wrap or crop long lines",
    Action.TOGGLE_RAW_OUTPUT: "Show every output line",
    Action.TOGGLE_BACKTRACE: "Run again with backtraces on or off",
    Action.TOGGLE_HELP: "Show this help",
    Action.CLOSE_HELP: "Close this help",
    Action.NEXT_DIAGNOSTIC: "Select the next diagnostic",
    Action.PREVIOUS_DIAGNOSTIC: "Select the previous diagnostic",
    Action.SCROLL_UP: "Scroll up one line",
    Action.SCROLL_DOWN: "Scroll down one line",
    Action.PAGE_UP: "Scroll up one page",
    Action.PAGE_DOWN: "Scroll down one page",
    Action.SCROLL_TOP: "Go to the top",
    Action.SCROLL_BOTTOM: "Go to the bottom",
    Action.TOGGLE_ERRORS: "Hide or show errors",
    Action.TOGGLE_WARNINGS: "Hide or show warnings",
    Action.TOGGLE_NOTES: "Hide or show notes",
    Action.TOGGLE_HELP_DIAGNOSTICS: "Hide or show help messages",
    Action.CLEAR_FILTERS: "Show every severity",
}

_FOOTER_HINTS = (
    Action.QUIT,
    Action.RERUN,
    Action.TOGGLE_PAUSE,
    Action.TOGGLE_SUMMARY,
    Action.TOGGLE_RAW_OUTPUT,
    Action.TOGGLE_HELP,
)


@dataclass(frozen=True)
class FrameLayout:
    """Geometry of a drawn frame.

    Attributes:
        offset: First body row shown.
        total_rows: Body rows available for the current report.
        page_height: Body rows that fit on screen.
    """

    offset: int = 0
    total_rows: int = 0
    page_height: int = 1

    @property
    def max_offset(self) -> int:
        return max(self.total_rows - self.page_height, 0)


# =============================================================================
# Frame building
# =============================================================================


def _counts_text(snapshot: ReportSnapshot, diagnostics: tuple[DiagnosticRecord, ...]) -> Text:
    counts = dict.fromkeys(Severity, 0)
    for record in diagnostics:
        counts[record.severity] += 1
    text = Text()
    for severity in Severity:
        if not counts[severity]:
            continue
        if text:
            text.append(" ")
        style = severity_style(severity)
        if severity in snapshot.view.hidden:
            style = "muted"
        text.append(f"{_SEVERITY_LETTERS[severity]}{counts[severity]}", style=style)
    return text


def build_header(
    snapshot: ReportSnapshot,
    job: Job,
    diagnostics: tuple[DiagnosticRecord, ...],
) -> Text:
    text = Text(no_wrap=True, overflow="ellipsis")
    text.append(" simmer ", style="accent.bold")
    text.append(job.name, style="header.job")
    text.append("  ")
    text.append(job.describe(), style="muted")
    text.append("  ")

    state = snapshot.state
    text.append(state.value if state is not None else "idle", style=state_style(state))
    if snapshot.instance_id:
        text.append(f" #{snapshot.instance_id}", style="muted")
    elapsed = snapshot.elapsed
    if elapsed is not None:
        text.append(f" {format_duration(elapsed)}", style="muted")

    counts = _counts_text(snapshot, diagnostics)
    if counts:
        text.append("  ")
        text.append_text(counts)
    if snapshot.changes_since_start:
        text.append(f"  {snapshot.changes_since_start} change(s) since start", style="warning")
    if snapshot.paused:
        text.append("  ")
        text.append(" PAUSED ", style="paused")
    if snapshot.backtrace:
        text.append("  backtrace", style="accent")
    return text


def build_footer(snapshot: ReportSnapshot, bindings: KeyBindings) -> Text:
    text = Text(no_wrap=True, overflow="ellipsis")
    if snapshot.watch_disabled:
        text.append(f" not watching: {snapshot.watch_disabled} ", style="status.degraded")
        text.append("  ")
    if snapshot.status:
        text.append(snapshot.status, style="status")
        return text

    for action in _FOOTER_HINTS:
        keys = bindings.keys_for(action)
        if not keys:
            continue
        if len(text):
            text.append("  ")
        text.append("[", style="footer")
        text.append(keys[0], style="footer.key")
        text.append("] ", style="footer")
        text.append(action.value.replace("toggle_", "").replace("_", " "), style="footer")
    return text


def render_help(bindings: KeyBindings) -> Panel:
    """Help overlay listing every bound key."""
    table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
    table.add_column("Key", style="footer.key")
    table.add_column("Action", style="white")
    table.add_column("Description", style="dim")
    for action in Action:
        keys = bindings.keys_for(action)
        if keys:
            table.add_row(", ".join(keys), action.value, ACTION_DESCRIPTIONS[action])
    return Panel(
        table,
        title="[bold]KEYS[/]",
        title_align="left",
        border_style="accent",
        box=ROUNDED,
        padding=(0, 1),
    )


def _diagnostic_texts(
    record: DiagnosticRecord,
    *,
    summary: bool,
) -> list[Text]:
    header = record.lines[0].to_text() if record.lines else Text(record.summary)
    spans = record.lines[0].spans if record.lines else ()
    if all(span.style.is_plain for span in spans):
        # Uncolored tool output: color the severity word ourselves
        start = header.plain.find(record.severity.value)
        if start >= 0:
            header.stylize(severity_style(record.severity), start, start + len(record.severity.value))
    if summary:
        return [header]
    return [header, *(line.to_text() for line in record.lines[1:])]


def build_body(
    snapshot: ReportSnapshot,
    diagnostics: tuple[DiagnosticRecord, ...],
    console: Console,
    width: int,
    *,
    marker: str = "> ",
) -> tuple[list[Text], tuple[int, int] | None]:
    """Lay out the report body as physical rows.

    Returns:
        The rows and the (first, last + 1) row range of the selected
        diagnostic, if one is selected and visible.
    """
    view = snapshot.view
    rows: list[Text] = []

    def add(text: Text, prefix: str = "", prefix_style: str = "") -> None:
        line = text
        if prefix:
            line = Text()
            line.append(prefix, style=prefix_style or None)
            line.append_text(text)
        rows.extend(line.wrap(console, width, no_wrap=not view.wrap, overflow="crop"))

    if view.raw_output or not diagnostics:
        lines = [line for line in snapshot.lines if line.instance_id >= snapshot.instance_id]
        for line in lines:
            add(line.to_text())
        return rows, None

    visible = tuple(d for d in diagnostics if d.severity not in view.hidden)
    selected_range: tuple[int, int] | None = None
    pad = " " * len(marker)
    for index, record in enumerate(visible):
        first = len(rows)
        is_selected = index == view.selected
        texts = _diagnostic_texts(record, summary=view.summary)
        add(texts[0], marker if is_selected else pad, "accent.bold")
        if is_selected:
            rows[first].stylize("selected", len(marker))
        for text in texts[1:]:
            add(text, pad)
        if is_selected:
            selected_range = (first, len(rows))
        if not view.summary:
            rows.append(Text())
    if rows and not rows[-1].plain:
        rows.pop()
    return rows, selected_range


class ReportView:
    """One full-screen frame of the report."""

    def __init__(
        self,
        header: Text,
        rows: list[Text],
        footer: Text,
        layout: FrameLayout,
        help_panel: Panel | None = None,
    ) -> None:
        self.header = header
        self.rows = rows
        self.footer = footer
        self.layout = layout
        self.help_panel = help_panel

    def __rich_console__(self, console: Console, options: ConsoleOptions) -> RenderResult:
        yield self.header
        if self.help_panel is not None:
            yield self.help_panel
            return
        start = self.layout.offset
        shown = self.rows[start : start + self.layout.page_height]
        yield from shown
        # Pad so the footer stays on the last row
        for _ in range(self.layout.page_height - len(shown)):
            yield Text()
        yield self.footer


# =============================================================================
# Renderer
# =============================================================================


class TerminalRenderer:
    """Draws the report in the alternate screen.

    Args:
        model: Report model to read snapshots from.
        job: Job shown in the header.
        bindings: Key bindings, for the footer and the help overlay.
        console: Console to draw on.
        tick: Seconds between redraws when nothing changes.
    """

    def __init__(
        self,
        model: ReportModel,
        job: Job,
        bindings: KeyBindings,
        *,
        console: Console | None = None,
        tick: float = 0.25,
    ) -> None:
        self.model = model
        self.job = job
        self.bindings = bindings
        self.console = console or get_console()
        self.tick = tick
        self._dirty = asyncio.Event()
        self._full_redraw = False
        self._last_seen_id = 0
        self._last_offset = 0
        self._layout = FrameLayout(page_height=self._page_height())
        self.frames_drawn = 0
        model.add_listener(self.notify)

    @property
    def layout(self) -> FrameLayout:
        """Layout of the last frame built."""
        return self._layout

    def notify(self) -> None:
        """Schedule a redraw (model listener)."""
        self._dirty.set()

    def request_full_redraw(self) -> None:
        """Recompute the layout from scratch (e.g., after a resize)."""
        self._full_redraw = True
        self._dirty.set()

    def _page_height(self) -> int:
        return max(self.console.size.height - HEADER_ROWS - FOOTER_ROWS, 1)

    def frame(self, snapshot: ReportSnapshot | None = None) -> ReportView:
        """Build the frame for a snapshot (the model's current one by default)."""
        snapshot = snapshot or self.model.snapshot()
        if snapshot.instance_id < self._last_seen_id:
            logger.debug(f"ignoring stale snapshot of instance {snapshot.instance_id}")
            snapshot = self.model.snapshot()
        self._last_seen_id = max(self._last_seen_id, snapshot.instance_id)
        diagnostics = tuple(
            d for d in snapshot.diagnostics if d.instance_id >= self._last_seen_id
        )

        width = self.console.size.width
        page = self._page_height()
        marker = "▶ " if supports_unicode() else "> "
        rows, selected = build_body(snapshot, diagnostics, self.console, width, marker=marker)

        offset = snapshot.view.scroll
        if snapshot.view.follow_selection:
            offset = self._last_offset
            if selected is not None:
                top, bottom = selected
                if top < offset:
                    offset = top
                elif bottom > offset + page:
                    offset = bottom - page if bottom - top <= page else top
        max_offset = max(len(rows) - page, 0)
        layout = FrameLayout(
            offset=min(max(offset, 0), max_offset), total_rows=len(rows), page_height=page
        )
        self._layout = layout
        self._last_offset = layout.offset

        return ReportView(
            header=build_header(snapshot, self.job, diagnostics),
            rows=rows,
            footer=build_footer(snapshot, self.bindings),
            layout=layout,
            help_panel=render_help(self.bindings) if snapshot.view.help else None,
        )

    def draw(self, live: Live) -> None:
        """Draw one frame.

        Raises:
            RenderError: If the terminal rejected the frame.
        """
        try:
            if self._full_redraw:
                self._full_redraw = False
                self.console.clear()
            live.update(self.frame(), refresh=True)
        except (OSError, ConsoleError) as e:
            self._full_redraw = True
            raise RenderError(f"failed to draw frame: {e}") from e
        self.frames_drawn += 1

    async def run(self) -> None:
        """Redraw until cancelled."""
        with Live(
            console=self.console,
            screen=True,
            auto_refresh=False,
            redirect_stdout=False,
            redirect_stderr=False,
        ) as live:
            while True:
                try:
                    self.draw(live)
                except RenderError as e:
                    logger.warning(f"{e}; retrying on next tick")
                self._dirty.clear()
                try:
                    await asyncio.wait_for(self._dirty.wait(), timeout=self.tick)
                except asyncio.TimeoutError:
                    pass


# =============================================================================
# Headless report
# =============================================================================


def render_report(snapshot: ReportSnapshot, job: Job, console: Console) -> None:
    """Print a finished report as plain scrolling output."""
    diagnostics = snapshot.diagnostics
    width = console.size.width
    rows, _ = build_body(snapshot, diagnostics, console, width, marker="")
    for row in rows:
        console.print(row)
    console.print()
    summary = build_header(snapshot, job, diagnostics)
    console.print(summary)
