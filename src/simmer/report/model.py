"""Report model: the shared state between the run pipeline and the UI.

This module provides:
- ReportModel: owner of the displayed report, read through snapshots
- ReportWriter: the single handle allowed to change authoritative fields
- ReportSnapshot: immutable, consistent view handed to the renderer
- ViewState: selection, scroll, filters and display toggles

Only the holder of the writer (the JobScheduler) can move the authoritative
instance id, append output or change the run state. Readers take snapshots
and never observe a half-applied update. View state is orthogonal and may be
changed directly on the model by the input side.

Example:
    ```python
    model = ReportModel()
    writer = model.writer()          # once, by the scheduler
    writer.begin(1)
    writer.mark_running(1)
    writer.accept(batch)             # dropped unless batch.instance_id == 1
    snapshot = model.snapshot()
    ```
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING

from simmer.errors import EXIT_FAILED, EXIT_OK, InvalidTransition
from simmer.executor.instance import RunState, TriggerReason, check_transition
from simmer.executor.supervisor import ExitOutcome
from simmer.logging import get_logger
from simmer.output.diagnostics import DiagnosticRecord, Severity
from simmer.output.lines import OutputLine

if TYPE_CHECKING:
    from simmer.executor.supervisor import ExitStatus
    from simmer.output.parser import ParsedBatch

__all__ = ["ReportModel", "ReportSnapshot", "ReportWriter", "ViewState"]

logger = get_logger("report.model")

Listener = Callable[[], None]


# =============================================================================
# Snapshot types
# =============================================================================


@dataclass(frozen=True)
class ViewState:
    """How the report is looked at. Never affects instance identity.

    Attributes:
        selected: Index into the visible diagnostics, or None.
        scroll: First body row shown.
        follow_selection: Scroll so that the selection stays on screen.
        hidden: Severities filtered out.
        raw_output: Show every output line instead of diagnostics.
        summary: Show diagnostic headers only.
        wrap: Wrap long lines instead of cropping them.
        help: Help overlay shown.
    """

    selected: int | None = None
    scroll: int = 0
    follow_selection: bool = True
    hidden: frozenset[Severity] = frozenset()
    raw_output: bool = False
    summary: bool = False
    wrap: bool = True
    help: bool = False


@dataclass(frozen=True)
class ReportSnapshot:
    """Consistent copy of the report at one revision."""

    revision: int
    instance_id: int
    state: RunState | None
    trigger: TriggerReason | None
    lines: tuple[OutputLine, ...]
    diagnostics: tuple[DiagnosticRecord, ...]
    view: ViewState
    started_at: float | None = None
    finished_at: float | None = None
    returncode: int | None = None
    changes_since_start: int = 0
    paused: bool = False
    backtrace: bool = False
    status: str | None = None
    watch_disabled: str | None = None
    last_outcome: RunState | None = None

    @property
    def counts(self) -> dict[Severity, int]:
        """Diagnostics per severity, filters ignored."""
        counts = dict.fromkeys(Severity, 0)
        for record in self.diagnostics:
            counts[record.severity] += 1
        return counts

    @property
    def visible_diagnostics(self) -> tuple[DiagnosticRecord, ...]:
        if not self.view.hidden:
            return self.diagnostics
        return tuple(d for d in self.diagnostics if d.severity not in self.view.hidden)

    @property
    def selected_diagnostic(self) -> DiagnosticRecord | None:
        visible = self.visible_diagnostics
        index = self.view.selected
        if index is None or not 0 <= index < len(visible):
            return None
        return visible[index]

    @property
    def elapsed(self) -> float | None:
        if self.started_at is None:
            return None
        return (self.finished_at or time.time()) - self.started_at

    @property
    def exit_code(self) -> int:
        """Process exit code derived from the last completed run."""
        return EXIT_FAILED if self.last_outcome is RunState.FAILED else EXIT_OK


@dataclass
class _Report:
    instance_id: int = 0
    state: RunState | None = None
    trigger: TriggerReason | None = None
    lines: list[OutputLine] = field(default_factory=list)
    diagnostics: list[DiagnosticRecord] = field(default_factory=list)
    started_at: float | None = None
    finished_at: float | None = None
    returncode: int | None = None
    changes_since_start: int = 0
    paused: bool = False
    backtrace: bool = False
    status: str | None = None
    watch_disabled: str | None = None
    last_outcome: RunState | None = None


# =============================================================================
# Model
# =============================================================================


class ReportModel:
    """Shared report state guarded by one lock.

    Mutations bump a revision and notify listeners after the lock is
    released, so a listener may take a snapshot right away.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._report = _Report()
        self._view = ViewState()
        self._revision = 0
        self._cached: ReportSnapshot | None = None
        self._listeners: list[Listener] = []
        self._writer: ReportWriter | None = None

    def writer(self) -> ReportWriter:
        """Issue the single writable handle.

        Raises:
            InvalidTransition: If a writer was already issued.
        """
        with self._lock:
            if self._writer is not None:
                raise InvalidTransition("report writer already issued")
            self._writer = ReportWriter(self)
            return self._writer

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def snapshot(self) -> ReportSnapshot:
        """Return the current state as an immutable snapshot."""
        with self._lock:
            if self._cached is None or self._cached.revision != self._revision:
                report = self._report
                self._cached = ReportSnapshot(
                    revision=self._revision,
                    instance_id=report.instance_id,
                    state=report.state,
                    trigger=report.trigger,
                    lines=tuple(report.lines),
                    diagnostics=tuple(report.diagnostics),
                    view=self._view,
                    started_at=report.started_at,
                    finished_at=report.finished_at,
                    returncode=report.returncode,
                    changes_since_start=report.changes_since_start,
                    paused=report.paused,
                    backtrace=report.backtrace,
                    status=report.status,
                    watch_disabled=report.watch_disabled,
                    last_outcome=report.last_outcome,
                )
            return self._cached

    def _mutate(self, apply: Callable[[_Report], bool | None]) -> bool:
        with self._lock:
            changed = apply(self._report) is not False
            if changed:
                self._revision += 1
        if changed:
            self._notify()
        return changed

    def _notify(self) -> None:
        for listener in self._listeners:
            listener()

    def _update_view(self, compute: Callable[[ViewState, int], ViewState]) -> ViewState:
        with self._lock:
            visible = len(self._visible(self._view.hidden))
            new = compute(self._view, visible)
            changed = new != self._view
            if changed:
                self._view = new
                self._revision += 1
        if changed:
            self._notify()
        return new

    def _visible(self, hidden: frozenset[Severity]) -> list[DiagnosticRecord]:
        return [d for d in self._report.diagnostics if d.severity not in hidden]

    # -------------------------------------------------------------------------
    # View state (safe for the input side)
    # -------------------------------------------------------------------------

    def select_next(self) -> ViewState:
        def compute(view: ViewState, visible: int) -> ViewState:
            if not visible:
                return replace(view, selected=None)
            index = 0 if view.selected is None else min(view.selected + 1, visible - 1)
            return replace(view, selected=index, follow_selection=True)

        return self._update_view(compute)

    def select_previous(self) -> ViewState:
        def compute(view: ViewState, visible: int) -> ViewState:
            if not visible:
                return replace(view, selected=None)
            index = 0 if view.selected is None else max(view.selected - 1, 0)
            return replace(view, selected=index, follow_selection=True)

        return self._update_view(compute)

    def scroll_to(self, offset: int) -> ViewState:
        """Scroll to a body row; the renderer clamps the upper bound."""
        return self._update_view(
            lambda view, _: replace(view, scroll=max(offset, 0), follow_selection=False)
        )

    def scroll_by(self, delta: int) -> ViewState:
        return self._update_view(
            lambda view, _: replace(view, scroll=max(view.scroll + delta, 0), follow_selection=False)
        )

    def toggle_severity(self, severity: Severity) -> ViewState:
        def compute(view: ViewState, _: int) -> ViewState:
            hidden = view.hidden ^ {severity}
            return self._clamped(replace(view, hidden=hidden))

        return self._update_view(compute)

    def clear_filters(self) -> ViewState:
        return self._update_view(lambda view, _: self._clamped(replace(view, hidden=frozenset())))

    def _clamped(self, view: ViewState) -> ViewState:
        # Called under the lock
        visible = len(self._visible(view.hidden))
        if view.selected is None:
            return view
        if not visible:
            return replace(view, selected=None)
        return replace(view, selected=min(view.selected, visible - 1))

    def toggle_raw_output(self) -> ViewState:
        return self._update_view(
            lambda view, _: replace(view, raw_output=not view.raw_output, scroll=0)
        )

    def toggle_summary(self) -> ViewState:
        return self._update_view(lambda view, _: replace(view, summary=not view.summary))

    def toggle_wrap(self) -> ViewState:
        return self._update_view(lambda view, _: replace(view, wrap=not view.wrap))

    def toggle_help(self) -> ViewState:
        return self._update_view(lambda view, _: replace(view, help=not view.help))

    def close_help(self) -> ViewState:
        return self._update_view(lambda view, _: replace(view, help=False))

    def set_status(self, message: str | None) -> None:
        """Show a transient message on the status line."""

        def apply(report: _Report) -> bool:
            if report.status == message:
                return False
            report.status = message
            return True

        self._mutate(apply)


# =============================================================================
# Writer
# =============================================================================


class ReportWriter:
    """Writable handle on a ReportModel. Obtained with ReportModel.writer()."""

    def __init__(self, model: ReportModel) -> None:
        self._model = model

    def begin(self, instance_id: int, trigger: TriggerReason | None = None) -> None:
        """Make an instance authoritative, clearing the previous report.

        Raises:
            InvalidTransition: If the id is not greater than the current one.
        """

        def apply(report: _Report) -> None:
            if instance_id <= report.instance_id:
                raise InvalidTransition(
                    f"instance {instance_id} is not newer than {report.instance_id}"
                )
            if report.state is not None and not report.state.is_terminal:
                raise InvalidTransition(
                    f"instance {report.instance_id} is still {report.state.value}"
                )
            report.instance_id = instance_id
            report.state = RunState.PENDING
            report.trigger = trigger
            report.lines = []
            report.diagnostics = []
            report.started_at = time.time()
            report.finished_at = None
            report.returncode = None
            report.changes_since_start = 0
            report.status = None

        self._model._mutate(apply)
        # Old selection and scroll point into the cleared report
        self._model._update_view(
            lambda view, _: replace(view, selected=None, scroll=0, follow_selection=True)
        )

    def mark_running(self, instance_id: int) -> None:
        def apply(report: _Report) -> bool:
            if instance_id != report.instance_id or report.state is None:
                return False
            check_transition(report.state, RunState.RUNNING)
            report.state = RunState.RUNNING
            return True

        self._model._mutate(apply)

    def accept(self, batch: ParsedBatch) -> bool:
        """Append a parsed batch if it belongs to the live authoritative instance.

        Returns:
            False if the batch was dropped as stale.
        """
        if not batch:
            return True

        def apply(report: _Report) -> bool:
            if batch.instance_id != report.instance_id:
                return False
            if report.state is None or report.state.is_terminal:
                return False
            report.lines.extend(batch.lines)
            report.diagnostics.extend(batch.diagnostics)
            return True

        accepted = self._model._mutate(apply)
        if not accepted:
            logger.debug(f"dropped stale output of instance {batch.instance_id}")
        return accepted

    def spawn_failed(self, instance_id: int, message: str) -> None:
        """Fail an instance whose process never started."""
        record = DiagnosticRecord.synthetic_error(instance_id, message)

        def apply(report: _Report) -> bool:
            if instance_id != report.instance_id or report.state is None:
                return False
            check_transition(report.state, RunState.FAILED)
            report.state = RunState.FAILED
            report.lines.extend(record.lines)
            report.diagnostics.append(record)
            report.finished_at = time.time()
            report.last_outcome = RunState.FAILED
            return True

        self._model._mutate(apply)

    def mark_cancelled(self, instance_id: int) -> bool:
        """Record a cancellation. Output of the instance is refused from now on."""

        def apply(report: _Report) -> bool:
            if instance_id != report.instance_id or report.state is None:
                return False
            if report.state.is_terminal:
                return False
            report.state = RunState.CANCELLED
            report.finished_at = time.time()
            return True

        return self._model._mutate(apply)

    def complete(self, status: ExitStatus) -> RunState:
        """Record the exit of an instance's process.

        Returns:
            The terminal state of the instance: FAILED on a nonzero exit or
            when error diagnostics were found, CANCELLED when the process was
            killed or the instance is no longer authoritative.
        """
        result = RunState.CANCELLED

        def apply(report: _Report) -> bool:
            nonlocal result
            if status.instance_id != report.instance_id or report.state is None:
                return False
            if report.state.is_terminal:
                result = report.state
                return False
            if status.outcome is ExitOutcome.KILLED:
                result = RunState.CANCELLED
            elif status.returncode != 0 or any(
                d.severity is Severity.ERROR for d in report.diagnostics
            ):
                result = RunState.FAILED
            else:
                result = RunState.SUCCEEDED
            check_transition(report.state, result)
            report.state = result
            report.returncode = status.returncode
            report.finished_at = time.time()
            if result is not RunState.CANCELLED:
                report.last_outcome = result
            return True

        self._model._mutate(apply)
        return result

    def clear(self) -> None:
        """Drop the displayed output and diagnostics, keeping the instance id."""

        def apply(report: _Report) -> None:
            report.lines = []
            report.diagnostics = []

        self._model._mutate(apply)
        self._model._update_view(lambda view, _: replace(view, selected=None, scroll=0))

    def note_change(self, count: int = 1) -> None:
        """Count file change events against the current instance."""

        def apply(report: _Report) -> None:
            report.changes_since_start += count

        self._model._mutate(apply)

    def set_paused(self, paused: bool) -> None:
        def apply(report: _Report) -> bool:
            changed = report.paused != paused
            report.paused = paused
            return changed

        self._model._mutate(apply)

    def set_backtrace(self, enabled: bool) -> None:
        def apply(report: _Report) -> None:
            report.backtrace = enabled

        self._model._mutate(apply)

    def set_watch_disabled(self, reason: str) -> None:
        """Flag degraded mode: files are no longer watched."""

        def apply(report: _Report) -> None:
            report.watch_disabled = reason

        self._model._mutate(apply)
