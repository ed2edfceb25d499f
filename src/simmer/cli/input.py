"""Input dispatcher: key chords to actions.

Navigation, filters and display toggles change view state on the report
model directly. Anything touching runs (rerun, refresh, pause, backtrace) is
delegated to the JobScheduler, which alone changes the authoritative report.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING

from simmer.cli.keys import Action, KeyBindings
from simmer.logging import get_logger
from simmer.output.diagnostics import Severity

if TYPE_CHECKING:
    from simmer.cli.renderer import FrameLayout
    from simmer.executor.scheduler import JobScheduler
    from simmer.report.model import ReportModel

__all__ = ["InputDispatcher"]

logger = get_logger("cli.input")

_SEVERITY_FILTERS = {
    Action.TOGGLE_ERRORS: Severity.ERROR,
    Action.TOGGLE_WARNINGS: Severity.WARNING,
    Action.TOGGLE_NOTES: Severity.NOTE,
    Action.TOGGLE_HELP_DIAGNOSTICS: Severity.HELP,
}


class InputDispatcher:
    """Maps chords to actions and carries them out.

    Args:
        bindings: Chord table.
        model: Report model (view state only).
        scheduler: Receives run requests.
        on_quit: Called when the user asks to leave.
        layout: Returns the layout of the last drawn frame, for paging.
    """

    def __init__(
        self,
        bindings: KeyBindings,
        model: ReportModel,
        scheduler: JobScheduler,
        *,
        on_quit: Callable[[], None],
        layout: Callable[[], FrameLayout],
    ) -> None:
        self.bindings = bindings
        self.model = model
        self.scheduler = scheduler
        self._on_quit = on_quit
        self._layout = layout

    def dispatch(self, chord: str) -> Action | None:
        """Handle one chord. Unbound chords are ignored.

        Returns:
            The action performed, if any.
        """
        action = self.bindings.action_for(chord)
        if action is None:
            logger.debug(f"no binding for {chord!r}")
            return None
        self.perform(action)
        return action

    def perform(self, action: Action) -> None:
        model, scheduler = self.model, self.scheduler

        if action is Action.QUIT:
            self._on_quit()
        elif action is Action.RERUN:
            scheduler.rerun()
        elif action is Action.REFRESH:
            scheduler.refresh()
        elif action is Action.TOGGLE_PAUSE:
            scheduler.toggle_pause()
        elif action is Action.TOGGLE_BACKTRACE:
            scheduler.toggle_backtrace()
        elif action is Action.TOGGLE_SUMMARY:
            model.toggle_summary()
        elif action is Action.TOGGLE_WRAP:
            model.toggle_wrap()
        elif action is Action.TOGGLE_RAW_OUTPUT:
            model.toggle_raw_output()
        elif action is Action.TOGGLE_HELP:
            model.toggle_help()
        elif action is Action.CLOSE_HELP:
            model.close_help()
        elif action is Action.NEXT_DIAGNOSTIC:
            model.select_next()
        elif action is Action.PREVIOUS_DIAGNOSTIC:
            model.select_previous()
        elif action is Action.CLEAR_FILTERS:
            model.clear_filters()
        elif action in _SEVERITY_FILTERS:
            model.toggle_severity(_SEVERITY_FILTERS[action])
        else:
            self._scroll(action)

    def _scroll(self, action: Action) -> None:
        layout = self._layout()
        page = max(layout.page_height - 1, 1)
        targets = {
            Action.SCROLL_UP: layout.offset - 1,
            Action.SCROLL_DOWN: layout.offset + 1,
            Action.PAGE_UP: layout.offset - page,
            Action.PAGE_DOWN: layout.offset + page,
            Action.SCROLL_TOP: 0,
            Action.SCROLL_BOTTOM: layout.max_offset,
        }
        target = targets[action]
        self.model.scroll_to(min(max(target, 0), layout.max_offset))
