"""Run instances and their lifecycle.

States:

    PENDING --> RUNNING --> SUCCEEDED
       |           |------> FAILED
       |           '------> CANCELLED
       |------------------> FAILED     (spawn failure)
       '------------------> CANCELLED  (superseded before the process started)

Terminal states are final. Only the JobScheduler creates instances and moves
them between states.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

from simmer.errors import InvalidTransition

if TYPE_CHECKING:
    from simmer.config import Job

__all__ = ["RunInstance", "RunState", "Trigger", "TriggerReason"]


class RunState(str, Enum):
    """Lifecycle state of a run instance."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL


_TERMINAL = frozenset({RunState.SUCCEEDED, RunState.FAILED, RunState.CANCELLED})

_ALLOWED: dict[RunState, frozenset[RunState]] = {
    RunState.PENDING: frozenset({RunState.RUNNING, RunState.FAILED, RunState.CANCELLED}),
    RunState.RUNNING: _TERMINAL,
    RunState.SUCCEEDED: frozenset(),
    RunState.FAILED: frozenset(),
    RunState.CANCELLED: frozenset(),
}


def check_transition(current: RunState, new: RunState) -> None:
    """Raise InvalidTransition unless current -> new is allowed."""
    if new not in _ALLOWED[current]:
        raise InvalidTransition(f"cannot go from {current.value} to {new.value}")


class TriggerReason(str, Enum):
    """Why a run was requested."""

    INITIAL = "initial"
    CHANGE = "change"
    MANUAL = "manual"


@dataclass(frozen=True)
class Trigger:
    """A coalesced "recompute is warranted" signal.

    Attributes:
        reason: What asked for the run.
        paths: Changed paths, for change triggers.
        rescan: The watcher lost events and asks for a full recompute.
        events: Number of change events coalesced into the trigger.
        at: Monotonic time the trigger was emitted.
    """

    reason: TriggerReason
    paths: tuple[Path, ...] = ()
    rescan: bool = False
    events: int = 1
    at: float = field(default_factory=time.monotonic)

    @classmethod
    def initial(cls) -> Trigger:
        return cls(TriggerReason.INITIAL)

    @classmethod
    def manual(cls) -> Trigger:
        return cls(TriggerReason.MANUAL)


@dataclass
class RunInstance:
    """One execution attempt of the job's command.

    Attributes:
        id: Strictly increasing identifier.
        job: Job being executed.
        trigger: Trigger that caused the run.
        state: Current lifecycle state.
        started_at: Wall-clock creation time.
        finished_at: Wall-clock time a terminal state was reached.
    """

    id: int
    job: Job
    trigger: Trigger
    state: RunState = RunState.PENDING
    started_at: float = field(default_factory=time.time)
    finished_at: float | None = None

    def mark_running(self) -> None:
        self._move(RunState.RUNNING)

    def finish(self, state: RunState) -> None:
        """Enter a terminal state."""
        if not state.is_terminal:
            raise InvalidTransition(f"{state.value} is not a terminal state")
        self._move(state)
        self.finished_at = time.time()

    def cancel(self) -> bool:
        """Mark cancelled unless already finished.

        Returns:
            True if the instance was live and is now cancelled.
        """
        if self.state.is_terminal:
            return False
        self.finish(RunState.CANCELLED)
        return True

    def _move(self, new: RunState) -> None:
        check_transition(self.state, new)
        self.state = new
