"""Tests for run instances."""

from __future__ import annotations

import pytest

from simmer.config import make_job
from simmer.errors import InvalidTransition
from simmer.executor.instance import (
    RunInstance,
    RunState,
    Trigger,
    TriggerReason,
    check_transition,
)


def _instance(instance_id: int = 1) -> RunInstance:
    return RunInstance(id=instance_id, job=make_job(command=("true",)), trigger=Trigger.initial())


class TestRunState:
    """Tests for RunState enum."""

    def test_terminal_states(self) -> None:
        """Test which states are final."""
        assert {s for s in RunState if s.is_terminal} == {
            RunState.SUCCEEDED,
            RunState.FAILED,
            RunState.CANCELLED,
        }

    @pytest.mark.parametrize(
        ("current", "new"),
        [
            (RunState.PENDING, RunState.SUCCEEDED),
            (RunState.SUCCEEDED, RunState.RUNNING),
            (RunState.FAILED, RunState.CANCELLED),
            (RunState.RUNNING, RunState.PENDING),
        ],
    )
    def test_forbidden_transitions(self, current: RunState, new: RunState) -> None:
        """Test transitions the lifecycle does not allow."""
        with pytest.raises(InvalidTransition):
            check_transition(current, new)


class TestTrigger:
    """Tests for Trigger class."""

    def test_constructors(self) -> None:
        """Test the shortcut constructors."""
        assert Trigger.initial().reason is TriggerReason.INITIAL
        assert Trigger.manual().reason is TriggerReason.MANUAL
        assert Trigger.manual().paths == ()
        assert not Trigger.manual().rescan


class TestRunInstance:
    """Tests for RunInstance class."""

    def test_lifecycle(self) -> None:
        """Test pending to running to succeeded."""
        instance = _instance()
        assert instance.state is RunState.PENDING

        instance.mark_running()
        instance.finish(RunState.SUCCEEDED)

        assert instance.state is RunState.SUCCEEDED
        assert instance.finished_at is not None

    def test_spawn_failure_from_pending(self) -> None:
        """Test that an instance may fail without ever running."""
        instance = _instance()

        instance.finish(RunState.FAILED)

        assert instance.state is RunState.FAILED

    def test_finish_requires_terminal_state(self) -> None:
        """Test that finish only accepts final states."""
        with pytest.raises(InvalidTransition):
            _instance().finish(RunState.RUNNING)

    def test_cancel(self) -> None:
        """Test that cancel reports whether it did anything."""
        instance = _instance()
        instance.mark_running()

        assert instance.cancel()
        assert instance.state is RunState.CANCELLED
        assert not instance.cancel()

    def test_cancel_after_finish(self) -> None:
        """Test that a finished instance stays finished."""
        instance = _instance()
        instance.mark_running()
        instance.finish(RunState.FAILED)

        assert not instance.cancel()
        assert instance.state is RunState.FAILED
