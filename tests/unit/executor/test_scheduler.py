"""Tests for the job scheduler."""

from __future__ import annotations

import asyncio
import os
import sys
from collections.abc import AsyncIterator
from pathlib import Path

import pytest
import pytest_asyncio

from simmer.config import Job, OnChangeStrategy, make_job
from simmer.executor.instance import RunState, Trigger, TriggerReason
from simmer.executor.scheduler import JobScheduler
from simmer.executor.supervisor import ProcessSupervisor
from simmer.output.diagnostics import Location, Severity
from simmer.report.model import ReportModel

RUSTC_SCRIPT = r"""
import sys
sys.stderr.write(
    "error[E0308]: mismatched types\n"
    " --> a.ext:3:5\n"
    "\n"
    "warning: unused variable\n"
    " --> b.ext:10\n"
    "\n"
)
sys.exit(1)
"""

SLOW_SCRIPT = "import time; print('working', flush=True); time.sleep(0.3); print('done')"

# Ignores SIGTERM on its first run only; later runs print and exit
STUBBORN_ONCE_SCRIPT = r"""
import os, signal, sys, time
if os.path.exists("started"):
    print("again")
    sys.exit(0)
open("started", "w").close()
signal.signal(signal.SIGTERM, signal.SIG_IGN)
print("pid", os.getpid(), flush=True)
time.sleep(30)
"""

posix_only = pytest.mark.skipif(os.name != "posix", reason="signal handling is POSIX only")


def _python_job(tmp_path: Path, script: str, **fields: object) -> Job:
    return make_job(command=(sys.executable, "-c", script), cwd=tmp_path, **fields)


def _alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    return True


class Harness:
    """Scheduler running on the test's event loop."""

    def __init__(self, job: Job, *, grace_period: float = 0.2, **options: object) -> None:
        self.model = ReportModel()
        self.scheduler = JobScheduler(
            job,
            ProcessSupervisor(job, grace_period=grace_period),
            self.model.writer(),
            **options,  # type: ignore[arg-type]
        )
        self.task = asyncio.create_task(self.scheduler.run())

    async def idle(self) -> None:
        await asyncio.wait_for(self.scheduler.wait_idle(), timeout=15)

    async def running(self) -> None:
        for _ in range(300):
            if self.model.snapshot().lines:
                return
            await asyncio.sleep(0.01)
        pytest.fail("instance never produced output")

    async def close(self) -> None:
        await self.scheduler.shutdown()
        await asyncio.wait_for(self.task, timeout=5)


@pytest_asyncio.fixture
async def harness_factory() -> AsyncIterator[list[Harness]]:
    created: list[Harness] = []
    yield created
    for harness in created:
        await harness.close()


def _start(created: list[Harness], job: Job, **options: object) -> Harness:
    harness = Harness(job, **options)
    created.append(harness)
    return harness


class TestJobScheduler:
    """Tests for JobScheduler class."""

    @pytest.mark.asyncio
    async def test_errors_and_warnings(self, tmp_path: Path, harness_factory: list[Harness]) -> None:
        """Test a run reporting an error and a warning."""
        h = _start(harness_factory, _python_job(tmp_path, RUSTC_SCRIPT))

        h.scheduler.request(Trigger.initial())
        await h.idle()
        snapshot = h.model.snapshot()

        assert snapshot.instance_id == 1
        assert snapshot.state is RunState.FAILED
        assert snapshot.returncode == 1
        assert [(d.severity, d.location) for d in snapshot.diagnostics] == [
            (Severity.ERROR, Location("a.ext", 3, 5)),
            (Severity.WARNING, Location("b.ext", 10)),
        ]
        assert snapshot.exit_code == 1
        assert h.scheduler.history[0].state is RunState.FAILED

    @pytest.mark.asyncio
    async def test_success(self, tmp_path: Path, harness_factory: list[Harness]) -> None:
        """Test a clean run."""
        h = _start(harness_factory, _python_job(tmp_path, "print('Finished')"))

        h.scheduler.request(Trigger.initial())
        await h.idle()
        snapshot = h.model.snapshot()

        assert snapshot.state is RunState.SUCCEEDED
        assert [line.plain for line in snapshot.lines] == ["Finished"]
        assert snapshot.exit_code == 0

    @pytest.mark.asyncio
    async def test_rapid_triggers_cancel_running_instance(
        self, tmp_path: Path, harness_factory: list[Harness]
    ) -> None:
        """Test that triggers during a run cancel it and coalesce into one new run."""
        h = _start(harness_factory, _python_job(tmp_path, SLOW_SCRIPT))

        h.scheduler.request(Trigger.initial())
        await h.running()
        h.scheduler.rerun()
        h.scheduler.rerun()
        h.scheduler.request(Trigger(TriggerReason.CHANGE))
        await h.idle()

        states = [instance.state for instance in h.scheduler.history]
        snapshot = h.model.snapshot()
        assert states == [RunState.CANCELLED, RunState.SUCCEEDED]
        assert snapshot.instance_id == 2
        assert {line.instance_id for line in snapshot.lines} == {2}
        assert [line.plain for line in snapshot.lines] == ["working", "done"]

    @pytest.mark.asyncio
    async def test_missing_executable_then_rerun(
        self, tmp_path: Path, harness_factory: list[Harness]
    ) -> None:
        """Test that a spawn failure is reported and the next run gets a new id."""
        job = make_job(command=("simmer-no-such-command-xyz",), cwd=tmp_path)
        h = _start(harness_factory, job)

        h.scheduler.request(Trigger.initial())
        await h.idle()
        first = h.model.snapshot()
        h.scheduler.rerun()
        await h.idle()
        second = h.model.snapshot()

        assert first.state is RunState.FAILED
        assert first.diagnostics[0].synthetic
        assert "command not found" in first.diagnostics[0].summary
        assert second.instance_id == 2
        assert len(second.diagnostics) == 1
        assert second.diagnostics[0].instance_id == 2

    @pytest.mark.asyncio
    async def test_wait_then_restart(self, tmp_path: Path, harness_factory: list[Harness]) -> None:
        """Test that a change waits for the running instance under wait_then_restart."""
        h = _start(
            harness_factory,
            _python_job(tmp_path, SLOW_SCRIPT),
            strategy=OnChangeStrategy.WAIT_THEN_RESTART,
        )

        h.scheduler.request(Trigger.initial())
        await h.running()
        h.scheduler.request(Trigger(TriggerReason.CHANGE))
        await h.idle()

        assert [i.state for i in h.scheduler.history] == [RunState.SUCCEEDED, RunState.SUCCEEDED]
        assert h.scheduler.last_instance_id == 2

    @pytest.mark.asyncio
    async def test_manual_rerun_preempts_under_wait_then_restart(
        self, tmp_path: Path, harness_factory: list[Harness]
    ) -> None:
        """Test that a manual rerun always cancels the running instance."""
        h = _start(
            harness_factory,
            _python_job(tmp_path, SLOW_SCRIPT),
            strategy=OnChangeStrategy.WAIT_THEN_RESTART,
        )

        h.scheduler.request(Trigger.initial())
        await h.running()
        h.scheduler.rerun()
        await h.idle()

        assert [i.state for i in h.scheduler.history] == [RunState.CANCELLED, RunState.SUCCEEDED]

    @pytest.mark.asyncio
    async def test_pause_holds_changes(self, tmp_path: Path, harness_factory: list[Harness]) -> None:
        """Test that changes wait while paused and run on resume."""
        h = _start(harness_factory, _python_job(tmp_path, "print('ok')"))

        h.scheduler.toggle_pause()
        h.scheduler.request(Trigger(TriggerReason.CHANGE, paths=(tmp_path / "a.rs",), events=3))
        h.scheduler.request(Trigger(TriggerReason.CHANGE, paths=(tmp_path / "b.rs",)))
        await asyncio.sleep(0.05)

        assert h.scheduler.last_instance_id == 0
        assert h.model.snapshot().paused
        assert h.model.snapshot().changes_since_start == 4

        h.scheduler.toggle_pause()
        await h.idle()

        assert h.scheduler.last_instance_id == 1
        assert h.scheduler.history[0].trigger.paths == (tmp_path / "b.rs",)
        assert not h.model.snapshot().paused

    @pytest.mark.asyncio
    async def test_manual_rerun_while_paused(
        self, tmp_path: Path, harness_factory: list[Harness]
    ) -> None:
        """Test that pausing only holds file changes."""
        h = _start(harness_factory, _python_job(tmp_path, "print('ok')"))

        h.scheduler.pause()
        h.scheduler.rerun()
        await h.idle()

        assert h.scheduler.last_instance_id == 1

    @pytest.mark.asyncio
    async def test_toggle_backtrace(self, tmp_path: Path, harness_factory: list[Harness]) -> None:
        """Test that the backtrace toggle reruns with the variable set."""
        job = _python_job(
            tmp_path,
            "import os; print(os.environ.get('SIMMER_TEST_BT', 'unset'))",
            backtrace_env="SIMMER_TEST_BT",
        )
        h = _start(harness_factory, job)

        h.scheduler.request(Trigger.initial())
        await h.idle()
        before = h.model.snapshot()
        h.scheduler.toggle_backtrace()
        await h.idle()
        after = h.model.snapshot()

        assert [line.plain for line in before.lines] == ["unset"]
        assert [line.plain for line in after.lines] == ["1"]
        assert after.backtrace
        assert after.instance_id == 2

    @pytest.mark.asyncio
    async def test_refresh_clears_then_reruns(
        self, tmp_path: Path, harness_factory: list[Harness]
    ) -> None:
        """Test that refresh starts a new instance."""
        h = _start(harness_factory, _python_job(tmp_path, "print('ok')"))

        h.scheduler.request(Trigger.initial())
        await h.idle()
        h.scheduler.refresh()
        await h.idle()

        snapshot = h.model.snapshot()
        assert snapshot.instance_id == 2
        assert snapshot.trigger is TriggerReason.MANUAL
        assert [line.plain for line in snapshot.lines] == ["ok"]

    @pytest.mark.asyncio
    async def test_shutdown_cancels_active(self, tmp_path: Path) -> None:
        """Test that shutdown terminates the running instance."""
        h = Harness(_python_job(tmp_path, "import time; print('x', flush=True); time.sleep(30)"))

        h.scheduler.request(Trigger.initial())
        await h.running()
        await asyncio.wait_for(h.close(), timeout=10)

        assert h.scheduler.history[0].state is RunState.CANCELLED
        assert not h.scheduler.is_running
        h.scheduler.rerun()
        assert h.scheduler.last_instance_id == 1

    @pytest.mark.asyncio
    async def test_watch_failure_reported(
        self, tmp_path: Path, harness_factory: list[Harness]
    ) -> None:
        """Test that a watcher failure shows up in the report."""
        h = _start(harness_factory, _python_job(tmp_path, "pass"))

        h.scheduler.report_watch_failure("root removed")

        assert h.model.snapshot().watch_disabled == "root removed"

    @posix_only
    @pytest.mark.asyncio
    async def test_triggers_during_drain_coalesce(
        self, tmp_path: Path, harness_factory: list[Harness]
    ) -> None:
        """Test that triggers arriving while a cancellation drains start one instance."""
        h = _start(harness_factory, _python_job(tmp_path, STUBBORN_ONCE_SCRIPT), grace_period=0.5)

        h.scheduler.request(Trigger.initial())
        await h.running()
        h.scheduler.rerun()
        for _ in range(5):
            await asyncio.sleep(0.03)
            h.scheduler.request(Trigger(TriggerReason.CHANGE))
        await h.idle()

        assert [instance.id for instance in h.scheduler.history] == [1, 2]
        assert [instance.state for instance in h.scheduler.history] == [
            RunState.CANCELLED,
            RunState.SUCCEEDED,
        ]
        assert [line.plain for line in h.model.snapshot().lines] == ["again"]

    @posix_only
    @pytest.mark.asyncio
    async def test_shutdown_during_drain_kills_process(self, tmp_path: Path) -> None:
        """Test that quitting mid-cancellation still kills a process ignoring SIGTERM."""
        h = Harness(_python_job(tmp_path, STUBBORN_ONCE_SCRIPT), grace_period=2.0)

        h.scheduler.request(Trigger.initial())
        await h.running()
        pid = int(h.model.snapshot().lines[0].plain.split()[-1])
        h.scheduler.rerun()
        await asyncio.sleep(0.1)
        await asyncio.wait_for(h.scheduler.shutdown(), timeout=10)
        h.task.cancel()
        await asyncio.gather(h.task, return_exceptions=True)

        assert not _alive(pid)
        assert h.scheduler.last_instance_id == 1
        assert h.scheduler.history[0].state is RunState.CANCELLED
