"""Job scheduler: the single authority over which run instance is current.

Triggers (file changes, manual reruns) are coalesced into at most one
pending request. When the scheduler acts on it, the active instance is
cancelled and its process terminated before a new instance is started and
made authoritative in the report. Triggers that arrive while a cancellation
drains just replace the pending request, so a storm of triggers starts one
instance, not a queue of them.

Example:
    ```python
    scheduler = JobScheduler(job, ProcessSupervisor(job), model.writer())
    loop_task = asyncio.create_task(scheduler.run())
    scheduler.request(Trigger.initial())
    await scheduler.wait_idle()
    await scheduler.shutdown()
    ```
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from simmer.config import OnChangeStrategy
from simmer.errors import SpawnError
from simmer.executor.instance import RunInstance, RunState, Trigger, TriggerReason
from simmer.executor.supervisor import ExitOutcome, ExitStatus
from simmer.logging import get_logger
from simmer.output.parser import OutputParser

if TYPE_CHECKING:
    from simmer.config import Job
    from simmer.executor.supervisor import ProcessSupervisor, RunningProcess
    from simmer.report.model import ReportWriter

__all__ = ["JobScheduler"]

logger = get_logger("executor.scheduler")

ParserFactory = Callable[[int], OutputParser]


@dataclass
class _ActiveRun:
    instance: RunInstance
    process: RunningProcess
    task: asyncio.Task[None] | None = None


class JobScheduler:
    """Turns triggers into run instances, one at a time.

    Args:
        job: Job to execute.
        supervisor: Starts the job's processes.
        writer: The report's writable handle; only the scheduler holds it.
        strategy: What a change does while an instance is running.
        parser_factory: Builds the output parser for an instance id.
        history_size: Number of past instances kept for inspection.
    """

    def __init__(
        self,
        job: Job,
        supervisor: ProcessSupervisor,
        writer: ReportWriter,
        *,
        strategy: OnChangeStrategy = OnChangeStrategy.KILL_THEN_RESTART,
        parser_factory: ParserFactory = OutputParser,
        history_size: int = 32,
    ) -> None:
        self.job = job
        self.strategy = strategy
        self._supervisor = supervisor
        self._writer = writer
        self._parser_factory = parser_factory
        self.history: deque[RunInstance] = deque(maxlen=history_size)

        self._pending: Trigger | None = None
        self._preempt = False
        self._held: Trigger | None = None
        self._active: _ActiveRun | None = None
        self._draining: set[asyncio.Task[None]] = set()
        self._last_id = 0
        self._paused = False
        self._backtrace: bool | None = None
        self._closed = False
        self._wakeup = asyncio.Event()
        self._idle = asyncio.Event()
        self._idle.set()

    # =========================================================================
    # Requests (non-blocking, callable from any task on the loop)
    # =========================================================================

    def request(self, trigger: Trigger) -> None:
        """Ask for a run. Replaces any request not yet acted upon."""
        if self._closed:
            return
        if trigger.reason is TriggerReason.CHANGE:
            self._writer.note_change(trigger.events)
            if self._paused:
                logger.debug("paused, holding change trigger")
                self._held = trigger
                return
        self._pending = trigger
        if trigger.reason is not TriggerReason.CHANGE or (
            self.strategy is OnChangeStrategy.KILL_THEN_RESTART
        ):
            self._preempt = True
        self._idle.clear()
        self._wakeup.set()

    def rerun(self) -> None:
        self.request(Trigger.manual())

    def refresh(self) -> None:
        """Clear the displayed report, then rerun."""
        self._writer.clear()
        self.rerun()

    @property
    def paused(self) -> bool:
        return self._paused

    def pause(self) -> None:
        self._paused = True
        self._writer.set_paused(True)

    def resume(self) -> None:
        """Unpause; changes seen while paused start a run right away."""
        self._paused = False
        self._writer.set_paused(False)
        held, self._held = self._held, None
        if held is not None:
            self._pending = held
            self._preempt = True
            self._idle.clear()
            self._wakeup.set()

    def toggle_pause(self) -> None:
        if self._paused:
            self.resume()
        else:
            self.pause()

    def toggle_backtrace(self) -> None:
        """Flip the job's backtrace variable and rerun with it."""
        if self.job.backtrace_env is None:
            return
        self._backtrace = not self._backtrace
        self._writer.set_backtrace(self._backtrace)
        self.rerun()

    def report_watch_failure(self, reason: str) -> None:
        """Show that files are no longer watched; manual reruns keep working."""
        self._writer.set_watch_disabled(reason)

    @property
    def is_running(self) -> bool:
        return self._active is not None

    @property
    def last_instance_id(self) -> int:
        return self._last_id

    async def wait_idle(self) -> None:
        """Wait until no instance runs and no request is pending."""
        await self._idle.wait()

    # =========================================================================
    # Loop
    # =========================================================================

    async def run(self) -> None:
        """Act on requests until shut down."""
        try:
            while not self._closed:
                await self._wakeup.wait()
                self._wakeup.clear()
                if self._closed:
                    break
                if self._pending is not None:
                    if self._active is not None:
                        if not self._preempt:
                            # wait_then_restart: the pump wakes us on completion
                            continue
                        await self._cancel_active()
                    # Newest request, after the cancellation drained
                    trigger, self._pending, self._preempt = self._pending, None, False
                    if trigger is not None and not self._closed:
                        await self._start(trigger)
                self._update_idle()
        finally:
            await self._cancel_active()
            self._idle.set()

    async def shutdown(self) -> None:
        """Stop accepting requests and terminate every process still alive.

        Waits for terminations already in flight too, so a process that
        ignores SIGTERM is still killed before this returns.
        """
        self._closed = True
        self._pending = None
        self._wakeup.set()
        await self._cancel_active()
        if self._draining:
            await asyncio.gather(*list(self._draining))
        self._idle.set()

    def _update_idle(self) -> None:
        if self._active is None and self._pending is None:
            self._idle.set()

    def _environment(self) -> dict[str, str] | None:
        if self.job.backtrace_env is None or self._backtrace is None:
            return None
        return {self.job.backtrace_env: "1" if self._backtrace else "0"}

    async def _start(self, trigger: Trigger) -> None:
        self._last_id += 1
        instance = RunInstance(id=self._last_id, job=self.job, trigger=trigger)
        self.history.append(instance)
        self._writer.begin(instance.id, trigger.reason)
        logger.info(f"instance {instance.id} requested ({trigger.reason.value})")

        try:
            process = await self._supervisor.start(instance.id, env=self._environment())
        except SpawnError as e:
            logger.warning(f"instance {instance.id} could not start: {e}")
            instance.finish(RunState.FAILED)
            self._writer.spawn_failed(instance.id, str(e))
            return

        instance.mark_running()
        self._writer.mark_running(instance.id)
        active = _ActiveRun(instance=instance, process=process)
        active.task = asyncio.create_task(self._pump(active), name=f"simmer-pump-{instance.id}")
        self._active = active

    async def _cancel_active(self) -> None:
        active, self._active = self._active, None
        if active is None:
            return
        instance = active.instance
        # Recorded before anything else so no more output is accepted
        if instance.cancel():
            self._writer.mark_cancelled(instance.id)
            logger.info(f"instance {instance.id} cancelled")
        if active.task is not None:
            active.task.cancel()
        # Outlives a cancelled run() so the SIGKILL escalation always happens
        drain = asyncio.create_task(self._drain(active), name=f"simmer-drain-{instance.id}")
        self._draining.add(drain)
        drain.add_done_callback(self._draining.discard)
        await asyncio.shield(drain)

    async def _drain(self, active: _ActiveRun) -> None:
        await active.process.terminate()
        if active.task is not None:
            await asyncio.wait([active.task])
        logger.debug(f"instance {active.instance.id} drained")

    async def _pump(self, active: _ActiveRun) -> None:
        instance, process = active.instance, active.process
        parser = self._parser_factory(instance.id)
        try:
            async for chunk in process.chunks():
                self._writer.accept(parser.feed(chunk.data, chunk.stream))
            self._writer.accept(parser.finish())
            status = await process.wait()
            state = self._writer.complete(status)
            if not instance.state.is_terminal:
                instance.finish(state)
            logger.info(f"instance {instance.id} {state.value} (exit {status.returncode})")
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception(f"instance {instance.id}: output handling failed")
            await process.terminate()
            self._writer.complete(ExitStatus(instance.id, ExitOutcome.FAILURE, process.returncode))
            if not instance.state.is_terminal:
                instance.finish(RunState.FAILED)
        finally:
            if self._active is active:
                self._active = None
                self._wakeup.set()
