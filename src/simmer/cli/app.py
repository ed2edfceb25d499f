"""Application wiring.

This module provides:
- WatchApp: the long-running, full-screen watch session
- run_once(): a single headless run, printed as a plain report

Watch session units, all on one event loop:

    FileWatcher --queue--> ChangeDebouncer --request--> JobScheduler
         ^ (watchdog thread)                               |  owns the writer
    KeyReader --> InputDispatcher --rerun/pause---------->-'
                        |                                  v
                        '--view state--> ReportModel <-----'
                                              |
                                    TerminalRenderer (tick / notify)
"""

from __future__ import annotations

import asyncio
import signal
from typing import TYPE_CHECKING

from simmer.cli.input import InputDispatcher
from simmer.cli.keys import KeyBindings, KeyReader
from simmer.cli.renderer import TerminalRenderer, render_report
from simmer.errors import WatchFatal
from simmer.executor.instance import Trigger
from simmer.executor.scheduler import JobScheduler
from simmer.executor.supervisor import ProcessSupervisor
from simmer.logging import get_logger
from simmer.report.model import ReportModel
from simmer.watch.debouncer import ChangeDebouncer
from simmer.watch.events import ChangeEvent
from simmer.watch.ignore import IgnoreRules
from simmer.watch.watcher import FileWatcher

if TYPE_CHECKING:
    from rich.console import Console

    from simmer.config import Job, Settings

__all__ = ["WatchApp", "run_once"]

logger = get_logger("cli.app")


class WatchApp:
    """Watch files, rerun the job, show the report until the user quits.

    Args:
        job: Job to run.
        settings: Policy values.
        bindings: Key bindings.
        console: Console to draw on.
    """

    def __init__(
        self,
        job: Job,
        settings: Settings,
        bindings: KeyBindings,
        *,
        console: Console | None = None,
    ) -> None:
        self.job = job
        self.settings = settings
        self.bindings = bindings
        self.model = ReportModel()
        self.scheduler = JobScheduler(
            job,
            ProcessSupervisor(job, grace_period=settings.grace_period),
            self.model.writer(),
            strategy=settings.on_change,
        )
        self.renderer = TerminalRenderer(
            self.model, job, bindings, console=console, tick=settings.tick
        )
        self._quit = asyncio.Event()
        self.dispatcher = InputDispatcher(
            bindings,
            self.model,
            self.scheduler,
            on_quit=self._quit.set,
            layout=lambda: self.renderer.layout,
        )
        self.changes: asyncio.Queue[ChangeEvent] = asyncio.Queue(
            maxsize=settings.change_queue_size
        )
        self.watcher = FileWatcher(
            IgnoreRules.for_job(job), self.changes, on_fatal=self._watch_failed
        )
        self.debouncer = ChangeDebouncer(
            self.changes, self.scheduler.request, window=settings.debounce_window
        )
        self.keys = KeyReader(self.dispatcher.dispatch)

    def quit(self) -> None:
        self._quit.set()

    def _watch_failed(self, error: WatchFatal) -> None:
        # Degraded mode: manual reruns keep working
        self.scheduler.report_watch_failure(str(error))

    def _install_signals(self, loop: asyncio.AbstractEventLoop) -> list[signal.Signals]:
        installed: list[signal.Signals] = []
        handlers = {
            signal.SIGTERM: self.quit,
            signal.SIGINT: self.quit,
        }
        if hasattr(signal, "SIGWINCH"):
            handlers[signal.SIGWINCH] = self.renderer.request_full_redraw
        for sig, handler in handlers.items():
            try:
                loop.add_signal_handler(sig, handler)
            except (NotImplementedError, RuntimeError):
                continue
            installed.append(sig)
        return installed

    async def run(self) -> int:
        """Run the session.

        Returns:
            Exit code derived from the last completed run.

        Raises:
            WatchFatal: If the root cannot be watched at all.
            TerminalUnavailable: If there is no terminal to read keys from.
        """
        loop = asyncio.get_running_loop()
        self.watcher.start()
        try:
            self.keys.start()
        except Exception:
            self.watcher.stop()
            raise

        installed = self._install_signals(loop)
        workers = [
            asyncio.create_task(self.scheduler.run(), name="simmer-scheduler"),
            asyncio.create_task(self.debouncer.run(), name="simmer-debouncer"),
            asyncio.create_task(self.watcher.monitor(), name="simmer-watch-monitor"),
            asyncio.create_task(self.renderer.run(), name="simmer-renderer"),
        ]
        quit_waiter = asyncio.create_task(self._quit.wait(), name="simmer-quit")
        self.scheduler.request(Trigger.initial())
        logger.info(f"watching {self.job.root} for {self.job.describe()}")

        try:
            pending: set[asyncio.Task[object]] = {quit_waiter, *workers}
            while quit_waiter in pending:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    error = None if task is quit_waiter else task.exception()
                    if error is not None:
                        raise error
        finally:
            self.keys.stop()
            self.watcher.stop()
            for sig in installed:
                loop.remove_signal_handler(sig)
            await self.scheduler.shutdown()
            for task in (*workers, quit_waiter):
                task.cancel()
            await asyncio.gather(*workers, quit_waiter, return_exceptions=True)

        return self.model.snapshot().exit_code


async def run_once(job: Job, settings: Settings, *, console: Console) -> int:
    """Run the job once without watching and print the report.

    Returns:
        Exit code of the run.
    """
    model = ReportModel()
    scheduler = JobScheduler(
        job,
        ProcessSupervisor(job, grace_period=settings.grace_period),
        model.writer(),
    )
    runner = asyncio.create_task(scheduler.run(), name="simmer-scheduler")
    scheduler.request(Trigger.initial())
    try:
        await scheduler.wait_idle()
    finally:
        await scheduler.shutdown()
        runner.cancel()
        await asyncio.gather(runner, return_exceptions=True)

    snapshot = model.snapshot()
    render_report(snapshot, job, console)
    return snapshot.exit_code
