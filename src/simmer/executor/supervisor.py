"""Supervision of one external command instance.

This module provides:
- ProcessSupervisor: spawns the job's command for a given instance id
- RunningProcess: incremental output chunks, exit status, forced termination
- ExitStatus / ExitOutcome: how the process ended

Output is exposed as an async iterator of byte chunks read as they arrive,
never buffered to completion, so a cancelled instance stops being consumed
mid-stream. On POSIX the command runs in its own session; termination signals
the whole process group so build tools' children do not outlive it.

Example:
    ```python
    supervisor = ProcessSupervisor(job, grace_period=0.5)
    process = await supervisor.start(instance_id=4)
    async for chunk in process.chunks():
        parser.feed(chunk.data, chunk.stream)
    status = await process.wait()
    ```
"""

from __future__ import annotations

import asyncio
import os
import signal
from collections.abc import AsyncIterator, Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from simmer.errors import SpawnError
from simmer.logging import get_logger
from simmer.output.lines import Stream

if TYPE_CHECKING:
    from simmer.config import Job

__all__ = [
    "DEFAULT_CHUNK_SIZE",
    "ExitOutcome",
    "ExitStatus",
    "OutputChunk",
    "ProcessSupervisor",
    "RunningProcess",
]

logger = get_logger("executor.supervisor")

DEFAULT_CHUNK_SIZE = 8192

IS_POSIX = os.name == "posix"

# Used when the job has no kill command of its own
WINDOWS_TREE_KILL = ("taskkill", "/T", "/F", "/PID")


class ExitOutcome(str, Enum):
    """How a process ended."""

    SUCCESS = "success"
    FAILURE = "failure"
    KILLED = "killed"


@dataclass(frozen=True)
class ExitStatus:
    """Completion report for one instance.

    Attributes:
        instance_id: Instance the process ran for.
        outcome: Success, failure, or killed by us.
        returncode: Raw return code (negative signal number on POSIX).
    """

    instance_id: int
    outcome: ExitOutcome
    returncode: int | None

    @property
    def success(self) -> bool:
        return self.outcome is ExitOutcome.SUCCESS


@dataclass(frozen=True)
class OutputChunk:
    """Bytes read from one stream of an instance's process."""

    instance_id: int
    stream: Stream
    data: bytes


# =============================================================================
# Running process
# =============================================================================


class RunningProcess:
    """Handle on a started command.

    One reader task per piped stream pushes chunks into a queue; the
    :meth:`chunks` iterator drains it until every stream hit EOF.
    """

    def __init__(
        self,
        instance_id: int,
        process: asyncio.subprocess.Process,
        *,
        kill_command: Sequence[str] | None = None,
        grace_period: float = 0.5,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        self.instance_id = instance_id
        self._process = process
        self._kill_command = tuple(kill_command) if kill_command else None
        self._grace_period = grace_period
        self._chunk_size = chunk_size
        self._killed = False
        self._queue: asyncio.Queue[OutputChunk | None] = asyncio.Queue()
        self._readers = [
            asyncio.create_task(
                self._read(stream, reader),
                name=f"simmer-read-{instance_id}-{stream.value}",
            )
            for stream, reader in (
                (Stream.STDOUT, process.stdout),
                (Stream.STDERR, process.stderr),
            )
            if reader is not None
        ]

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> int | None:
        return self._process.returncode

    @property
    def killed(self) -> bool:
        """Whether termination was requested through this handle."""
        return self._killed

    async def _read(self, stream: Stream, reader: asyncio.StreamReader) -> None:
        try:
            while True:
                data = await reader.read(self._chunk_size)
                if not data:
                    break
                self._queue.put_nowait(OutputChunk(self.instance_id, stream, data))
        except (ConnectionResetError, BrokenPipeError) as e:
            logger.warning(f"instance {self.instance_id}: {stream.value} closed abruptly: {e}")
        finally:
            self._queue.put_nowait(None)

    async def chunks(self) -> AsyncIterator[OutputChunk]:
        """Yield output chunks, in arrival order, until all streams close."""
        open_streams = len(self._readers)
        while open_streams:
            item = await self._queue.get()
            if item is None:
                open_streams -= 1
                continue
            yield item

    async def wait(self) -> ExitStatus:
        """Wait for the process to exit and classify its end."""
        returncode = await self._process.wait()
        if self._killed:
            outcome = ExitOutcome.KILLED
        elif returncode == 0:
            outcome = ExitOutcome.SUCCESS
        else:
            outcome = ExitOutcome.FAILURE
        logger.debug(f"instance {self.instance_id} exited: {outcome.value} ({returncode})")
        return ExitStatus(self.instance_id, outcome, returncode)

    async def terminate(self) -> None:
        """Stop the process and its descendants, then abandon its output.

        Tries the job's kill command first when there is one. Otherwise the
        process group gets SIGTERM, then SIGKILL once the grace period is
        over.
        """
        self._killed = True
        try:
            if self._process.returncode is None:
                if not (self._kill_command and await self._run_kill_command(self._kill_command)):
                    await self._signal_tree()
            elif IS_POSIX:
                # The leader is gone, stragglers in its group are not wanted either
                self._send(signal.SIGKILL)
        finally:
            for reader in self._readers:
                reader.cancel()
            await asyncio.gather(*self._readers, return_exceptions=True)

    async def _signal_tree(self) -> None:
        if not IS_POSIX:
            if not await self._run_kill_command(WINDOWS_TREE_KILL):
                self._process.kill()
            await self._process.wait()
            return

        if self._grace_period > 0:
            self._send(signal.SIGTERM)
            try:
                await asyncio.wait_for(self._process.wait(), timeout=self._grace_period)
            except asyncio.TimeoutError:
                logger.info(f"instance {self.instance_id} ignored SIGTERM, killing")
        self._send(signal.SIGKILL)
        await self._process.wait()

    def _send(self, sig: signal.Signals) -> None:
        try:
            os.killpg(self._process.pid, sig)
        except ProcessLookupError:
            pass
        except PermissionError:
            # Group already reaped and its id reused elsewhere
            if self._process.returncode is None:
                self._process.send_signal(sig)

    async def _run_kill_command(self, kill_command: Sequence[str]) -> bool:
        argv = [*kill_command, str(self._process.pid)]
        logger.info(f"launching kill command {argv}")
        try:
            killer = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as e:
            logger.warning(f"kill command failed to start: {e}")
            return False
        code = await killer.wait()
        if code != 0:
            logger.warning(f"kill command returned nonzero status: {code}")
            return False
        await self._process.wait()
        return True


# =============================================================================
# Supervisor
# =============================================================================


class ProcessSupervisor:
    """Starts the job's command, one process per run instance."""

    def __init__(
        self,
        job: Job,
        *,
        grace_period: float = 0.5,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        self.job = job
        self.grace_period = grace_period
        self.chunk_size = chunk_size

    def _environment(self, extra: Mapping[str, str] | None) -> dict[str, str]:
        env = dict(os.environ)
        env.update(self.job.env)
        if extra:
            env.update(extra)
        return env

    async def start(
        self,
        instance_id: int,
        *,
        env: Mapping[str, str] | None = None,
    ) -> RunningProcess:
        """Spawn the command for an instance.

        Args:
            instance_id: Instance the process runs for; stamped on every chunk.
            env: Extra environment for this run only.

        Returns:
            Handle on the running process.

        Raises:
            SpawnError: If the executable is missing, not executable, or the
                working directory is unusable.
        """
        argv = list(self.job.command)
        pipe = asyncio.subprocess.PIPE
        devnull = asyncio.subprocess.DEVNULL
        extra: dict[str, object] = {"start_new_session": True} if IS_POSIX else {}

        if not self.job.cwd.is_dir():
            raise SpawnError(f"working directory {self.job.cwd} does not exist", argv)

        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                cwd=str(self.job.cwd),
                env=self._environment(env),
                stdin=devnull,
                stdout=pipe if self.job.parse_stdout else devnull,
                stderr=pipe if self.job.parse_stderr else devnull,
                **extra,  # type: ignore[arg-type]
            )
        except FileNotFoundError as e:
            raise SpawnError(f"command not found: {argv[0]}", argv) from e
        except PermissionError as e:
            raise SpawnError(f"permission denied: {argv[0]}", argv) from e
        except OSError as e:
            raise SpawnError(f"failed to launch {argv[0]}: {e.strerror or e}", argv) from e

        logger.info(f"instance {instance_id} started: pid={process.pid} cmd={argv}")
        return RunningProcess(
            instance_id,
            process,
            kill_command=self.job.kill_command,
            grace_period=self.grace_period,
            chunk_size=self.chunk_size,
        )
