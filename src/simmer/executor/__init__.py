"""Run instances, process supervision and scheduling."""

from simmer.executor.instance import RunInstance, RunState, Trigger, TriggerReason
from simmer.executor.scheduler import JobScheduler
from simmer.executor.supervisor import (
    ExitOutcome,
    ExitStatus,
    OutputChunk,
    ProcessSupervisor,
    RunningProcess,
)

__all__ = [
    "ExitOutcome",
    "ExitStatus",
    "JobScheduler",
    "OutputChunk",
    "ProcessSupervisor",
    "RunInstance",
    "RunState",
    "RunningProcess",
    "Trigger",
    "TriggerReason",
]
