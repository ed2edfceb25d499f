"""Coalescing of change bursts into triggers.

An editor save is often several events (write temp file, rename, chmod).
The debouncer waits until the queue has been quiet for a whole window after
the last event, then emits exactly one CHANGE trigger carrying every path
seen in the burst.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable

from simmer.executor.instance import Trigger, TriggerReason
from simmer.logging import get_logger
from simmer.watch.events import ChangeEvent, ChangeKind

__all__ = ["ChangeDebouncer"]

logger = get_logger("watch.debouncer")


class ChangeDebouncer:
    """Reads ChangeEvents from a queue and emits coalesced triggers.

    Args:
        queue: Channel filled by the FileWatcher.
        on_trigger: Receives each trigger (e.g., JobScheduler.request).
        window: Quiet period in seconds; restarted by every event.
    """

    def __init__(
        self,
        queue: asyncio.Queue[ChangeEvent],
        on_trigger: Callable[[Trigger], None],
        *,
        window: float = 0.15,
    ) -> None:
        self.queue = queue
        self.window = window
        self._on_trigger = on_trigger
        self.emitted = 0

    async def run(self) -> None:
        """Debounce forever (until cancelled)."""
        while True:
            burst = [await self.queue.get()]
            while True:
                try:
                    burst.append(await asyncio.wait_for(self.queue.get(), timeout=self.window))
                except asyncio.TimeoutError:
                    break
            self._emit(burst)

    def _emit(self, burst: list[ChangeEvent]) -> None:
        rescan = any(event.kind is ChangeKind.RESCAN for event in burst)
        paths = tuple(
            dict.fromkeys(event.path for event in burst if event.kind is not ChangeKind.RESCAN)
        )
        self.emitted += 1
        logger.debug(f"{len(burst)} events coalesced into trigger #{self.emitted}")
        self._on_trigger(
            Trigger(TriggerReason.CHANGE, paths=paths, rescan=rescan, events=len(burst))
        )
