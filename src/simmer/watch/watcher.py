"""Filesystem watcher built on watchdog.

This module provides:
- FileWatcher: observes a root recursively and feeds ChangeEvents into an
  asyncio queue
- translate_event(): watchdog event -> ChangeEvent, applying ignore rules

watchdog delivers events on its observer thread through callbacks. The
handler does nothing but hand them to the event loop with
``call_soon_threadsafe``; from there on they travel through a bounded
asyncio.Queue, so the debouncer never deals with threads or callbacks.

Failure handling:
- Queue overflow: pending events are dropped and replaced by one RESCAN
  event (a WatchError, logged).
- Root removed or the observer thread dying: WatchFatal is reported to the
  ``on_fatal`` callback and the watcher stops.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from simmer.errors import WatchError, WatchFatal
from simmer.logging import get_logger
from simmer.watch.events import ChangeEvent, ChangeKind

if TYPE_CHECKING:
    from watchdog.observers.api import BaseObserver

    from simmer.watch.ignore import IgnoreRules

__all__ = ["FileWatcher", "translate_event"]

logger = get_logger("watch.watcher")

FatalCallback = Callable[[WatchFatal], None]

_KINDS = {
    "created": ChangeKind.CREATED,
    "modified": ChangeKind.MODIFIED,
    "deleted": ChangeKind.REMOVED,
    "moved": ChangeKind.RENAMED,
    # Close after write: the content changed
    "closed": ChangeKind.MODIFIED,
}


def _path(raw: bytes | str) -> Path:
    return Path(os.fsdecode(raw))


def translate_event(event: FileSystemEvent, rules: IgnoreRules) -> ChangeEvent | None:
    """Turn a watchdog event into a ChangeEvent, or None when it is noise.

    Dropped: opens, closes without write, directory modifications (metadata
    only) and paths excluded by the rules. A move is dropped only when both
    its source and destination are excluded.
    """
    kind = _KINDS.get(event.event_type)
    if kind is None:
        return None
    if kind is ChangeKind.MODIFIED and event.is_directory:
        return None

    src = _path(event.src_path)
    if kind is ChangeKind.RENAMED:
        dest = _path(event.dest_path)
        if rules.excludes_all((src, dest), is_dir=event.is_directory):
            return None
        return ChangeEvent(dest, kind)

    if rules.excludes(src, is_dir=event.is_directory):
        return None
    return ChangeEvent(src, kind)


class _ChangeHandler(FileSystemEventHandler):
    """Runs on the observer thread; forwards everything to the watcher."""

    def __init__(self, watcher: FileWatcher) -> None:
        super().__init__()
        self._watcher = watcher

    def on_any_event(self, event: FileSystemEvent) -> None:
        self._watcher.handle(event)


class FileWatcher:
    """Recursive watcher for one root.

    Args:
        rules: Ignore rules; their root is the watched root.
        queue: Bounded channel receiving ChangeEvents.
        on_fatal: Called on the event loop when the root becomes unusable.
        observer_factory: Builds the watchdog observer.
    """

    def __init__(
        self,
        rules: IgnoreRules,
        queue: asyncio.Queue[ChangeEvent],
        *,
        on_fatal: FatalCallback | None = None,
        observer_factory: Callable[[], BaseObserver] = Observer,
    ) -> None:
        self.rules = rules
        self.root = rules.root
        self.queue = queue
        self._on_fatal = on_fatal
        self._observer_factory = observer_factory
        self._observer: BaseObserver | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._failed = False
        self.overflows = 0

    @property
    def running(self) -> bool:
        return self._observer is not None and not self._failed

    def start(self) -> None:
        """Start observing. Must be called from the event loop.

        Raises:
            WatchFatal: If the root is missing or cannot be watched.
        """
        if not self.root.is_dir():
            raise WatchFatal(f"watched root {self.root} is not a directory", self.root)
        self._loop = asyncio.get_running_loop()
        observer = self._observer_factory()
        observer.schedule(_ChangeHandler(self), str(self.root), recursive=True)
        try:
            observer.start()
        except OSError as e:
            raise WatchFatal(f"cannot watch {self.root}: {e}", self.root) from e
        self._observer = observer
        logger.info(f"watching {self.root}")

    def stop(self) -> None:
        observer, self._observer = self._observer, None
        if observer is None:
            return
        observer.stop()
        if observer.is_alive():
            observer.join(timeout=2.0)

    # -------------------------------------------------------------------------
    # Observer thread side
    # -------------------------------------------------------------------------

    def handle(self, event: FileSystemEvent) -> None:
        """Process a raw watchdog event. Safe to call from any thread."""
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        if event.is_directory and event.event_type in ("deleted", "moved"):
            if _path(event.src_path) == self.root:
                loop.call_soon_threadsafe(self._fail, f"watched root {self.root} was removed")
                return
        change = translate_event(event, self.rules)
        if change is not None:
            loop.call_soon_threadsafe(self._post, change)

    # -------------------------------------------------------------------------
    # Event loop side
    # -------------------------------------------------------------------------

    def _post(self, change: ChangeEvent) -> None:
        if self._failed:
            return
        try:
            self.queue.put_nowait(change)
        except asyncio.QueueFull:
            self.overflows += 1
            error = WatchError(f"change queue overflow ({self.queue.maxsize} events)", self.root)
            logger.warning(f"{error}; falling back to a full rescan")
            while not self.queue.empty():
                self.queue.get_nowait()
            self.queue.put_nowait(ChangeEvent.rescan(self.root))

    def _fail(self, reason: str) -> None:
        if self._failed:
            return
        self._failed = True
        error = WatchFatal(reason, self.root)
        logger.error(f"watcher stopped: {reason}")
        self.stop()
        if self._on_fatal is not None:
            self._on_fatal(error)

    async def monitor(self, interval: float = 1.0) -> None:
        """Periodically check the root and the observer thread.

        Returns once the watcher failed or was stopped.
        """
        while self._observer is not None and not self._failed:
            await asyncio.sleep(interval)
            observer = self._observer
            if observer is None or self._failed:
                break
            if not self.root.is_dir():
                self._fail(f"watched root {self.root} is no longer accessible")
            elif not observer.is_alive():
                self._fail("filesystem observer thread died")
