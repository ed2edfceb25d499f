"""Filesystem watching and change debouncing."""

from simmer.executor.instance import Trigger
from simmer.watch.debouncer import ChangeDebouncer
from simmer.watch.events import ChangeEvent, ChangeKind
from simmer.watch.ignore import IgnoreRules
from simmer.watch.watcher import FileWatcher, translate_event

__all__ = [
    "ChangeDebouncer",
    "ChangeEvent",
    "ChangeKind",
    "FileWatcher",
    "IgnoreRules",
    "Trigger",
    "translate_event",
]
