"""Filesystem change events."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

__all__ = ["ChangeEvent", "ChangeKind"]


class ChangeKind(str, Enum):
    """What happened to a path.

    RESCAN is not a filesystem event: the watcher emits it after losing
    events, meaning "assume anything changed".
    """

    CREATED = "created"
    MODIFIED = "modified"
    REMOVED = "removed"
    RENAMED = "renamed"
    RESCAN = "rescan"


@dataclass(frozen=True)
class ChangeEvent:
    """One observed change. Duplicates are expected and harmless."""

    path: Path
    kind: ChangeKind
    timestamp: float = field(default_factory=time.monotonic)

    @classmethod
    def rescan(cls, root: Path) -> ChangeEvent:
        return cls(root, ChangeKind.RESCAN)
