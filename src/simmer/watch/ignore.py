"""Watch and ignore rules with gitignore semantics.

Paths under the root are matched relative to it, with pathspec's
GitIgnoreSpec: the built-in ignores (VCS metadata, build output, editor swap
files), the job's own ignore globs and, when enabled, the root .gitignore.
When the job lists watch globs, only files matching one of them count.
"""

from __future__ import annotations

import os
from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import TYPE_CHECKING

import pathspec

from simmer.config import DEFAULT_IGNORES
from simmer.logging import get_logger

if TYPE_CHECKING:
    from simmer.config import Job

__all__ = ["IgnoreRules"]

logger = get_logger("watch.ignore")


def _read_gitignore(root: Path) -> list[str]:
    path = root / ".gitignore"
    if not path.is_file():
        return []
    try:
        return path.read_text(encoding="utf-8").splitlines()
    except (OSError, UnicodeDecodeError) as e:
        logger.warning(f"Ignoring unreadable {path}: {e}")
        return []


class IgnoreRules:
    """Decides which changed paths are worth a rerun.

    Args:
        root: Watched root; paths outside it are always excluded.
        ignore: Extra gitignore-style patterns.
        watch: Patterns selecting watched files. Empty means every file.
    """

    def __init__(
        self,
        root: Path,
        *,
        ignore: Sequence[str] = (),
        watch: Sequence[str] = (),
    ) -> None:
        self.root = root.resolve()
        self._ignore = pathspec.GitIgnoreSpec.from_lines([*DEFAULT_IGNORES, *ignore])
        self._watch = pathspec.GitIgnoreSpec.from_lines(watch) if watch else None

    @classmethod
    def for_job(cls, job: Job) -> IgnoreRules:
        """Build the rules of a job, reading its .gitignore if asked to."""
        ignore = list(job.ignore)
        if job.apply_gitignore:
            ignore.extend(_read_gitignore(job.root))
        return cls(job.root, ignore=ignore, watch=job.watch)

    def relative(self, path: Path | str) -> str | None:
        """Path relative to the root in posix form, or None when outside it."""
        try:
            rel = Path(os.fsdecode(path)).relative_to(self.root)
        except ValueError:
            return None
        return rel.as_posix()

    def excludes(self, path: Path | str, *, is_dir: bool = False) -> bool:
        """Whether a change at this path should be ignored."""
        rel = self.relative(path)
        if rel is None:
            return True
        if rel == ".":
            return False
        if self._ignore.match_file(f"{rel}/" if is_dir else rel):
            return True
        if self._watch is not None and not is_dir:
            return not self._watch.match_file(rel)
        return False

    def excludes_all(self, paths: Iterable[Path | str], *, is_dir: bool = False) -> bool:
        """Whether every path is excluded (used for moves: source and destination)."""
        return all(self.excludes(path, is_dir=is_dir) for path in paths)
