"""Tests for change debouncing."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from simmer.executor.instance import Trigger, TriggerReason
from simmer.watch.debouncer import ChangeDebouncer
from simmer.watch.events import ChangeEvent, ChangeKind


class TestChangeDebouncer:
    """Tests for ChangeDebouncer class."""

    @pytest.mark.asyncio
    async def test_burst_coalesced(self, tmp_path: Path) -> None:
        """Test that a burst of events yields exactly one trigger."""
        queue: asyncio.Queue[ChangeEvent] = asyncio.Queue()
        triggers: list[Trigger] = []
        debouncer = ChangeDebouncer(queue, triggers.append, window=0.15)
        task = asyncio.create_task(debouncer.run())
        try:
            for name in ("a.rs", "b.rs", "a.rs", "c.rs", "a.rs"):
                queue.put_nowait(ChangeEvent(tmp_path / name, ChangeKind.MODIFIED))
                await asyncio.sleep(0.01)
            await asyncio.sleep(0.4)
        finally:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

        assert len(triggers) == 1
        trigger = triggers[0]
        assert trigger.reason is TriggerReason.CHANGE
        assert trigger.paths == (tmp_path / "a.rs", tmp_path / "b.rs", tmp_path / "c.rs")
        assert not trigger.rescan
        assert trigger.events == 5
        assert debouncer.emitted == 1

    @pytest.mark.asyncio
    async def test_separate_bursts(self, tmp_path: Path) -> None:
        """Test that bursts separated by a quiet window yield separate triggers."""
        queue: asyncio.Queue[ChangeEvent] = asyncio.Queue()
        triggers: list[Trigger] = []
        task = asyncio.create_task(ChangeDebouncer(queue, triggers.append, window=0.1).run())
        try:
            queue.put_nowait(ChangeEvent(tmp_path / "a.rs", ChangeKind.MODIFIED))
            await asyncio.sleep(0.3)
            queue.put_nowait(ChangeEvent(tmp_path / "b.rs", ChangeKind.CREATED))
            await asyncio.sleep(0.3)
        finally:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

        assert [t.paths for t in triggers] == [(tmp_path / "a.rs",), (tmp_path / "b.rs",)]

    @pytest.mark.asyncio
    async def test_no_trigger_before_quiet_window(self, tmp_path: Path) -> None:
        """Test that nothing is emitted while events keep arriving."""
        queue: asyncio.Queue[ChangeEvent] = asyncio.Queue()
        triggers: list[Trigger] = []
        task = asyncio.create_task(ChangeDebouncer(queue, triggers.append, window=0.2).run())
        try:
            for _ in range(5):
                queue.put_nowait(ChangeEvent(tmp_path / "a.rs", ChangeKind.MODIFIED))
                await asyncio.sleep(0.05)
            assert triggers == []
            await asyncio.sleep(0.4)
        finally:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

        assert len(triggers) == 1

    @pytest.mark.asyncio
    async def test_rescan(self, tmp_path: Path) -> None:
        """Test that a rescan event marks the trigger without adding a path."""
        queue: asyncio.Queue[ChangeEvent] = asyncio.Queue()
        triggers: list[Trigger] = []
        task = asyncio.create_task(ChangeDebouncer(queue, triggers.append, window=0.05).run())
        try:
            queue.put_nowait(ChangeEvent.rescan(tmp_path))
            await asyncio.sleep(0.2)
        finally:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

        assert len(triggers) == 1
        assert triggers[0].rescan
        assert triggers[0].paths == ()
