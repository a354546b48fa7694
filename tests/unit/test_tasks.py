"""Tests for TaskSupervisor."""
import asyncio

import pytest

from screener.tasks import TaskSupervisor


class TestTaskSupervisor:
    @pytest.mark.asyncio
    async def test_tracks_until_done(self):
        supervisor = TaskSupervisor()
        gate = asyncio.Event()

        async def work():
            await gate.wait()

        supervisor.spawn(work(), name="work")
        assert supervisor.pending == 1
        gate.set()
        await supervisor.drain()
        assert supervisor.pending == 0
        assert supervisor.failures == []

    @pytest.mark.asyncio
    async def test_failures_are_recorded(self):
        supervisor = TaskSupervisor()

        async def boom():
            raise RuntimeError("kaput")

        supervisor.spawn(boom(), name="boom")
        await supervisor.drain()

        assert len(supervisor.failures) == 1
        name, exc = supervisor.failures[0]
        assert name == "boom"
        assert isinstance(exc, RuntimeError)

    @pytest.mark.asyncio
    async def test_failure_list_is_bounded(self):
        supervisor = TaskSupervisor(max_failures=2)

        async def boom(i):
            raise ValueError(i)

        for i in range(5):
            supervisor.spawn(boom(i), name=f"boom-{i}")
        await supervisor.drain()
        assert len(supervisor.failures) == 2
