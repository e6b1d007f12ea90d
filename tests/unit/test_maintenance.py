"""Tests for PeriodicSweep."""

import asyncio

import pytest

from src.services.state_machine.maintenance import PeriodicSweep


async def wait_for(predicate, timeout=1.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.005)


class TestPeriodicSweep:
    """Tests for the background sweep loop."""

    @pytest.mark.asyncio
    async def test_runs_sweep_repeatedly(self):
        """The sweep callable runs on every interval."""
        calls = []
        sweeper = PeriodicSweep("test", lambda: calls.append(1) or 0, interval_seconds=0.01)

        sweeper.start()
        await wait_for(lambda: len(calls) >= 3)
        await sweeper.stop()

        assert not sweeper.running

    @pytest.mark.asyncio
    async def test_failing_sweep_keeps_running(self):
        """An exception in one sweep does not stop the loop."""
        calls = []

        def flaky():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("sweep failed")
            return 1

        sweeper = PeriodicSweep("flaky", flaky, interval_seconds=0.01)
        sweeper.start()
        await wait_for(lambda: len(calls) >= 2)

        assert sweeper.running
        await sweeper.stop()

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self):
        """Starting twice keeps a single task."""
        sweeper = PeriodicSweep("idem", lambda: 0, interval_seconds=60)

        sweeper.start()
        task = sweeper._task
        sweeper.start()

        assert sweeper._task is task
        await sweeper.stop()

    @pytest.mark.asyncio
    async def test_stop_without_start(self):
        """Stopping a sweep that never started is a no-op."""
        sweeper = PeriodicSweep("idle", lambda: 0, interval_seconds=60)
        await sweeper.stop()
        assert not sweeper.running

    def test_invalid_interval(self):
        with pytest.raises(ValueError):
            PeriodicSweep("bad", lambda: 0, interval_seconds=0)
