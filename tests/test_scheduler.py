"""Tests for the periodic task."""

import asyncio

from flagsense.scheduler import PeriodicTask


class TestPeriodicTask:
    """Tests for PeriodicTask class."""

    async def test_runs_after_initial_delay(self):
        """The first run waits for the initial delay."""
        runs = []

        async def job():
            runs.append(1)

        task = PeriodicTask(job, interval_ms=1000, initial_delay_ms=50)
        task.start()

        await asyncio.sleep(0.01)
        assert runs == []

        await asyncio.sleep(0.1)
        assert runs == [1]

        await task.stop()

    async def test_runs_never_overlap(self):
        """The next run is scheduled only after the previous one finished."""
        active = 0
        max_active = 0

        async def slow_job():
            nonlocal active, max_active
            active += 1
            max_active = max(max_active, active)
            await asyncio.sleep(0.02)
            active -= 1

        task = PeriodicTask(slow_job, interval_ms=1, initial_delay_ms=0)
        task.start()
        await asyncio.sleep(0.15)
        await task.stop()

        assert task.runs >= 2
        assert max_active == 1

    async def test_job_errors_do_not_stop_the_loop(self):
        """A failing run is logged and the loop continues."""
        calls = 0

        async def failing_job():
            nonlocal calls
            calls += 1
            raise RuntimeError("boom")

        task = PeriodicTask(failing_job, interval_ms=5, initial_delay_ms=0)
        task.start()
        await asyncio.sleep(0.05)
        await task.stop()

        assert calls >= 2

    async def test_stop_prevents_further_runs(self):
        """No run happens after stop()."""
        runs = []

        async def job():
            runs.append(1)

        task = PeriodicTask(job, interval_ms=5, initial_delay_ms=0)
        task.start()
        await asyncio.sleep(0.03)
        await task.stop()
        count = len(runs)

        await asyncio.sleep(0.03)

        assert len(runs) == count
        assert not task.running

    async def test_stop_lets_current_run_finish(self):
        """A run in progress completes before stop() returns."""
        finished = []

        async def job():
            await asyncio.sleep(0.03)
            finished.append(1)

        task = PeriodicTask(job, interval_ms=1000, initial_delay_ms=0)
        task.start()
        await asyncio.sleep(0.01)
        await task.stop()

        assert finished == [1]

    async def test_stop_timeout_cancels_run(self):
        """With a timeout, a run that takes too long is cancelled."""
        finished = []

        async def job():
            await asyncio.sleep(1)
            finished.append(1)

        task = PeriodicTask(job, interval_ms=1000, initial_delay_ms=0)
        task.start()
        await asyncio.sleep(0.01)
        await task.stop(timeout_ms=20)

        assert finished == []
        assert not task.running

    async def test_start_twice_is_noop(self):
        async def job():
            pass

        task = PeriodicTask(job, interval_ms=1000, initial_delay_ms=1000)
        task.start()
        first = task._task
        task.start()

        assert task._task is first
        await task.stop()
