"""
Self-rescheduling periodic task.
"""

import asyncio
import logging
import random
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger("flagsense.scheduler")


class PeriodicTask:
    """
    Runs an async job repeatedly with a pause between runs.

    The next run is scheduled only after the previous one has finished, so
    runs never overlap. ``stop()`` sets a cancellation event that ends the
    loop at the next wait.

    Example:
        ```python
        task = PeriodicTask(flush, interval_ms=300000, initial_delay_ms=120000)
        task.start()
        ...
        await task.stop()
        ```
    """

    def __init__(
        self,
        job: Callable[[], Awaitable[Any]],
        interval_ms: int,
        initial_delay_ms: Optional[int] = None,
        jitter_factor: float = 0.0,
        name: str = "periodic-task",
    ):
        self._job = job
        self._interval_ms = interval_ms
        self._initial_delay_ms = interval_ms if initial_delay_ms is None else initial_delay_ms
        self._jitter_factor = jitter_factor
        self._name = name
        self._stopped = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self.runs = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the loop on the running event loop. No-op if already running."""
        if self.running:
            return
        self._stopped.clear()
        self._task = asyncio.create_task(self._run(), name=self._name)

    async def stop(self, timeout_ms: Optional[int] = None) -> None:
        """
        Stop scheduling and wait for the loop to exit.

        A run in progress is allowed to finish; with ``timeout_ms`` it is
        cancelled once the timeout elapses.
        """
        self._stopped.set()
        if self._task is None:
            return
        task, self._task = self._task, None
        if task is asyncio.current_task():
            return
        timeout = None if timeout_ms is None else timeout_ms / 1000
        try:
            await asyncio.wait_for(task, timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"{self._name} did not stop within {timeout_ms}ms, cancelled")
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        if await self._wait(self._initial_delay_ms):
            return
        while True:
            try:
                await self._job()
            except Exception as e:
                logger.warning(f"{self._name} run failed: {e}")
            self.runs += 1
            if await self._wait(self._next_interval()):
                return

    def _next_interval(self) -> float:
        jitter = self._interval_ms * self._jitter_factor * (random.random() * 2 - 1)
        return max(0, self._interval_ms + jitter)

    async def _wait(self, delay_ms: float) -> bool:
        """Sleep for ``delay_ms``; True if stopped meanwhile."""
        try:
            await asyncio.wait_for(self._stopped.wait(), timeout=delay_ms / 1000)
        except asyncio.TimeoutError:
            return False
        return True
