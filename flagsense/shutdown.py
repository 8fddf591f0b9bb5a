"""
Process-exit hook that flushes pending telemetry.
"""

import asyncio
import atexit
import logging
import signal
import sys
import threading
from typing import Any, Awaitable, Callable

logger = logging.getLogger("flagsense.shutdown")

_sigterm_installed = False


def _exit_on_signal(signum, frame) -> None:
    sys.exit(128 + signum)


def install_sigterm_handler() -> bool:
    """
    Turn SIGTERM into SystemExit so that atexit hooks run.

    Only installed once, from the main thread, and only when the host
    application has not set its own handler.

    Returns:
        True if the handler is in place
    """
    global _sigterm_installed
    if _sigterm_installed:
        return True
    if threading.current_thread() is not threading.main_thread():
        return False
    if signal.getsignal(signal.SIGTERM) is not signal.SIG_DFL:
        return False
    signal.signal(signal.SIGTERM, _exit_on_signal)
    _sigterm_installed = True
    return True


class ShutdownFlusher:
    """
    One-shot exit hook running a final flush.

    The flush runs on a fresh event loop because the application's loop is
    gone by the time atexit handlers fire. It is bounded by ``timeout_ms`` so
    an unreachable network cannot hold the process open.
    """

    def __init__(
        self,
        flush: Callable[[], Awaitable[Any]],
        timeout_ms: int = 10000,
    ):
        self._flush = flush
        self._timeout_ms = timeout_ms
        self._registered = False
        self._fired = False

    @property
    def fired(self) -> bool:
        return self._fired

    @property
    def registered(self) -> bool:
        return self._registered

    def register(self) -> None:
        """Register the hook with atexit. Repeated calls are ignored."""
        if self._registered or self._fired:
            return
        atexit.register(self._run_at_exit)
        install_sigterm_handler()
        self._registered = True

    def disarm(self) -> None:
        """Prevent the hook from running, e.g. after a graceful close."""
        self._fired = True
        if self._registered:
            atexit.unregister(self._run_at_exit)
            self._registered = False

    async def run(self) -> bool:
        """
        Run the final flush once.

        Returns:
            False if the hook had already run or was disarmed
        """
        if self._fired:
            return False
        self._fired = True
        try:
            await asyncio.wait_for(self._flush(), timeout=self._timeout_ms / 1000)
        except asyncio.TimeoutError:
            logger.warning(f"Final flush did not finish within {self._timeout_ms}ms")
        except Exception as e:
            logger.warning(f"Final flush failed: {e}")
        return True

    def _run_at_exit(self) -> None:
        if self._fired:
            return
        try:
            asyncio.run(self.run())
        except RuntimeError as e:
            logger.warning(f"Could not run final flush: {e}")
