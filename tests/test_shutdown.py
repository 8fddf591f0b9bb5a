"""Tests for the exit-time flush hook."""

import asyncio
import atexit
import signal

import pytest
from flagsense import shutdown
from flagsense.shutdown import ShutdownFlusher, install_sigterm_handler


@pytest.fixture
def no_atexit(monkeypatch):
    """Record atexit registrations instead of touching the real registry."""
    registered = []
    monkeypatch.setattr(atexit, "register", registered.append)
    monkeypatch.setattr(atexit, "unregister", registered.remove)
    monkeypatch.setattr(shutdown, "install_sigterm_handler", lambda: True)
    return registered


class TestShutdownFlusher:
    """Tests for ShutdownFlusher class."""

    def test_runs_exactly_once(self, no_atexit):
        """The hook flushes once no matter how often it fires."""
        calls = []

        async def flush():
            calls.append(1)

        flusher = ShutdownFlusher(flush)
        flusher.register()
        flusher.register()
        assert len(no_atexit) == 1

        no_atexit[0]()
        no_atexit[0]()

        assert calls == [1]
        assert flusher.fired is True

    def test_disarm_prevents_flush(self, no_atexit):
        calls = []

        async def flush():
            calls.append(1)

        flusher = ShutdownFlusher(flush)
        flusher.register()
        hook = no_atexit[0]

        flusher.disarm()
        hook()

        assert calls == []
        assert no_atexit == []

    async def test_flush_bounded_by_timeout(self):
        """An unreachable network cannot hold exit open."""

        async def hanging_flush():
            await asyncio.sleep(10)

        flusher = ShutdownFlusher(hanging_flush, timeout_ms=20)

        assert await asyncio.wait_for(flusher.run(), timeout=1) is True

    async def test_flush_errors_are_logged(self, caplog):
        async def failing_flush():
            raise RuntimeError("boom")

        flusher = ShutdownFlusher(failing_flush)

        assert await flusher.run() is True
        assert "Final flush failed: boom" in caplog.text


class TestSigtermHandler:
    """Tests for install_sigterm_handler function."""

    def test_keeps_existing_handler(self, monkeypatch):
        """A handler set by the application is never replaced."""

        def app_handler(signum, frame):
            pass

        monkeypatch.setattr(shutdown, "_sigterm_installed", False)
        previous = signal.signal(signal.SIGTERM, app_handler)
        try:
            assert install_sigterm_handler() is False
            assert signal.getsignal(signal.SIGTERM) is app_handler
        finally:
            signal.signal(signal.SIGTERM, previous)

    def test_installs_when_default(self, monkeypatch):
        monkeypatch.setattr(shutdown, "_sigterm_installed", False)
        previous = signal.signal(signal.SIGTERM, signal.SIG_DFL)
        try:
            assert install_sigterm_handler() is True
            assert signal.getsignal(signal.SIGTERM) is shutdown._exit_on_signal
        finally:
            signal.signal(signal.SIGTERM, previous)
