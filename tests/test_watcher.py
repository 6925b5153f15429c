"""Tests for watcher module."""

import threading
import time
from unittest.mock import MagicMock

import pytest

from context_mcp.indexer.indexer import UpdateResult
from context_mcp.watcher import WatcherDaemon, WatcherRegistry


def wait_for_condition(condition_fn, timeout: float = 3.0, interval: float = 0.1) -> bool:
    """Wait for a condition to become true, polling at interval.

    Args:
        condition_fn: Callable that returns True when condition is met.
        timeout: Maximum time to wait in seconds.
        interval: Time between checks in seconds.

    Returns:
        True if condition was met, False if timeout was reached.
    """
    deadline = time.time() + timeout
    while time.time() < deadline:
        if condition_fn():
            return True
        time.sleep(interval)
    return False


def make_incremental(**counts) -> MagicMock:
    incremental = MagicMock()
    incremental.update.return_value = UpdateResult(**counts)
    return incremental


class TestWatcherDaemon:
    """Tests for WatcherDaemon class."""

    def test_init_requires_positive_interval(self):
        """Test WatcherDaemon requires positive interval."""
        with pytest.raises(ValueError, match="Watch interval must be positive"):
            WatcherDaemon(MagicMock(), 0)
        with pytest.raises(ValueError, match="Watch interval must be positive"):
            WatcherDaemon(MagicMock(), -1)

    def test_start_creates_daemon_thread(self):
        """Test start() creates a daemon thread."""
        watcher = WatcherDaemon(make_incremental(), 1)

        watcher.start()
        try:
            assert watcher.is_running
            assert watcher._thread.daemon is True
            assert watcher._thread.name == "context-watcher"
        finally:
            watcher.stop()

    def test_start_idempotent(self):
        """Test calling start() twice doesn't create duplicate threads."""
        watcher = WatcherDaemon(make_incremental(), 1)

        watcher.start()
        thread1 = watcher._thread
        watcher.start()
        try:
            assert watcher._thread is thread1
        finally:
            watcher.stop()

    def test_stop_terminates_thread(self):
        """Test stop() terminates the watcher thread."""
        watcher = WatcherDaemon(make_incremental(), 1)
        watcher.start()
        watcher.stop()
        assert not watcher.is_running
        assert watcher._thread is None

    def test_stop_idempotent(self):
        """Test calling stop() when not running is safe."""
        WatcherDaemon(MagicMock(), 1).stop()

    def test_update_called_after_interval(self):
        """Test the incremental update runs after the interval elapses."""
        incremental = make_incremental(new_count=1)
        watcher = WatcherDaemon(incremental, 1)

        watcher.start()
        try:
            assert wait_for_condition(lambda: watcher.cycles >= 1)
            assert watcher.last_result.new_count == 1
        finally:
            watcher.stop()

    def test_exception_doesnt_stop_thread(self):
        """Test exceptions during a cycle don't stop the thread."""
        incremental = MagicMock()
        calls = 0

        def side_effect():
            nonlocal calls
            calls += 1
            if calls == 1:
                raise RuntimeError("Simulated error")
            return UpdateResult()

        incremental.update.side_effect = side_effect
        watcher = WatcherDaemon(incremental, 1)

        watcher.start()
        try:
            assert wait_for_condition(lambda: calls >= 2, timeout=5.0)
        finally:
            watcher.stop()

    def test_run_cycle_skipped_while_paused(self):
        """Test cycles are skipped while a pause is held."""
        incremental = make_incremental()
        watcher = WatcherDaemon(incremental, 60)

        skipped = watcher.pause_while(watcher.run_cycle)

        assert skipped is None
        incremental.update.assert_not_called()
        assert not watcher.is_paused
        assert watcher.run_cycle() is not None
        assert watcher.cycles == 1

    def test_pause_waits_for_inflight_cycle(self):
        """Test pause_while runs only after a running cycle finishes."""
        entered = threading.Event()
        release = threading.Event()
        order = []

        def slow_update():
            entered.set()
            release.wait(timeout=3)
            order.append("cycle")
            return UpdateResult()

        incremental = MagicMock()
        incremental.update.side_effect = slow_update
        watcher = WatcherDaemon(incremental, 60)

        cycle = threading.Thread(target=watcher.run_cycle)
        cycle.start()
        assert entered.wait(timeout=3)

        pauser = threading.Thread(target=lambda: watcher.pause_while(lambda: order.append("paused")))
        pauser.start()
        time.sleep(0.1)
        release.set()
        cycle.join(timeout=3)
        pauser.join(timeout=3)

        assert order == ["cycle", "paused"]

    def test_pause_while_propagates_result(self):
        watcher = WatcherDaemon(make_incremental(), 60)
        assert watcher.pause_while(lambda: 42) == 42


class TestWatcherRegistry:
    def test_without_watcher_calls_directly(self):
        assert WatcherRegistry().pause_while(lambda: "done") == "done"

    def test_register_and_unregister(self):
        registry = WatcherRegistry()
        watcher = WatcherDaemon(make_incremental(), 60)
        registry.register(watcher)
        assert registry.active is watcher

        assert registry.pause_while(lambda: watcher.is_paused) is True
        assert registry.unregister() is watcher
        assert registry.active is None
