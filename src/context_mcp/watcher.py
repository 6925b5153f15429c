"""Background watcher that keeps the index in sync with the source tree.

Runs a daemon thread that periodically calls the incremental indexer so
edits made outside of MCP tools are picked up. Destructive work can pause
it with ``pause_while``.
"""

import logging
import threading
from collections.abc import Callable
from typing import TypeVar

from context_mcp.indexer.indexer import IncrementalIndexer, UpdateResult

logger = logging.getLogger(__name__)

T = TypeVar("T")


class WatcherDaemon:
    """Polls the watch roots and runs incremental updates.

    The thread is a daemon, so it terminates with the main process.
    """

    def __init__(self, incremental: IncrementalIndexer, interval: int):
        """Initialize the watcher.

        Args:
            incremental: Indexer used for each cycle.
            interval: Poll interval in seconds. Must be > 0.
        """
        if interval <= 0:
            raise ValueError(f"Watch interval must be positive, got {interval}")

        self._incremental = incremental
        self._interval = interval
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._cycle_lock = threading.Lock()
        self._pause_lock = threading.Lock()
        self._pause_count = 0
        self.cycles = 0
        self.last_result: UpdateResult | None = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def is_paused(self) -> bool:
        with self._pause_lock:
            return self._pause_count > 0

    def start(self) -> None:
        """Start the background watcher thread."""
        if self.is_running:
            logger.warning("Watcher thread already running")
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._watch_loop,
            name="context-watcher",
            daemon=True,
        )
        self._thread.start()
        logger.info("Watcher started (interval: %ds)", self._interval)

    def stop(self) -> None:
        """Stop the watcher thread.

        Blocks until the thread terminates (up to one interval).
        """
        if not self.is_running:
            return

        self._stop_event.set()
        self._thread.join(timeout=self._interval + 1)
        if self._thread.is_alive():
            logger.warning("Watcher thread did not stop cleanly")
        else:
            logger.info("Watcher stopped")
        self._thread = None

    def run_cycle(self) -> UpdateResult | None:
        """Run one incremental update unless paused. Returns None when skipped."""
        with self._cycle_lock:
            if self.is_paused:
                logger.debug("Watcher paused, skipping cycle")
                return None
            result = self._incremental.update()
            self.cycles += 1
            self.last_result = result
        if result.new_count or result.modified_count or result.deleted_count:
            logger.info(
                "Auto-refresh: %d new, %d modified, %d deleted",
                result.new_count,
                result.modified_count,
                result.deleted_count,
            )
        else:
            logger.debug("Auto-refresh: no changes detected")
        return result

    def pause_while(self, fn: Callable[[], T]) -> T:
        """Run fn with cycles suppressed, after any in-flight cycle finishes."""
        with self._pause_lock:
            self._pause_count += 1
        try:
            with self._cycle_lock:
                pass
            return fn()
        finally:
            with self._pause_lock:
                self._pause_count -= 1

    def _watch_loop(self) -> None:
        """Main watch loop - runs in background thread."""
        logger.debug("Watch loop started")

        while not self._stop_event.is_set():
            # Sleep first, then refresh (allows immediate shutdown on start)
            if self._stop_event.wait(timeout=self._interval):
                break

            try:
                self.run_cycle()
            except Exception:
                logger.exception("Error during auto-refresh")

        logger.debug("Watch loop stopped")


class WatcherRegistry:
    """Holds the active watcher, if any, for services that must pause it."""

    def __init__(self):
        self._lock = threading.Lock()
        self._watcher: WatcherDaemon | None = None

    def register(self, watcher: WatcherDaemon) -> None:
        with self._lock:
            self._watcher = watcher

    def unregister(self) -> WatcherDaemon | None:
        with self._lock:
            watcher, self._watcher = self._watcher, None
            return watcher

    @property
    def active(self) -> WatcherDaemon | None:
        with self._lock:
            return self._watcher

    def pause_while(self, fn: Callable[[], T]) -> T:
        """Forward to the active watcher, or just call fn when there is none."""
        watcher = self.active
        if watcher is None:
            return fn()
        return watcher.pause_while(fn)
