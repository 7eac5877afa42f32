"""
Storage availability monitor.

Runs a background thread that pings the database and keeps an "is available"
flag current. Request handling never waits on reconnection: the store checks
the flag before touching the database and fails fast with StorageUnavailable
while the monitor retries in the background.

Retry schedule:
  - Healthy: ping every ``interval`` seconds
  - Failing: exponential backoff starting at ``interval``, doubling up to ``max_backoff``
  - First successful ping after a failure restores availability
"""

import logging
import threading

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)


class StorageMonitor:
    """Tracks database reachability and reconnects with backoff."""

    def __init__(self, engine: Engine, interval: float = 5.0, max_backoff: float = 60.0):
        self.engine = engine
        self.interval = interval
        self.max_backoff = max_backoff
        self._available = threading.Event()
        self._available.set()
        self._stop = threading.Event()
        self._wake = threading.Event()
        self._thread: threading.Thread | None = None
        self.last_error: str | None = None

    @property
    def is_available(self) -> bool:
        return self._available.is_set()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def ping(self) -> bool:
        """Run ``SELECT 1`` and update availability. Never raises."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            self.last_error = str(e)
            if self._available.is_set():
                logger.error("Database connection lost: %s", e)
            self._available.clear()
            return False

        if not self._available.is_set():
            logger.info("Database connection restored")
        self.last_error = None
        self._available.set()
        return True

    def mark_unavailable(self, reason: str) -> None:
        """Called by the store when a request hits a connectivity failure."""
        if self._available.is_set():
            logger.warning("Marking storage unavailable: %s", reason)
        self.last_error = reason
        self._available.clear()
        # Start reconnecting immediately instead of waiting out the healthy interval
        self._wake.set()

    def next_delay(self, current: float | None) -> float:
        """Delay before the next ping given the previous failing delay (None when healthy)."""
        if self.is_available:
            return self.interval
        if current is None:
            return self.interval
        return min(current * 2, self.max_backoff)

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self.ping()
        self._thread = threading.Thread(
            target=self._run, name="storage-monitor", daemon=True
        )
        self._thread.start()
        logger.info("Storage monitor started (interval=%.1fs)", self.interval)

    def stop(self) -> None:
        self._stop.set()
        self._wake.set()
        if self._thread is not None:
            self._thread.join(timeout=self.interval + 1)
            self._thread = None
        logger.info("Storage monitor stopped")

    def _run(self) -> None:
        failing_delay: float | None = None
        while not self._stop.is_set():
            delay = failing_delay if failing_delay is not None else self.interval
            self._wake.wait(delay)
            self._wake.clear()
            if self._stop.is_set():
                break

            if self.ping():
                failing_delay = None
            else:
                failing_delay = self.next_delay(failing_delay)
                logger.info("Reconnect attempt failed, retrying in %.1fs", failing_delay)
