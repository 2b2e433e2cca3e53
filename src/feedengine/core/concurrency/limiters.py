"""
Call Limiters

Debouncing for bursty callers: the builder session schedules a preview on
every edit, and a burst of edits must collapse into a single evaluation.
"""

import logging
import threading
from typing import Callable, Optional

from feedengine.core.monitoring.metrics import get_metrics_collector


logger = logging.getLogger(__name__)


class Debouncer:
    """
    Runs a callback once the caller has been quiet for `delay` seconds.

    Each trigger restarts the quiet period and replaces the pending
    callback, so only the most recent one ever runs. A delay of zero runs
    the callback immediately on the triggering thread.
    """

    def __init__(self, delay: float, name: str = "debouncer"):
        """
        Initialize the debouncer.

        Args:
            delay: Quiet period in seconds
            name: Name used for metrics and timer threads
        """
        self.delay = max(0.0, delay)
        self.name = name
        self._lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None
        self._pending: Optional[Callable[[], None]] = None
        self._coalesced = 0
        self._collector = get_metrics_collector()

    def trigger(self, callback: Callable[[], None]) -> None:
        """
        Schedule `callback`, replacing any pending one.

        Args:
            callback: Zero-argument callable
        """
        if self.delay == 0:
            self.cancel()
            callback()
            return

        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._coalesced += 1
                self._collector.increment(f"{self.name}.coalesced")
            self._pending = callback
            self._timer = threading.Timer(self.delay, self._fire)
            self._timer.daemon = True
            self._timer.name = f"{self.name}-timer"
            self._timer.start()

    def _fire(self) -> None:
        with self._lock:
            callback, self._pending = self._pending, None
            self._timer = None
        if callback is not None:
            try:
                callback()
            except Exception as e:
                logger.error(f"Debounced callback {self.name} failed: {e}", exc_info=True)

    def flush(self) -> bool:
        """
        Run the pending callback now on the calling thread.

        Returns:
            True if a callback was pending
        """
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            callback, self._pending = self._pending, None
        if callback is None:
            return False
        callback()
        return True

    def cancel(self) -> None:
        """Drop the pending callback without running it."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._pending = None

    @property
    def pending(self) -> bool:
        """Whether a callback is waiting for the quiet period to end."""
        with self._lock:
            return self._pending is not None

    @property
    def coalesced_count(self) -> int:
        """Number of triggers that replaced a pending callback."""
        with self._lock:
            return self._coalesced
