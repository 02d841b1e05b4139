#!/usr/bin/env python3
"""Inactivity watchdog: ends an idle voice session."""

import threading
from typing import Callable, Optional

from stemvoice.utils import voice_log


class InactivityWatchdog:
    """Single resettable timer.

    reset() cancels any armed timer and arms a fresh one; on expiry the
    on_timeout callback runs once on the timer thread. A timer that was
    cancelled or superseded never calls back, even if it already fired and
    is waiting on the lock.
    """

    def __init__(
        self,
        timeout: float,
        on_timeout: Callable[[], None],
        timer_factory: Callable[..., threading.Timer] = threading.Timer,
    ):
        self.timeout = timeout
        self._on_timeout = on_timeout
        self._timer_factory = timer_factory
        self._timer: Optional[threading.Timer] = None
        self._generation = 0
        self._lock = threading.Lock()

    @property
    def armed(self) -> bool:
        with self._lock:
            return self._timer is not None

    def reset(self):
        """(Re)arm the timer for a full timeout period."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._generation += 1
            self._timer = self._timer_factory(self.timeout, self._fire, args=[self._generation])
            self._timer.daemon = True
            self._timer.start()

    def cancel(self):
        """Disarm. Safe to call when nothing is armed."""
        with self._lock:
            self._generation += 1
            if self._timer is None:
                return
            self._timer.cancel()
            self._timer = None

    def _fire(self, generation: int):
        with self._lock:
            if generation != self._generation:
                return
            self._timer = None
        voice_log("WATCHDOG", f"No speech for {self.timeout:.0f}s, ending session")
        self._on_timeout()
