"""Trigger debouncing for interactive recomputes."""

import threading
import time
from typing import Callable

DEFAULT_DEBOUNCE_MS = 30


class Debouncer:
    """Accept the first trigger, drop any that follow within ``window_ms``.

    The window is measured from the last accepted trigger, so a held key
    still fires roughly every ``window_ms``.
    """

    def __init__(
        self,
        window_ms: float = DEFAULT_DEBOUNCE_MS,
        clock: Callable[[], float] = time.monotonic,
    ):
        if window_ms < 0:
            raise ValueError(f"window_ms must be non-negative, got {window_ms}")
        self.window_s = window_ms / 1000.0
        self._clock = clock
        self._last_fire: float | None = None
        self._lock = threading.Lock()
        self.suppressed = 0

    def should_fire(self) -> bool:
        with self._lock:
            now = self._clock()
            if self._last_fire is not None and now - self._last_fire < self.window_s:
                self.suppressed += 1
                return False
            self._last_fire = now
            return True

    def reset(self):
        with self._lock:
            self._last_fire = None
            self.suppressed = 0
