"""Rolling-window admission control for batch starts."""
from __future__ import annotations

import logging
import threading
import time
from collections import deque
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class StartRateLimiter:
    """
    Allow at most `max_starts` acquisitions within any rolling `window_s` window.

    Only start times are tracked: work admitted in one window may still be
    running when the next window opens.
    """

    def __init__(
        self,
        max_starts: int,
        window_s: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if max_starts < 1:
            raise ValueError("max_starts must be >= 1")
        if window_s <= 0:
            raise ValueError("window_s must be > 0")
        self.max_starts = max_starts
        self.window_s = window_s
        self._clock = clock
        self._sleep = sleep
        self._starts: deque[float] = deque()
        self._lock = threading.Lock()

    def _prune(self, now: float) -> None:
        window_start = now - self.window_s
        while self._starts and self._starts[0] <= window_start:
            self._starts.popleft()

    def try_acquire(self) -> tuple[bool, float]:
        """Record a start if the window has room. Returns (admitted, seconds to wait otherwise)."""
        with self._lock:
            now = self._clock()
            self._prune(now)
            if len(self._starts) < self.max_starts:
                self._starts.append(now)
                return True, 0.0
            return False, max(0.0, self._starts[0] + self.window_s - now)

    def acquire(self, cancel_event: Optional[threading.Event] = None) -> bool:
        """
        Block until a start is admitted. Returns False if cancel_event is set
        before admission.
        """
        while True:
            if cancel_event is not None and cancel_event.is_set():
                return False
            admitted, wait_s = self.try_acquire()
            if admitted:
                return True
            logger.debug(f"Start quota exhausted; waiting {wait_s:.3f}s")
            if cancel_event is not None:
                if cancel_event.wait(wait_s):
                    return False
            else:
                self._sleep(wait_s)
