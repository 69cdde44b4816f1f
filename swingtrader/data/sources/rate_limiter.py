import time
from collections import deque
from typing import Callable

from loguru import logger


class RateLimiter:
    """
    Sliding-window call budget.

    ``throttle()`` blocks until one more call fits in the window, then
    records it. Each instance owns its own call history.
    """

    def __init__(
        self,
        max_calls: int = 250,
        window_seconds: float = 60.0,
        margin_seconds: float = 0.1,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_calls <= 0 or window_seconds <= 0:
            raise ValueError("max_calls and window_seconds must be positive")
        self.max_calls = max_calls
        self.window_seconds = window_seconds
        self.margin_seconds = margin_seconds
        self._clock = clock
        self._sleep = sleep
        self._calls: deque[float] = deque()

    def _prune(self, now: float) -> None:
        while self._calls and now - self._calls[0] >= self.window_seconds:
            self._calls.popleft()

    @property
    def calls_in_window(self) -> int:
        self._prune(self._clock())
        return len(self._calls)

    def throttle(self) -> float:
        """Wait for a free slot and claim it. Returns the seconds slept."""
        now = self._clock()
        self._prune(now)

        waited = 0.0
        if len(self._calls) >= self.max_calls:
            wait = self.window_seconds - (now - self._calls[0]) + self.margin_seconds
            if wait > 0:
                logger.warning(
                    f"Rate limit reached ({self.max_calls}/{self.window_seconds:.0f}s), "
                    f"sleeping {wait:.1f}s"
                )
                self._sleep(wait)
                waited = wait
            now = self._clock()
            self._prune(now)

        self._calls.append(now)
        return waited
