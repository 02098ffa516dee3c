from __future__ import annotations

import time
from collections import deque
from typing import Callable, Deque


class SlidingWindowLimiter:
    """Non-blocking request budget for one upstream source.

    ``try_acquire`` never waits: an exhausted budget means the caller should
    move on to the next source rather than stall the resolver chain. A 429
    from upstream closes the window entirely until ``Retry-After`` elapses.
    """

    def __init__(
        self,
        max_requests: int = 50,
        window_seconds: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._requests: Deque[float] = deque()
        self._blocked_until = 0.0
        self.stats = {"requests": 0, "rejected": 0, "rate_limited": 0}

    def try_acquire(self) -> bool:
        now = self._clock()
        if now < self._blocked_until:
            self.stats["rejected"] += 1
            return False
        while self._requests and now - self._requests[0] >= self.window_seconds:
            self._requests.popleft()
        if len(self._requests) >= self.max_requests:
            self.stats["rejected"] += 1
            return False
        self._requests.append(now)
        self.stats["requests"] += 1
        return True

    def block_for(self, seconds: float) -> None:
        """Refuse every request for ``seconds`` (after an upstream 429)."""
        self.stats["rate_limited"] += 1
        self._blocked_until = max(self._blocked_until, self._clock() + max(seconds, 0.0))

    @property
    def blocked(self) -> bool:
        return self._clock() < self._blocked_until


__all__ = ["SlidingWindowLimiter"]
