"""
GridLive: Inbound Rate Limiter
Fixed-window request budget per client identity (usually the client IP).

Each identity's window opens at its first request and lasts
``window_seconds``; up to ``max_requests`` are admitted inside it.  The next
request after the window closes opens a fresh one.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Optional

from loguru import logger

REJECT_REASON = "rate_limited"
REJECT_MESSAGE = "Too many requests from this IP, please try again later."


@dataclass(frozen=True)
class Admission:
    allowed:     bool
    limit:       int
    remaining:   int
    reset_after: float              # seconds until the current window closes
    retry_after: Optional[float] = None
    reason:      Optional[str] = None
    message:     Optional[str] = None


@dataclass
class _Window:
    opened_at: float
    count:     int


class FixedWindowRateLimiter:
    """
    Parameters
    ----------
    window_seconds:
        Length of one window (reference: 15 minutes).
    max_requests:
        Requests admitted per identity per window (reference: 100).
    clock:
        Monotonic seconds; injectable for tests.
    """

    def __init__(
        self,
        window_seconds: float = 15 * 60,
        max_requests: int = 100,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if window_seconds <= 0 or max_requests <= 0:
            raise ValueError("window_seconds and max_requests must be positive")
        self.window_seconds = float(window_seconds)
        self.max_requests = max_requests
        self._clock = clock
        self._windows: dict[str, _Window] = {}

    def __len__(self) -> int:
        return len(self._windows)

    def _prune(self, now: float) -> None:
        # windows are inserted in opening order, so stop at the first live one
        while self._windows:
            key, window = next(iter(self._windows.items()))
            if now - window.opened_at < self.window_seconds:
                break
            del self._windows[key]

    def admit(self, identity: str) -> Admission:
        now = self._clock()
        self._prune(now)

        window = self._windows.get(identity)
        if window is None:
            window = self._windows[identity] = _Window(opened_at=now, count=0)

        reset_after = max(self.window_seconds - (now - window.opened_at), 0.0)
        if window.count >= self.max_requests:
            logger.debug("Rate limit hit for {} ({} in window).", identity, window.count)
            return Admission(
                allowed=False,
                limit=self.max_requests,
                remaining=0,
                reset_after=reset_after,
                retry_after=reset_after,
                reason=REJECT_REASON,
                message=REJECT_MESSAGE,
            )

        window.count += 1
        return Admission(
            allowed=True,
            limit=self.max_requests,
            remaining=self.max_requests - window.count,
            reset_after=reset_after,
        )
