"""
Fixed-window rate limiter for event ingestion.

One counter per key (``track:{site_id}``). The first request in a window
opens it with count=1 and reset=now+window; requests past the limit are
rejected with the existing reset so clients can back off.

In-process only: each API replica enforces its own window. Expired windows
are swept from ``check`` every ``cleanup_interval`` seconds.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone

import structlog

from core.config import get_settings

logger = structlog.get_logger()


@dataclass
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset: datetime


@dataclass
class _Window:
    count: int
    reset_at: float


class RateLimiter:
    def __init__(
        self,
        limit: int,
        window_seconds: float,
        clock: Callable[[], float] = time.time,
        cleanup_interval: float = 300.0,
    ):
        self.limit = limit
        self.window_seconds = window_seconds
        self.cleanup_interval = cleanup_interval
        self._clock = clock
        self._windows: dict[str, _Window] = {}
        self._next_cleanup = clock() + cleanup_interval

    def _result(self, allowed: bool, remaining: int, reset_at: float) -> RateLimitResult:
        return RateLimitResult(
            allowed=allowed,
            limit=self.limit,
            remaining=remaining,
            reset=datetime.fromtimestamp(reset_at, tz=timezone.utc),
        )

    def check(self, key: str) -> RateLimitResult:
        """Count one request against ``key``."""
        now = self._clock()
        if now >= self._next_cleanup:
            removed = self.cleanup()
            self._next_cleanup = now + self.cleanup_interval
            if removed:
                logger.debug("rate_limit.cleanup", removed=removed, active=len(self._windows))
        window = self._windows.get(key)

        if window is None or now >= window.reset_at:
            window = _Window(count=1, reset_at=now + self.window_seconds)
            self._windows[key] = window
            return self._result(True, self.limit - 1, window.reset_at)

        if window.count >= self.limit:
            logger.warning("rate_limit.exceeded", key=key, limit=self.limit)
            return self._result(False, 0, window.reset_at)

        window.count += 1
        return self._result(True, self.limit - window.count, window.reset_at)

    def peek(self, key: str) -> RateLimitResult:
        """Report the current state for ``key`` without counting a request."""
        now = self._clock()
        window = self._windows.get(key)
        if window is None or now >= window.reset_at:
            return self._result(True, self.limit, now + self.window_seconds)
        remaining = max(0, self.limit - window.count)
        return self._result(remaining > 0, remaining, window.reset_at)

    def cleanup(self) -> int:
        """Drop expired windows. Returns how many were removed."""
        now = self._clock()
        expired = [key for key, window in self._windows.items() if now >= window.reset_at]
        for key in expired:
            del self._windows[key]
        return len(expired)

    def clear(self) -> None:
        self._windows.clear()


def build_track_rate_limiter() -> RateLimiter:
    settings = get_settings()
    return RateLimiter(
        limit=settings.track_rate_limit,
        window_seconds=settings.track_rate_limit_window_seconds,
    )
