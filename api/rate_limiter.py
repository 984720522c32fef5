"""
Rate Limiter
------------
Token bucket rate limiter for API calls.

Keeps the client under the server's undocumented throttling threshold.
Server-issued 429s are handled separately by the client.
"""

from dataclasses import dataclass
from threading import Lock
from typing import Callable, Optional
import asyncio
import time

from core.errors import RateLimitError


@dataclass
class RateLimitConfig:
    """Rate limit configuration."""
    capacity: int = 10  # Burst size
    refill_per_second: float = 3.0

    def __post_init__(self):
        if self.capacity < 1:
            raise ValueError("capacity must be at least 1")
        if self.refill_per_second <= 0:
            raise ValueError("refill_per_second must be positive")


class RateLimiter:
    """
    Token bucket rate limiter.

    Thread-safe rate limiting for API calls. The bucket starts full.
    """

    def __init__(
        self,
        config: Optional[RateLimitConfig] = None,
        clock: Optional[Callable[[], float]] = None
    ):
        self.config = config or RateLimitConfig()
        self._clock = clock or time.monotonic
        self._tokens = float(self.config.capacity)
        self._last_refill = self._clock()
        self._lock = Lock()

    async def acquire(self, timeout: float = 30.0) -> None:
        """
        Acquire a token, suspending until one is available.

        Raises RateLimitError if no token frees up within ``timeout``.
        """
        deadline = self._clock() + timeout

        while True:
            with self._lock:
                self._refill()

                if self._tokens >= 1.0:
                    self._tokens -= 1.0
                    return

                wait = self._wait_time()

            remaining = deadline - self._clock()
            if wait > remaining:
                raise RateLimitError(
                    "Timed out waiting for a local rate-limit permit",
                    retry_after=wait,
                    details={"source": "local"}
                )

            await asyncio.sleep(wait)

    def try_acquire(self) -> bool:
        """
        Try to acquire a token without blocking.
        Returns True if token available, False otherwise.
        """
        with self._lock:
            self._refill()

            if self._tokens >= 1.0:
                self._tokens -= 1.0
                return True

            return False

    def time_until_available(self) -> float:
        """Seconds until the next token can be granted (0 if one is ready)."""
        with self._lock:
            self._refill()
            return self._wait_time()

    def _wait_time(self) -> float:
        if self._tokens >= 1.0:
            return 0.0
        return (1.0 - self._tokens) / self.config.refill_per_second

    def _refill(self) -> None:
        """Refill tokens based on elapsed time."""
        now = self._clock()
        elapsed = max(0.0, now - self._last_refill)
        self._last_refill = now

        self._tokens = min(
            float(self.config.capacity),
            self._tokens + (elapsed * self.config.refill_per_second)
        )

    @property
    def available_tokens(self) -> float:
        """Get current available tokens."""
        with self._lock:
            self._refill()
            return self._tokens

    def reset(self) -> None:
        """Reset the rate limiter to a full bucket."""
        with self._lock:
            self._tokens = float(self.config.capacity)
            self._last_refill = self._clock()
