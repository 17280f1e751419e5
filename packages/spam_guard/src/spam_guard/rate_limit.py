"""Per-address request rate limiting.

Counts requests per address in fixed windows using the store's atomic
increment, so every API worker sharing a Redis store sees the same count.
Keys are spam:ratelimit:{ip}:{window} and expire with their window.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from spam_guard.store import KeyValueStore, StoreError, bounded

logger = logging.getLogger("spam-guard.rate-limit")

RATE_LIMIT_PREFIX = "spam:ratelimit:"

# 3 registrations per 10 minutes per address
REGISTRATION_MAX_REQUESTS = 3
REGISTRATION_WINDOW_SECONDS = 600


@dataclass
class RateLimitResult:
    """Outcome of one rate limit check."""

    allowed: bool
    count: int
    limit: int
    retry_after_seconds: int = 0


class RateLimiter:
    """Fixed-window request counter. Fails open on store errors."""

    def __init__(
        self,
        store: KeyValueStore,
        max_requests: int = REGISTRATION_MAX_REQUESTS,
        window_seconds: int = REGISTRATION_WINDOW_SECONDS,
        timeout_seconds: float = 0.25,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.timeout = timeout_seconds
        self._clock = clock

    async def check_rate_limit(self, ip: str) -> RateLimitResult:
        """Count a request from an address and decide if it is allowed."""
        now = self._clock()
        window = int(now // self.window_seconds)
        key = f"{RATE_LIMIT_PREFIX}{ip}:{window}"

        try:
            count = await bounded(self.store.incr(key, self.window_seconds), self.timeout)
        except StoreError as e:
            logger.warning(f"Rate limit check failed for {ip}, failing open: {e}")
            return RateLimitResult(allowed=True, count=0, limit=self.max_requests)

        if count <= self.max_requests:
            return RateLimitResult(allowed=True, count=count, limit=self.max_requests)

        window_ends = (window + 1) * self.window_seconds
        return RateLimitResult(
            allowed=False,
            count=count,
            limit=self.max_requests,
            retry_after_seconds=max(1, int(window_ends - now)),
        )
