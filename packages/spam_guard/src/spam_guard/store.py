"""Key-value storage for reputation records and timing tokens.

Two backends share one async interface:
- RedisStore: redis.asyncio client for production
- MemoryStore: TTL dict with a periodic sweep, used when Redis is not
  configured and as the test double

Callers wrap every call in bounded() so a slow store degrades like a failed one.
"""

import asyncio
import contextlib
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Protocol, TypeVar

import redis.asyncio as redis

from spam_guard.config import SpamGuardSettings

logger = logging.getLogger("spam-guard.store")

T = TypeVar("T")


class StoreError(Exception):
    """The key-value store failed or is unreachable."""

    pass


class StoreTimeoutError(StoreError):
    """A key-value store call exceeded its timeout."""

    pass


class KeyValueStore(Protocol):
    """Minimal async key-value interface with per-key expiry."""

    name: str

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    async def incr(self, key: str, ttl_seconds: int) -> int: ...

    async def delete(self, key: str) -> None: ...

    async def keys(self, prefix: str) -> list[str]: ...


async def bounded(awaitable: Awaitable[T], timeout: float) -> T:
    """Await a store call, converting a timeout into StoreTimeoutError."""
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError:
        raise StoreTimeoutError(f"Store call timed out after {timeout:.3f}s") from None


# =============================================================================
# In-Memory Store
# =============================================================================


class MemoryStore:
    """Process-local TTL store.

    All operations are protected by asyncio.Lock. Expired keys are invisible
    to readers immediately and are physically removed by the sweep task.
    """

    name = "memory"

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._data: dict[str, tuple[str, float]] = {}
        self._lock = asyncio.Lock()
        self._clock = clock
        self._sweep_task: asyncio.Task | None = None
        self._swept_count: int = 0

    def _live(self, key: str, now: float) -> str | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at <= now:
            del self._data[key]
            return None
        return value

    async def get(self, key: str) -> str | None:
        async with self._lock:
            return self._live(key, self._clock())

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        async with self._lock:
            self._data[key] = (value, self._clock() + ttl_seconds)

    async def incr(self, key: str, ttl_seconds: int) -> int:
        """Increment an integer counter and refresh its expiry."""
        async with self._lock:
            now = self._clock()
            current = self._live(key, now)
            value = int(current) + 1 if current is not None else 1
            self._data[key] = (str(value), now + ttl_seconds)
            return value

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._data.pop(key, None)

    async def keys(self, prefix: str) -> list[str]:
        async with self._lock:
            now = self._clock()
            return [
                key
                for key in list(self._data)
                if key.startswith(prefix) and self._live(key, now) is not None
            ]

    async def sweep_expired(self) -> int:
        """Remove expired entries. Returns count of removed entries."""
        async with self._lock:
            now = self._clock()
            expired = [k for k, (_, exp) in self._data.items() if exp <= now]
            for key in expired:
                del self._data[key]
            self._swept_count += len(expired)
            return len(expired)

    async def start_sweep_task(self, interval_seconds: int = 60) -> None:
        """Start background sweep task."""
        if self._sweep_task is None:
            self._sweep_task = asyncio.create_task(self._periodic_sweep(interval_seconds))

    async def stop_sweep_task(self) -> None:
        """Stop background sweep task."""
        if self._sweep_task:
            self._sweep_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sweep_task
            self._sweep_task = None

    async def close(self) -> None:
        await self.stop_sweep_task()

    async def _periodic_sweep(self, interval_seconds: int) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            removed = await self.sweep_expired()
            if removed > 0:
                logger.debug(f"Swept {removed} expired key(s)")

    @property
    def total_swept(self) -> int:
        """Total number of entries swept (for testing)."""
        return self._swept_count


# =============================================================================
# Redis Store
# =============================================================================


class RedisStore:
    """Redis-backed store. Redis errors surface as StoreError."""

    name = "redis"

    def __init__(self, client: redis.Redis):
        self.redis = client

    @classmethod
    def from_url(cls, url: str) -> "RedisStore":
        return cls(redis.from_url(url, decode_responses=True))

    async def get(self, key: str) -> str | None:
        try:
            return await self.redis.get(key)
        except redis.RedisError as e:
            raise StoreError(f"Redis GET failed: {e}") from e

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        try:
            await self.redis.set(key, value, ex=ttl_seconds)
        except redis.RedisError as e:
            raise StoreError(f"Redis SET failed: {e}") from e

    async def incr(self, key: str, ttl_seconds: int) -> int:
        try:
            # INCR and EXPIRE in one MULTI/EXEC round trip
            pipe = self.redis.pipeline(transaction=True)
            pipe.incr(key)
            pipe.expire(key, ttl_seconds)
            results = await pipe.execute()
            return int(results[0])
        except redis.RedisError as e:
            raise StoreError(f"Redis INCR failed: {e}") from e

    async def delete(self, key: str) -> None:
        try:
            await self.redis.delete(key)
        except redis.RedisError as e:
            raise StoreError(f"Redis DEL failed: {e}") from e

    async def keys(self, prefix: str) -> list[str]:
        try:
            return [key async for key in self.redis.scan_iter(match=f"{prefix}*")]
        except redis.RedisError as e:
            raise StoreError(f"Redis SCAN failed: {e}") from e

    async def close(self) -> None:
        await self.redis.aclose()


def create_store(settings: SpamGuardSettings) -> KeyValueStore:
    """Build the configured store: Redis when REDIS_URL is set, else memory."""
    if settings.redis_url:
        logger.info("Using Redis store for spam guard state")
        return RedisStore.from_url(settings.redis_url)
    logger.info("Using in-memory store for spam guard state")
    return MemoryStore()
