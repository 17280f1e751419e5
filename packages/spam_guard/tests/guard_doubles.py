"""Test doubles for clocks, stores and audit sinks."""

import asyncio
from datetime import datetime, timedelta, timezone

from spam_guard.audit import AuditEvent
from spam_guard.store import MemoryStore, StoreError


class FakeClock:
    """Manually advanced monotonic clock (seconds)."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeMillisClock:
    """Manually advanced wall clock in epoch milliseconds."""

    def __init__(self, start: int = 1_700_000_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class FakeUtcClock:
    """Manually advanced UTC datetime clock."""

    def __init__(self):
        self.now = datetime(2025, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FailingStore:
    """Store whose every call fails, like an unreachable Redis."""

    name = "failing"

    def __init__(self):
        self.calls = 0

    async def _fail(self, *args, **kwargs):
        self.calls += 1
        raise StoreError("connection refused")

    get = set = incr = delete = keys = _fail


class SlowStore(MemoryStore):
    """Store that never answers within the timeout."""

    name = "slow"

    async def get(self, key):
        await asyncio.sleep(1)
        return await super().get(key)

    async def set(self, key, value, ttl_seconds):
        await asyncio.sleep(1)
        await super().set(key, value, ttl_seconds)

    async def incr(self, key, ttl_seconds):
        await asyncio.sleep(1)
        return await super().incr(key, ttl_seconds)


class FlakyReadStore(MemoryStore):
    """MemoryStore whose next `failures` reads fail, like a Redis blip."""

    name = "flaky"

    def __init__(self):
        super().__init__()
        self.failures = 0

    async def get(self, key):
        if self.failures > 0:
            self.failures -= 1
            raise StoreError("read timed out")
        return await super().get(key)


class RecordingStore(MemoryStore):
    """MemoryStore that counts calls."""

    def __init__(self):
        super().__init__()
        self.calls: list[str] = []

    async def get(self, key):
        self.calls.append(f"get {key}")
        return await super().get(key)

    async def set(self, key, value, ttl_seconds):
        self.calls.append(f"set {key}")
        await super().set(key, value, ttl_seconds)

    async def incr(self, key, ttl_seconds):
        self.calls.append(f"incr {key}")
        return await super().incr(key, ttl_seconds)

    async def delete(self, key):
        self.calls.append(f"delete {key}")
        await super().delete(key)


class ListAuditSink:
    """Collects audit events in memory."""

    def __init__(self):
        self.events: list[AuditEvent] = []

    async def write(self, event: AuditEvent) -> None:
        self.events.append(event)

