"""Shared fixtures for spam guard tests."""

import pytest
from guard_doubles import FakeClock, ListAuditSink
from spam_guard.audit import AuditLogger
from spam_guard.reference_data import get_reference_data
from spam_guard.store import MemoryStore


@pytest.fixture
def reference():
    return get_reference_data()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock) -> MemoryStore:
    return MemoryStore(clock=clock)


@pytest.fixture
def audit_sink() -> ListAuditSink:
    return ListAuditSink()


@pytest.fixture
async def audit_logger(audit_sink):
    logger = AuditLogger(audit_sink)
    yield logger
    await logger.stop()
