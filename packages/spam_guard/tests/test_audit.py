"""Tests for fire-and-forget audit logging."""

import json
import logging
from datetime import datetime, timezone

import pytest
from guard_doubles import ListAuditSink
from spam_guard.audit import (
    ACTION_SPAM_BLOCKED,
    AuditEvent,
    AuditLogger,
    ClientInfo,
    LoggingAuditSink,
    mask_email,
)


def make_event(action: str = ACTION_SPAM_BLOCKED) -> AuditEvent:
    return AuditEvent(
        action=action,
        details={"score": 90},
        client_info=ClientInfo(ip="192.0.2.1", user_agent="curl/8"),
        created_at=datetime(2025, 1, 1, tzinfo=timezone.utc),
    )


class FlakySink(ListAuditSink):
    """Fails on the first write, then records."""

    def __init__(self):
        super().__init__()
        self.failed = False

    async def write(self, event: AuditEvent) -> None:
        if not self.failed:
            self.failed = True
            raise RuntimeError("database is down")
        await super().write(event)


class TestAuditEvent:
    """Tests for event helpers."""

    def test_mask_email(self):
        assert mask_email("jane.doe@example.com") == "jan***@example.com"
        assert mask_email("not-an-email") == "not***"

    def test_mask_short_address(self):
        """Short local parts never appear in full."""
        assert mask_email("ab@x.com") == "a***@x.com"
        assert mask_email("a@x.com") == "***@x.com"
        assert mask_email("jo") == "j***"

    def test_mask_empty(self):
        assert mask_email("") == "***"
        assert mask_email(None) == "***"

    def test_to_json(self):
        data = json.loads(make_event().to_json())

        assert data["action"] == ACTION_SPAM_BLOCKED
        assert data["details"] == {"score": 90}
        assert data["client_info"] == {"ip": "192.0.2.1", "user_agent": "curl/8"}
        assert data["success"] is False
        assert data["created_at"] == "2025-01-01T00:00:00+00:00"


class TestAuditLogger:
    """Tests for the queue and background writer."""

    @pytest.mark.asyncio
    async def test_events_reach_sink(self, audit_logger, audit_sink):
        audit_logger.log(make_event())
        audit_logger.log(make_event())

        await audit_logger.flush()

        assert len(audit_sink.events) == 2

    @pytest.mark.asyncio
    async def test_log_does_not_wait_for_sink(self, audit_logger, audit_sink):
        audit_logger.log(make_event())

        # Nothing has been written until the worker gets a turn
        assert audit_sink.events == []
        await audit_logger.flush()
        assert len(audit_sink.events) == 1

    @pytest.mark.asyncio
    async def test_full_queue_drops_events(self, audit_sink):
        audit = AuditLogger(audit_sink, max_queue_size=1)

        for _ in range(3):
            audit.log(make_event())
        await audit.stop()

        assert audit.dropped == 2
        assert len(audit_sink.events) == 1

    @pytest.mark.asyncio
    async def test_sink_errors_are_logged(self, caplog):
        sink = FlakySink()
        audit = AuditLogger(sink)

        with caplog.at_level(logging.ERROR, logger="spam-guard.audit"):
            audit.log(make_event())
            audit.log(make_event())
            await audit.stop()

        assert "database is down" in caplog.text
        assert len(sink.events) == 1

    @pytest.mark.asyncio
    async def test_stop_without_start(self, audit_sink):
        await AuditLogger(audit_sink).stop()

    @pytest.mark.asyncio
    async def test_logging_sink(self, caplog):
        with caplog.at_level(logging.INFO, logger="spam-guard.audit"):
            await LoggingAuditSink().write(make_event())

        assert ACTION_SPAM_BLOCKED in caplog.text

    @pytest.mark.asyncio
    async def test_default_sink_is_logging(self):
        assert isinstance(AuditLogger().sink, LoggingAuditSink)
