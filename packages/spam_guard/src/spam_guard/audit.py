"""Fire-and-forget audit logging for spam events.

Events are put on a bounded asyncio queue and written by a background worker,
so a verdict never waits on log delivery. A full queue drops the event with a
warning.
"""

import asyncio
import contextlib
import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol

logger = logging.getLogger("spam-guard.audit")

ACTION_SPAM_DETECTED = "SPAM_DETECTED"
ACTION_SPAM_BLOCKED = "SPAM_BLOCKED"
ACTION_HONEYPOT_TRIGGERED = "REGISTER_HONEYPOT_TRIGGERED"


@dataclass
class ClientInfo:
    """Who submitted the request."""

    ip: str | None = None
    user_agent: str | None = None


@dataclass
class AuditEvent:
    """One audit log entry."""

    action: str
    details: dict[str, Any]
    client_info: ClientInfo = field(default_factory=ClientInfo)
    success: bool = False
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_json(self) -> str:
        data = asdict(self)
        data["created_at"] = self.created_at.isoformat()
        return json.dumps(data, default=str)


class AuditSink(Protocol):
    """Destination for audit events."""

    async def write(self, event: AuditEvent) -> None: ...


class LoggingAuditSink:
    """Writes audit events as JSON lines to the audit logger."""

    async def write(self, event: AuditEvent) -> None:
        logger.info(event.to_json())


def mask_email(email: str | None) -> str:
    """Keep a short prefix of the local part and the domain for correlation.

    At most half of the local part (and never more than three characters) is
    shown, so short addresses stay masked.
    """
    local, at, domain = (email or "").strip().rpartition("@")
    if not at:
        local, domain = domain, ""
    visible = local[: min(3, len(local) // 2)]
    return f"{visible}***@{domain}" if domain else f"{visible}***"


class AuditLogger:
    """Queue in front of an AuditSink, drained by a background task."""

    def __init__(self, sink: AuditSink | None = None, max_queue_size: int = 1000):
        self.sink = sink or LoggingAuditSink()
        self._queue: asyncio.Queue[AuditEvent] = asyncio.Queue(maxsize=max_queue_size)
        self._worker: asyncio.Task | None = None
        self._dropped = 0

    def log(self, event: AuditEvent) -> None:
        """Enqueue an event without waiting. Starts the worker on first use."""
        if self._worker is None:
            self.start()
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self._dropped += 1
            logger.warning(f"Audit queue full, dropping {event.action} event")

    def start(self) -> None:
        """Start the background writer. Requires a running event loop."""
        if self._worker is None:
            self._worker = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Flush pending events and stop the writer."""
        if self._worker is None:
            return
        await self._queue.join()
        self._worker.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._worker
        self._worker = None

    async def flush(self) -> None:
        """Wait until every queued event has been written."""
        await self._queue.join()

    @property
    def dropped(self) -> int:
        """Events lost to a full queue (for testing)."""
        return self._dropped

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self.sink.write(event)
            except Exception as e:
                logger.error(f"Failed to write audit event {event.action}: {e}")
            finally:
                self._queue.task_done()
