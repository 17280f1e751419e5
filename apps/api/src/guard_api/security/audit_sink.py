"""Audit sink that persists spam events to the database."""

import json

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from guard_api.db.models import AuditLogEntry
from spam_guard.audit import AuditEvent


class DatabaseAuditSink:
    """Appends each audit event as one row in audit_log."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def write(self, event: AuditEvent) -> None:
        async with self.session_factory() as session:
            session.add(
                AuditLogEntry(
                    action=event.action,
                    details=json.dumps(event.details, default=str),
                    ip_address=event.client_info.ip,
                    user_agent=event.client_info.user_agent,
                    success=event.success,
                    created_at=event.created_at,
                )
            )
            await session.commit()
