"""Database package for the spam audit trail."""

from guard_api.db.database import Base, create_engine, create_session_factory, init_db
from guard_api.db.models import AuditLogEntry

__all__ = [
    "AuditLogEntry",
    "Base",
    "create_engine",
    "create_session_factory",
    "init_db",
]
