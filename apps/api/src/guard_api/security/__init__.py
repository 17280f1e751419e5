"""Request-level protection around the spam guard.

- Cloudflare Turnstile verification
- Persistent audit trail
"""

from guard_api.security.audit_sink import DatabaseAuditSink
from guard_api.security.turnstile import verify_turnstile

__all__ = [
    "DatabaseAuditSink",
    "verify_turnstile",
]
