"""Registration spam guard.

Provides multi-signal protection against automated signups:
- Disposable and bot-style email detection
- Machine-generated name detection
- Persistent IP reputation
- Per-address registration rate limiting
- Form completion timing
- Weighted fusion into one allow/review/block decision
"""

from spam_guard.audit import AuditEvent, AuditLogger, ClientInfo, mask_email
from spam_guard.config import ConfigurationError, SpamGuardSettings
from spam_guard.email_risk import EmailAssessment, assess_email
from spam_guard.engine import (
    QuickCheckResult,
    Recommendation,
    SpamCandidate,
    SpamGuard,
    SpamVerdict,
)
from spam_guard.form_timing import (
    DEFAULT_FORM_CONFIG,
    REGISTRATION_FORM_CONFIG,
    FormTimingAnalyzer,
    FormTimingConfig,
    TimingAssessment,
)
from spam_guard.ip_reputation import (
    BlockDecision,
    IPReputation,
    IPReputationTracker,
    ReputationEvent,
)
from spam_guard.name_analyzer import NameAssessment, assess_name
from spam_guard.rate_limit import RateLimiter, RateLimitResult
from spam_guard.reference_data import ReferenceData, get_reference_data
from spam_guard.store import MemoryStore, RedisStore, StoreError, create_store

__all__ = [
    "DEFAULT_FORM_CONFIG",
    "REGISTRATION_FORM_CONFIG",
    "AuditEvent",
    "AuditLogger",
    "BlockDecision",
    "ClientInfo",
    "ConfigurationError",
    "EmailAssessment",
    "FormTimingAnalyzer",
    "FormTimingConfig",
    "IPReputation",
    "IPReputationTracker",
    "MemoryStore",
    "NameAssessment",
    "QuickCheckResult",
    "RateLimitResult",
    "RateLimiter",
    "Recommendation",
    "RedisStore",
    "ReferenceData",
    "ReputationEvent",
    "SpamCandidate",
    "SpamGuard",
    "SpamGuardSettings",
    "SpamVerdict",
    "StoreError",
    "TimingAssessment",
    "assess_email",
    "assess_name",
    "create_store",
    "get_reference_data",
    "mask_email",
]
