"""Composite spam risk engine.

Combines the email, name, IP reputation and form timing signals into a single
0-100 score and an allow/review/block recommendation. This is the only entry
point the registration workflow calls.

Precedence:
1. Honeypot filled -> block immediately, no store I/O
2. All detectors run (IP and timing concurrently)
3. Weighted fusion, capped at 100
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum

from spam_guard.audit import (
    ACTION_HONEYPOT_TRIGGERED,
    ACTION_SPAM_DETECTED,
    AuditEvent,
    AuditLogger,
    ClientInfo,
    mask_email,
)
from spam_guard.config import SpamGuardSettings
from spam_guard.email_risk import EmailAssessment, assess_email
from spam_guard.form_timing import (
    REGISTRATION_FORM_CONFIG,
    FormTimingAnalyzer,
    FormTimingConfig,
    TimingAssessment,
)
from spam_guard.ip_reputation import BlockDecision, IPReputation, IPReputationTracker
from spam_guard.name_analyzer import NameAssessment, assess_name
from spam_guard.rate_limit import (
    REGISTRATION_MAX_REQUESTS,
    REGISTRATION_WINDOW_SECONDS,
    RateLimiter,
)
from spam_guard.reference_data import ReferenceData, get_reference_data
from spam_guard.store import KeyValueStore, create_store

logger = logging.getLogger("spam-guard.engine")

# Fusion weights
SCORE_DISPOSABLE_EMAIL = 50
WEIGHT_SUSPICIOUS_EMAIL = 0.5
WEIGHT_SUSPICIOUS_NAME = 0.5
WEIGHT_MODERATE_NAME = 0.3
SCORE_COMBINATION = 20
SCORE_BLOCKED_IP = 40
WEIGHT_IP_REPUTATION = 0.2
SCORE_BOT_TIMING = 50
WEIGHT_SUSPICIOUS_TIMING = 0.3

# Thresholds
THRESHOLD_NAME_SUSPICIOUS = 50
THRESHOLD_NAME_MODERATE = 30
THRESHOLD_COMBINATION = 40
THRESHOLD_IP_REPUTATION = 30
THRESHOLD_BLOCK = 70
THRESHOLD_REVIEW = 40
THRESHOLD_SPAM = 70
THRESHOLD_HIGH_RISK = 50
THRESHOLD_QUICK_BLOCK = 60


class Recommendation(str, Enum):
    """What the registration workflow should do."""

    ALLOW = "allow"
    REVIEW = "review"
    BLOCK = "block"


@dataclass
class SpamCandidate:
    """Registration attempt to evaluate."""

    email: str
    name: str
    ip: str
    timing_token: str | None = None
    honeypot_value: str | None = None
    user_agent: str | None = None


@dataclass
class SpamVerdict:
    """Engine output. Reasons are for audit only, never for the submitter."""

    is_spam: bool
    is_high_risk: bool
    should_block: bool
    overall_score: int
    recommendation: Recommendation
    reasons: list[str] = field(default_factory=list)
    email: EmailAssessment | None = None
    name: NameAssessment | None = None
    ip: IPReputation | None = None
    timing: TimingAssessment | None = None
    honeypot_triggered: bool = False


@dataclass
class QuickCheckResult:
    """Result of the email + name only check."""

    is_spam: bool
    score: int
    reasons: list[str] = field(default_factory=list)


def _round(value: float) -> int:
    """Round half up (scores are never negative)."""
    return int(value + 0.5)


def _fuse_identity(
    email: EmailAssessment, name: NameAssessment, reasons: list[str]
) -> float:
    """Email and name contributions shared by evaluate() and quick_check()."""
    score = 0.0

    if email.is_disposable:
        score += SCORE_DISPOSABLE_EMAIL
        reasons.extend(email.reasons)
    elif email.is_suspicious:
        score += email.suspicion_score * WEIGHT_SUSPICIOUS_EMAIL
        reasons.extend(email.reasons)

    if name.suspicion_score >= THRESHOLD_NAME_SUSPICIOUS:
        score += name.suspicion_score * WEIGHT_SUSPICIOUS_NAME
        reasons.extend(name.reasons)
    elif name.suspicion_score >= THRESHOLD_NAME_MODERATE:
        score += name.suspicion_score * WEIGHT_MODERATE_NAME
        reasons.extend(name.reasons)

    # Joint suspicion compounds risk
    if (
        name.suspicion_score >= THRESHOLD_COMBINATION
        and email.suspicion_score >= THRESHOLD_COMBINATION
    ):
        score += SCORE_COMBINATION
        reasons.append("Combination of suspicious name and email")

    return score


class SpamGuard:
    """Runs every detector for a registration attempt and fuses the results."""

    def __init__(
        self,
        store: KeyValueStore,
        reference: ReferenceData | None = None,
        audit: AuditLogger | None = None,
        timeout_seconds: float = 0.25,
        timing_config: FormTimingConfig = REGISTRATION_FORM_CONFIG,
        rate_limit_max_requests: int = REGISTRATION_MAX_REQUESTS,
        rate_limit_window_seconds: int = REGISTRATION_WINDOW_SECONDS,
    ):
        self.store = store
        self.reference = reference or get_reference_data()
        self.audit = audit or AuditLogger()
        self.timing_config = timing_config
        self.ip = IPReputationTracker(store, self.reference, timeout_seconds)
        self.timing = FormTimingAnalyzer(store, timeout_seconds)
        self.rate_limiter = RateLimiter(
            store, rate_limit_max_requests, rate_limit_window_seconds, timeout_seconds
        )

    @classmethod
    def from_settings(
        cls, settings: SpamGuardSettings, audit: AuditLogger | None = None
    ) -> "SpamGuard":
        """Build a guard from settings. Reference data errors surface here."""
        if settings.reference_data_path:
            reference = ReferenceData.from_file(settings.reference_data_path)
        else:
            reference = get_reference_data()
        return cls(
            store=create_store(settings),
            reference=reference,
            audit=audit or AuditLogger(max_queue_size=settings.audit_queue_size),
            timeout_seconds=settings.store_timeout_seconds,
            rate_limit_max_requests=settings.rate_limit_max_requests,
            rate_limit_window_seconds=settings.rate_limit_window_seconds,
        )

    def check_email(self, email: str) -> EmailAssessment:
        return assess_email(email, self.reference)

    def check_name(self, name: str) -> NameAssessment:
        return assess_name(name, self.reference)

    async def evaluate(self, candidate: SpamCandidate) -> SpamVerdict:
        """Evaluate a registration attempt.

        Args:
            candidate: Email, name, IP and the optional timing token and
                honeypot value collected from the form.

        Returns:
            SpamVerdict with the recommendation and itemised evidence.
        """
        client = ClientInfo(ip=candidate.ip, user_agent=candidate.user_agent)

        if candidate.honeypot_value:
            logger.info(
                f"Honeypot triggered for {mask_email(candidate.email)} from {candidate.ip}"
            )
            self.audit.log(
                AuditEvent(
                    action=ACTION_HONEYPOT_TRIGGERED,
                    details={
                        "email": mask_email(candidate.email),
                        "honeypot": candidate.honeypot_value[:50],
                    },
                    client_info=client,
                )
            )
            return SpamVerdict(
                is_spam=True,
                is_high_risk=True,
                should_block=True,
                overall_score=100,
                recommendation=Recommendation.BLOCK,
                reasons=["Honeypot field was filled in (bot detected)"],
                honeypot_triggered=True,
            )

        email = self.check_email(candidate.email)
        name = self.check_name(candidate.name)

        block_task = self.ip.should_block(candidate.ip)
        if candidate.timing_token:
            block, timing = await asyncio.gather(
                block_task,
                self.timing.validate(candidate.timing_token, self.timing_config),
            )
        else:
            block, timing = await block_task, None

        reasons: list[str] = []
        score = _fuse_identity(email, name, reasons)
        score += self._fuse_ip(block, reasons)
        if timing is not None:
            score += self._fuse_timing(timing, reasons)

        overall = min(100, _round(score))

        if (
            overall >= THRESHOLD_BLOCK
            or email.is_disposable
            or block.blocked
        ):
            recommendation = Recommendation.BLOCK
        elif overall >= THRESHOLD_REVIEW:
            recommendation = Recommendation.REVIEW
        else:
            recommendation = Recommendation.ALLOW

        verdict = SpamVerdict(
            is_spam=overall >= THRESHOLD_SPAM,
            is_high_risk=overall >= THRESHOLD_HIGH_RISK,
            should_block=recommendation is Recommendation.BLOCK,
            overall_score=overall,
            recommendation=recommendation,
            reasons=reasons,
            email=email,
            name=name,
            ip=block.reputation,
            timing=timing,
        )

        if verdict.is_high_risk:
            logger.info(
                f"High risk registration from {candidate.ip}: "
                f"score={overall} recommendation={recommendation.value}"
            )
            self.audit.log(
                AuditEvent(
                    action=ACTION_SPAM_DETECTED,
                    details={
                        "score": overall,
                        "email": mask_email(candidate.email),
                        "reasons": reasons[:5],
                        "recommendation": recommendation.value,
                    },
                    client_info=client,
                )
            )

        return verdict

    @staticmethod
    def _fuse_ip(block: BlockDecision, reasons: list[str]) -> float:
        if block.blocked:
            reasons.append(block.reason or "IP is blocked")
            return SCORE_BLOCKED_IP
        reputation = block.reputation
        if reputation and reputation.score > THRESHOLD_IP_REPUTATION:
            reasons.append(f"IP has an elevated risk score ({reputation.score})")
            return reputation.score * WEIGHT_IP_REPUTATION
        return 0.0

    @staticmethod
    def _fuse_timing(timing: TimingAssessment, reasons: list[str]) -> float:
        if timing.is_bot:
            reasons.extend(timing.reasons)
            return SCORE_BOT_TIMING
        if timing.is_suspicious:
            reasons.extend(timing.reasons)
            return timing.suspicion_score * WEIGHT_SUSPICIOUS_TIMING
        return 0.0

    def quick_check(self, email: str, name: str) -> QuickCheckResult:
        """Email and name only, for live validation before submission.

        Uses a lower block threshold because it sees less evidence.
        """
        reasons: list[str] = []
        email_result = self.check_email(email)
        score = min(
            100,
            _round(_fuse_identity(email_result, self.check_name(name), reasons)),
        )
        return QuickCheckResult(
            is_spam=score >= THRESHOLD_QUICK_BLOCK or email_result.is_disposable,
            score=score,
            reasons=reasons,
        )

    async def mark_account_as_spam(self, ip: str) -> IPReputation:
        """Feed a confirmed spam account back into the IP reputation."""
        return await self.ip.mark_account_as_spam(ip)

    async def close(self) -> None:
        """Flush audit events and release the store."""
        await self.audit.stop()
        close = getattr(self.store, "close", None)
        if close is not None:
            await close()
