"""Form timing analysis.

Detects bots by how fast a form is completed. A human needs time to read the
form, type their details and tick the boxes; scripted submissions often
arrive within a couple of seconds of the page render.

Flow:
1. issue_token() when the form is rendered; the token goes in a hidden field
2. validate() when the form is submitted; the token is consumed
"""

import logging
import secrets
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from spam_guard.store import KeyValueStore, StoreError, bounded

logger = logging.getLogger("spam-guard.form-timing")

TIMING_PREFIX = "spam:timing:"
TIMING_TTL_SECONDS = 600  # 10 minutes

ABSOLUTE_FLOOR_MS = 1000
FALLBACK_ELAPSED_MS = 10_000
STALE_PENALTY = 20

THRESHOLD_BOT = 90
THRESHOLD_SUSPICIOUS = 50


@dataclass(frozen=True)
class FieldTimings:
    """Minimum expected time per field type, in milliseconds."""

    email: int
    password: int
    text: int
    select: int
    checkbox: int


@dataclass(frozen=True)
class FormTimingConfig:
    """Timing expectations for one logical form."""

    field_timings: FieldTimings
    minimum_total_ms: int  # Lower bound for a human to finish the form
    bot_threshold_ms: int  # Anything faster is certainly automated


DEFAULT_FORM_CONFIG = FormTimingConfig(
    field_timings=FieldTimings(
        email=2000, password=3000, text=1500, select=500, checkbox=300
    ),
    minimum_total_ms=5000,
    bot_threshold_ms=2000,
)

REGISTRATION_FORM_CONFIG = FormTimingConfig(
    field_timings=FieldTimings(
        email=3000, password=4000, text=2000, select=1000, checkbox=500
    ),
    minimum_total_ms=8000,
    bot_threshold_ms=3000,
)


@dataclass
class TimingAssessment:
    """Result of checking how long a form took to complete."""

    is_bot: bool
    is_suspicious: bool
    suspicion_score: int
    reasons: list[str] = field(default_factory=list)
    elapsed_ms: int = 0
    expected_min_ms: int = 0


def _now_ms() -> int:
    return int(time.time() * 1000)


def _round(value: float) -> int:
    """Round half up (scores are never negative)."""
    return int(value + 0.5)


def _bot(reason: str, elapsed_ms: int, config: FormTimingConfig) -> TimingAssessment:
    return TimingAssessment(
        is_bot=True,
        is_suspicious=True,
        suspicion_score=100,
        reasons=[reason],
        elapsed_ms=elapsed_ms,
        expected_min_ms=config.minimum_total_ms,
    )


def _speed_score(elapsed_ms: int, config: FormTimingConfig) -> tuple[int, list[str]]:
    """Linear shortfall score below the form's expected minimum."""
    if elapsed_ms >= config.minimum_total_ms:
        return 0, []
    ratio = elapsed_ms / config.minimum_total_ms
    reason = (
        f"Form completed in {elapsed_ms / 1000:.1f}s "
        f"(expected {config.minimum_total_ms / 1000:.1f}s+)"
    )
    return _round((1 - ratio) * 80), [reason]


def analyze_client_timing(
    start_ms: int,
    config: FormTimingConfig = DEFAULT_FORM_CONFIG,
    now_ms: int | None = None,
) -> TimingAssessment:
    """Score a client-reported start time without a server-side token.

    Only the bot threshold and the linear shortfall rule apply, since the
    start time cannot be trusted for tampering or staleness checks.
    """
    now = _now_ms() if now_ms is None else now_ms
    elapsed = now - start_ms

    if elapsed < config.bot_threshold_ms:
        return _bot(f"Form completed in {elapsed}ms", elapsed, config)

    score, reasons = _speed_score(elapsed, config)
    return TimingAssessment(
        is_bot=score >= THRESHOLD_BOT,
        is_suspicious=score >= THRESHOLD_SUSPICIOUS,
        suspicion_score=score,
        reasons=reasons,
        elapsed_ms=elapsed,
        expected_min_ms=config.minimum_total_ms,
    )


class FormTimingAnalyzer:
    """Issues single-use timing tokens and scores form completion speed."""

    def __init__(
        self,
        store: KeyValueStore,
        timeout_seconds: float = 0.25,
        clock: Callable[[], int] = _now_ms,
    ):
        self.store = store
        self.timeout = timeout_seconds
        self._clock = clock

    async def issue_token(self) -> str:
        """Create a token for a freshly rendered form.

        The issuance time is embedded in the token as well as stored, so
        validation still works (less strictly) if the store is down.
        """
        issued_at = self._clock()
        token = f"{issued_at}_{secrets.token_urlsafe(12)}"
        try:
            await bounded(
                self.store.set(f"{TIMING_PREFIX}{token}", str(issued_at), TIMING_TTL_SECONDS),
                self.timeout,
            )
        except StoreError as e:
            logger.warning(f"Could not store timing token: {e}")
        return token

    async def _consume(self, token: str) -> int | None:
        """Read and delete the stored issuance time. None if unavailable."""
        key = f"{TIMING_PREFIX}{token}"
        try:
            stored = await bounded(self.store.get(key), self.timeout)
            if stored is None:
                return None
            await bounded(self.store.delete(key), self.timeout)
        except StoreError as e:
            logger.warning(f"Timing token lookup failed, using embedded timestamp: {e}")
            return None
        try:
            return int(stored)
        except ValueError:
            logger.warning("Stored timing token value is not a timestamp")
            return None

    @staticmethod
    def _embedded_start(token: str) -> int | None:
        prefix = token.split("_", 1)[0]
        try:
            return int(prefix)
        except ValueError:
            return None

    async def validate(
        self,
        token: str,
        config: FormTimingConfig = DEFAULT_FORM_CONFIG,
    ) -> TimingAssessment:
        """Score a submitted form by the time since its token was issued.

        Args:
            token: Token returned by issue_token() and round-tripped by the client.
            config: Timing expectations for the form being submitted.

        Returns:
            TimingAssessment; is_bot when the submission was impossibly fast.
        """
        now = self._clock()
        start = await self._consume(token)
        if start is None:
            start = self._embedded_start(token)
        if start is None:
            # Unknown start: assume a plausible human duration
            start = now - FALLBACK_ELAPSED_MS

        elapsed = now - start

        if elapsed < 0:
            return _bot("Invalid timing token (possible tampering)", 0, config)

        if elapsed < config.bot_threshold_ms:
            return _bot(
                f"Form completed in {elapsed}ms (< {config.bot_threshold_ms}ms minimum)",
                elapsed,
                config,
            )

        score, reasons = _speed_score(elapsed, config)

        if elapsed < ABSOLUTE_FLOOR_MS:
            score = 100
            reasons.append("Form completed in under one second")

        if elapsed > TIMING_TTL_SECONDS * 1000:
            score += STALE_PENALTY
            reasons.append("Form session expired")

        score = min(100, score)

        return TimingAssessment(
            is_bot=score >= THRESHOLD_BOT,
            is_suspicious=score >= THRESHOLD_SUSPICIOUS,
            suspicion_score=score,
            reasons=reasons,
            elapsed_ms=elapsed,
            expected_min_ms=config.minimum_total_ms,
        )
