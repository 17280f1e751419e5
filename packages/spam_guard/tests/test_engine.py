"""Tests for the composite spam risk engine."""

import pytest
from guard_doubles import FailingStore, FakeMillisClock, RecordingStore
from spam_guard.audit import ACTION_HONEYPOT_TRIGGERED, ACTION_SPAM_DETECTED, AuditLogger
from spam_guard.config import SpamGuardSettings
from spam_guard.engine import Recommendation, SpamCandidate, SpamGuard
from spam_guard.form_timing import FormTimingAnalyzer
from spam_guard.ip_reputation import ReputationEvent
from spam_guard.store import MemoryStore

CLEAN_EMAIL = "jane.doe@example.com"
CLEAN_NAME = "Jan de Vries"
IP = "192.0.2.1"


@pytest.fixture
def ms_clock() -> FakeMillisClock:
    return FakeMillisClock()


@pytest.fixture
def guard(store, reference, audit_logger, ms_clock) -> SpamGuard:
    guard = SpamGuard(store, reference, audit=audit_logger)
    guard.timing = FormTimingAnalyzer(store, clock=ms_clock)
    return guard


def candidate(**overrides) -> SpamCandidate:
    data = {"email": CLEAN_EMAIL, "name": CLEAN_NAME, "ip": IP}
    data.update(overrides)
    return SpamCandidate(**data)


# =============================================================================
# Test evaluate
# =============================================================================


class TestEvaluate:
    """Tests for the weighted fusion and recommendation."""

    @pytest.mark.asyncio
    async def test_clean_registration(self, guard):
        verdict = await guard.evaluate(candidate())

        assert verdict.overall_score == 0
        assert verdict.recommendation is Recommendation.ALLOW
        assert not verdict.should_block
        assert not verdict.is_spam
        assert not verdict.is_high_risk
        assert verdict.reasons == []
        assert verdict.email.is_valid
        assert verdict.name.suspicion_score == 0
        assert verdict.ip is None
        assert verdict.timing is None

    @pytest.mark.asyncio
    async def test_disposable_email_always_blocks(self, guard):
        verdict = await guard.evaluate(candidate(email="someone@mailinator.com"))

        assert verdict.overall_score == 50
        assert verdict.recommendation is Recommendation.BLOCK
        assert verdict.should_block
        assert verdict.is_high_risk
        assert not verdict.is_spam

    @pytest.mark.asyncio
    async def test_suspicious_email_rounds_half_up(self, guard):
        """95 * 0.5 = 47.5 rounds to 48."""
        verdict = await guard.evaluate(candidate(email="ab12345@gmail.com"))

        assert verdict.overall_score == 48
        assert verdict.recommendation is Recommendation.REVIEW

    @pytest.mark.asyncio
    async def test_bot_identity_is_capped(self, guard):
        verdict = await guard.evaluate(
            candidate(email="ab12345@gmail.com", name="Xvnwoeifnwef")
        )

        assert verdict.overall_score == 100
        assert verdict.recommendation is Recommendation.BLOCK
        assert verdict.is_spam
        assert "Combination of suspicious name and email" in verdict.reasons

    @pytest.mark.asyncio
    async def test_moderate_name(self, guard):
        """Names scoring 30-49 count at 0.3."""
        verdict = await guard.evaluate(candidate(name="Jan2"))

        assert verdict.overall_score == 12
        assert verdict.recommendation is Recommendation.ALLOW

    @pytest.mark.asyncio
    async def test_blocked_ip(self, guard):
        await guard.ip.block(IP)

        verdict = await guard.evaluate(candidate())

        assert verdict.overall_score == 40
        assert verdict.recommendation is Recommendation.BLOCK
        assert verdict.ip.is_blocked
        assert "IP is blocked because of earlier suspicious activity" in verdict.reasons

    @pytest.mark.asyncio
    async def test_elevated_ip_reputation(self, guard):
        for _ in range(4):
            await guard.ip.update_reputation(IP, ReputationEvent(failed_registration=True))

        verdict = await guard.evaluate(candidate())

        assert verdict.overall_score == 8
        assert verdict.recommendation is Recommendation.ALLOW
        assert "IP has an elevated risk score (40)" in verdict.reasons

    @pytest.mark.asyncio
    async def test_bot_timing(self, guard, ms_clock):
        token = await guard.timing.issue_token()
        ms_clock.advance(500)

        verdict = await guard.evaluate(candidate(timing_token=token))

        assert verdict.timing.is_bot
        assert verdict.overall_score == 50
        assert verdict.recommendation is Recommendation.REVIEW

    @pytest.mark.asyncio
    async def test_suspicious_timing(self, guard, ms_clock):
        token = await guard.timing.issue_token()
        ms_clock.advance(3000)

        verdict = await guard.evaluate(candidate(timing_token=token))

        assert verdict.timing.suspicion_score == 50
        assert verdict.overall_score == 15

    @pytest.mark.asyncio
    async def test_human_timing(self, guard, ms_clock):
        token = await guard.timing.issue_token()
        ms_clock.advance(20_000)

        verdict = await guard.evaluate(candidate(timing_token=token))

        assert verdict.overall_score == 0
        assert verdict.timing.elapsed_ms == 20_000

    @pytest.mark.asyncio
    async def test_evaluate_does_not_change_reputation(self, guard):
        await guard.evaluate(candidate(email="someone@mailinator.com"))

        assert await guard.ip.get_reputation(IP) is None


class TestHoneypot:
    """A filled honeypot blocks before any other work."""

    @pytest.mark.asyncio
    async def test_honeypot_short_circuits(self, reference, audit_logger, audit_sink):
        store = RecordingStore()
        guard = SpamGuard(store, reference, audit=audit_logger)

        verdict = await guard.evaluate(candidate(honeypot_value="http://spam.example"))
        await audit_logger.flush()

        assert verdict.honeypot_triggered
        assert verdict.overall_score == 100
        assert verdict.recommendation is Recommendation.BLOCK
        assert verdict.email is None
        assert verdict.name is None
        assert store.calls == []
        assert [e.action for e in audit_sink.events] == [ACTION_HONEYPOT_TRIGGERED]
        assert audit_sink.events[0].details["email"] == "jan***@example.com"


class TestFailOpen:
    """Store outages degrade to the stateless signals."""

    @pytest.mark.asyncio
    async def test_failing_store(self, reference, audit_logger, ms_clock):
        store = FailingStore()
        guard = SpamGuard(store, reference, audit=audit_logger)
        guard.timing = FormTimingAnalyzer(store, clock=ms_clock)
        token = await guard.timing.issue_token()
        ms_clock.advance(10_000)

        verdict = await guard.evaluate(candidate(timing_token=token))

        assert verdict.recommendation is Recommendation.ALLOW
        assert verdict.ip is None
        assert verdict.timing.elapsed_ms == 10_000
        assert store.calls > 0

    @pytest.mark.asyncio
    async def test_failing_store_still_blocks_disposable(self, reference, audit_logger):
        guard = SpamGuard(FailingStore(), reference, audit=audit_logger)

        verdict = await guard.evaluate(candidate(email="someone@mailinator.com"))

        assert verdict.should_block


class TestAudit:
    """High risk verdicts are written to the audit log."""

    @pytest.mark.asyncio
    async def test_high_risk_is_audited(self, guard, audit_logger, audit_sink):
        await guard.evaluate(
            candidate(email="ab12345@gmail.com", name="Xvnwoeifnwef", user_agent="curl/8")
        )
        await audit_logger.flush()

        assert len(audit_sink.events) == 1
        event = audit_sink.events[0]
        assert event.action == ACTION_SPAM_DETECTED
        assert event.details["score"] == 100
        assert event.details["email"] == "ab1***@gmail.com"
        assert event.details["recommendation"] == "block"
        assert len(event.details["reasons"]) <= 5
        assert event.client_info.ip == IP
        assert event.client_info.user_agent == "curl/8"

    @pytest.mark.asyncio
    async def test_low_risk_is_not_audited(self, guard, audit_logger, audit_sink):
        await guard.evaluate(candidate())
        await audit_logger.flush()

        assert audit_sink.events == []


class TestScoreBounds:
    """Fused scores stay within 0-100 whatever the evidence."""

    INPUTS = [
        (CLEAN_EMAIL, CLEAN_NAME),
        ("someone@mailinator.com", "asdfghjkl"),
        ("ab12345@gmail.com", "Xvnwoeifnwef"),
        ("test123456@mailinator.com", "John123456"),
        ("not-an-email", ""),
        ("", "🙂🙂🙂"),
        ("a@b@example.tk", "zzzzzzzzzzzzzzzzzzzzzzzzzzzzzzzzz1234"),
    ]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("email,name", INPUTS)
    async def test_overall_score_bounds(self, guard, email, name):
        verdict = await guard.evaluate(candidate(email=email, name=name))

        assert 0 <= verdict.overall_score <= 100

    @pytest.mark.asyncio
    @pytest.mark.parametrize("email,name", INPUTS)
    async def test_bounds_with_every_signal_firing(self, guard, email, name):
        await guard.ip.block(IP)
        token = await guard.timing.issue_token()

        verdict = await guard.evaluate(candidate(email=email, name=name, timing_token=token))

        assert 0 <= verdict.overall_score <= 100
        assert verdict.should_block

    @pytest.mark.asyncio
    @pytest.mark.parametrize("email,name", INPUTS)
    async def test_quick_check_bounds(self, guard, email, name):
        assert 0 <= guard.quick_check(email, name).score <= 100


# =============================================================================
# Test quick_check and helpers
# =============================================================================


class TestQuickCheck:
    """Tests for the email + name only check."""

    def test_clean(self, store, reference):
        result = SpamGuard(store, reference).quick_check(CLEAN_EMAIL, CLEAN_NAME)

        assert not result.is_spam
        assert result.score == 0

    def test_disposable(self, store, reference):
        result = SpamGuard(store, reference).quick_check("someone@mailinator.com", CLEAN_NAME)

        assert result.is_spam
        assert result.score == 50

    def test_bot_identity(self, store, reference):
        result = SpamGuard(store, reference).quick_check("ab12345@gmail.com", "Xvnwoeifnwef")

        assert result.is_spam
        assert result.score == 100
        assert result.reasons


class TestSpamGuard:
    """Tests for construction and the remaining helpers."""

    def test_from_settings_defaults_to_memory(self):
        guard = SpamGuard.from_settings(SpamGuardSettings())

        assert isinstance(guard.store, MemoryStore)
        assert guard.audit._queue.maxsize == 1000
        assert guard.rate_limiter.max_requests == 3
        assert guard.rate_limiter.window_seconds == 600

    def test_from_settings_rate_limit(self):
        settings = SpamGuardSettings(rate_limit_max_requests=5, rate_limit_window_seconds=60)

        guard = SpamGuard.from_settings(settings)

        assert guard.rate_limiter.max_requests == 5
        assert guard.rate_limiter.window_seconds == 60

    @pytest.mark.asyncio
    async def test_check_email_and_name(self, guard):
        assert guard.check_email("someone@mailinator.com").is_disposable
        assert guard.check_name("asdfghjkl").is_suspicious

    @pytest.mark.asyncio
    async def test_mark_account_as_spam(self, guard):
        reputation = await guard.mark_account_as_spam(IP)

        assert reputation.spam_accounts_created == 1
        assert (await guard.ip.get_reputation(IP)).score == 30

    @pytest.mark.asyncio
    async def test_close_flushes_audit(self, store, reference, audit_sink):
        guard = SpamGuard(store, reference, audit=AuditLogger(audit_sink))
        await guard.evaluate(candidate(honeypot_value="x"))

        await guard.close()

        assert len(audit_sink.events) == 1
