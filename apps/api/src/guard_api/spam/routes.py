"""Registration spam check API routes.

Provides timing token issuance, the full registration check, the live
email/name check, and outcome feedback for IP reputation.

Responses never include the reasons behind a decision.
"""

import logging
from enum import Enum

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from pydantic import BaseModel, Field

from guard_api.deps import (
    get_client_ip,
    get_guard,
    get_settings,
    has_service_key,
    require_service_key,
)
from guard_api.security.turnstile import verify_turnstile
from spam_guard import (
    AuditEvent,
    ClientInfo,
    Recommendation,
    ReputationEvent,
    SpamCandidate,
    SpamGuard,
    SpamGuardSettings,
    mask_email,
)
from spam_guard.audit import ACTION_SPAM_BLOCKED

logger = logging.getLogger("guard-api.spam")

router = APIRouter(prefix="/spam", tags=["Spam Guard"])

GENERIC_REJECTION = "Registration could not be completed. Please try again later."


# =============================================================================
# Request/Response Models
# =============================================================================


class TimingTokenResponse(BaseModel):
    """Token to embed in a hidden form field."""

    token: str


class SpamCheckRequest(BaseModel):
    """Registration form data to evaluate."""

    email: str = Field(..., max_length=320)
    name: str = Field(..., max_length=200)
    ip: str | None = None  # Server-to-server callers only, needs X-Admin-Key
    timing_token: str | None = None
    honeypot: str | None = None  # Hidden field, should be empty
    turnstile_token: str | None = None


class SpamCheckResponse(BaseModel):
    """Decision for the registration workflow."""

    allowed: bool
    recommendation: Recommendation
    message: str | None = None


class QuickCheckRequest(BaseModel):
    """Live validation input."""

    email: str = Field(..., max_length=320)
    name: str = Field(..., max_length=200)


class QuickCheckResponse(BaseModel):
    is_spam: bool


class RegistrationOutcome(str, Enum):
    """What happened to an account after registration."""

    SUCCESS = "success"
    FAILED = "failed"
    SPAM = "spam"


class OutcomeRequest(BaseModel):
    """Feedback from the registration workflow."""

    ip: str
    outcome: RegistrationOutcome


class OutcomeResponse(BaseModel):
    ip: str
    score: int
    is_blocked: bool


# =============================================================================
# Routes
# =============================================================================


@router.post("/timing-token", response_model=TimingTokenResponse)
async def issue_timing_token(guard: SpamGuard = Depends(get_guard)):
    """Issue a single-use token when the registration form is rendered."""
    return TimingTokenResponse(token=await guard.timing.issue_token())


@router.post("/check", response_model=SpamCheckResponse)
async def check_registration(
    body: SpamCheckRequest,
    request: Request,
    guard: SpamGuard = Depends(get_guard),
    settings: SpamGuardSettings = Depends(get_settings),
    x_admin_key: str | None = Header(default=None),
):
    """Evaluate a registration attempt.

    - Rate limits each client address
    - Verifies Turnstile when configured
    - Runs the spam guard
    - Records blocked attempts against the IP reputation
    """
    if body.ip is not None:
        if not has_service_key(request, x_admin_key):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="An explicit ip requires the admin key",
            )
        client_ip = body.ip
    else:
        client_ip = get_client_ip(request)

    limit = await guard.rate_limiter.check_rate_limit(client_ip)
    if not limit.allowed:
        logger.info(f"Rate limited registration check from {client_ip}")
        await guard.ip.update_reputation(client_ip, ReputationEvent(rate_limit_hit=True))
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=GENERIC_REJECTION,
            headers={"Retry-After": str(limit.retry_after_seconds)},
        )

    valid, error = await verify_turnstile(
        body.turnstile_token or "", settings.turnstile_secret_key, client_ip
    )
    if not valid:
        logger.info(f"Turnstile rejected registration from {client_ip}: {error}")
        await guard.ip.update_reputation(
            client_ip, ReputationEvent(failed_registration=True, flag="turnstile_failed")
        )
        return SpamCheckResponse(
            allowed=False,
            recommendation=Recommendation.BLOCK,
            message=GENERIC_REJECTION,
        )

    user_agent = request.headers.get("user-agent")
    verdict = await guard.evaluate(
        SpamCandidate(
            email=body.email,
            name=body.name,
            ip=client_ip,
            timing_token=body.timing_token,
            honeypot_value=body.honeypot,
            user_agent=user_agent,
        )
    )

    if verdict.should_block:
        if verdict.honeypot_triggered:
            flag = "honeypot_triggered"
        else:
            flag = "spam_blocked"
            guard.audit.log(
                AuditEvent(
                    action=ACTION_SPAM_BLOCKED,
                    details={
                        "score": verdict.overall_score,
                        "email": mask_email(body.email),
                        "reasons": verdict.reasons[:5],
                        "recommendation": verdict.recommendation.value,
                    },
                    client_info=ClientInfo(ip=client_ip, user_agent=user_agent),
                )
            )
        await guard.ip.update_reputation(
            client_ip, ReputationEvent(failed_registration=True, flag=flag)
        )
        return SpamCheckResponse(
            allowed=False,
            recommendation=verdict.recommendation,
            message=GENERIC_REJECTION,
        )

    return SpamCheckResponse(allowed=True, recommendation=verdict.recommendation)


@router.post("/quick-check", response_model=QuickCheckResponse)
async def quick_check(body: QuickCheckRequest, guard: SpamGuard = Depends(get_guard)):
    """Live email + name validation while the user is still typing."""
    return QuickCheckResponse(is_spam=guard.quick_check(body.email, body.name).is_spam)


@router.post(
    "/outcome",
    response_model=OutcomeResponse,
    dependencies=[Depends(require_service_key)],
)
async def report_outcome(body: OutcomeRequest, guard: SpamGuard = Depends(get_guard)):
    """Feed a registration outcome back into the IP reputation."""
    if body.outcome == RegistrationOutcome.SPAM:
        reputation = await guard.mark_account_as_spam(body.ip)
    elif body.outcome == RegistrationOutcome.SUCCESS:
        reputation = await guard.ip.update_reputation(
            body.ip, ReputationEvent(successful_registration=True)
        )
    else:
        reputation = await guard.ip.update_reputation(
            body.ip, ReputationEvent(failed_registration=True)
        )

    return OutcomeResponse(
        ip=reputation.ip, score=reputation.score, is_blocked=reputation.is_blocked
    )
