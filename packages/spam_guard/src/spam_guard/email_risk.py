"""Email risk classification for signup abuse.

Detects disposable email domains, risky providers, and bot-style local parts.
Every rule adds to a running score that is capped at 100.
"""

import re
from dataclasses import dataclass, field

from spam_guard.reference_data import ReferenceData, get_reference_data

# Rule weights
SCORE_DISPOSABLE = 100
SCORE_SUSPICIOUS_PATTERN = 40
SCORE_SUSPICIOUS_DOMAIN = 20
SCORE_PLUS_ALIAS = 10
SCORE_SHORT_LOCAL_PART = 15
SCORE_NUMERIC_LOCAL_PART = 25
SCORE_TRAILING_DIGITS = 35
SCORE_KEYBOARD_PATTERN = 20
SCORE_LONG_ADDRESS = 15
SCORE_DEEP_SUBDOMAIN = 10

# Thresholds
THRESHOLD_SUSPICIOUS = 50
THRESHOLD_INVALID = 80

_TRAILING_DIGITS_RE = re.compile(r"^[a-z]+\d{5,}$")


@dataclass
class EmailAssessment:
    """Result of classifying a single email address."""

    email: str
    local_part: str
    domain: str
    is_valid: bool
    is_disposable: bool
    is_suspicious: bool
    suspicion_score: int
    reasons: list[str] = field(default_factory=list)
    is_free_provider: bool = False


def get_domain(email: str) -> str:
    """Extract domain from email address."""
    return email.strip().lower().split("@")[-1]


def is_disposable_email(email: str, reference: ReferenceData | None = None) -> bool:
    """Check if email uses a disposable domain."""
    reference = reference or get_reference_data()
    return get_domain(email) in reference.disposable_domains


def is_free_email(email: str, reference: ReferenceData | None = None) -> bool:
    """Check if email uses a free email provider."""
    reference = reference or get_reference_data()
    return get_domain(email) in reference.free_email_domains


def _matches_suspicious_domain(domain: str, suspicious: frozenset[str]) -> bool:
    """Exact or suffix match (e.g. "tk" matches "foo.tk")."""
    if domain in suspicious:
        return True
    labels = domain.split(".")
    return any(".".join(labels[i:]) in suspicious for i in range(1, len(labels)))


def assess_email(address: str, reference: ReferenceData | None = None) -> EmailAssessment:
    """Classify an email address for signup risk.

    Malformed input never raises; it maps to the maximum suspicion score.

    Args:
        address: Raw email address as submitted.
        reference: Reference tables, defaults to the bundled data.

    Returns:
        EmailAssessment with score, flags and reasons.
    """
    reference = reference or get_reference_data()
    email = (address or "").strip().lower()

    local_part, sep, domain = email.rpartition("@")
    if not sep or not local_part or not domain:
        return EmailAssessment(
            email=email,
            local_part=local_part if sep else email,
            domain=domain if sep else "",
            is_valid=False,
            is_disposable=False,
            is_suspicious=True,
            suspicion_score=100,
            reasons=["Email address is malformed"],
        )

    score = 0
    reasons: list[str] = []

    is_disposable = domain in reference.disposable_domains
    if is_disposable:
        score += SCORE_DISPOSABLE
        reasons.append(f"Disposable email domain: {domain}")

    if any(p.search(email) for p in reference.suspicious_email_patterns):
        score += SCORE_SUSPICIOUS_PATTERN
        reasons.append("Email matches a known bot pattern")

    if _matches_suspicious_domain(domain, reference.suspicious_domains):
        score += SCORE_SUSPICIOUS_DOMAIN
        reasons.append(f"Email domain is high risk: {domain}")

    # Plus aliases are legitimate too, so this only nudges the score
    if "+" in local_part:
        score += SCORE_PLUS_ALIAS
        reasons.append("Email uses a plus alias")

    if len(local_part) <= 2:
        score += SCORE_SHORT_LOCAL_PART
        reasons.append("Email local part is very short")

    if local_part.isdigit():
        score += SCORE_NUMERIC_LOCAL_PART
        reasons.append("Email local part is only digits")

    if _TRAILING_DIGITS_RE.match(local_part):
        score += SCORE_TRAILING_DIGITS
        reasons.append("Email local part ends in a long number")

    if any(pattern in local_part for pattern in reference.keyboard_patterns):
        score += SCORE_KEYBOARD_PATTERN
        reasons.append("Email contains a keyboard pattern")

    if len(email) > 100:
        score += SCORE_LONG_ADDRESS
        reasons.append("Email address is unusually long")

    if len(domain.split(".")) > 3:
        score += SCORE_DEEP_SUBDOMAIN
        reasons.append("Email domain has many subdomains")

    score = min(100, score)

    return EmailAssessment(
        email=email,
        local_part=local_part,
        domain=domain,
        is_valid=not is_disposable and score < THRESHOLD_INVALID,
        is_disposable=is_disposable,
        is_suspicious=score >= THRESHOLD_SUSPICIOUS,
        suspicion_score=score,
        reasons=reasons,
        is_free_provider=domain in reference.free_email_domains,
    )
