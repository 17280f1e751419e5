"""Name authenticity analysis.

Detects machine-generated display names by looking at:
- Shannon entropy (randomness)
- Consonant/vowel ratio
- Known spam name shapes
- Keyboard walks and repeated characters
- Gibberish (unpronounceable letter combinations)

Recognised first names lower the score so short and foreign names are not
penalised.
"""

import math
import re
from collections import Counter
from dataclasses import dataclass, field

from spam_guard.reference_data import ReferenceData, get_reference_data

THRESHOLD_SUSPICIOUS = 50
GIBBERISH_THRESHOLD = 40
WHITELIST_BONUS = 30

MIN_LENGTH = 2
MAX_LENGTH = 50

_VOWELS = "aeiouäëïöüáéíóúàèìòù"
_CONSONANTS = "bcdfghjklmnpqrstvwxyz"

_VOWEL_RE = re.compile(f"[{_VOWELS}]")
_CONSONANT_RE = re.compile(f"[{_CONSONANTS}]")
_CONSONANT_STREAK_RE = re.compile(f"[{_CONSONANTS}]{{4,}}")
_RANDOM_CAPS_RE = re.compile(r"[a-z][A-Z][a-z]")
_NAME_SHAPE_RE = re.compile(f"^[{_CONSONANTS}]?[aeiou][{_CONSONANTS}]+[aeiou]")
_REPETITION_RE = re.compile(r"(.)\1{2,}")
_TOKEN_SPLIT_RE = re.compile(r"[\s'-]+")
_WHITESPACE_RE = re.compile(r"\s+")
# Letters in any script plus spaces, hyphens and apostrophes
_ALLOWED_NAME_RE = re.compile(r"^(?:[^\W\d_]|[\s'-])+$")


@dataclass
class NameDetails:
    """Raw measurements behind a name assessment."""

    entropy: float
    consonant_ratio: float
    has_keyboard_pattern: bool
    has_repetition: bool
    has_numbers: bool
    is_all_caps: bool
    is_too_short: bool
    is_too_long: bool


@dataclass
class NameAssessment:
    """Result of analysing a display name."""

    is_valid: bool
    is_suspicious: bool
    suspicion_score: int
    reasons: list[str] = field(default_factory=list)
    details: NameDetails | None = None


@dataclass
class GibberishResult:
    """Secondary score for unpronounceable names."""

    is_gibberish: bool
    score: int
    reasons: list[str] = field(default_factory=list)


def calculate_entropy(text: str) -> float:
    """Shannon entropy in bits per character (case-insensitive)."""
    if not text:
        return 0.0
    length = len(text)
    counts = Counter(text.lower())
    return -sum((n / length) * math.log2(n / length) for n in counts.values())


def calculate_consonant_ratio(text: str) -> float:
    """Ratio of consonants to vowels; 10.0 when there are consonants but no vowels."""
    lower = text.lower()
    vowels = len(_VOWEL_RE.findall(lower))
    consonants = len(_CONSONANT_RE.findall(lower))
    if vowels == 0:
        return 10.0 if consonants > 0 else 0.0
    return consonants / vowels


def has_keyboard_pattern(text: str, reference: ReferenceData | None = None) -> bool:
    reference = reference or get_reference_data()
    lower = re.sub(r"[^a-z0-9]", "", text.lower())
    return any(pattern in lower for pattern in reference.keyboard_patterns)


def contains_common_name(text: str, reference: ReferenceData | None = None) -> bool:
    reference = reference or get_reference_data()
    words = _TOKEN_SPLIT_RE.split(text.lower())
    return any(word in reference.common_first_names for word in words)


def matches_spam_pattern(text: str, reference: ReferenceData | None = None) -> bool:
    reference = reference or get_reference_data()
    normalized = _WHITESPACE_RE.sub("", text).lower()
    return any(p.search(normalized) for p in reference.spam_name_patterns)


def detect_gibberish(name: str, reference: ReferenceData | None = None) -> GibberishResult:
    """Score unpronounceable letter combinations such as "Xvnwoeifnwef".

    Only names with at least six latin letters are considered.
    """
    reference = reference or get_reference_data()
    lower = re.sub(r"[^a-z]", "", name.lower())
    if len(lower) < 6:
        return GibberishResult(is_gibberish=False, score=0)

    score = 0
    reasons: list[str] = []

    uncommon = 0
    for i in range(len(lower) - 2):
        trigram = lower[i : i + 3]
        if any(t in trigram or trigram in t for t in reference.uncommon_trigrams):
            uncommon += 1
    if uncommon >= 2:
        score += 25
        reasons.append("Name contains uncommon letter combinations")

    streak = _CONSONANT_STREAK_RE.search(lower)
    if streak:
        score += 30
        reasons.append(f"Name contains a long consonant run: {streak.group()}")

    if len(_RANDOM_CAPS_RE.findall(name[1:-1])) >= 2:
        score += 20
        reasons.append("Name has random capitalisation")

    looks_like_name = bool(_NAME_SHAPE_RE.match(lower)) or any(
        lower[:n] in reference.common_first_names for n in (4, 5, 6)
    )
    if not looks_like_name and len(lower) > 8:
        score += 20
        reasons.append("Name has no recognisable name structure")

    top_count = Counter(lower).most_common(1)[0][1]
    if top_count / len(lower) > 0.3 and len(lower) > 6:
        score += 15
        reasons.append("Name has an unusual letter distribution")

    return GibberishResult(
        is_gibberish=score >= GIBBERISH_THRESHOLD, score=score, reasons=reasons
    )


def assess_name(
    name: str,
    reference: ReferenceData | None = None,
    use_whitelist: bool = True,
) -> NameAssessment:
    """Analyse a display name for signs of automated generation.

    Args:
        name: Display name as submitted.
        reference: Reference tables, defaults to the bundled data.
        use_whitelist: Apply the common first name bonus.

    Returns:
        NameAssessment with a 0-100 score, reasons and raw measurements.
    """
    reference = reference or get_reference_data()
    trimmed = (name or "").strip()
    normalized = _WHITESPACE_RE.sub("", trimmed).lower()
    reasons: list[str] = []
    score = 0

    is_too_short = len(trimmed) < MIN_LENGTH
    is_too_long = len(trimmed) > MAX_LENGTH
    has_numbers = any(c.isdigit() for c in trimmed)
    is_all_caps = trimmed == trimmed.upper() and len(trimmed) > 3

    entropy = calculate_entropy(normalized)
    consonant_ratio = calculate_consonant_ratio(normalized)
    keyboard = has_keyboard_pattern(normalized, reference)
    repetition = bool(_REPETITION_RE.search(normalized))

    if is_too_short:
        score += 30
        reasons.append("Name is too short")
    if is_too_long:
        score += 20
        reasons.append("Name is unusually long")
    if has_numbers:
        score += 40
        reasons.append("Name contains digits")
    if is_all_caps:
        score += 15
        reasons.append("Name is written in capitals")

    # Human names sit roughly between 1.5 and 4.2 bits
    if entropy > 4.2:
        score += 25
        reasons.append("Name looks randomly generated (high entropy)")
    elif entropy < 1.5 and len(normalized) > 4:
        score += 20
        reasons.append("Name has a degenerate pattern (low entropy)")

    if consonant_ratio > 4.0:
        score += 30
        reasons.append("Name has an unnatural consonant/vowel ratio")
    elif consonant_ratio < 0.3 and len(normalized) > 3:
        score += 15
        reasons.append("Name has very few consonants")

    if keyboard:
        score += 35
        reasons.append("Name contains a keyboard pattern")

    if repetition:
        score += 25
        reasons.append("Name contains repeated characters")

    if matches_spam_pattern(trimmed, reference):
        score += 45
        reasons.append("Name matches a known spam pattern")

    gibberish = detect_gibberish(trimmed, reference)
    if gibberish.is_gibberish:
        score += gibberish.score
        reasons.extend(gibberish.reasons)

    whitelisted = use_whitelist and contains_common_name(trimmed, reference)
    if whitelisted:
        score = max(0, score - WHITELIST_BONUS)
        reasons.append("Name contains a common first name (score lowered)")

    if len(normalized) > 10 and " " not in trimmed and "-" not in trimmed:
        if not whitelisted:
            score += 25
            reasons.append("Long name without spaces")

    score = min(100, score)

    return NameAssessment(
        is_valid=(
            not is_too_short
            and not is_too_long
            and bool(_ALLOWED_NAME_RE.match(trimmed))
        ),
        is_suspicious=score >= THRESHOLD_SUSPICIOUS,
        suspicion_score=score,
        reasons=reasons,
        details=NameDetails(
            entropy=entropy,
            consonant_ratio=consonant_ratio,
            has_keyboard_pattern=keyboard,
            has_repetition=repetition,
            has_numbers=has_numbers,
            is_all_caps=is_all_caps,
            is_too_short=is_too_short,
            is_too_long=is_too_long,
        ),
    )


def is_name_suspicious(name: str, threshold: int = THRESHOLD_SUSPICIOUS) -> bool:
    """Quick yes/no check for callers that only need the flag."""
    return assess_name(name).suspicion_score >= threshold
