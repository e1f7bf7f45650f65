import re
from typing import Tuple

from raiz.core.model import ConfidenceLevel, Vulnerability

MATCH_WEIGHT = 0.5
RELIABILITY_WEIGHT = 0.4
CONFIRMATION_STEP = 0.05
CONFIRMATION_CAP = 0.10
ID_FORMAT_BONUS = 0.05

_CANONICAL_ID_PATTERNS = (
    re.compile(r"^CVE-\d{4}-\d{4,}$", re.IGNORECASE),
    re.compile(r"^GHSA(-[23456789cfghjmpqrvwx]{4}){3}$", re.IGNORECASE),
)


def is_canonical_id(identifier: str) -> bool:
    return any(p.match(identifier.strip()) for p in _CANONICAL_ID_PATTERNS)


def confidence(match_quality: float, reliability: float, source_count: int, id_format_valid: bool) -> int:
    """0-100 trust in a match. Never decreases when ``source_count`` grows."""
    bonus = min(CONFIRMATION_STEP * max(source_count - 1, 0), CONFIRMATION_CAP)
    composite = MATCH_WEIGHT * match_quality + RELIABILITY_WEIGHT * reliability + bonus
    if id_format_valid:
        composite += ID_FORMAT_BONUS
    return int(round(min(max(composite, 0.0), 1.0) * 100))


def confidence_level(score: int) -> ConfidenceLevel:
    if score >= 80:
        return ConfidenceLevel.HIGH
    if score >= 50:
        return ConfidenceLevel.MEDIUM
    return ConfidenceLevel.LOW


def assess(vulnerability: Vulnerability) -> Tuple[int, ConfidenceLevel]:
    """Confidence of a (possibly merged) vulnerability record."""
    score = confidence(
        float(vulnerability.match_quality),
        vulnerability.reliability,
        len(vulnerability.sources),
        any(is_canonical_id(i) for i in vulnerability.identifiers),
    )
    return score, confidence_level(score)
