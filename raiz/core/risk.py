"""
Deterministic risk scoring.

``risk = 0.4*severity + 0.2*depth + 0.2*scope + 0.2*exploit``, every term on a
0-100 scale. No state, no randomness: identical inputs give identical scores.
"""
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence

from raiz.core.model import ExploitMaturity, Scope, Severity

SEVERITY_SCORES = {
    Severity.CRITICAL: 100,
    Severity.HIGH: 80,
    Severity.MEDIUM: 60,
    Severity.LOW: 40,
    Severity.INFO: 20,
}

SCOPE_SCORES = {
    Scope.COMPILE: 100,
    Scope.RUNTIME: 80,
    Scope.PROVIDED: 60,
    Scope.TEST: 40,
    Scope.SYSTEM: 20,
}

EXPLOIT_SCORES = {
    ExploitMaturity.POC: 100,
    ExploitMaturity.WEAPONIZED: 80,
    ExploitMaturity.THEORETICAL: 60,
    ExploitMaturity.NONE: 40,
}

# Index = depth; the last band applies to every deeper level (direct / one / two / deep).
DEPTH_SCORES = (100, 80, 60, 40)


@dataclass(frozen=True)
class RiskWeights:
    severity: float = 0.4
    depth: float = 0.2
    scope: float = 0.2
    exploit: float = 0.2


def depth_score(depth: int, table: Sequence[int] = DEPTH_SCORES) -> int:
    if depth < 0:
        raise ValueError(f"depth must be >= 0, got {depth}")
    return table[min(depth, len(table) - 1)]


def risk_score(
    severity: Severity,
    depth: int,
    scope: Scope,
    exploit_maturity: ExploitMaturity,
    weights: Optional[RiskWeights] = None,
    depth_table: Sequence[int] = DEPTH_SCORES,
) -> float:
    w = weights or RiskWeights()
    score = (
        w.severity * SEVERITY_SCORES[severity]
        + w.depth * depth_score(depth, depth_table)
        + w.scope * SCOPE_SCORES[scope]
        + w.exploit * EXPLOIT_SCORES[exploit_maturity]
    )
    return round(min(max(score, 0.0), 100.0), 2)


def score_breakdown(severity: Severity, depth: int, scope: Scope,
                    exploit_maturity: ExploitMaturity,
                    depth_table: Sequence[int] = DEPTH_SCORES) -> Mapping[str, int]:
    """Per-factor scores behind a risk score, as shown in the findings view."""
    return {
        "severity": SEVERITY_SCORES[severity],
        "depth": depth_score(depth, depth_table),
        "scope": SCOPE_SCORES[scope],
        "exploit": EXPLOIT_SCORES[exploit_maturity],
    }
