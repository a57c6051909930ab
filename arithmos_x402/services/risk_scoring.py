"""
Weighted rule evaluation shared by every analysis endpoint.

Each scanner supplies a table of RiskRule objects and a signals value; the
engine sums the points of every matching rule, caps the total to [0, 100]
and derives the threat level and the safe flag.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Generic, Optional, Sequence, Tuple, TypeVar
import structlog

logger = structlog.get_logger(__name__)

S = TypeVar("S")

MIN_SCORE = 0
MAX_SCORE = 100


class ThreatLevel(str, Enum):
    NONE = "NONE"
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class Severity(str, Enum):
    INFO = "info"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# Highest threshold first
THREAT_THRESHOLDS: Tuple[Tuple[int, ThreatLevel], ...] = (
    (80, ThreatLevel.CRITICAL),
    (60, ThreatLevel.HIGH),
    (40, ThreatLevel.MEDIUM),
    (20, ThreatLevel.LOW),
)


@dataclass(frozen=True)
class RiskRule(Generic[S]):
    """
    A single scoring rule.

    Attributes:
        name: Machine-readable identifier reported when the rule triggers
        predicate: Pure function of the signals deciding whether the rule matches
        points: Points added when the rule matches (may be negative for bonuses)
        reason: Human-readable explanation
        severity: Coarse severity class used for presentation
    """
    name: str
    predicate: Callable[[S], bool]
    points: int
    reason: str
    severity: Severity = Severity.MEDIUM

    def matches(self, signals: S) -> bool:
        return bool(self.predicate(signals))


@dataclass(frozen=True)
class ScoreResult:
    """
    Outcome of evaluating a rule table. Never mutated after evaluation.
    """
    raw_points: int
    score: int
    triggered: Tuple[str, ...]
    reasons: Tuple[str, ...]
    threat_level: ThreatLevel
    safe: bool
    hits: Tuple[RiskRule, ...] = field(default=(), repr=False, compare=False)

    def to_dict(self) -> dict:
        return {
            "raw_points": self.raw_points,
            "score": self.score,
            "triggered": list(self.triggered),
            "reasons": list(self.reasons),
            "threat_level": self.threat_level.value,
            "safe": self.safe,
        }


def cap_score(points: int) -> int:
    """Clamp an accumulated point total into the [0, 100] reporting range."""
    return max(MIN_SCORE, min(MAX_SCORE, points))


def classify(score: int) -> ThreatLevel:
    """
    Map a capped score onto a threat level.

    Args:
        score: Capped score in [0, 100]

    Returns:
        The first tier whose threshold the score meets, NONE otherwise
    """
    for threshold, level in THREAT_THRESHOLDS:
        if score >= threshold:
            return level
    return ThreatLevel.NONE


def evaluate(
    rules: Sequence[RiskRule[S]],
    signals: S,
    *,
    base: int = 0,
    hard_fail_points: Optional[int] = None,
    unsafe_score: Optional[int] = None
) -> ScoreResult:
    """
    Evaluate every rule against the same signals and aggregate the result.

    Rules are independent: all matching rules contribute, in table order.

    Args:
        rules: Rule table of the calling scanner
        signals: Signals collected for this request
        base: Starting point total before any rule is applied
        hard_fail_points: A single triggered rule worth at least this many
            points marks the result unsafe regardless of the total
        unsafe_score: A capped score at or above this value marks the result unsafe

    Returns:
        ScoreResult with capped score, ordered hits, threat level and safe flag
    """
    hits = tuple(rule for rule in rules if rule.matches(signals))

    raw_points = base + sum(rule.points for rule in hits)
    score = cap_score(raw_points)

    safe = True
    if hard_fail_points is not None and any(rule.points >= hard_fail_points for rule in hits):
        safe = False
    if unsafe_score is not None and score >= unsafe_score:
        safe = False

    result = ScoreResult(
        raw_points=raw_points,
        score=score,
        triggered=tuple(rule.name for rule in hits),
        reasons=tuple(rule.reason for rule in hits),
        threat_level=classify(score),
        safe=safe,
        hits=hits,
    )

    logger.debug(
        "rules_evaluated",
        rule_count=len(rules),
        triggered=list(result.triggered),
        raw_points=raw_points,
        score=score
    )

    return result


def describe_hit(rule: RiskRule[Any]) -> str:
    """Render a triggered rule as `name: reason (+N points)`."""
    sign = "+" if rule.points >= 0 else "-"
    return f"{rule.name}: {rule.reason} ({sign}{abs(rule.points)} points)"


__all__ = [
    "ThreatLevel",
    "Severity",
    "RiskRule",
    "ScoreResult",
    "THREAT_THRESHOLDS",
    "cap_score",
    "classify",
    "evaluate",
    "describe_hit",
]
