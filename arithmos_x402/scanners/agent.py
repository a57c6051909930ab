"""
Agent trust scoring.

Starts every agent at 100 and adjusts for security tooling, on-chain failure
rate, feedback and account age. History comes from the explorer when the
agent ID is a wallet address.
"""

import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
import structlog

from ..models import AgentScoreRequest, AgentScoreResult, validate_address
from ..services.risk_scoring import RiskRule, Severity, evaluate
from ..services.upstream import ExplorerClient
from .base import Scanner, now_unix

logger = structlog.get_logger(__name__)

BASE_SCORE = 100
SECONDS_PER_DAY = 86400

RECENT_REGISTRATION_DAYS = 30
ESTABLISHED_DAYS = 180

FAILED_RATE_THRESHOLD = 0.1

# One point per step, so the summed tiers equal int(rate * 50) and int(rating * 5)
FAILED_RATE_STEPS = 50
FEEDBACK_STEPS_PER_STAR = 5
MAX_FEEDBACK_STARS = 5

FAILED_RATE_PREFIX = "failed_tx_rate_"
FEEDBACK_PREFIX = "feedback_"


@dataclass(frozen=True)
class AgentSignals:
    has_security_stack: bool = False
    failed_tx_rate: float = 0.0
    feedback_rating: float = 0.0
    registration_days: int = 0


def _failed_rate_tier(step: int) -> RiskRule:
    return RiskRule(
        name=f"{FAILED_RATE_PREFIX}{step}",
        predicate=lambda s: (
            s.failed_tx_rate > FAILED_RATE_THRESHOLD
            and int(s.failed_tx_rate * FAILED_RATE_STEPS) >= step
        ),
        points=-1,
        reason="High failed transaction rate",
        severity=Severity.MEDIUM,
    )


def _feedback_tier(step: int) -> RiskRule:
    return RiskRule(
        name=f"{FEEDBACK_PREFIX}{step}",
        predicate=lambda s: int(s.feedback_rating * FEEDBACK_STEPS_PER_STAR) >= step,
        points=1,
        reason="Positive feedback",
        severity=Severity.INFO,
    )


# Points are added to a base of 100, so penalties are negative
AGENT_RULES = (
    RiskRule(
        name="security_stack_installed",
        predicate=lambda s: s.has_security_stack,
        points=10,
        reason="Has Agent Security Stack installed",
        severity=Severity.INFO,
    ),
    RiskRule(
        name="no_security_stack",
        predicate=lambda s: not s.has_security_stack,
        points=-20,
        reason="No security stack detected",
        severity=Severity.MEDIUM,
    ),
    *(_failed_rate_tier(step) for step in range(1, FAILED_RATE_STEPS + 1)),
    *(_feedback_tier(step) for step in range(1, MAX_FEEDBACK_STARS * FEEDBACK_STEPS_PER_STAR + 1)),
    RiskRule(
        name="recent_registration",
        predicate=lambda s: s.registration_days < RECENT_REGISTRATION_DAYS,
        points=-10,
        reason="Recently registered agent",
        severity=Severity.LOW,
    ),
    RiskRule(
        name="established_agent",
        predicate=lambda s: s.registration_days > ESTABLISHED_DAYS,
        points=5,
        reason="Established agent",
        severity=Severity.INFO,
    ),
)


def history_signals(transactions: List[Dict[str, Any]], now: Optional[float] = None) -> dict:
    """
    Derive failure rate and account age from an ascending transaction list.
    """
    if not transactions:
        return {}
    now = time.time() if now is None else now

    failed = sum(1 for tx in transactions if str(tx.get("isError", "0")) == "1")
    signals = {"failed_tx_rate": failed / len(transactions)}

    try:
        first_seen = int(transactions[0].get("timeStamp", 0))
    except (TypeError, ValueError):
        return signals
    if first_seen > 0:
        signals["registration_days"] = max(0, int(now - first_seen) // SECONDS_PER_DAY)
    return signals


def _points(points: int) -> str:
    return f"{'+' if points >= 0 else '-'}{abs(points)}"


def describe_factors(hits, signals: AgentSignals) -> List[str]:
    """
    Render score factors, folding the per-step tier rules into one line each.
    """
    factors = []
    failed_points = sum(rule.points for rule in hits if rule.name.startswith(FAILED_RATE_PREFIX))
    feedback_points = sum(rule.points for rule in hits if rule.name.startswith(FEEDBACK_PREFIX))

    for rule in hits:
        if rule.name == f"{FAILED_RATE_PREFIX}1":
            factors.append(
                f"{rule.reason}: {signals.failed_tx_rate * 100:.1f}% ({_points(failed_points)})"
            )
        elif rule.name == f"{FEEDBACK_PREFIX}1":
            factors.append(
                f"{rule.reason}: {signals.feedback_rating:.1f}/5 ({_points(feedback_points)})"
            )
        elif not rule.name.startswith((FAILED_RATE_PREFIX, FEEDBACK_PREFIX)):
            factors.append(f"{rule.reason} ({_points(rule.points)})")
    return factors


def _is_address(agent_id: str) -> bool:
    try:
        validate_address(agent_id)
    except ValueError:
        return False
    return True


class AgentScorer(Scanner[AgentScoreRequest]):
    name = "agent"

    def __init__(self, explorer: ExplorerClient, chain: str = "base", timeout: float = 10.0):
        super().__init__(timeout)
        self.explorer = explorer
        self.chain = chain

    async def collect(self, agent_id: str) -> AgentSignals:
        if not _is_address(agent_id) or not self.explorer.has_key(self.chain):
            return AgentSignals()

        transactions = await self.signal(self.explorer.transactions(agent_id, self.chain), "explorer")
        return AgentSignals(**history_signals(transactions or []))

    async def run(self, request: AgentScoreRequest) -> AgentScoreResult:
        signals = await self.collect(request.agent_id)
        score = evaluate(AGENT_RULES, signals, base=BASE_SCORE)

        result = AgentScoreResult(
            agent_id=request.agent_id,
            security_score=score.score,
            has_security_stack=signals.has_security_stack,
            failed_tx_rate=round(signals.failed_tx_rate, 4),
            registration_days=signals.registration_days,
            feedback_rating=signals.feedback_rating,
            factors=describe_factors(score.hits, signals),
            scored_at=now_unix(),
        )

        logger.info("agent_scored", agent_id=request.agent_id, security_score=result.security_score)
        return result

    def fallback(self, request: AgentScoreRequest) -> AgentScoreResult:
        return AgentScoreResult(
            agent_id=request.agent_id,
            security_score=50,
            data_source="fallback",
            factors=["Agent history unavailable"],
            scored_at=now_unix(),
        )
