"""
Transaction pre-flight checks.

Simulates gas, inspects calldata for dangerous approvals and flags large
value transfers before an agent signs a transaction.
"""

import asyncio
from dataclasses import dataclass
from typing import Optional
import structlog

from ..models import TransactionRequest, TxPreflightResult
from ..services.risk_scoring import RiskRule, Severity, ThreatLevel, evaluate
from ..services.upstream import RPCClient, UpstreamError, bounded, parse_hex_int
from .base import Scanner, now_unix

logger = structlog.get_logger(__name__)

APPROVE_SELECTOR = "0x095ea7b3"
TRANSFER_FROM_SELECTOR = "0x23b872dd"

ONE_ETH_WEI = 10 ** 18
HIGH_GAS_LIMIT = 500_000
# 20% buffer on the node's estimate
GAS_BUFFER_TENTHS = 12

UNSAFE_SCORE = 50
TEST_TX_SCORE = 30


@dataclass(frozen=True)
class TxSignals:
    missing_recipient: bool = False
    unlimited_approval: bool = False
    transfer_from: bool = False
    value_wei: int = 0
    gas_estimate: Optional[int] = None
    gas_error: Optional[str] = None


TX_RULES = (
    RiskRule(
        name="missing_recipient",
        predicate=lambda s: s.missing_recipient,
        points=100,
        reason="Missing 'to' address",
        severity=Severity.CRITICAL,
    ),
    RiskRule(
        name="unlimited_approval",
        predicate=lambda s: s.unlimited_approval,
        points=30,
        reason="Unlimited token approval detected - use specific amount instead",
        severity=Severity.HIGH,
    ),
    RiskRule(
        name="transfer_from_call",
        predicate=lambda s: s.transfer_from,
        points=10,
        reason="transferFrom() call - verify sender has approved spending",
        severity=Severity.LOW,
    ),
    RiskRule(
        name="large_value_transfer",
        predicate=lambda s: s.value_wei > ONE_ETH_WEI,
        points=10,
        reason="Large ETH transfer",
        severity=Severity.MEDIUM,
    ),
    RiskRule(
        name="gas_estimation_failed",
        predicate=lambda s: not s.missing_recipient and s.gas_error is not None,
        points=20,
        reason="Gas estimation failed",
        severity=Severity.HIGH,
    ),
    RiskRule(
        name="high_gas_usage",
        predicate=lambda s: s.gas_estimate is not None and s.gas_estimate > HIGH_GAS_LIMIT,
        points=5,
        reason="High gas usage detected",
        severity=Severity.LOW,
    ),
)


def is_unlimited_approval(data: str) -> bool:
    """approve() whose amount word is all f's (max uint256)."""
    if APPROVE_SELECTOR not in data or len(data) <= 74:
        return False
    amount = data[74:].lower()
    return set(amount) == {"f"}


def parse_value_wei(value: str) -> int:
    """Values are hex quantities; anything unparsable counts as zero."""
    if not value:
        return 0
    try:
        return parse_hex_int(value)
    except ValueError:
        return 0


class TxPreflight(Scanner[TransactionRequest]):
    name = "tx_preflight"

    def __init__(self, rpc: RPCClient, timeout: float = 10.0):
        super().__init__(timeout)
        self.rpc = rpc

    async def _estimate(self, request: TransactionRequest) -> tuple:
        """
        Returns:
            (buffered gas estimate, None) or (None, error message)
        """
        tx = {
            "from": request.from_address,
            "to": request.to,
            "value": request.value,
            "data": request.data,
        }
        try:
            gas = await bounded(self.rpc.estimate_gas(tx), self.timeout, "rpc")
        except UpstreamError as e:
            return None, str(e)
        return gas * GAS_BUFFER_TENTHS // 10, None

    async def _is_contract(self, address: str) -> bool:
        code = await self.signal(self.rpc.get_code(address), "rpc")
        return bool(code) and code != "0x" and len(code) > 2

    async def run(self, request: TransactionRequest) -> TxPreflightResult:
        if not request.to:
            signals = TxSignals(missing_recipient=True)
            is_contract = False
        else:
            (gas_estimate, gas_error), is_contract = await asyncio.gather(
                self._estimate(request),
                self._is_contract(request.to),
            )
            signals = TxSignals(
                unlimited_approval=is_unlimited_approval(request.data),
                transfer_from=TRANSFER_FROM_SELECTOR in request.data,
                value_wei=parse_value_wei(request.value),
                gas_estimate=gas_estimate,
                gas_error=gas_error,
            )

        score = evaluate(TX_RULES, signals, unsafe_score=UNSAFE_SCORE)

        warnings = []
        errors = []
        if is_contract:
            warnings.append("Target is a smart contract - verify it's trusted")
        for rule in score.hits:
            if rule.name == "missing_recipient":
                errors.append(rule.reason)
            elif rule.name == "gas_estimation_failed":
                errors.append(f"{rule.reason}: {signals.gas_error}")
            elif rule.name == "large_value_transfer":
                warnings.append(f"{rule.reason}: {signals.value_wei / ONE_ETH_WEI:.4f} ETH")
            else:
                warnings.append(rule.reason)

        recommendations = []
        if not signals.missing_recipient:
            if score.score >= UNSAFE_SCORE:
                recommendations.append("Transaction has high risk - review carefully")
            if score.score >= TEST_TX_SCORE:
                recommendations.append("Consider using a test transaction first")

        result = TxPreflightResult(
            risk_score=score.score,
            threat_level=score.threat_level.value,
            safe=score.safe,
            triggered_rules=list(score.triggered),
            simulation_success=signals.gas_estimate is not None,
            gas_estimate="" if signals.gas_estimate is None else str(signals.gas_estimate),
            warnings=warnings,
            errors=errors,
            recommendations=recommendations,
            checked_at=now_unix(),
        )

        logger.info(
            "tx_preflight_checked",
            to=request.to,
            risk_score=result.risk_score,
            safe=result.safe,
            simulation_success=result.simulation_success
        )
        return result

    def fallback(self, request: TransactionRequest) -> TxPreflightResult:
        return TxPreflightResult(
            risk_score=50,
            threat_level=ThreatLevel.MEDIUM.value,
            safe=False,
            data_source="fallback",
            errors=["Pre-flight simulation unavailable"],
            recommendations=["Consider using a test transaction first"],
            checked_at=now_unix(),
        )
