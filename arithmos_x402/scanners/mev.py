"""
MEV exposure check for a pending transaction.
"""

from dataclasses import dataclass
from typing import Optional
import structlog

from ..models import MEVCheckResult, TransactionRequest
from ..services.risk_scoring import RiskRule, Severity, ThreatLevel, evaluate
from ..services.upstream import RPCClient
from .base import Scanner, now_unix
from .transaction import ONE_ETH_WEI, parse_value_wei

logger = structlog.get_logger(__name__)

SWAP_SELECTORS = (
    "0x38ed1739",  # swapExactTokensForTokens
    "0x8803dbee",  # swapTokensForExactTokens
    "0x7ff36ab5",  # swapExactETHForTokens
    "0x18cbafe5",  # swapExactTokensForETH
)

PROTECTED_RPCS = [
    "https://rpc.flashbots.net",
    "https://mevblocker.io",
]

HIGH_GAS_GWEI = 50
ELEVATED_GAS_GWEI = 20

UNSAFE_SCORE = 50
MEDIUM_FRONTRUN_SCORE = 30


@dataclass(frozen=True)
class MEVSignals:
    value_wei: int = 0
    is_swap: bool = False
    gas_price_gwei: Optional[float] = None


def is_dex_swap(data: str) -> bool:
    return len(data) > 10 and data.startswith(SWAP_SELECTORS)


MEV_RULES = (
    RiskRule(
        name="high_value_transfer",
        predicate=lambda s: s.value_wei > ONE_ETH_WEI,
        points=20,
        reason="Transaction moves more than 1 ETH",
        severity=Severity.MEDIUM,
    ),
    RiskRule(
        name="dex_swap_detected",
        predicate=lambda s: s.is_swap,
        points=30,
        reason="DEX swap is exposed to sandwich attacks",
        severity=Severity.HIGH,
    ),
    RiskRule(
        name="high_gas_price",
        predicate=lambda s: s.gas_price_gwei is not None and s.gas_price_gwei > HIGH_GAS_GWEI,
        points=10,
        reason="Network gas price is high",
        severity=Severity.MEDIUM,
    ),
    RiskRule(
        name="elevated_gas_price",
        predicate=lambda s: (
            s.gas_price_gwei is not None
            and ELEVATED_GAS_GWEI < s.gas_price_gwei <= HIGH_GAS_GWEI
        ),
        points=5,
        reason="Network gas price is elevated",
        severity=Severity.LOW,
    ),
)


def gas_price_band(gwei: Optional[float]) -> str:
    if gwei is None or gwei <= ELEVATED_GAS_GWEI:
        return "low"
    if gwei > HIGH_GAS_GWEI:
        return "high"
    return "medium"


def frontrun_band(score: int) -> str:
    if score >= UNSAFE_SCORE:
        return "high"
    if score >= MEDIUM_FRONTRUN_SCORE:
        return "medium"
    return "low"


class MEVCheck(Scanner[TransactionRequest]):
    name = "mev"

    def __init__(self, rpc: RPCClient, timeout: float = 10.0):
        super().__init__(timeout)
        self.rpc = rpc

    async def run(self, request: TransactionRequest) -> MEVCheckResult:
        signals = MEVSignals(
            value_wei=parse_value_wei(request.value),
            is_swap=is_dex_swap(request.data),
            gas_price_gwei=await self.signal(self.rpc.gas_price_gwei(), "rpc"),
        )
        score = evaluate(MEV_RULES, signals, unsafe_score=UNSAFE_SCORE)

        result = MEVCheckResult(
            risk_score=score.score,
            threat_level=score.threat_level.value,
            safe=score.safe,
            triggered_rules=list(score.triggered),
            risk_factors=list(score.triggered),
            sandwich_risk="medium" if signals.is_swap else "low",
            frontrun_risk=frontrun_band(score.score),
            gas_price_risk=gas_price_band(signals.gas_price_gwei),
            recommended_slippage="0.1%" if signals.is_swap else "0.5%",
            protected_rpcs=list(PROTECTED_RPCS),
            checked_at=now_unix(),
        )

        logger.info(
            "mev_checked",
            to=request.to,
            risk_score=result.risk_score,
            risk_factors=result.risk_factors
        )
        return result

    def fallback(self, request: TransactionRequest) -> MEVCheckResult:
        return MEVCheckResult(
            risk_score=50,
            threat_level=ThreatLevel.MEDIUM.value,
            safe=False,
            data_source="fallback",
            sandwich_risk="medium",
            frontrun_risk="medium",
            gas_price_risk="medium",
            recommended_slippage="0.1%",
            protected_rpcs=list(PROTECTED_RPCS),
            checked_at=now_unix(),
        )
