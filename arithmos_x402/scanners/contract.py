"""
Smart contract risk scanner.

Checks source verification, proxy pattern and honeypot indicators for a
contract and caches the scored result per chain and address.
"""

import asyncio
from dataclasses import dataclass
from typing import Optional
import structlog

from ..models import ContractScanRequest, ContractScanResult
from ..services.cache import ExpiringCache
from ..services.risk_scoring import RiskRule, Severity, ThreatLevel, evaluate
from ..services.upstream import ExplorerClient, HoneypotClient, UpstreamError
from .base import Scanner, now_unix

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ContractSignals:
    """None means the upstream could not tell."""
    is_verified: Optional[bool]
    is_proxy: Optional[bool]
    is_honeypot: Optional[bool]


CONTRACT_RULES = (
    RiskRule(
        name="unverified_contract",
        predicate=lambda s: s.is_verified is False,
        points=30,
        reason="Contract source code is not verified",
        severity=Severity.HIGH,
    ),
    RiskRule(
        name="honeypot_indicators",
        predicate=lambda s: s.is_honeypot is True,
        points=50,
        reason="Honeypot patterns detected - extreme caution",
        severity=Severity.CRITICAL,
    ),
)

HARD_FAIL_POINTS = 50

PROXY_WARNING = "Contract is a proxy - check implementation"


def cache_key(chain: str, address: str) -> str:
    return f"contract:{chain}:{address}"


class ContractScanner(Scanner[ContractScanRequest]):
    name = "contract"

    def __init__(
        self,
        explorer: ExplorerClient,
        honeypot: HoneypotClient,
        cache: ExpiringCache,
        timeout: float = 10.0
    ):
        super().__init__(timeout)
        self.explorer = explorer
        self.honeypot = honeypot
        self.cache = cache

    async def collect(self, address: str, chain: str) -> ContractSignals:
        is_verified, is_proxy, is_honeypot = await asyncio.gather(
            self.signal(self.explorer.is_verified(address, chain), "explorer"),
            self.signal(self.explorer.is_proxy(address, chain), "explorer"),
            self.signal(self.honeypot.is_honeypot(address, chain), "honeypot"),
        )
        return ContractSignals(is_verified=is_verified, is_proxy=is_proxy, is_honeypot=is_honeypot)

    async def run(self, request: ContractScanRequest) -> ContractScanResult:
        address = request.address.lower()
        key = cache_key(request.chain, address)

        cached, found = self.cache.get(key)
        if found:
            logger.debug("contract_scan_cache_hit", address=address, chain=request.chain)
            return cached.model_copy(update={"cached": True, "cached_at": cached.scanned_at})

        signals = await self.collect(address, request.chain)
        if signals.is_verified is None and signals.is_honeypot is None:
            raise UpstreamError("contract", "no contract signals available")

        score = evaluate(CONTRACT_RULES, signals, hard_fail_points=HARD_FAIL_POINTS)

        warnings = list(score.reasons)
        if signals.is_proxy:
            warnings.append(PROXY_WARNING)

        result = ContractScanResult(
            address=address,
            chain=request.chain,
            risk_score=score.score,
            threat_level=score.threat_level.value,
            safe=score.safe,
            triggered_rules=list(score.triggered),
            is_verified=bool(signals.is_verified),
            is_proxy=bool(signals.is_proxy),
            is_honeypot=bool(signals.is_honeypot),
            flags=list(score.triggered),
            warnings=warnings,
            scanned_at=now_unix(),
        )

        self.cache.set(key, result)

        logger.info(
            "contract_scanned",
            address=address,
            chain=request.chain,
            risk_score=result.risk_score,
            flags=result.flags
        )
        return result

    def fallback(self, request: ContractScanRequest) -> ContractScanResult:
        return ContractScanResult(
            address=request.address.lower(),
            chain=request.chain,
            risk_score=50,
            threat_level=ThreatLevel.MEDIUM.value,
            safe=False,
            data_source="fallback",
            warnings=["Live contract data unavailable - treat as unverified"],
            scanned_at=now_unix(),
        )
