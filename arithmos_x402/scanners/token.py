"""
Token contract risk scanner.

Inspects the verified ABI for supply and transfer controls and asks the
honeypot service whether the token can be sold.
"""

import asyncio
from dataclasses import dataclass
from typing import Optional
import structlog

from ..models import TokenScanRequest, TokenScanResult
from ..services.cache import ExpiringCache
from ..services.risk_scoring import RiskRule, Severity, ThreatLevel, evaluate
from ..services.upstream import ExplorerClient, HoneypotClient, UpstreamError, bounded
from .base import Scanner, now_unix

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class TokenSignals:
    is_verified: Optional[bool]
    has_mint_function: bool = False
    has_blacklist: bool = False
    is_proxy: bool = False
    is_honeypot: Optional[bool] = None


TOKEN_RULES = (
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
        reason="Token cannot be sold - honeypot detected",
        severity=Severity.CRITICAL,
    ),
    RiskRule(
        name="mint_function",
        predicate=lambda s: s.has_mint_function,
        points=20,
        reason="Contract has mint function - supply can be inflated",
        severity=Severity.MEDIUM,
    ),
    RiskRule(
        name="blacklist_function",
        predicate=lambda s: s.has_blacklist,
        points=15,
        reason="Contract can blacklist addresses",
        severity=Severity.MEDIUM,
    ),
    RiskRule(
        name="proxy_contract",
        predicate=lambda s: s.is_proxy,
        points=0,
        reason="Contract is upgradeable through a proxy",
        severity=Severity.INFO,
    ),
)

HARD_FAIL_POINTS = 50

FLAG_RULES = {"unverified_contract", "honeypot_indicators", "proxy_contract"}


def inspect_abi(abi: str) -> dict:
    """Detect risky capabilities from the ABI text."""
    return {
        "has_mint_function": "mint" in abi,
        "has_blacklist": "blacklist" in abi or "blocked" in abi,
        "is_proxy": "delegatecall" in abi or "implementation" in abi,
    }


class TokenScanner(Scanner[TokenScanRequest]):
    name = "token"

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

    async def _abi_signals(self, address: str, chain: str) -> dict:
        """
        Explorer refusal to return an ABI counts as unverified source.
        """
        if not self.explorer.has_key(chain):
            return {"is_verified": None}
        try:
            abi = await bounded(self.explorer.fetch_abi(address, chain), self.timeout, "explorer")
        except UpstreamError as e:
            logger.info("token_abi_unavailable", address=address, chain=chain, error=str(e))
            return {"is_verified": False}
        return {"is_verified": True, **inspect_abi(abi)}

    async def collect(self, address: str, chain: str) -> TokenSignals:
        abi_signals, is_honeypot = await asyncio.gather(
            self._abi_signals(address, chain),
            self.signal(self.honeypot.is_honeypot(address, chain), "honeypot"),
        )
        return TokenSignals(is_honeypot=is_honeypot, **abi_signals)

    async def scan(self, address: str, chain: str) -> TokenScanResult:
        """
        Score a token, reusing a cached result when one is live.
        """
        address = address.lower()
        key = f"token:{chain}:{address}"

        cached, found = self.cache.get(key)
        if found:
            return cached.model_copy(update={"cached": True})

        signals = await self.collect(address, chain)
        score = evaluate(TOKEN_RULES, signals, hard_fail_points=HARD_FAIL_POINTS)

        result = TokenScanResult(
            address=address,
            chain=chain,
            risk_score=score.score,
            threat_level=score.threat_level.value,
            safe=score.safe,
            triggered_rules=list(score.triggered),
            is_honeypot=bool(signals.is_honeypot),
            has_mint_function=signals.has_mint_function,
            has_blacklist=signals.has_blacklist,
            is_proxy=signals.is_proxy,
            is_verified=bool(signals.is_verified),
            flags=[name for name in score.triggered if name in FLAG_RULES],
            warnings=[rule.reason for rule in score.hits if rule.points > 0],
            scanned_at=now_unix(),
        )

        self.cache.set(key, result)
        return result

    async def run(self, request: TokenScanRequest) -> TokenScanResult:
        result = await self.scan(request.address, request.chain)
        logger.info(
            "token_scanned",
            address=result.address,
            chain=result.chain,
            risk_score=result.risk_score,
            cached=result.cached
        )
        return result

    def fallback(self, request: TokenScanRequest) -> TokenScanResult:
        return TokenScanResult(
            address=request.address.lower(),
            chain=request.chain,
            risk_score=50,
            threat_level=ThreatLevel.MEDIUM.value,
            safe=False,
            data_source="fallback",
            warnings=["Live token data unavailable - treat as unverified"],
            scanned_at=now_unix(),
        )
