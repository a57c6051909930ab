"""
Wallet portfolio risk scanner.

Reconstructs token holdings from the wallet's token transfer history, scores
every held token with the token scanner and aggregates the portfolio risk.
"""

import asyncio
from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional
import structlog

from ..models import TokenHolding, WalletScanRequest, WalletScanResult
from ..services.risk_scoring import RiskRule, Severity, ThreatLevel, evaluate
from ..services.upstream import ExplorerClient, PriceClient, RPCClient, UpstreamError
from .base import Scanner, now_unix
from .token import TokenScanner

logger = structlog.get_logger(__name__)

MAX_HOLDINGS = 10

SUSPICIOUS_TOKEN_SCORE = 50

UNSAFE_SCORE = 60

WEI_PER_ETH = Decimal(10) ** 18


@dataclass(frozen=True)
class WalletSignals:
    average_holding_risk: int
    suspicious_count: int
    token_count: int


WALLET_RULES = (
    RiskRule(
        name="suspicious_tokens_held",
        predicate=lambda s: s.suspicious_count >= 1,
        points=10,
        reason="Wallet holds at least one suspicious token",
        severity=Severity.MEDIUM,
    ),
    RiskRule(
        name="multiple_suspicious_tokens",
        predicate=lambda s: s.suspicious_count >= 3,
        points=20,
        reason="Wallet holds three or more suspicious tokens",
        severity=Severity.HIGH,
    ),
)


def net_balances(address: str, transfers: List[Dict[str, Any]]) -> Dict[str, dict]:
    """
    Sum incoming minus outgoing transfers per token contract.

    Returns:
        Token contract -> {symbol, name, balance} for positive balances only
    """
    address = address.lower()
    totals: Dict[str, Decimal] = defaultdict(Decimal)
    meta: Dict[str, dict] = {}

    for tx in transfers:
        contract = str(tx.get("contractAddress", "")).lower()
        if not contract:
            continue
        try:
            value = Decimal(str(tx.get("value", "0")))
            decimals = int(tx.get("tokenDecimal") or 0)
        except (InvalidOperation, ValueError):
            continue

        amount = value / (Decimal(10) ** decimals)
        if str(tx.get("to", "")).lower() == address:
            totals[contract] += amount
        if str(tx.get("from", "")).lower() == address:
            totals[contract] -= amount

        meta.setdefault(contract, {
            "symbol": str(tx.get("tokenSymbol", "")),
            "name": str(tx.get("tokenName", "")),
        })

    return {
        contract: {**meta[contract], "balance": total}
        for contract, total in totals.items()
        if total > 0
    }


class WalletScanner(Scanner[WalletScanRequest]):
    name = "wallet"

    def __init__(
        self,
        explorer: ExplorerClient,
        rpc: RPCClient,
        prices: PriceClient,
        tokens: TokenScanner,
        timeout: float = 10.0
    ):
        super().__init__(timeout)
        self.explorer = explorer
        self.rpc = rpc
        self.prices = prices
        self.tokens = tokens

    async def _holding(self, contract: str, info: dict, chain: str) -> TokenHolding:
        token = await self.tokens.scan(contract, chain)
        return TokenHolding(
            address=contract,
            symbol=info["symbol"],
            name=info["name"],
            balance=format(info["balance"].normalize(), "f"),
            risk_score=token.risk_score,
            is_suspicious=token.is_honeypot or token.risk_score >= SUSPICIOUS_TOKEN_SCORE,
        )

    async def _eth_usd(self) -> Optional[float]:
        try:
            sources = await self.prices.sources(self.timeout)
        except UpstreamError:
            return None
        return sum(sources.values()) / len(sources)

    async def run(self, request: WalletScanRequest) -> WalletScanResult:
        address = request.address.lower()

        transfers, balance_wei, eth_usd = await asyncio.gather(
            self.signal(self.explorer.token_transfers(address, request.chain), "explorer"),
            self.signal(self.rpc.get_balance_wei(address), "rpc"),
            self._eth_usd(),
        )
        if transfers is None and balance_wei is None:
            raise UpstreamError("wallet", "no portfolio data available")

        balances = net_balances(address, transfers or [])
        held = sorted(balances.items(), key=lambda item: item[1]["balance"], reverse=True)[:MAX_HOLDINGS]
        holdings = list(await asyncio.gather(
            *(self._holding(contract, info, request.chain) for contract, info in held)
        ))

        suspicious = sum(1 for h in holdings if h.is_suspicious)
        average = sum(h.risk_score for h in holdings) // len(holdings) if holdings else 0

        signals = WalletSignals(
            average_holding_risk=average,
            suspicious_count=suspicious,
            token_count=len(holdings),
        )
        score = evaluate(WALLET_RULES, signals, base=signals.average_holding_risk, unsafe_score=UNSAFE_SCORE)

        eth_balance = Decimal(balance_wei or 0) / WEI_PER_ETH
        total_usd = float(eth_balance) * eth_usd if eth_usd is not None else 0.0

        result = WalletScanResult(
            address=address,
            chain=request.chain,
            risk_score=score.score,
            threat_level=score.threat_level.value,
            safe=score.safe,
            triggered_rules=list(score.triggered),
            eth_balance=format(eth_balance.normalize(), "f"),
            total_usd_value=round(total_usd, 2),
            token_count=len(holdings),
            holdings=holdings,
            suspicious_tokens=suspicious,
            scanned_at=now_unix(),
        )

        logger.info(
            "wallet_scanned",
            address=address,
            chain=request.chain,
            token_count=result.token_count,
            suspicious_tokens=suspicious,
            risk_score=result.risk_score
        )
        return result

    def fallback(self, request: WalletScanRequest) -> WalletScanResult:
        return WalletScanResult(
            address=request.address.lower(),
            chain=request.chain,
            risk_score=50,
            threat_level=ThreatLevel.MEDIUM.value,
            safe=False,
            data_source="fallback",
            scanned_at=now_unix(),
        )
