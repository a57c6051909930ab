"""
Analysis orchestrators, one per paid route.
"""

from dataclasses import dataclass

from ..services.cache import ExpiringCache
from ..services.upstream import Upstreams
from .agent import AgentScorer
from .base import Scanner
from .contract import ContractScanner
from .labels import AddressLabeler
from .market import EthPriceFeed, GasFeed, ValidatorFeed
from .mev import MEVCheck
from .prompt import PromptGuard
from .token import TokenScanner
from .transaction import TxPreflight
from .wallet import WalletScanner


@dataclass
class Scanners:
    gas: GasFeed
    validators: ValidatorFeed
    eth_price: EthPriceFeed
    contract: ContractScanner
    token: TokenScanner
    wallet: WalletScanner
    labels: AddressLabeler
    mev: MEVCheck
    tx_preflight: TxPreflight
    prompt: PromptGuard
    agent: AgentScorer


def build_scanners(upstreams: Upstreams, cache: ExpiringCache) -> Scanners:
    """Wire every scanner to the shared upstream clients and result cache."""
    timeout = upstreams.timeout
    tokens = TokenScanner(upstreams.explorer, upstreams.honeypot, cache, timeout)
    return Scanners(
        gas=GasFeed(upstreams.rpc, timeout),
        validators=ValidatorFeed(timeout),
        eth_price=EthPriceFeed(upstreams.prices, timeout),
        contract=ContractScanner(upstreams.explorer, upstreams.honeypot, cache, timeout),
        token=tokens,
        wallet=WalletScanner(upstreams.explorer, upstreams.rpc, upstreams.prices, tokens, timeout),
        labels=AddressLabeler(timeout=timeout),
        mev=MEVCheck(upstreams.rpc, timeout),
        tx_preflight=TxPreflight(upstreams.rpc, timeout),
        prompt=PromptGuard(timeout),
        agent=AgentScorer(upstreams.explorer, timeout=timeout),
    )


__all__ = ["Scanner", "Scanners", "build_scanners"]
