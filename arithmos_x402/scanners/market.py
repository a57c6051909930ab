"""
Market data feeds: gas prices, validator queue and ETH/USD.
"""

import structlog

from ..models import GasData, PriceData, ValidatorData
from ..services.upstream import PriceClient, RPCClient, bounded
from .base import Scanner, now_unix

logger = structlog.get_logger(__name__)

SAFE_GAS_FACTOR = 0.9
FAST_GAS_FACTOR = 1.2

ESTIMATED_GAS = {"safe": 0.25, "average": 0.35, "fast": 0.50}

STATIC_QUEUE = {"entry_wait_hours": 4, "exit_wait_hours": 2}
STATIC_ACTIVE_VALIDATORS = 1048576


class GasFeed(Scanner[None]):
    name = "gas"

    def __init__(self, rpc: RPCClient, timeout: float = 10.0):
        super().__init__(timeout)
        self.rpc = rpc

    async def run(self, request: None = None) -> GasData:
        gwei = await bounded(self.rpc.gas_price_gwei(), self.timeout, "rpc")
        return GasData(
            timestamp=now_unix(),
            gas={
                "current": round(gwei, 2),
                "safe": round(gwei * SAFE_GAS_FACTOR, 2),
                "fast": round(gwei * FAST_GAS_FACTOR, 2),
            },
            source="ethereum_mainnet",
        )

    def fallback(self, request: None = None) -> GasData:
        return GasData(timestamp=now_unix(), gas=dict(ESTIMATED_GAS), source="estimated")


class ValidatorFeed(Scanner[None]):
    """
    Validator entry/exit queue.

    No beacon chain source is wired in, so the queue is a static estimate.
    """

    name = "validators"

    def _static(self, data_source: str = "live") -> ValidatorData:
        return ValidatorData(
            timestamp=now_unix(),
            queue=dict(STATIC_QUEUE),
            active_validators=STATIC_ACTIVE_VALIDATORS,
            pending_deposits=0,
            source="static",
            data_source=data_source,
        )

    async def run(self, request: None = None) -> ValidatorData:
        return self._static()

    def fallback(self, request: None = None) -> ValidatorData:
        return self._static(data_source="fallback")


class EthPriceFeed(Scanner[None]):
    name = "eth_price"

    def __init__(self, prices: PriceClient, timeout: float = 10.0):
        super().__init__(timeout)
        self.prices = prices

    async def run(self, request: None = None) -> PriceData:
        sources = await self.prices.sources(self.timeout)
        average = round(sum(sources.values()) / len(sources), 2)
        logger.debug("eth_price_fetched", sources=sorted(sources), average_usd=average)
        return PriceData(
            timestamp=now_unix(),
            eth_usd=average,
            sources=sources,
            average_usd=average,
        )

    def fallback(self, request: None = None) -> PriceData:
        return PriceData(
            timestamp=now_unix(),
            eth_usd=0.0,
            sources={},
            average_usd=0.0,
            data_source="fallback",
        )
