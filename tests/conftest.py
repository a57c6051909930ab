"""
Pytest fixtures for Arithmos x402 tests.

Upstream collaborators are replaced with in-memory fakes injected through the
application factory, so no test touches the network.
"""

from typing import Any, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from arithmos_x402.config import Settings
from arithmos_x402.main import create_app
from arithmos_x402.services.upstream import UpstreamError

RECEIVER = "0x120e011fB8a12bfcB61e5c1d751C26A5D33Aae91"
CONTRACT = "0x4200000000000000000000000000000000000006"
WALLET = "0x1111111111111111111111111111111111111111"


def _answer(value: Any, source: str) -> Any:
    if value is None:
        raise UpstreamError(source, "unavailable")
    if isinstance(value, Exception):
        raise value
    return value


class FakeRPC:
    def __init__(self):
        self.gas_gwei: Any = 12.0
        self.code: Any = "0x"
        self.balance_wei: Any = 2 * 10 ** 18
        self.gas_estimate: Any = 21000

    async def gas_price_gwei(self) -> float:
        return _answer(self.gas_gwei, "rpc")

    async def get_code(self, address: str) -> str:
        return _answer(self.code, "rpc")

    async def get_balance_wei(self, address: str) -> int:
        return _answer(self.balance_wei, "rpc")

    async def estimate_gas(self, tx: Dict[str, str]) -> int:
        return _answer(self.gas_estimate, "rpc")


class FakeExplorer:
    def __init__(self):
        self.key = True
        self.verified: Any = True
        self.proxy: Any = False
        self.abi: Any = '[{"name":"transfer"}]'
        self.txs: Any = []
        self.transfers: Any = []
        self.calls: List[str] = []

    def has_key(self, chain: str) -> bool:
        return self.key

    async def fetch_abi(self, address: str, chain: str) -> str:
        self.calls.append("fetch_abi")
        return _answer(self.abi, "explorer")

    async def is_verified(self, address: str, chain: str) -> bool:
        self.calls.append("is_verified")
        return _answer(self.verified, "explorer")

    async def is_proxy(self, address: str, chain: str) -> bool:
        self.calls.append("is_proxy")
        return _answer(self.proxy, "explorer")

    async def transactions(self, address: str, chain: str, limit: int = 100) -> List[Dict[str, Any]]:
        return _answer(self.txs, "explorer")

    async def token_transfers(self, address: str, chain: str, limit: int = 200) -> List[Dict[str, Any]]:
        return _answer(self.transfers, "explorer")


class FakeHoneypot:
    def __init__(self):
        self.honeypot: Any = False

    async def is_honeypot(self, address: str, chain: str) -> bool:
        return _answer(self.honeypot, "honeypot")


class FakePrices:
    def __init__(self):
        self.prices: Any = {"coingecko": 3000.0, "coinbase": 3010.0, "kraken": 2990.0}

    async def sources(self, timeout: float) -> Dict[str, float]:
        return dict(_answer(self.prices, "prices"))


class FakeUpstreams:
    def __init__(self):
        self.timeout = 1.0
        self.rpc = FakeRPC()
        self.explorer = FakeExplorer()
        self.honeypot = FakeHoneypot()
        self.prices = FakePrices()
        self.closed = False

    async def aclose(self) -> None:
        self.closed = True


def make_token(
    amount: str = "0.005",
    asset: str = "USDC",
    receiver: str = RECEIVER,
    exp: Optional[int] = None,
    **extra: Any
) -> str:
    """Mint an HS256 payment token; the gate never checks the signature."""
    claims: Dict[str, Any] = {
        "sub": "test-agent",
        "jti": "payment-1",
        "iat": 1700000000,
        "payment": {"amount": amount, "asset": asset, "receiver": receiver, "network": "base"},
    }
    if exp is not None:
        claims["exp"] = exp
    claims.update(extra)
    return jwt.encode(claims, "test-secret", algorithm="HS256")


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, env="development", receiver_address=RECEIVER)


@pytest.fixture
def upstreams() -> FakeUpstreams:
    return FakeUpstreams()


@pytest.fixture
def app(settings, upstreams):
    return create_app(settings, upstreams=upstreams)


@pytest.fixture
def client(app):
    """FastAPI TestClient running the app lifespan."""
    with TestClient(app) as test_client:
        yield test_client
