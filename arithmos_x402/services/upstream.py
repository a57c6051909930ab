"""
Clients for the external data sources behind the analysis endpoints.

Every client raises UpstreamError on any failure; scanners decide how to
degrade. Calls are wrapped in a bounded timeout so one slow upstream cannot
stall a request.
"""

import asyncio
from typing import Any, Awaitable, Dict, List, Optional, TypeVar
import httpx
import structlog

from ..config import Settings

logger = structlog.get_logger(__name__)

T = TypeVar("T")

CHAIN_IDS = {"base": "8453", "ethereum": "1"}


class UpstreamError(Exception):
    """Raised when an upstream collaborator fails or times out."""

    def __init__(self, source: str, message: str):
        self.source = source
        super().__init__(f"{source}: {message}")


async def bounded(awaitable: Awaitable[T], timeout: float, source: str) -> T:
    """
    Await an upstream call with a timeout.

    Args:
        awaitable: The upstream call
        timeout: Seconds to wait
        source: Name of the upstream for error reporting

    Returns:
        The call's result

    Raises:
        UpstreamError on timeout or on any failure of the call
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as e:
        logger.warning("upstream_call_timed_out", source=source, timeout=timeout)
        raise UpstreamError(source, f"timed out after {timeout}s") from e
    except UpstreamError:
        raise
    except (httpx.HTTPError, ValueError, KeyError, TypeError) as e:
        logger.warning("upstream_call_failed", source=source, error=str(e))
        raise UpstreamError(source, str(e)) from e


def parse_hex_int(value: str) -> int:
    """Parse a `0x`-prefixed (or bare) hex quantity."""
    return int(value[2:] if value.startswith(("0x", "0X")) else value, 16)


class RPCClient:
    """
    Minimal Ethereum JSON-RPC client.
    """

    def __init__(self, url: str, client: httpx.AsyncClient):
        self.url = url
        self.client = client

    async def call(self, method: str, params: List[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "method": method, "params": params, "id": 1}
        response = await self.client.post(self.url, json=payload)
        response.raise_for_status()
        body = response.json()

        if "error" in body:
            message = body["error"].get("message", "unknown error") if isinstance(body["error"], dict) else str(body["error"])
            raise UpstreamError("rpc", f"{method}: {message}")
        if "result" not in body:
            raise UpstreamError("rpc", f"{method}: missing result")
        return body["result"]

    async def gas_price_gwei(self) -> float:
        result = await self.call("eth_gasPrice", [])
        if not isinstance(result, str):
            raise UpstreamError("rpc", "invalid gas price response")
        return parse_hex_int(result) / 1e9

    async def get_code(self, address: str) -> str:
        result = await self.call("eth_getCode", [address, "latest"])
        if not isinstance(result, str):
            raise UpstreamError("rpc", "invalid getCode response")
        return result

    async def get_balance_wei(self, address: str) -> int:
        result = await self.call("eth_getBalance", [address, "latest"])
        if not isinstance(result, str):
            raise UpstreamError("rpc", "invalid balance response")
        return parse_hex_int(result)

    async def estimate_gas(self, tx: Dict[str, str]) -> int:
        params = {key: value for key, value in tx.items() if value}
        result = await self.call("eth_estimateGas", [params])
        if not isinstance(result, str):
            raise UpstreamError("rpc", "invalid gas estimate response")
        return parse_hex_int(result)


class ExplorerClient:
    """
    Etherscan-compatible explorer API (Etherscan, Basescan).
    """

    def __init__(self, settings: Settings, client: httpx.AsyncClient):
        self.client = client
        self._endpoints = {
            "base": (settings.basescan_api_url, settings.basescan_api_key),
            "ethereum": (settings.etherscan_api_url, settings.etherscan_api_key),
        }

    def has_key(self, chain: str) -> bool:
        return bool(self._endpoints.get(chain, ("", ""))[1])

    async def _get(self, chain: str, params: Dict[str, str]) -> Dict[str, Any]:
        url, api_key = self._endpoints[chain]
        response = await self.client.get(url, params={**params, "apikey": api_key})
        response.raise_for_status()
        return response.json()

    async def fetch_abi(self, address: str, chain: str) -> str:
        """
        Fetch a contract ABI.

        Raises:
            UpstreamError when the explorer reports the source as unavailable
        """
        body = await self._get(chain, {"module": "contract", "action": "getabi", "address": address})
        if body.get("status") != "1":
            raise UpstreamError("explorer", f"getabi: {body.get('message', 'unknown error')}")
        return str(body.get("result", ""))

    async def is_verified(self, address: str, chain: str) -> bool:
        body = await self._get(chain, {"module": "contract", "action": "getabi", "address": address})
        return body.get("status") == "1" and body.get("result") != "Invalid Address format"

    async def is_proxy(self, address: str, chain: str) -> bool:
        body = await self._get(chain, {"module": "contract", "action": "getsourcecode", "address": address})
        result = body.get("result")
        if isinstance(result, list) and result:
            return result[0].get("Proxy") == "1"
        return False

    async def transactions(self, address: str, chain: str, limit: int = 100) -> List[Dict[str, Any]]:
        body = await self._get(chain, {
            "module": "account",
            "action": "txlist",
            "address": address,
            "sort": "asc",
            "page": "1",
            "offset": str(limit),
        })
        result = body.get("result")
        if not isinstance(result, list):
            return []
        return result

    async def token_transfers(self, address: str, chain: str, limit: int = 200) -> List[Dict[str, Any]]:
        body = await self._get(chain, {
            "module": "account",
            "action": "tokentx",
            "address": address,
            "sort": "desc",
            "page": "1",
            "offset": str(limit),
        })
        result = body.get("result")
        if not isinstance(result, list):
            return []
        return result


class HoneypotClient:
    """
    Honeypot detection service.
    """

    def __init__(self, url: str, client: httpx.AsyncClient):
        self.url = url
        self.client = client

    async def is_honeypot(self, address: str, chain: str) -> bool:
        response = await self.client.get(
            self.url,
            params={"address": address, "chainID": CHAIN_IDS.get(chain, "")}
        )
        response.raise_for_status()
        body = response.json()
        honeypot = body.get("IsHoneypot")
        if honeypot is None:
            honeypot = body.get("honeypotResult", {}).get("isHoneypot", False)
        return bool(honeypot)


class PriceClient:
    """
    ETH/USD spot price from public exchange APIs.
    """

    COINGECKO_URL = "https://api.coingecko.com/api/v3/simple/price"
    COINBASE_URL = "https://api.coinbase.com/v2/exchange-rates"
    KRAKEN_URL = "https://api.kraken.com/0/public/Ticker"

    def __init__(self, client: httpx.AsyncClient):
        self.client = client

    async def coingecko(self) -> float:
        response = await self.client.get(self.COINGECKO_URL, params={"ids": "ethereum", "vs_currencies": "usd"})
        response.raise_for_status()
        return float(response.json()["ethereum"]["usd"])

    async def coinbase(self) -> float:
        response = await self.client.get(self.COINBASE_URL, params={"currency": "ETH"})
        response.raise_for_status()
        return float(response.json()["data"]["rates"]["USD"])

    async def kraken(self) -> float:
        response = await self.client.get(self.KRAKEN_URL, params={"pair": "ETHUSD"})
        response.raise_for_status()
        for ticker in response.json()["result"].values():
            if ticker.get("c"):
                return float(ticker["c"][0])
        raise UpstreamError("kraken", "ticker not found")

    async def sources(self, timeout: float) -> Dict[str, float]:
        """
        Query every exchange concurrently.

        Returns:
            Price per exchange that answered

        Raises:
            UpstreamError when no exchange answered
        """
        names = ("coingecko", "coinbase", "kraken")
        results = await asyncio.gather(
            *(bounded(getattr(self, name)(), timeout, name) for name in names),
            return_exceptions=True
        )

        prices = {
            name: price
            for name, price in zip(names, results)
            if not isinstance(price, BaseException)
        }
        if not prices:
            raise UpstreamError("prices", "failed to fetch price from all sources")
        return prices


class Upstreams:
    """
    Bundle of upstream clients sharing one HTTP connection pool.
    """

    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None):
        self.client = client or httpx.AsyncClient(timeout=settings.upstream_timeout_seconds)
        self.timeout = settings.upstream_timeout_seconds
        self.rpc = RPCClient(settings.eth_rpc_url, self.client)
        self.explorer = ExplorerClient(settings, self.client)
        self.honeypot = HoneypotClient(settings.honeypot_api_url, self.client)
        self.prices = PriceClient(self.client)

    async def aclose(self) -> None:
        await self.client.aclose()


__all__ = [
    "UpstreamError",
    "bounded",
    "parse_hex_int",
    "RPCClient",
    "ExplorerClient",
    "HoneypotClient",
    "PriceClient",
    "Upstreams",
    "CHAIN_IDS",
]
