"""
Address label lookup against the table of known addresses.
"""

from typing import Dict

from ..models import AddressLabelRequest, AddressLabelResult
from .base import Scanner, now_unix

KNOWN_LABELS: Dict[str, dict] = {
    # Base WETH
    "0x4200000000000000000000000000000000000006": {
        "labels": ["weth", "wrapped-ether"],
        "entity": "Wrapped Ether",
        "category": "contract",
        "risk_level": "low",
        "confidence": 1.0,
        "sources": ["official"],
    },
    # Base USDC
    "0x833589fcd6edb6e08f4c7c32d4f71b54bda02913": {
        "labels": ["usdc", "stablecoin"],
        "entity": "USD Coin",
        "category": "contract",
        "risk_level": "low",
        "confidence": 1.0,
        "sources": ["official"],
    },
}


class AddressLabeler(Scanner[AddressLabelRequest]):
    name = "labels"

    def __init__(self, known: Dict[str, dict] = KNOWN_LABELS, timeout: float = 10.0):
        super().__init__(timeout)
        self.known = {address.lower(): label for address, label in known.items()}

    def lookup(self, address: str) -> AddressLabelResult:
        address = address.lower()
        label = self.known.get(address)
        if label is None:
            return AddressLabelResult(address=address, checked_at=now_unix())
        return AddressLabelResult(address=address, checked_at=now_unix(), **label)

    async def run(self, request: AddressLabelRequest) -> AddressLabelResult:
        return self.lookup(request.address)

    def fallback(self, request: AddressLabelRequest) -> AddressLabelResult:
        return AddressLabelResult(
            address=request.address.lower(),
            data_source="fallback",
            checked_at=now_unix(),
        )
