"""
Request pipeline shared by every paid route.

Each request moves through: input validation, payment gate, analysis,
response. Input and payment failures are raised as exceptions and rendered
by the application's exception handlers; once payment is accepted the
caller always receives a JSON answer, falling back to a conservative
payload when the live analysis fails.
"""

import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional, Type
from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError
import structlog

from .config import Settings
from .models import (
    AddressLabelRequest,
    AgentScoreRequest,
    ContractScanRequest,
    PaymentRequirement,
    PromptTestRequest,
    TokenScanRequest,
    TransactionRequest,
    WalletScanRequest,
)
from .scanners import Scanner, Scanners
from .services.metrics import MetricsCollector
from .services.x402_handler import PAYMENT_HEADER, PaymentGate, X402PaymentRequiredError

logger = structlog.get_logger(__name__)


class ResponseCode(str, Enum):
    OK = "ok"
    PAYMENT_CHALLENGE = "payment_challenge"
    PAYMENT_REJECTED = "payment_rejected"
    BAD_INPUT = "bad_input"
    METHOD_NOT_ALLOWED = "method_not_allowed"
    INTERNAL_FAILURE = "internal_failure"

    @property
    def status_code(self) -> int:
        return _STATUS_CODES[self]


_STATUS_CODES = {
    ResponseCode.OK: 200,
    ResponseCode.PAYMENT_CHALLENGE: 402,
    ResponseCode.PAYMENT_REJECTED: 402,
    ResponseCode.BAD_INPUT: 400,
    ResponseCode.METHOD_NOT_ALLOWED: 405,
    ResponseCode.INTERNAL_FAILURE: 500,
}


@dataclass(frozen=True)
class PaidRoute:
    """
    A priced route: its payment terms, the scanner behind it and the body
    model it accepts (None for GET routes without a body).
    """
    path: str
    method: str
    requirement: PaymentRequirement
    scanner: Scanner
    request_model: Optional[Type[BaseModel]] = None


class RequestPipeline:
    """
    Runs a request for a paid route to its terminal state and records the
    outcome in the metrics collector.
    """

    def __init__(
        self,
        gate: PaymentGate,
        metrics: MetricsCollector,
        routes: Dict[str, PaidRoute],
        clock: Callable[[], float] = time.perf_counter
    ):
        self.gate = gate
        self.metrics = metrics
        self.routes = routes
        self._clock = clock

    def route(self, path: str) -> PaidRoute:
        return self.routes[path]

    def _record(self, path: str, code: ResponseCode) -> None:
        self.metrics.record_request(path, str(code.status_code))

    async def parse_body(self, route: PaidRoute, request: Request) -> Optional[BaseModel]:
        """
        Validate the request body against the route's model.

        Raises:
            RequestValidationError if the body is not JSON or does not fit the model
        """
        if route.request_model is None:
            return None

        try:
            raw = await request.json()
        except ValueError:
            raise RequestValidationError([{
                "type": "json_invalid",
                "loc": ("body",),
                "msg": "Invalid JSON",
                "input": None,
            }])

        try:
            return route.request_model.model_validate(raw)
        except ValidationError as e:
            raise RequestValidationError(e.errors(include_url=False, include_context=False), body=raw)

    async def orchestrate(self, route: PaidRoute, body: Optional[BaseModel]) -> BaseModel:
        """
        Run the scanner, degrading to its fallback payload on any failure.
        """
        try:
            return await route.scanner.run(body)
        except Exception as e:
            logger.warning(
                "scan_fallback_used",
                endpoint=route.path,
                scanner=route.scanner.name,
                error=str(e)
            )
            return route.scanner.fallback(body)

    async def handle(self, path: str, request: Request) -> JSONResponse:
        """
        Serve one request for a paid route.

        Args:
            path: Paid route path
            request: Incoming request

        Returns:
            `{"data": ..., "payment_verified": true}` on success, or a 500
            body when the request failed after payment

        Raises:
            RequestValidationError for malformed input
            X402PaymentRequiredError when payment is missing or rejected
        """
        route = self.route(path)
        start = self._clock()

        try:
            body = await self.parse_body(route, request)
        except RequestValidationError:
            self._record(path, ResponseCode.BAD_INPUT)
            raise

        try:
            self.gate.require_payment(route.requirement, request.headers.get(PAYMENT_HEADER), path)
        except X402PaymentRequiredError as e:
            self._record(
                path,
                ResponseCode.PAYMENT_REJECTED if e.rejected else ResponseCode.PAYMENT_CHALLENGE
            )
            raise

        self.metrics.record_payment(path, route.requirement.amount)

        try:
            payload = await self.orchestrate(route, body)
            content: Dict[str, Any] = {
                "data": jsonable_encoder(payload),
                "payment_verified": True,
            }
            code = ResponseCode.OK
        except Exception as e:
            logger.error(
                "paid_request_failed",
                endpoint=path,
                error=str(e),
                exc_info=True
            )
            content = {
                "error": "internal_error",
                "message": "An internal server error occurred",
            }
            code = ResponseCode.INTERNAL_FAILURE

        self._record(path, code)
        self.metrics.record_duration(path, self._clock() - start)
        return JSONResponse(status_code=code.status_code, content=content)


# ============================================================================
# Route table
# ============================================================================

ROUTE_DESCRIPTIONS = {
    "/api/gas": "Get current Ethereum gas prices",
    "/api/validators": "Get validator queue data",
    "/api/eth-price": "Get ETH/USD price from multiple sources",
    "/api/scan-contract": "Scan a smart contract for security risks",
    "/api/scan-token": "Scan a token for honeypot and rug-pull risks",
    "/api/scan-wallet": "Assess the risk of a wallet's token portfolio",
    "/api/address-labels": "Look up known labels for an address",
    "/api/mev-check": "Check a transaction for MEV exposure",
    "/api/tx-preflight": "Simulate a transaction before signing",
    "/api/prompt-test": "Test a prompt for injection attacks",
    "/api/agent-score": "Score an agent's security posture",
}


def build_requirement(settings: Settings, path: str) -> PaymentRequirement:
    price = settings.route_prices[path]
    return PaymentRequirement(
        scheme=settings.payment_scheme,
        network=settings.payment_network,
        max_amount=price,
        min_amount=price,
        asset=settings.payment_asset,
        receiver=settings.receiver_address,
        description=ROUTE_DESCRIPTIONS[path],
    )


def build_paid_routes(settings: Settings, scanners: Scanners) -> Dict[str, PaidRoute]:
    """Build the immutable route table from configured prices."""
    table = (
        ("/api/gas", "GET", scanners.gas, None),
        ("/api/validators", "GET", scanners.validators, None),
        ("/api/eth-price", "GET", scanners.eth_price, None),
        ("/api/scan-contract", "POST", scanners.contract, ContractScanRequest),
        ("/api/scan-token", "POST", scanners.token, TokenScanRequest),
        ("/api/scan-wallet", "POST", scanners.wallet, WalletScanRequest),
        ("/api/address-labels", "POST", scanners.labels, AddressLabelRequest),
        ("/api/mev-check", "POST", scanners.mev, TransactionRequest),
        ("/api/tx-preflight", "POST", scanners.tx_preflight, TransactionRequest),
        ("/api/prompt-test", "POST", scanners.prompt, PromptTestRequest),
        ("/api/agent-score", "POST", scanners.agent, AgentScoreRequest),
    )
    return {
        path: PaidRoute(
            path=path,
            method=method,
            requirement=build_requirement(settings, path),
            scanner=scanner,
            request_model=model,
        )
        for path, method, scanner, model in table
    }


__all__ = [
    "ResponseCode",
    "PaidRoute",
    "RequestPipeline",
    "build_paid_routes",
    "build_requirement",
]
