"""
API routes for the Arithmos x402 API.

Paid routes hand the raw request to the RequestPipeline, which validates the
body, checks payment and runs the analysis. Free routes answer directly.
"""

from typing import Any, Dict, Type
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
import structlog

from . import __version__
from .models import (
    AddressLabelRequest,
    AgentScoreRequest,
    ContractScanRequest,
    ErrorResponse,
    HealthResponse,
    PaymentRequiredResponse,
    PromptTestRequest,
    TokenScanRequest,
    TransactionRequest,
    WalletScanRequest,
    X402Config,
)
from .pipeline import RequestPipeline

logger = structlog.get_logger(__name__)

# Create router
router = APIRouter()


# ============================================================================
# Helper Functions
# ============================================================================

def get_pipeline(request: Request) -> RequestPipeline:
    """Pipeline built by the application factory."""
    return request.app.state.pipeline


def json_body(model: Type[BaseModel]) -> Dict[str, Any]:
    """
    OpenAPI request body for a route that parses its own body.
    """
    return {
        "requestBody": {
            "content": {"application/json": {"schema": model.model_json_schema()}},
            "required": True,
        }
    }


PAID_RESPONSES = {
    200: {"description": "Analysis result wrapped as {data, payment_verified}"},
    400: {"description": "Invalid request data", "model": ErrorResponse},
    402: {"description": "Payment required", "model": PaymentRequiredResponse},
}


# ============================================================================
# System Endpoints (Free)
# ============================================================================

@router.get(
    "/health",
    response_model=HealthResponse,
    tags=["System"],
    summary="Health check",
    description="Check if the server is running and healthy"
)
async def health_check() -> HealthResponse:
    return HealthResponse(status="ok", version=__version__)


@router.get(
    "/.well-known/x402",
    tags=["System"],
    summary="x402 payment requirements",
    description="Payment requirements of every paid route"
)
async def x402_manifest(pipeline: RequestPipeline = Depends(get_pipeline)) -> JSONResponse:
    """
    Discovery document listing what each paid route costs.
    """
    config = X402Config(
        payment_requirements=[route.requirement for route in pipeline.routes.values()]
    )
    return JSONResponse(content=config.model_dump(by_alias=True))


# ============================================================================
# Market Data Endpoints (Paid)
# ============================================================================

@router.get(
    "/api/gas",
    responses=PAID_RESPONSES,
    tags=["Market Data"],
    summary="Current gas prices",
)
async def get_gas(request: Request, pipeline: RequestPipeline = Depends(get_pipeline)):
    return await pipeline.handle("/api/gas", request)


@router.get(
    "/api/validators",
    responses=PAID_RESPONSES,
    tags=["Market Data"],
    summary="Validator queue",
)
async def get_validators(request: Request, pipeline: RequestPipeline = Depends(get_pipeline)):
    return await pipeline.handle("/api/validators", request)


@router.get(
    "/api/eth-price",
    responses=PAID_RESPONSES,
    tags=["Market Data"],
    summary="ETH/USD price",
)
async def get_eth_price(request: Request, pipeline: RequestPipeline = Depends(get_pipeline)):
    return await pipeline.handle("/api/eth-price", request)


# ============================================================================
# Security Endpoints (Paid)
# ============================================================================

@router.post(
    "/api/scan-contract",
    responses=PAID_RESPONSES,
    openapi_extra=json_body(ContractScanRequest),
    tags=["Security"],
    summary="Scan a smart contract",
)
async def scan_contract(request: Request, pipeline: RequestPipeline = Depends(get_pipeline)):
    """
    Checks source verification, proxy pattern and honeypot indicators.
    Results are cached per chain and address for 24 hours.
    """
    return await pipeline.handle("/api/scan-contract", request)


@router.post(
    "/api/scan-token",
    responses=PAID_RESPONSES,
    openapi_extra=json_body(TokenScanRequest),
    tags=["Security"],
    summary="Scan a token",
)
async def scan_token(request: Request, pipeline: RequestPipeline = Depends(get_pipeline)):
    return await pipeline.handle("/api/scan-token", request)


@router.post(
    "/api/scan-wallet",
    responses=PAID_RESPONSES,
    openapi_extra=json_body(WalletScanRequest),
    tags=["Security"],
    summary="Assess wallet portfolio risk",
)
async def scan_wallet(request: Request, pipeline: RequestPipeline = Depends(get_pipeline)):
    return await pipeline.handle("/api/scan-wallet", request)


@router.post(
    "/api/address-labels",
    responses=PAID_RESPONSES,
    openapi_extra=json_body(AddressLabelRequest),
    tags=["Security"],
    summary="Look up address labels",
)
async def address_labels(request: Request, pipeline: RequestPipeline = Depends(get_pipeline)):
    return await pipeline.handle("/api/address-labels", request)


@router.post(
    "/api/mev-check",
    responses=PAID_RESPONSES,
    openapi_extra=json_body(TransactionRequest),
    tags=["Security"],
    summary="Check MEV exposure",
)
async def mev_check(request: Request, pipeline: RequestPipeline = Depends(get_pipeline)):
    return await pipeline.handle("/api/mev-check", request)


@router.post(
    "/api/tx-preflight",
    responses=PAID_RESPONSES,
    openapi_extra=json_body(TransactionRequest),
    tags=["Security"],
    summary="Pre-flight a transaction",
)
async def tx_preflight(request: Request, pipeline: RequestPipeline = Depends(get_pipeline)):
    """
    Simulates gas and inspects calldata before the transaction is signed.
    """
    return await pipeline.handle("/api/tx-preflight", request)


@router.post(
    "/api/prompt-test",
    responses=PAID_RESPONSES,
    openapi_extra=json_body(PromptTestRequest),
    tags=["Security"],
    summary="Test a prompt for injection",
)
async def prompt_test(request: Request, pipeline: RequestPipeline = Depends(get_pipeline)):
    return await pipeline.handle("/api/prompt-test", request)


@router.post(
    "/api/agent-score",
    responses=PAID_RESPONSES,
    openapi_extra=json_body(AgentScoreRequest),
    tags=["Security"],
    summary="Score an agent",
)
async def agent_score(request: Request, pipeline: RequestPipeline = Depends(get_pipeline)):
    return await pipeline.handle("/api/agent-score", request)


__all__ = ["router", "get_pipeline"]
