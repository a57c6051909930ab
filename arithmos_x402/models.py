"""
Data models for the Arithmos x402 API.

Defines Pydantic models for payment requirements and claims, request bodies
of the paid analysis routes and their response payloads.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator


# ============================================================================
# Enums and Constants
# ============================================================================

Chain = Literal["base", "ethereum"]
DataSource = Literal["live", "fallback"]
RiskBand = Literal["low", "medium", "high"]

X402_VERSION = "x402/1.0"


def validate_address(v: str) -> str:
    """Validate an EVM address: `0x` prefix and 42 characters."""
    if not isinstance(v, str) or not v.startswith("0x") or len(v) != 42:
        raise ValueError("Invalid address format")
    return v


# ============================================================================
# Payment Models
# ============================================================================

class PaymentRequirement(BaseModel):
    """
    Payment terms of a single priced route.

    Built once at startup and embedded in every 402 response so the caller
    can construct a matching payment claim.
    """
    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "scheme": "x402",
                "network": "base",
                "maxAmount": "0.005",
                "minAmount": "0.005",
                "asset": "USDC",
                "receiver": "0x120e011fB8a12bfcB61e5c1d751C26A5D33Aae91",
                "description": "Scan a smart contract for security risks"
            }
        }
    )

    scheme: str = Field(default="x402", description="Payment scheme")
    network: str = Field(..., description="Settlement network")
    max_amount: str = Field(..., alias="maxAmount", description="Maximum accepted amount")
    min_amount: str = Field(..., alias="minAmount", description="Minimum accepted amount")
    asset: str = Field(..., description="Payment asset symbol")
    receiver: str = Field(..., description="Receiving wallet address")
    description: str = Field(default="", description="What the payment buys")

    @property
    def amount(self) -> str:
        """Exact amount a claim must declare."""
        return self.min_amount

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class PaymentClaim(BaseModel):
    """
    Decoded contents of a bearer payment token.

    Lives for a single request.
    """
    model_config = ConfigDict(frozen=True)

    amount: str
    asset: str
    receiver: str
    network: str = ""
    subject: Optional[str] = None
    token_id: Optional[str] = None
    issued_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None


class X402Config(BaseModel):
    """Payment requirements of every priced route."""
    version: str = Field(default="1.0")
    payment_requirements: List[PaymentRequirement] = Field(..., alias="paymentRequirements")

    model_config = ConfigDict(populate_by_name=True)


# ============================================================================
# Request Models (API Input)
# ============================================================================

class AddressScanRequest(BaseModel):
    """Request body for address-based scans (contract, token, wallet)."""
    address: str = Field(..., description="Address to scan")
    chain: Chain = Field(default="base", description="Chain: base or ethereum")

    @field_validator("address")
    @classmethod
    def validate_address(cls, v: str) -> str:
        return validate_address(v)

    @field_validator("chain", mode="before")
    @classmethod
    def default_chain(cls, v: Any) -> Any:
        """Empty chain falls back to base."""
        if v is None or v == "":
            return "base"
        return v

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "address": "0x4200000000000000000000000000000000000006",
                "chain": "base"
            }
        }
    )


class ContractScanRequest(AddressScanRequest):
    """Request body for /api/scan-contract."""


class TokenScanRequest(AddressScanRequest):
    """Request body for /api/scan-token."""


class WalletScanRequest(AddressScanRequest):
    """Request body for /api/scan-wallet."""


class AddressLabelRequest(BaseModel):
    """Request body for /api/address-labels."""
    address: str = Field(..., description="Address to look up")

    @field_validator("address")
    @classmethod
    def validate_address(cls, v: str) -> str:
        return validate_address(v)


class TransactionRequest(BaseModel):
    """Request body shared by /api/tx-preflight and /api/mev-check."""
    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "from": "0x1111111111111111111111111111111111111111",
                "to": "0x2222222222222222222222222222222222222222",
                "value": "0x0",
                "data": "0x"
            }
        }
    )

    from_address: str = Field(default="", alias="from", description="Sender address")
    to: str = Field(default="", description="Recipient or contract address")
    value: str = Field(default="", description="Value in wei, hex encoded")
    data: str = Field(default="", description="Calldata, hex encoded")


class PromptTestRequest(BaseModel):
    """Request body for /api/prompt-test."""
    prompt: str = Field(..., min_length=1, description="Prompt to analyze")


class AgentScoreRequest(BaseModel):
    """Request body for /api/agent-score."""
    agent_id: str = Field(..., min_length=1, description="ERC-8004 agent ID or wallet address")


# ============================================================================
# Response Models (API Output)
# ============================================================================

class ScanPayload(BaseModel):
    """Fields common to every scored payload."""
    risk_score: int = Field(..., ge=0, le=100, description="Risk score (0-100)")
    threat_level: str = Field(..., description="NONE, LOW, MEDIUM, HIGH or CRITICAL")
    safe: bool = Field(..., description="False once any severe signal triggered")
    triggered_rules: List[str] = Field(default_factory=list)
    data_source: DataSource = Field(default="live", description="'fallback' when upstream data was unavailable")


class ContractScanResult(ScanPayload):
    address: str
    chain: str
    is_verified: bool = False
    is_proxy: bool = False
    is_honeypot: bool = False
    flags: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    cached: bool = False
    cached_at: Optional[int] = None
    scanned_at: int


class TokenScanResult(ScanPayload):
    address: str
    chain: str
    name: Optional[str] = None
    symbol: Optional[str] = None
    is_honeypot: bool = False
    has_mint_function: bool = False
    has_blacklist: bool = False
    is_proxy: bool = False
    is_verified: bool = False
    flags: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    cached: bool = False
    scanned_at: int


class TokenHolding(BaseModel):
    address: str
    symbol: str
    name: str
    balance: str
    usd_value: float = 0.0
    risk_score: int = Field(default=0, ge=0, le=100)
    is_suspicious: bool = False


class WalletScanResult(ScanPayload):
    address: str
    chain: str
    eth_balance: str = "0"
    total_usd_value: float = 0.0
    token_count: int = 0
    holdings: List[TokenHolding] = Field(default_factory=list)
    suspicious_tokens: int = 0
    scanned_at: int


class AddressLabelResult(BaseModel):
    address: str
    labels: List[str] = Field(default_factory=list)
    entity: Optional[str] = None
    category: str = "unknown"
    risk_level: RiskBand = "medium"
    confidence: float = 0.0
    sources: List[str] = Field(default_factory=list)
    data_source: DataSource = "live"
    checked_at: int


class TxPreflightResult(ScanPayload):
    simulation_success: bool = False
    gas_estimate: str = ""
    warnings: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    checked_at: int


class MEVCheckResult(ScanPayload):
    risk_factors: List[str] = Field(default_factory=list)
    sandwich_risk: RiskBand = "low"
    frontrun_risk: RiskBand = "low"
    gas_price_risk: RiskBand = "low"
    recommended_slippage: str = "0.5%"
    protected_rpcs: List[str] = Field(default_factory=list)
    checked_at: int


class PromptTestResult(ScanPayload):
    prompt: str
    patterns: List[str] = Field(default_factory=list)
    detections: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    tested_at: int


class AgentScoreResult(BaseModel):
    agent_id: str
    security_score: int = Field(..., ge=0, le=100)
    has_security_stack: bool = False
    failed_tx_rate: float = 0.0
    registration_days: int = 0
    feedback_rating: float = 0.0
    factors: List[str] = Field(default_factory=list)
    data_source: DataSource = "live"
    scored_at: int


class GasData(BaseModel):
    timestamp: int
    gas: Dict[str, float]
    unit: str = "gwei"
    source: str


class ValidatorData(BaseModel):
    timestamp: int
    queue: Dict[str, Any]
    active_validators: int
    pending_deposits: int
    source: str = "beacon"
    data_source: DataSource = "live"


class PriceData(BaseModel):
    timestamp: int
    eth_usd: float
    sources: Dict[str, float]
    average_usd: float
    change_24h_percent: float = 0.0
    data_source: DataSource = "live"


class HealthResponse(BaseModel):
    """Response for health check endpoint."""
    status: str = Field(..., description="Service status")
    service: str = Field(default="arithmos-x402")
    timestamp: datetime = Field(default_factory=datetime.utcnow, description="Current server time")
    version: str = Field(default="1.0.0", description="API version")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "status": "ok",
                "service": "arithmos-x402",
                "timestamp": "2025-11-15T10:00:00Z",
                "version": "1.0.0"
            }
        }
    )


class ErrorResponse(BaseModel):
    """Standard error response format."""
    error: str = Field(..., description="Error code")
    message: str = Field(..., description="Human-readable error message")
    details: Optional[dict] = Field(None, description="Additional error details")
    timestamp: datetime = Field(default_factory=datetime.utcnow, description="Error timestamp")


class PaymentRequiredResponse(BaseModel):
    """Response for 402 Payment Required."""
    error: str = Field(..., description="'Payment required' or 'Invalid or insufficient payment'")
    version: str = Field(default=X402_VERSION)
    payment: PaymentRequirement = Field(..., description="Requirement a payment claim must match")
    reason: Optional[str] = Field(None, description="Why a presented claim was rejected")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "error": "Payment required",
                "version": "x402/1.0",
                "payment": {
                    "scheme": "x402",
                    "network": "base",
                    "maxAmount": "0.001",
                    "minAmount": "0.001",
                    "asset": "USDC",
                    "receiver": "0x120e011fB8a12bfcB61e5c1d751C26A5D33Aae91",
                    "description": "Get current Ethereum gas prices"
                }
            }
        }
    )
