"""
X402 payment gate.

Implements the x402 protocol for sellers: every paid route either answers
with a payment challenge or verifies the claim carried in the
`X-Payment-Response` header before the analysis runs.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional
from fastapi import HTTPException
from jose import jwt
from jose.exceptions import JWTError
import structlog

from ..models import PaymentClaim, PaymentRequirement, X402_VERSION

logger = structlog.get_logger(__name__)

PAYMENT_HEADER = "X-Payment-Response"


class InvalidPaymentToken(ValueError):
    """Raised when a bearer payment token cannot be decoded into a claim."""


class PaymentOutcome(str, Enum):
    GRANTED = "granted"
    CHALLENGE = "challenge"
    REJECTED = "rejected"


@dataclass(frozen=True)
class AuthorizationResult:
    outcome: PaymentOutcome
    requirement: PaymentRequirement
    claim: Optional[PaymentClaim] = None
    reason: Optional[str] = None

    @property
    def granted(self) -> bool:
        return self.outcome is PaymentOutcome.GRANTED


class X402PaymentRequiredError(HTTPException):
    """
    402 Payment Required, raised for both a missing and a rejected claim.

    The detail always embeds the requirement needed to retry.
    """

    def __init__(self, result: AuthorizationResult, endpoint: str):
        """
        Initialize 402 error.

        Args:
            result: Non-granted authorization result
            endpoint: Route that requires payment
        """
        self.result = result
        self.endpoint = endpoint
        self.requirement = result.requirement

        detail: Dict[str, Any] = {
            "error": (
                "Payment required"
                if result.outcome is PaymentOutcome.CHALLENGE
                else "Invalid or insufficient payment"
            ),
            "version": X402_VERSION,
            "payment": result.requirement.to_wire(),
        }
        if result.reason:
            detail["reason"] = result.reason

        super().__init__(status_code=402, detail=detail)

    @property
    def rejected(self) -> bool:
        return self.result.outcome is PaymentOutcome.REJECTED


# ============================================================================
# Token Validators
# ============================================================================

class TokenValidator(ABC):
    """
    Turns a bearer payment token into a PaymentClaim.

    Implementations decide how much trust to place in the token; the gate's
    comparison logic is the same for all of them.
    """

    @abstractmethod
    def decode(self, token: str) -> PaymentClaim:
        """
        Decode a token.

        Raises:
            InvalidPaymentToken if the token is malformed or lacks payment fields
        """


def _timestamp(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError) as e:
        raise InvalidPaymentToken(f"Invalid timestamp claim: {value!r}") from e


def claim_from_payload(payload: Dict[str, Any]) -> PaymentClaim:
    """
    Build a PaymentClaim from a decoded JWT payload.

    Expects a `payment` object with amount, asset and receiver, plus the
    optional registered claims sub, jti, iat and exp.
    """
    payment = payload.get("payment")
    if not isinstance(payment, dict):
        raise InvalidPaymentToken("Token has no payment object")

    fields = {}
    for name in ("amount", "asset", "receiver"):
        value = payment.get(name)
        if value is None or isinstance(value, (dict, list, bool)):
            raise InvalidPaymentToken(f"Token payment is missing '{name}'")
        fields[name] = str(value)

    return PaymentClaim(
        amount=fields["amount"],
        asset=fields["asset"],
        receiver=fields["receiver"],
        network=str(payment.get("network") or ""),
        subject=payload.get("sub"),
        token_id=None if payload.get("jti") is None else str(payload.get("jti")),
        issued_at=_timestamp(payload.get("iat")),
        expires_at=_timestamp(payload.get("exp")),
    )


class UnverifiedJWTValidator(TokenValidator):
    """
    Reads JWT claims without checking the signature.

    This trusts whatever the caller declares. A validator that checks the
    signature against a ledger or key authority can replace it without
    changing the gate.
    """

    def decode(self, token: str) -> PaymentClaim:
        try:
            payload = jwt.get_unverified_claims(token)
        except JWTError as e:
            raise InvalidPaymentToken(f"Token parse error: {e}") from e

        if not isinstance(payload, dict):
            raise InvalidPaymentToken("Token payload is not an object")

        return claim_from_payload(payload)


# ============================================================================
# Payment Gate
# ============================================================================

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PaymentGate:
    """
    Decides whether a request is granted, challenged or rejected.
    """

    def __init__(
        self,
        validator: Optional[TokenValidator] = None,
        reject_expired: bool = False,
        clock: Callable[[], datetime] = _utcnow
    ):
        """
        Initialize payment gate.

        Args:
            validator: Token validator; defaults to unverified JWT decoding
            reject_expired: Reject claims whose expiry has passed
            clock: Returns the current UTC time
        """
        self.validator = validator or UnverifiedJWTValidator()
        self.reject_expired = reject_expired
        self._clock = clock

    def authorize(
        self,
        requirement: PaymentRequirement,
        presented_token: Optional[str]
    ) -> AuthorizationResult:
        """
        Check a presented token against a route's requirement.

        Args:
            requirement: Payment terms of the route
            presented_token: Raw header value, or None when absent

        Returns:
            AuthorizationResult with outcome GRANTED, CHALLENGE or REJECTED
        """
        if not presented_token:
            return AuthorizationResult(PaymentOutcome.CHALLENGE, requirement)

        try:
            claim = self.validator.decode(presented_token)
        except InvalidPaymentToken as e:
            logger.info("payment_token_invalid", error=str(e))
            return AuthorizationResult(PaymentOutcome.REJECTED, requirement, reason=str(e))

        reason = self._mismatch(requirement, claim)
        if reason:
            logger.info(
                "payment_rejected",
                reason=reason,
                claimed_amount=claim.amount,
                claimed_asset=claim.asset,
                claimed_receiver=claim.receiver
            )
            return AuthorizationResult(PaymentOutcome.REJECTED, requirement, claim=claim, reason=reason)

        logger.info(
            "payment_granted",
            amount=claim.amount,
            asset=claim.asset,
            token_id=claim.token_id
        )
        return AuthorizationResult(PaymentOutcome.GRANTED, requirement, claim=claim)

    def _mismatch(self, requirement: PaymentRequirement, claim: PaymentClaim) -> Optional[str]:
        if claim.amount != requirement.amount:
            return f"Amount mismatch: got {claim.amount}, want {requirement.amount}"
        if claim.asset != requirement.asset:
            return f"Asset mismatch: got {claim.asset}, want {requirement.asset}"
        if claim.receiver.lower() != requirement.receiver.lower():
            return f"Receiver mismatch: got {claim.receiver}, want {requirement.receiver}"
        if self.reject_expired and claim.expires_at is not None and claim.expires_at <= self._clock():
            return "Payment token expired"
        return None

    def require_payment(
        self,
        requirement: PaymentRequirement,
        presented_token: Optional[str],
        endpoint: str
    ) -> PaymentClaim:
        """
        Verify payment or raise 402 error.

        Args:
            requirement: Payment terms of the route
            presented_token: Raw header value, or None when absent
            endpoint: Route path

        Returns:
            The accepted claim

        Raises:
            X402PaymentRequiredError if payment is missing or rejected
        """
        result = self.authorize(requirement, presented_token)
        if not result.granted:
            logger.info(
                "payment_required",
                endpoint=endpoint,
                outcome=result.outcome.value,
                amount=requirement.amount
            )
            raise X402PaymentRequiredError(result, endpoint)
        return result.claim


__all__ = [
    "PAYMENT_HEADER",
    "InvalidPaymentToken",
    "PaymentOutcome",
    "AuthorizationResult",
    "X402PaymentRequiredError",
    "TokenValidator",
    "UnverifiedJWTValidator",
    "claim_from_payload",
    "PaymentGate",
]
