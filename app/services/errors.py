"""
Error taxonomy for invoice issuance, status reconciliation and entitlement grants.
HTTP mapping lives in app.main; services only raise.
"""
from typing import Any


class PaymentError(Exception):
    """Base class; detail holds correlation fields for logging, never sent to clients."""

    status_code = 500
    public_message = "Internal server error"

    def __init__(self, message: str, detail: dict[str, Any] | None = None):
        super().__init__(message)
        self.detail = detail or {}


# ----- 400 -----


class ValidationError(PaymentError):
    status_code = 400
    public_message = "Invalid request"


class InvalidTier(ValidationError):
    public_message = "Invalid tier name"


class InvalidBillingCycle(ValidationError):
    public_message = "Invalid billing cycle"


class InvalidSelection(ValidationError):
    """Tier/cycle pair has no price (e.g. the free tier)."""

    public_message = "Invalid tier or billing cycle"


class InvalidPubkey(ValidationError):
    public_message = "Invalid pubkey format"


# ----- 404 -----


class NotFoundError(PaymentError):
    status_code = 404
    public_message = "Payment not found"


# ----- 500: external collaborators -----


class ExternalServiceError(PaymentError):
    pass


class RateUnavailable(ExternalServiceError):
    pass


class SettlementServiceError(ExternalServiceError):
    pass


class SettlementStatusError(ExternalServiceError):
    pass


class PaymentPersistenceError(ExternalServiceError):
    """External invoice exists but the local Payment row could not be written."""


# ----- resolved internally -----


class ConflictError(PaymentError):
    """Lost the conditional paid-write race; callers treat the payment as paid."""

    status_code = 200


class GrantError(PaymentError):
    """Account upsert failed after the payment was committed (grant gap)."""
