"""
Exception Handler Module
Typed failures raised by the ledger, listing, escrow and dispute services
"""

import logging
from typing import Optional

logger = logging.getLogger(__name__)


class EscrowPlatformError(Exception):
    """Base class for failures returned to the caller"""

    code = "error"
    status_code = 400

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        body = {"error": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(EscrowPlatformError):
    """Custom validation error for input validation failures"""
    code = "validation_error"
    status_code = 422


class InvalidAmountError(EscrowPlatformError):
    code = "invalid_amount"
    status_code = 400


class InsufficientBalanceError(EscrowPlatformError):
    code = "insufficient_balance"
    status_code = 402


class NotFoundError(EscrowPlatformError):
    code = "not_found"
    status_code = 404


class ForbiddenError(EscrowPlatformError):
    code = "forbidden"
    status_code = 403


class InvalidTransitionError(EscrowPlatformError):
    code = "invalid_transition"
    status_code = 409


class ConflictError(EscrowPlatformError):
    """Optimistic-lock or listing-availability race lost; reload and retry"""
    code = "conflict"
    status_code = 409


class AlreadyInDisputeError(EscrowPlatformError):
    code = "already_in_dispute"
    status_code = 409


class ExternalProviderError(EscrowPlatformError):
    """Payment or identity provider failure"""
    code = "external_provider_error"
    status_code = 502

    def __init__(self, message: str, provider: str = "paystack", details: Optional[dict] = None):
        self.provider = provider
        super().__init__(message, details)
