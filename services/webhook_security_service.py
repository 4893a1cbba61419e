"""
Webhook Security Service - signature validation for provider callbacks
"""

import hashlib
import hmac
import logging
from typing import Optional, Union

logger = logging.getLogger(__name__)


def _as_bytes(value: Union[str, bytes]) -> bytes:
    return value.encode() if isinstance(value, str) else value


def validate_webhook_signature(payload: Union[str, bytes], signature: Optional[str], secret: str) -> bool:
    """
    HMAC-SHA256 signature check, accepting the bare hex digest or "sha256=<hex>".

    Used by the identity-verification callback.
    """
    if not signature or not secret:
        return False
    try:
        digest = hmac.new(_as_bytes(secret), _as_bytes(payload), hashlib.sha256).hexdigest()
        expected_signature = f"sha256={digest}" if signature.startswith("sha256=") else digest
        return hmac.compare_digest(signature, expected_signature)
    except Exception as e:
        logger.error(f"Error validating webhook signature: {e}")
        return False


class WebhookSecurityService:
    """Centralized webhook security validation service"""

    @classmethod
    def verify_paystack_signature(cls, raw_body: bytes, signature: Optional[str], secret_key: str) -> bool:
        """
        Paystack signs the raw request body with HMAC-SHA512 keyed by the secret
        key and sends the hex digest in ``x-paystack-signature``.
        """
        if not secret_key:
            logger.error("🚨 SECURITY: Paystack secret key not configured - rejecting webhook")
            return False
        if not signature:
            logger.warning("🚨 SECURITY: Paystack webhook missing x-paystack-signature header")
            return False

        expected = hmac.new(_as_bytes(secret_key), _as_bytes(raw_body), hashlib.sha512).hexdigest()
        if not hmac.compare_digest(expected, signature.strip().lower()):
            logger.warning("🚨 SECURITY: Invalid Paystack webhook signature")
            return False
        return True
