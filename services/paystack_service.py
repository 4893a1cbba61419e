#!/usr/bin/env python3
"""
Paystack Payment Service for NGN deposits and bank payouts

Amounts cross this boundary in kobo (minor units). Any non-success answer or
network failure raises ExternalProviderError; callers decide how to unwind.
"""

import asyncio
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

import aiohttp

from config import Config
from utils.decimal_precision import MonetaryDecimal
from utils.exception_handler import ExternalProviderError

logger = logging.getLogger(__name__)


class PaystackService:
    """Thin async client over the Paystack REST API"""

    def __init__(
        self,
        secret_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout_seconds: Optional[int] = None,
    ):
        self.secret_key = Config.PAYSTACK_SECRET_KEY if secret_key is None else secret_key
        self.base_url = (base_url or Config.PAYSTACK_BASE_URL).rstrip("/")
        self.timeout_seconds = timeout_seconds or Config.PAYSTACK_TIMEOUT_SECONDS

    def is_available(self) -> bool:
        return bool(self.secret_key)

    async def _make_request(
        self,
        method: str,
        endpoint: str,
        data: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Authenticated request; returns the ``data`` member of a successful response"""
        if not self.is_available():
            logger.error("Paystack service not available - missing PAYSTACK_SECRET_KEY")
            raise ExternalProviderError("Payment provider is not configured")

        url = f"{self.base_url}/{endpoint.lstrip('/')}"
        headers = {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

        try:
            async with aiohttp.ClientSession() as session:
                timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
                async with session.request(
                    method, url, headers=headers, json=data, params=params, timeout=timeout
                ) as response:
                    response_data = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            error_detail = str(e) or type(e).__name__
            logger.error(f"Paystack network error on {method} {endpoint}: {error_detail}")
            raise ExternalProviderError(
                f"Could not reach payment provider: {error_detail}", details={"endpoint": endpoint}
            ) from e

        if response.status in (200, 201) and isinstance(response_data, dict) and response_data.get("status"):
            logger.info(f"Paystack API success: {method} {endpoint}")
            return response_data.get("data")

        message = (response_data or {}).get("message") if isinstance(response_data, dict) else None
        logger.error(f"Paystack API error: {response.status} {method} {endpoint} - {message}")
        raise ExternalProviderError(
            message or f"Payment provider returned HTTP {response.status}",
            details={"endpoint": endpoint, "http_status": response.status},
        )

    async def initialize_transaction(
        self,
        email: str,
        amount: Decimal,
        reference: str,
        metadata: Optional[Dict[str, Any]] = None,
        currency: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Start a hosted checkout; returns authorization_url, access_code and reference"""
        payload = {
            "email": email,
            "amount": MonetaryDecimal.to_minor_units(amount),
            "currency": currency or Config.PLATFORM_CURRENCY,
            "reference": reference,
            "callback_url": Config.PAYSTACK_CALLBACK_URL,
            "metadata": metadata or {},
        }
        return await self._make_request("POST", "/transaction/initialize", data=payload)

    async def verify_transaction(self, reference: str) -> Dict[str, Any]:
        return await self._make_request("GET", f"/transaction/verify/{reference}")

    async def create_transfer_recipient(
        self, name: str, account_number: str, bank_code: str, currency: Optional[str] = None
    ) -> str:
        """Register a NUBAN bank account and return its recipient_code"""
        data = await self._make_request(
            "POST",
            "/transferrecipient",
            data={
                "type": "nuban",
                "name": name,
                "account_number": account_number,
                "bank_code": bank_code,
                "currency": currency or Config.PLATFORM_CURRENCY,
            },
        )
        recipient_code = (data or {}).get("recipient_code")
        if not recipient_code:
            raise ExternalProviderError("Payment provider did not return a recipient code")
        return recipient_code

    async def initiate_transfer(
        self, amount: Decimal, recipient_code: str, reference: str, reason: str = "Wallet withdrawal"
    ) -> Dict[str, Any]:
        """Pay out from the Paystack balance; the outcome arrives later by webhook"""
        return await self._make_request(
            "POST",
            "/transfer",
            data={
                "source": "balance",
                "amount": MonetaryDecimal.to_minor_units(amount),
                "recipient": recipient_code,
                "reference": reference,
                "reason": reason,
            },
        )

    async def list_banks(self, currency: Optional[str] = None) -> List[Dict[str, str]]:
        """Banks that accept the platform currency, sorted by name"""
        currency = currency or Config.PLATFORM_CURRENCY
        banks = await self._make_request("GET", "/bank", params={"currency": currency})
        return sorted(
            (
                {"name": bank["name"], "code": bank["code"]}
                for bank in banks or []
                if bank.get("currency", currency) == currency
            ),
            key=lambda bank: bank["name"],
        )

    async def resolve_account(self, account_number: str, bank_code: str) -> Dict[str, str]:
        data = await self._make_request(
            "GET", "/bank/resolve", params={"account_number": account_number, "bank_code": bank_code}
        )
        return {"account_name": data["account_name"], "account_number": data["account_number"]}
