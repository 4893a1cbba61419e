"""
Paystack client tests
Request payloads are checked by patching _make_request; no network access
"""

from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest

from services.paystack_service import PaystackService
from utils.exception_handler import ExternalProviderError


@pytest.mark.wallet
@pytest.mark.unit
class TestPaystackService:
    @pytest.mark.asyncio
    async def test_initialize_sends_kobo(self):
        service = PaystackService(secret_key="sk_test_client")
        with patch.object(service, "_make_request", new=AsyncMock(return_value={"authorization_url": "u"})) as mock:
            await service.initialize_transaction("a@b.com", Decimal("1500.50"), "wallet_1_1")

        method, endpoint = mock.await_args.args
        payload = mock.await_args.kwargs["data"]
        assert (method, endpoint) == ("POST", "/transaction/initialize")
        assert payload["amount"] == 150050
        assert payload["reference"] == "wallet_1_1"

    @pytest.mark.asyncio
    async def test_transfer_sends_kobo_from_balance(self):
        service = PaystackService(secret_key="sk_test_client")
        with patch.object(service, "_make_request", new=AsyncMock(return_value={"transfer_code": "TRF_1"})) as mock:
            result = await service.initiate_transfer(Decimal("1000"), "RCP_1", "withdrawal_1_1")

        payload = mock.await_args.kwargs["data"]
        assert payload["amount"] == 100000
        assert payload["source"] == "balance"
        assert result["transfer_code"] == "TRF_1"

    @pytest.mark.asyncio
    async def test_missing_recipient_code_is_provider_error(self):
        service = PaystackService(secret_key="sk_test_client")
        with patch.object(service, "_make_request", new=AsyncMock(return_value={})):
            with pytest.raises(ExternalProviderError):
                await service.create_transfer_recipient("Ada Obi", "0123456789", "044")

    @pytest.mark.asyncio
    async def test_list_banks_filters_currency_and_sorts(self):
        service = PaystackService(secret_key="sk_test_client")
        banks = [
            {"name": "Zenith Bank", "code": "057", "currency": "NGN"},
            {"name": "Access Bank", "code": "044", "currency": "NGN"},
            {"name": "Absa Ghana", "code": "030", "currency": "GHS"},
        ]
        with patch.object(service, "_make_request", new=AsyncMock(return_value=banks)):
            result = await service.list_banks("NGN")

        assert result == [{"name": "Access Bank", "code": "044"}, {"name": "Zenith Bank", "code": "057"}]

    @pytest.mark.asyncio
    async def test_unconfigured_client_refuses_requests(self):
        service = PaystackService(secret_key="")

        assert service.is_available() is False
        with pytest.raises(ExternalProviderError):
            await service.verify_transaction("wallet_1_1")
