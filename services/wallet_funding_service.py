"""
Wallet Funding Service - deposits and withdrawals through Paystack

Deposits:    initialize -> hosted checkout -> charge.success webhook -> credit
Withdrawals: debit amount + fee -> create recipient -> transfer ->
             transfer.success | transfer.failed | transfer.reversed webhook

Every provider confirmation is applied with a pending -> final compare-and-swap
on the PaymentReference row, so replayed webhooks never credit twice.
"""

import logging
import re
import time
from decimal import Decimal
from typing import Any, Dict, Optional, Union

import orjson
from sqlalchemy import select, update
from sqlalchemy.orm import Session, sessionmaker

from config import Config
from models import (
    FundingDirection,
    FundingStatus,
    LedgerReason,
    PaymentReference,
    User,
)
from services.ledger_service import LedgerService
from services.notification_service import NotificationService, NotificationType
from services.paystack_service import PaystackService
from services.webhook_security_service import WebhookSecurityService
from utils.atomic_transactions import atomic_transaction
from utils.background_task_runner import run_io_task
from utils.datetime_helpers import get_naive_utc_now
from utils.decimal_precision import MonetaryDecimal
from utils.exception_handler import (
    EscrowPlatformError,
    ExternalProviderError,
    NotFoundError,
    ValidationError,
)
from utils.fee_calculator import FeeCalculator

logger = logging.getLogger(__name__)

ACCOUNT_NUMBER_PATTERN = re.compile(r"^\d{10}$")


def _timestamp_ms() -> int:
    return int(time.time() * 1000)


class WalletFundingService:
    def __init__(
        self,
        session_factory: sessionmaker,
        paystack: Optional[PaystackService] = None,
        notifications: Optional[NotificationService] = None,
    ):
        self.session_factory = session_factory
        self.paystack = paystack or PaystackService()
        self.notifications = notifications or NotificationService(session_factory)

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _load_reference(session: Session, reference: str, direction: FundingDirection) -> PaymentReference:
        record = session.execute(
            select(PaymentReference).where(
                PaymentReference.reference == reference,
                PaymentReference.direction == direction.value,
            )
        ).scalar_one_or_none()
        if record is None:
            raise NotFoundError(f"Unknown {direction.value} reference {reference}", details={"reference": reference})
        return record

    @staticmethod
    def _claim(session: Session, record: PaymentReference, new_status: FundingStatus, payload=None) -> bool:
        """pending -> final; False when another delivery already settled it"""
        values = {"status": new_status.value, "completed_at": get_naive_utc_now()}
        if payload is not None:
            values["provider_payload"] = payload
        result = session.execute(
            update(PaymentReference)
            .where(PaymentReference.id == record.id, PaymentReference.status == FundingStatus.PENDING.value)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def _user_email(self, user_id: int) -> str:
        with self.session_factory() as session:
            user = session.get(User, user_id)
            if user is None:
                raise NotFoundError(f"User {user_id} not found")
            return user.email

    def _set_reference_fields(self, reference: str, **values) -> None:
        with atomic_transaction(self.session_factory) as session:
            session.execute(
                update(PaymentReference)
                .where(PaymentReference.reference == reference)
                .values(**values)
                .execution_options(synchronize_session=False)
            )

    # ------------------------------------------------------------------
    # Deposits
    # ------------------------------------------------------------------

    def _create_deposit_reference(self, user_id: int, reference: str, amount: Decimal) -> None:
        with atomic_transaction(self.session_factory) as session:
            session.add(
                PaymentReference(
                    user_id=user_id,
                    reference=reference,
                    direction=FundingDirection.DEPOSIT.value,
                    provider="paystack",
                    amount=amount,
                    fee=Decimal("0"),
                    currency=Config.PLATFORM_CURRENCY,
                    status=FundingStatus.PENDING.value,
                )
            )

    async def initialize_deposit(self, user_id: int, amount: Union[Decimal, str, int]) -> Dict[str, str]:
        """Create a pending deposit and return the provider checkout URL"""
        deposit_amount = MonetaryDecimal.positive(amount, "deposit")
        if deposit_amount < Config.MIN_DEPOSIT_AMOUNT:
            raise ValidationError(
                f"Minimum deposit is {Config.MIN_DEPOSIT_AMOUNT} {Config.PLATFORM_CURRENCY}",
                details={"field": "amount"},
            )

        email = await run_io_task(self._user_email, user_id)
        reference = f"wallet_{user_id}_{_timestamp_ms()}"
        await run_io_task(self._create_deposit_reference, user_id, reference, deposit_amount)

        try:
            data = await self.paystack.initialize_transaction(
                email,
                deposit_amount,
                reference,
                metadata={"user_id": user_id, "type": "wallet_deposit"},
            )
        except ExternalProviderError:
            await run_io_task(
                self._set_reference_fields, reference,
                status=FundingStatus.FAILED.value, completed_at=get_naive_utc_now(),
            )
            raise

        authorization_url = (data or {}).get("authorization_url")
        if not authorization_url:
            raise ExternalProviderError("Payment provider did not return a checkout URL")
        await run_io_task(self._set_reference_fields, reference, authorization_url=authorization_url)

        logger.info(f"💳 DEPOSIT_INITIALIZED: user={user_id} amount={deposit_amount} ref={reference}")
        return {"redirect_url": authorization_url, "reference": reference}

    def deposit_confirmed(
        self,
        reference: str,
        amount: Optional[Decimal] = None,
        provider_payload: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """
        Credit a confirmed deposit exactly once.

        Returns False when the reference was already settled.
        """
        with atomic_transaction(self.session_factory) as session:
            record = self._load_reference(session, reference, FundingDirection.DEPOSIT)
            if record.status != FundingStatus.PENDING.value:
                logger.info(f"Deposit {reference} already {record.status}; ignoring confirmation")
                return False

            credited = MonetaryDecimal.positive(amount if amount is not None else record.amount, "deposit")
            if credited != record.amount:
                logger.warning(
                    f"⚠️ Deposit {reference}: provider amount {credited} differs from requested {record.amount}"
                )
            if not self._claim(session, record, FundingStatus.COMPLETED, provider_payload):
                logger.info(f"Deposit {reference} settled concurrently; ignoring confirmation")
                return False

            wallet = LedgerService.get_or_create_wallet(session, record.user_id, record.currency)
            LedgerService.credit(
                session,
                wallet.id,
                credited,
                LedgerReason.DEPOSIT,
                external_reference=reference,
                description="Wallet deposit via Paystack",
            )
            user_id, currency = record.user_id, record.currency

        logger.info(f"✅ DEPOSIT_CREDITED: user={user_id} amount={credited} ref={reference}")
        self.notifications.notify(
            user_id,
            NotificationType.DEPOSIT_COMPLETED,
            "Funds Added Successfully",
            f"{self.notifications.format_currency(credited, currency)} has been added to your wallet",
            {"reference": reference, "amount": str(credited)},
        )
        return True

    def _deposit_status(self, reference: str, user_id: int) -> str:
        with self.session_factory() as session:
            record = self._load_reference(session, reference, FundingDirection.DEPOSIT)
            if record.user_id != user_id:
                raise NotFoundError(f"Unknown deposit reference {reference}", details={"reference": reference})
            return record.status

    async def verify_deposit(self, reference: str, user_id: int) -> Dict[str, Any]:
        """
        Ask the provider about a deposit and report it next to our own record.

        Read-only: crediting still happens only through the charge.success webhook.
        """
        status = await run_io_task(self._deposit_status, reference, user_id)
        data = await self.paystack.verify_transaction(reference) or {}

        provider_status = data.get("status")
        amount = MonetaryDecimal.from_minor_units(data["amount"]) if data.get("amount") is not None else None
        logger.info(f"🔎 DEPOSIT_VERIFIED: ref={reference} provider={provider_status} local={status}")
        return {
            "reference": reference,
            "verified": provider_status == "success",
            "provider_status": provider_status,
            "amount": str(amount) if amount is not None else None,
            "currency": data.get("currency"),
            "paid_at": data.get("paid_at"),
            "channel": data.get("channel"),
            "status": status,
            "wallet_credited": status == FundingStatus.COMPLETED.value,
        }

    # ------------------------------------------------------------------
    # Withdrawals
    # ------------------------------------------------------------------

    def _reserve_withdrawal(self, user_id: int, reference: str, breakdown: Dict[str, Decimal]) -> None:
        """Debit amount + fee and book the fee, in one atomic unit"""
        with atomic_transaction(self.session_factory) as session:
            wallet = LedgerService.get_or_create_wallet(session, user_id)
            session.add(
                PaymentReference(
                    user_id=user_id,
                    reference=reference,
                    direction=FundingDirection.WITHDRAWAL.value,
                    provider="paystack",
                    amount=breakdown["amount"],
                    fee=breakdown["fee"],
                    currency=wallet.currency,
                    status=FundingStatus.PENDING.value,
                )
            )
            LedgerService.debit(
                session,
                wallet.id,
                breakdown["total"],
                LedgerReason.WITHDRAWAL,
                external_reference=reference,
                description=f"Withdrawal {breakdown['amount']} + fee {breakdown['fee']}",
            )
            if breakdown["fee"] > 0:
                platform_wallet = LedgerService.get_platform_wallet(session, wallet.currency)
                LedgerService.credit(
                    session,
                    platform_wallet.id,
                    breakdown["fee"],
                    LedgerReason.FEE,
                    external_reference=reference,
                    description="Withdrawal fee",
                )

    def _reverse_withdrawal(self, reference: str, final_status: FundingStatus, provider_payload=None) -> Optional[Dict]:
        """Refund amount + fee to the user; None when already settled"""
        with atomic_transaction(self.session_factory) as session:
            record = self._load_reference(session, reference, FundingDirection.WITHDRAWAL)
            if not self._claim(session, record, final_status, provider_payload):
                logger.info(f"Withdrawal {reference} already {record.status}; ignoring {final_status.value}")
                return None

            total = record.amount + record.fee
            wallet = LedgerService.get_or_create_wallet(session, record.user_id, record.currency)
            LedgerService.credit(
                session,
                wallet.id,
                total,
                LedgerReason.REFUND,
                external_reference=reference,
                description=f"Withdrawal {final_status.value}: refund",
            )
            if record.fee > 0:
                platform_wallet = LedgerService.get_platform_wallet(session, record.currency)
                LedgerService.debit(
                    session,
                    platform_wallet.id,
                    record.fee,
                    LedgerReason.REFUND,
                    external_reference=reference,
                    description="Withdrawal fee returned",
                )
            summary = {"user_id": record.user_id, "total": total, "currency": record.currency}

        logger.info(f"↩️ WITHDRAWAL_REFUNDED: ref={reference} status={final_status.value} total={summary['total']}")
        self.notifications.notify(
            summary["user_id"],
            NotificationType.WITHDRAWAL_FAILED,
            "Withdrawal failed",
            f"Your withdrawal could not be completed. "
            f"{self.notifications.format_currency(summary['total'], summary['currency'])} was returned to your wallet.",
            {"reference": reference, "status": final_status.value},
        )
        return summary

    async def initiate_withdrawal(
        self,
        user_id: int,
        amount: Union[Decimal, str, int],
        bank_code: str,
        account_number: str,
    ) -> Dict[str, Any]:
        """
        Debit the wallet, then ask the provider to pay out.

        A provider rejection refunds the debit immediately and re-raises.
        """
        if not bank_code:
            raise ValidationError("Bank code is required", details={"field": "bank_code"})
        if not ACCOUNT_NUMBER_PATTERN.match(account_number or ""):
            raise ValidationError("Account number must be 10 digits", details={"field": "account_number"})

        breakdown = FeeCalculator.calculate_withdrawal_total(amount)
        email = await run_io_task(self._user_email, user_id)
        reference = f"withdrawal_{user_id}_{_timestamp_ms()}"
        await run_io_task(self._reserve_withdrawal, user_id, reference, breakdown)
        logger.info(
            f"🏧 WITHDRAWAL_DEBITED: user={user_id} amount={breakdown['amount']} fee={breakdown['fee']} ref={reference}"
        )

        try:
            recipient_code = await self.paystack.create_transfer_recipient(email, account_number, bank_code)
            transfer = await self.paystack.initiate_transfer(breakdown["amount"], recipient_code, reference)
        except ExternalProviderError as e:
            logger.error(f"❌ Withdrawal {reference} rejected by provider: {e.message}")
            await run_io_task(self._reverse_withdrawal, reference, FundingStatus.FAILED, {"error": e.message})
            raise

        await run_io_task(
            self._set_reference_fields,
            reference,
            provider_payload={
                "recipient_code": recipient_code,
                "transfer_code": (transfer or {}).get("transfer_code"),
            },
        )
        return {
            "reference": reference,
            "amount": str(breakdown["amount"]),
            "fee": str(breakdown["fee"]),
            "total": str(breakdown["total"]),
            "status": FundingStatus.PENDING.value,
        }

    def transfer_confirmed(self, reference: str, provider_payload: Optional[Dict[str, Any]] = None) -> bool:
        with atomic_transaction(self.session_factory) as session:
            record = self._load_reference(session, reference, FundingDirection.WITHDRAWAL)
            if not self._claim(session, record, FundingStatus.COMPLETED, provider_payload):
                logger.info(f"Withdrawal {reference} already {record.status}; ignoring transfer.success")
                return False
            user_id, amount, currency = record.user_id, record.amount, record.currency

        logger.info(f"✅ WITHDRAWAL_COMPLETED: user={user_id} amount={amount} ref={reference}")
        self.notifications.notify(
            user_id,
            NotificationType.WITHDRAWAL_COMPLETED,
            "Withdrawal completed",
            f"Your withdrawal of {self.notifications.format_currency(amount, currency)} has been paid out.",
            {"reference": reference},
        )
        return True

    def transfer_failed(
        self, reference: str, reversed_by_provider: bool = False, provider_payload: Optional[Dict[str, Any]] = None
    ) -> bool:
        final_status = FundingStatus.REVERSED if reversed_by_provider else FundingStatus.FAILED
        return self._reverse_withdrawal(reference, final_status, provider_payload) is not None

    # ------------------------------------------------------------------
    # Webhook entry point
    # ------------------------------------------------------------------

    def handle_webhook(self, raw_body: bytes, signature: Optional[str]) -> Dict[str, str]:
        """
        Verify and dispatch a Paystack event.

        Unauthenticated or malformed deliveries are logged and dropped with
        status "rejected"; nothing is written for them.
        """
        if not WebhookSecurityService.verify_paystack_signature(raw_body, signature, Config.PAYSTACK_SECRET_KEY):
            return {"status": "rejected", "reason": "invalid_signature"}

        try:
            payload = orjson.loads(raw_body)
        except orjson.JSONDecodeError:
            logger.warning("🚨 Paystack webhook body is not valid JSON")
            return {"status": "rejected", "reason": "malformed_body"}

        if not isinstance(payload, dict):
            return {"status": "rejected", "reason": "malformed_body"}
        event = payload.get("event")
        data = payload.get("data") or {}
        reference = data.get("reference") if isinstance(data, dict) else None
        if not event or not reference:
            logger.warning(f"🚨 Paystack webhook missing event or reference: event={event}")
            return {"status": "rejected", "reason": "malformed_body"}

        logger.info(f"📥 Paystack webhook: {event} ref={reference}")
        try:
            if event == "charge.success":
                amount = MonetaryDecimal.from_minor_units(data["amount"]) if data.get("amount") is not None else None
                applied = self.deposit_confirmed(reference, amount, data)
            elif event == "transfer.success":
                applied = self.transfer_confirmed(reference, data)
            elif event == "transfer.failed":
                applied = self.transfer_failed(reference, reversed_by_provider=False, provider_payload=data)
            elif event == "transfer.reversed":
                applied = self.transfer_failed(reference, reversed_by_provider=True, provider_payload=data)
            else:
                logger.info(f"Paystack event {event} not processed")
                return {"status": "ignored", "event": event}
        except NotFoundError:
            logger.warning(f"⚠️ Paystack webhook for unknown reference {reference} ({event})")
            return {"status": "ignored", "event": event, "reason": "unknown_reference"}
        except EscrowPlatformError as e:
            logger.warning(f"⚠️ Paystack webhook {event} ref={reference} not applied: {e.message}")
            return {"status": "rejected", "event": event, "reason": e.code}

        return {"status": "processed" if applied else "duplicate", "event": event}
