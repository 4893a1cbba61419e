"""
Ledger Service - the only code path that changes a wallet balance

Every balance change is an in-database increment (credit) or conditional
decrement (debit) paired with an append-only LedgerEntry, so that the sum of a
wallet's entries always equals its balance. Ledger operations never commit:
they run inside the caller's atomic unit, next to the state change that
triggered them.
"""

import logging
from decimal import Decimal
from typing import List, Optional, Union

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from config import Config
from models import LedgerEntry, LedgerReason, Wallet, WalletType
from utils.decimal_precision import MonetaryDecimal
from utils.exception_handler import InsufficientBalanceError, NotFoundError

logger = logging.getLogger(__name__)


class LedgerService:
    """Atomic wallet credits and debits with ledger entries"""

    @staticmethod
    def _reason_value(reason: Union[LedgerReason, str]) -> str:
        return reason.value if isinstance(reason, LedgerReason) else LedgerReason(reason).value

    @classmethod
    def credit(
        cls,
        session: Session,
        wallet_id: int,
        amount: Union[Decimal, str, int],
        reason: Union[LedgerReason, str],
        related_tx_id: Optional[int] = None,
        external_reference: Optional[str] = None,
        description: Optional[str] = None,
    ) -> LedgerEntry:
        """Increment a wallet balance and append a positive ledger entry"""
        credit_amount = MonetaryDecimal.positive(amount, "credit")
        reason_value = cls._reason_value(reason)

        stmt = (
            update(Wallet)
            .where(Wallet.id == wallet_id)
            .values(balance=Wallet.balance + credit_amount)
            .execution_options(synchronize_session=False)
        )
        result = session.execute(stmt)
        if result.rowcount == 0:
            raise NotFoundError(f"Wallet {wallet_id} not found", details={"wallet_id": wallet_id})

        entry = LedgerEntry(
            wallet_id=wallet_id,
            amount=credit_amount,
            reason=reason_value,
            escrow_transaction_id=related_tx_id,
            external_reference=external_reference,
            description=description,
        )
        session.add(entry)
        session.flush()

        logger.info(
            f"💰 LEDGER_CREDIT: wallet={wallet_id} +{credit_amount} reason={reason_value}"
            f"{f' tx={related_tx_id}' if related_tx_id else ''}"
            f"{f' ref={external_reference}' if external_reference else ''}"
        )
        return entry

    @classmethod
    def debit(
        cls,
        session: Session,
        wallet_id: int,
        amount: Union[Decimal, str, int],
        reason: Union[LedgerReason, str],
        related_tx_id: Optional[int] = None,
        external_reference: Optional[str] = None,
        description: Optional[str] = None,
    ) -> LedgerEntry:
        """
        Conditionally decrement a wallet balance and append a negative entry.

        The decrement only applies when the balance covers the amount; a
        conditional update that touches no row means either the wallet is
        missing or it is underfunded.
        """
        debit_amount = MonetaryDecimal.positive(amount, "debit")
        reason_value = cls._reason_value(reason)

        stmt = (
            update(Wallet)
            .where(Wallet.id == wallet_id, Wallet.balance >= debit_amount)
            .values(balance=Wallet.balance - debit_amount)
            .execution_options(synchronize_session=False)
        )
        result = session.execute(stmt)

        if result.rowcount == 0:
            exists = session.execute(select(Wallet.id).where(Wallet.id == wallet_id)).first()
            if exists is None:
                raise NotFoundError(f"Wallet {wallet_id} not found", details={"wallet_id": wallet_id})

            available = cls.get_balance(session, wallet_id)
            logger.warning(
                f"🚫 LEDGER_DEBIT_REJECTED: wallet={wallet_id} requested={debit_amount} available={available}"
            )
            raise InsufficientBalanceError(
                f"Insufficient balance: {available} available, {debit_amount} required",
                details={"wallet_id": wallet_id, "available": str(available), "required": str(debit_amount)},
            )

        entry = LedgerEntry(
            wallet_id=wallet_id,
            amount=-debit_amount,
            reason=reason_value,
            escrow_transaction_id=related_tx_id,
            external_reference=external_reference,
            description=description,
        )
        session.add(entry)
        session.flush()

        logger.info(
            f"💸 LEDGER_DEBIT: wallet={wallet_id} -{debit_amount} reason={reason_value}"
            f"{f' tx={related_tx_id}' if related_tx_id else ''}"
        )
        return entry

    @classmethod
    def reconcile(cls, session: Session, wallet_id: int) -> Decimal:
        """Balance recomputed from the wallet's ledger entries"""
        total = session.execute(
            select(func.sum(LedgerEntry.amount)).where(LedgerEntry.wallet_id == wallet_id)
        ).scalar()
        return MonetaryDecimal.quantize(total if total is not None else 0)

    @classmethod
    def get_balance(cls, session: Session, wallet_id: int) -> Decimal:
        balance = session.execute(select(Wallet.balance).where(Wallet.id == wallet_id)).scalar_one_or_none()
        if balance is None:
            raise NotFoundError(f"Wallet {wallet_id} not found", details={"wallet_id": wallet_id})
        return MonetaryDecimal.quantize(balance)

    @classmethod
    def get_wallet(cls, session: Session, user_id: int, currency: Optional[str] = None) -> Optional[Wallet]:
        currency = currency or Config.PLATFORM_CURRENCY
        return session.execute(
            select(Wallet).where(Wallet.user_id == user_id, Wallet.currency == currency)
        ).scalar_one_or_none()

    @classmethod
    def get_or_create_wallet(cls, session: Session, user_id: int, currency: Optional[str] = None) -> Wallet:
        """Get the user's wallet, creating a zero-balance one on first use"""
        currency = currency or Config.PLATFORM_CURRENCY
        wallet = cls.get_wallet(session, user_id, currency)
        if wallet is None:
            wallet = Wallet(
                user_id=user_id,
                wallet_type=WalletType.USER.value,
                currency=currency,
                balance=Decimal("0"),
            )
            session.add(wallet)
            session.flush()
            logger.info(f"👛 Created {currency} wallet {wallet.id} for user {user_id}")
        return wallet

    @classmethod
    def get_platform_wallet(cls, session: Session, currency: Optional[str] = None) -> Wallet:
        """Platform fee wallet for the currency (created on first use)"""
        currency = currency or Config.PLATFORM_CURRENCY
        wallet = session.execute(
            select(Wallet).where(
                Wallet.wallet_type == WalletType.PLATFORM.value,
                Wallet.currency == currency,
            )
        ).scalar_one_or_none()
        if wallet is None:
            wallet = Wallet(
                user_id=None,
                wallet_type=WalletType.PLATFORM.value,
                currency=currency,
                balance=Decimal("0"),
            )
            session.add(wallet)
            session.flush()
            logger.info(f"🏦 Created platform {currency} wallet {wallet.id}")
        return wallet

    @classmethod
    def list_entries(cls, session: Session, wallet_id: int, limit: int = 50) -> List[LedgerEntry]:
        """Most recent ledger entries first"""
        return list(
            session.execute(
                select(LedgerEntry)
                .where(LedgerEntry.wallet_id == wallet_id)
                .order_by(LedgerEntry.created_at.desc(), LedgerEntry.id.desc())
                .limit(limit)
            ).scalars()
        )

    @classmethod
    def has_entry(cls, session: Session, escrow_transaction_id: int, reason: Union[LedgerReason, str]) -> bool:
        """Whether a ledger entry with this reason exists for the transaction"""
        return session.execute(
            select(LedgerEntry.id).where(
                LedgerEntry.escrow_transaction_id == escrow_transaction_id,
                LedgerEntry.reason == cls._reason_value(reason),
            ).limit(1)
        ).first() is not None
