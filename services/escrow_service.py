"""
Escrow Transaction Service

Each buyer/seller action is one typed operation that runs as a single atomic
unit: the versioned status swap, the ledger entries, the wallet balances and
the listing flags commit or roll back together. Notifications and timeline
messages go out only after the commit and never fail the operation.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from config import Config
from models import (
    Dispute,
    EscrowStatus,
    EscrowTransaction,
    LedgerReason,
    Listing,
    ListingStatus,
    User,
)
from services.ledger_service import LedgerService
from services.listing_service import ListingService
from services.messaging_service import MessagingService
from services.notification_service import NotificationService, NotificationType
from utils.atomic_transactions import atomic_transaction, locked_escrow_transaction
from utils.datetime_helpers import get_naive_utc_now, hours_from_now
from utils.escrow_state_machine import EscrowEvent, EscrowStateValidator
from utils.exception_handler import ForbiddenError, InvalidTransitionError, NotFoundError, ValidationError
from utils.fee_calculator import FeeCalculator
from utils.optimistic_locking import OptimisticLockManager

logger = logging.getLogger(__name__)


class EscrowService:
    """Buyer/seller escrow lifecycle over the ledger and the listing gate"""

    def __init__(
        self,
        session_factory: sessionmaker,
        notifications: Optional[NotificationService] = None,
        messaging: Optional[MessagingService] = None,
    ):
        self.session_factory = session_factory
        self.notifications = notifications or NotificationService(session_factory)
        self.messaging = messaging or MessagingService(session_factory)

    # ------------------------------------------------------------------
    # Building blocks shared with dispute resolution
    # ------------------------------------------------------------------

    @staticmethod
    def apply_transition(
        session: Session,
        escrow_tx: EscrowTransaction,
        event: EscrowEvent,
        updates: Optional[Dict[str, Any]] = None,
        expected_version: Optional[int] = None,
    ) -> EscrowStatus:
        """
        Validate the event against the transition table and swap the status.

        The swap is conditional on (id, status, version); a caller holding a
        stale version gets ConflictError.
        """
        from_status = escrow_tx.status
        target = EscrowStateValidator.require_transition(from_status, event)
        version = escrow_tx.version if expected_version is None else expected_version

        OptimisticLockManager(session).versioned_update(
            EscrowTransaction,
            escrow_tx.id,
            {"status": target.value, **(updates or {})},
            expected_version=version,
            expected_status=from_status,
        )
        session.refresh(escrow_tx)

        logger.info(
            f"🔄 ESCROW_TRANSITION: tx={escrow_tx.id} {from_status} --{event.value}--> {target.value} "
            f"(v{escrow_tx.version})"
        )
        return target

    @staticmethod
    def settle_release(session: Session, escrow_tx: EscrowTransaction) -> None:
        """Pay the seller their payout and the platform its fee; the listing is sold"""
        seller_wallet = LedgerService.get_or_create_wallet(session, escrow_tx.seller_id, escrow_tx.currency)
        LedgerService.credit(
            session,
            seller_wallet.id,
            escrow_tx.seller_payout,
            LedgerReason.ESCROW_RELEASE,
            related_tx_id=escrow_tx.id,
            description=f"Escrow release for transaction {escrow_tx.id}",
        )
        if escrow_tx.platform_fee > 0:
            platform_wallet = LedgerService.get_platform_wallet(session, escrow_tx.currency)
            LedgerService.credit(
                session,
                platform_wallet.id,
                escrow_tx.platform_fee,
                LedgerReason.FEE,
                related_tx_id=escrow_tx.id,
                description=f"Platform fee for transaction {escrow_tx.id}",
            )
        ListingService.mark_sold(session, escrow_tx.listing_id)

        logger.info(
            f"✅ ESCROW_RELEASED: tx={escrow_tx.id} seller={escrow_tx.seller_id} "
            f"payout={escrow_tx.seller_payout} fee={escrow_tx.platform_fee}"
        )

    @staticmethod
    def settle_refund(session: Session, escrow_tx: EscrowTransaction) -> None:
        """Return the full held amount to the buyer"""
        buyer_wallet = LedgerService.get_or_create_wallet(session, escrow_tx.buyer_id, escrow_tx.currency)
        LedgerService.credit(
            session,
            buyer_wallet.id,
            escrow_tx.amount,
            LedgerReason.REFUND,
            related_tx_id=escrow_tx.id,
            description=f"Escrow refund for transaction {escrow_tx.id}",
        )
        logger.info(f"↩️ ESCROW_REFUNDED: tx={escrow_tx.id} buyer={escrow_tx.buyer_id} amount={escrow_tx.amount}")

    @staticmethod
    def _require_buyer(escrow_tx: EscrowTransaction, user_id: int) -> None:
        if escrow_tx.buyer_id != user_id:
            logger.warning(f"🚫 User {user_id} is not the buyer of transaction {escrow_tx.id}")
            raise ForbiddenError("Only the buyer can perform this action")

    @staticmethod
    def _require_seller(escrow_tx: EscrowTransaction, user_id: int) -> None:
        if escrow_tx.seller_id != user_id:
            logger.warning(f"🚫 User {user_id} is not the seller of transaction {escrow_tx.id}")
            raise ForbiddenError("Only the seller can perform this action")

    def _announce(
        self,
        escrow_tx: EscrowTransaction,
        recipients: List[int],
        notification_type: str,
        title: str,
        message: str,
        system_message: Optional[str] = None,
    ) -> None:
        payload = {
            "transaction_id": escrow_tx.id,
            "status": escrow_tx.status,
            "amount": str(escrow_tx.amount),
            "currency": escrow_tx.currency,
        }
        for user_id in recipients:
            self.notifications.notify(user_id, notification_type, title, message, payload, related_id=escrow_tx.id)
        if system_message:
            self.messaging.post_system_message(escrow_tx.id, system_message)

    def _amount_text(self, escrow_tx: EscrowTransaction, field: str = "amount") -> str:
        return self.notifications.format_currency(getattr(escrow_tx, field), escrow_tx.currency)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def create_transaction(self, buyer_id: int, listing_id: int) -> EscrowTransaction:
        """Open a pending transaction with the listing's price and fee snapshotted"""
        with atomic_transaction(self.session_factory) as session:
            listing = session.get(Listing, listing_id)
            if listing is None:
                raise NotFoundError(f"Listing {listing_id} not found", details={"listing_id": listing_id})
            if session.get(User, buyer_id) is None:
                raise NotFoundError(f"User {buyer_id} not found")
            if listing.seller_id == buyer_id:
                raise ForbiddenError("Sellers cannot buy their own listing")
            if listing.status != ListingStatus.APPROVED.value or not listing.is_available:
                raise InvalidTransitionError(
                    "Listing is not available for purchase",
                    details={"listing_id": listing_id, "status": listing.status},
                )

            breakdown = FeeCalculator.calculate_escrow_breakdown(listing.price)
            escrow_tx = EscrowTransaction(
                listing_id=listing.id,
                buyer_id=buyer_id,
                seller_id=listing.seller_id,
                amount=breakdown["amount"],
                platform_fee=breakdown["platform_fee"],
                seller_payout=breakdown["seller_payout"],
                currency=listing.currency,
                status=EscrowStatus.PENDING.value,
                version=1,
            )
            session.add(escrow_tx)
            session.flush()

        logger.info(
            f"🆕 ESCROW_CREATED: tx={escrow_tx.id} listing={listing_id} buyer={buyer_id} "
            f"amount={escrow_tx.amount} fee={escrow_tx.platform_fee}"
        )
        return escrow_tx

    def pay(self, transaction_id: int, buyer_id: int, expected_version: Optional[int] = None) -> EscrowTransaction:
        """
        pending -> escrow_held.

        The listing is reserved before the buyer is debited, so a buyer that
        loses the race for the listing is never charged.
        """
        with atomic_transaction(self.session_factory) as session:
            escrow_tx = locked_escrow_transaction(session, transaction_id)
            self._require_buyer(escrow_tx, buyer_id)

            self.apply_transition(
                session, escrow_tx, EscrowEvent.PAY, {"escrow_held_at": get_naive_utc_now()}, expected_version
            )
            ListingService.reserve(session, escrow_tx.listing_id)
            buyer_wallet = LedgerService.get_or_create_wallet(session, buyer_id, escrow_tx.currency)
            LedgerService.debit(
                session,
                buyer_wallet.id,
                escrow_tx.amount,
                LedgerReason.ESCROW_HOLD,
                related_tx_id=escrow_tx.id,
                description=f"Escrow hold for transaction {escrow_tx.id}",
            )

        logger.info(f"🔐 ESCROW_HELD: tx={escrow_tx.id} buyer={buyer_id} amount={escrow_tx.amount}")
        self._announce(
            escrow_tx,
            [escrow_tx.seller_id],
            NotificationType.NEW_ORDER,
            "New order received",
            f"A buyer paid {self._amount_text(escrow_tx)} into escrow. Deliver the account to get paid.",
            "Payment received. Funds are held in escrow until the buyer confirms delivery.",
        )
        return escrow_tx

    def mark_delivered(
        self, transaction_id: int, seller_id: int, expected_version: Optional[int] = None
    ) -> EscrowTransaction:
        """escrow_held -> delivered; starts the buyer's acceptance window"""
        now = get_naive_utc_now()
        with atomic_transaction(self.session_factory) as session:
            escrow_tx = locked_escrow_transaction(session, transaction_id)
            self._require_seller(escrow_tx, seller_id)
            self.apply_transition(
                session,
                escrow_tx,
                EscrowEvent.MARK_DELIVERED,
                {
                    "delivered_at": now,
                    "acceptance_deadline": hours_from_now(Config.ACCEPTANCE_WINDOW_HOURS, now),
                },
                expected_version,
            )

        hours = Config.ACCEPTANCE_WINDOW_HOURS
        self._announce(
            escrow_tx,
            [escrow_tx.buyer_id],
            NotificationType.DELIVERED,
            "Order delivered",
            f"The seller marked your order as delivered. You have {hours} hours to confirm or open a dispute.",
            f"Seller marked the order as delivered. Buyer has {hours} hours to confirm or dispute.",
        )
        return escrow_tx

    def accept(self, transaction_id: int, buyer_id: int, expected_version: Optional[int] = None) -> EscrowTransaction:
        """delivered -> completed; releases the payout and the fee"""
        with atomic_transaction(self.session_factory) as session:
            escrow_tx = locked_escrow_transaction(session, transaction_id)
            self._require_buyer(escrow_tx, buyer_id)
            self.apply_transition(
                session, escrow_tx, EscrowEvent.ACCEPT, {"completed_at": get_naive_utc_now()}, expected_version
            )
            self.settle_release(session, escrow_tx)

        self._announce(
            escrow_tx,
            [escrow_tx.seller_id],
            NotificationType.COMPLETED,
            "Payment released",
            f"The buyer confirmed delivery. {self._amount_text(escrow_tx, 'seller_payout')} was added to your wallet.",
            "Buyer confirmed receipt. Funds released to the seller.",
        )
        return escrow_tx

    def cancel(
        self,
        transaction_id: int,
        user_id: int,
        reason: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> EscrowTransaction:
        """pending -> cancelled; no money has moved yet"""
        with atomic_transaction(self.session_factory) as session:
            escrow_tx = locked_escrow_transaction(session, transaction_id)
            if not escrow_tx.is_party(user_id):
                raise ForbiddenError("Only the buyer or seller can cancel this transaction")
            self.apply_transition(
                session,
                escrow_tx,
                EscrowEvent.CANCEL,
                {
                    "cancelled_at": get_naive_utc_now(),
                    "cancelled_by": user_id,
                    "cancellation_reason": reason,
                },
                expected_version,
            )
            ListingService.release(session, escrow_tx.listing_id)

        counterparty = escrow_tx.seller_id if user_id == escrow_tx.buyer_id else escrow_tx.buyer_id
        self._announce(
            escrow_tx,
            [counterparty],
            NotificationType.CANCELLED,
            "Order cancelled",
            f"Transaction #{escrow_tx.id} was cancelled{f': {reason}' if reason else '.'}",
            "Transaction cancelled. No funds were moved.",
        )
        return escrow_tx

    def auto_release(self, transaction_id: int, now: Optional[datetime] = None) -> Optional[EscrowTransaction]:
        """
        delivered -> completed once the acceptance deadline has passed.

        Returns None (without touching anything) when the transaction is no
        longer eligible, which makes repeated sweeps harmless.
        """
        now = now or get_naive_utc_now()
        with atomic_transaction(self.session_factory) as session:
            escrow_tx = locked_escrow_transaction(session, transaction_id)
            if (
                escrow_tx.status != EscrowStatus.DELIVERED.value
                or escrow_tx.acceptance_deadline is None
                or escrow_tx.acceptance_deadline > now
            ):
                logger.debug(f"Auto-release skipped for tx={transaction_id} (status={escrow_tx.status})")
                return None
            has_dispute = session.execute(
                select(Dispute.id).where(Dispute.escrow_transaction_id == transaction_id)
            ).first()
            if has_dispute is not None:
                logger.info(f"Auto-release skipped for tx={transaction_id}: dispute on file")
                return None

            self.apply_transition(
                session,
                escrow_tx,
                EscrowEvent.AUTO_RELEASE,
                {"completed_at": now, "auto_released": True},
            )
            self.settle_release(session, escrow_tx)

        logger.info(f"⏰ AUTO_RELEASED: tx={escrow_tx.id} deadline={escrow_tx.acceptance_deadline}")
        self._announce(
            escrow_tx,
            [escrow_tx.seller_id, escrow_tx.buyer_id],
            NotificationType.AUTO_RELEASED,
            "Escrow auto-released",
            f"The acceptance window for transaction #{escrow_tx.id} ended without a dispute. "
            f"Funds were released to the seller.",
            "Acceptance window ended. Funds were released to the seller automatically.",
        )
        return escrow_tx

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_transaction(self, transaction_id: int, user_id: int) -> EscrowTransaction:
        """Visible to the two parties and to resolvers"""
        with self.session_factory() as session:
            escrow_tx = session.get(EscrowTransaction, transaction_id)
            if escrow_tx is None:
                raise NotFoundError(f"Transaction {transaction_id} not found")
            if not escrow_tx.is_party(user_id):
                user = session.get(User, user_id)
                if user is None or not user.is_resolver:
                    raise ForbiddenError("You are not a party to this transaction")
            return escrow_tx

    def list_transactions(
        self, user_id: int, role: Optional[str] = None, status: Optional[str] = None
    ) -> List[EscrowTransaction]:
        if role == "buyer":
            stmt = select(EscrowTransaction).where(EscrowTransaction.buyer_id == user_id)
        elif role == "seller":
            stmt = select(EscrowTransaction).where(EscrowTransaction.seller_id == user_id)
        elif role is None:
            stmt = select(EscrowTransaction).where(
                (EscrowTransaction.buyer_id == user_id) | (EscrowTransaction.seller_id == user_id)
            )
        else:
            raise ValidationError(f"Unknown role filter '{role}'", details={"field": "role"})

        if status is not None:
            try:
                stmt = stmt.where(EscrowTransaction.status == EscrowStatus(status).value)
            except ValueError:
                raise ValidationError(f"Unknown status '{status}'", details={"field": "status"})

        with self.session_factory() as session:
            return list(session.execute(stmt.order_by(EscrowTransaction.id.desc())).scalars())
