"""
Dispute Resolution Service
Buyer-opened disputes freeze the escrow transaction; only a resolver moves it on
"""

import logging
from typing import List, NamedTuple, Optional

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from config import Config
from models import (
    Dispute,
    DisputeSettlement,
    DisputeStatus,
    EscrowStatus,
    EscrowTransaction,
    User,
)
from services.audit_logger import AuditLogger
from services.escrow_service import EscrowService
from services.messaging_service import MessagingService
from services.notification_service import NotificationService, NotificationType
from services.user_service import UserService
from utils.atomic_transactions import atomic_transaction, locked_escrow_transaction
from utils.datetime_helpers import get_naive_utc_now
from utils.escrow_state_machine import EscrowEvent
from utils.exception_handler import (
    AlreadyInDisputeError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)

# Resolution outcome -> settlement it implies ("closed" requires an explicit one)
OUTCOME_SETTLEMENTS = {
    DisputeStatus.RESOLVED_BUYER.value: DisputeSettlement.REFUND.value,
    DisputeStatus.RESOLVED_SELLER.value: DisputeSettlement.RELEASE.value,
    DisputeStatus.CLOSED.value: None,
}


class ResolutionResult(NamedTuple):
    """Result of a dispute resolution operation"""

    dispute_id: int
    transaction_id: int
    dispute_status: str
    transaction_status: str
    settlement: str
    amount: str
    buyer_id: int
    seller_id: int


class DisputeResolutionService:
    """Service for atomic dispute operations"""

    def __init__(
        self,
        session_factory: sessionmaker,
        escrow_service: EscrowService,
        notifications: Optional[NotificationService] = None,
        messaging: Optional[MessagingService] = None,
    ):
        self.session_factory = session_factory
        self.escrow_service = escrow_service
        self.notifications = notifications or escrow_service.notifications
        self.messaging = messaging or escrow_service.messaging

    def open_dispute(self, transaction_id: int, opener_id: int, reason: str, description: str) -> Dispute:
        """
        delivered (or escrow_held when allowed) -> disputed, creating the Dispute.

        Filing after the acceptance deadline is rejected unless late filing is
        enabled.
        """
        reason = (reason or "").strip()
        description = (description or "").strip()
        if not reason:
            raise ValidationError("A dispute reason is required", details={"field": "reason"})
        if not description:
            raise ValidationError("A dispute description is required", details={"field": "description"})

        now = get_naive_utc_now()
        with atomic_transaction(self.session_factory) as session:
            escrow_tx = locked_escrow_transaction(session, transaction_id)
            if escrow_tx.buyer_id != opener_id:
                raise ForbiddenError("Only the buyer can open a dispute")

            existing = session.execute(
                select(Dispute).where(Dispute.escrow_transaction_id == transaction_id)
            ).scalar_one_or_none()
            if existing is not None:
                logger.warning(f"⚠️ Duplicate dispute attempt on tx={transaction_id} (dispute {existing.id})")
                raise AlreadyInDisputeError(
                    "A dispute already exists for this transaction",
                    details={"dispute_id": existing.id, "status": existing.status},
                )

            if escrow_tx.status == EscrowStatus.ESCROW_HELD.value and not Config.DISPUTE_ALLOW_BEFORE_DELIVERY:
                raise InvalidTransitionError(
                    "Disputes can only be opened after the seller marks the order delivered",
                    details={"status": escrow_tx.status},
                )
            if (
                escrow_tx.status == EscrowStatus.DELIVERED.value
                and escrow_tx.acceptance_deadline is not None
                and now > escrow_tx.acceptance_deadline
                and not Config.DISPUTE_ALLOW_LATE_FILING
            ):
                raise InvalidTransitionError(
                    "The acceptance window has ended; disputes can no longer be filed",
                    details={"acceptance_deadline": escrow_tx.acceptance_deadline.isoformat()},
                )

            EscrowService.apply_transition(session, escrow_tx, EscrowEvent.OPEN_DISPUTE, {"disputed_at": now})

            dispute = Dispute(
                escrow_transaction_id=transaction_id,
                opened_by=opener_id,
                reason=reason,
                description=description,
                status=DisputeStatus.OPEN.value,
            )
            session.add(dispute)
            session.flush()
            resolver_ids = UserService.resolver_ids(session)

        logger.info(f"⚖️ DISPUTE_OPENED: dispute={dispute.id} tx={transaction_id} by user {opener_id}")

        payload = {"transaction_id": transaction_id, "dispute_id": dispute.id, "reason": reason}
        self.notifications.notify(
            escrow_tx.seller_id,
            NotificationType.DISPUTE_OPENED,
            "Dispute opened",
            f"The buyer opened a dispute on transaction #{transaction_id}: {reason}",
            payload,
            related_id=transaction_id,
        )
        self.notifications.notify_many(
            resolver_ids,
            NotificationType.DISPUTE_OPENED,
            "New dispute awaiting review",
            f"Dispute #{dispute.id} on transaction #{transaction_id}: {reason}",
            payload,
            related_id=dispute.id,
        )
        self.messaging.post_system_message(
            transaction_id, f"Buyer opened a dispute: {reason}. Funds are frozen until a moderator resolves it."
        )
        return dispute

    def start_review(self, dispute_id: int, resolver_id: int) -> Dispute:
        """open -> under_review"""
        with atomic_transaction(self.session_factory) as session:
            UserService.require_resolver(session, resolver_id)
            dispute = session.get(Dispute, dispute_id)
            if dispute is None:
                raise NotFoundError(f"Dispute {dispute_id} not found")
            if dispute.status != DisputeStatus.OPEN.value:
                raise InvalidTransitionError(
                    f"Dispute {dispute_id} is {dispute.status}; only open disputes can be taken under review"
                )

            dispute.status = DisputeStatus.UNDER_REVIEW.value
            dispute.reviewer_id = resolver_id
            dispute.review_started_at = get_naive_utc_now()
            session.flush()

            AuditLogger.log_admin_action(
                session, resolver_id, "dispute_review_started", "dispute", dispute_id,
                {"transaction_id": dispute.escrow_transaction_id},
            )

        return dispute

    def resolve(
        self,
        dispute_id: int,
        outcome: str,
        notes: str,
        resolver_id: int,
        settlement: Optional[str] = None,
    ) -> ResolutionResult:
        """
        under_review -> resolved_buyer | resolved_seller | closed.

        The escrow settlement (refund to the buyer, or payout to the seller
        plus platform fee) commits in the same unit as the dispute outcome.
        """
        if outcome not in OUTCOME_SETTLEMENTS:
            raise ValidationError(
                f"Unknown resolution outcome '{outcome}'",
                details={"field": "outcome", "allowed": sorted(OUTCOME_SETTLEMENTS)},
            )
        notes = (notes or "").strip()
        if not notes:
            raise ValidationError("Resolution notes are required", details={"field": "notes"})

        implied = OUTCOME_SETTLEMENTS[outcome]
        if implied is None:
            if settlement not in (DisputeSettlement.RELEASE.value, DisputeSettlement.REFUND.value):
                raise ValidationError(
                    "Closing a dispute requires a settlement of 'release' or 'refund'",
                    details={"field": "settlement"},
                )
        elif settlement is not None and settlement != implied:
            raise ValidationError(
                f"Outcome '{outcome}' settles as '{implied}', not '{settlement}'",
                details={"field": "settlement"},
            )
        settlement = settlement or implied

        now = get_naive_utc_now()
        with atomic_transaction(self.session_factory) as session:
            UserService.require_resolver(session, resolver_id)
            dispute = session.get(Dispute, dispute_id)
            if dispute is None:
                raise NotFoundError(f"Dispute {dispute_id} not found")
            if dispute.status != DisputeStatus.UNDER_REVIEW.value:
                raise InvalidTransitionError(
                    f"Dispute {dispute_id} is {dispute.status}; it must be under review to be resolved"
                )

            escrow_tx = locked_escrow_transaction(session, dispute.escrow_transaction_id)
            if settlement == DisputeSettlement.REFUND.value:
                EscrowService.apply_transition(session, escrow_tx, EscrowEvent.RESOLVE_REFUND, {"refunded_at": now})
                EscrowService.settle_refund(session, escrow_tx)
            else:
                EscrowService.apply_transition(
                    session, escrow_tx, EscrowEvent.RESOLVE_RELEASE, {"completed_at": now}
                )
                EscrowService.settle_release(session, escrow_tx)

            dispute.status = outcome
            dispute.resolution_outcome = settlement
            dispute.resolution_notes = notes
            dispute.resolved_by = resolver_id
            dispute.resolved_at = now
            session.flush()

            AuditLogger.log_admin_action(
                session, resolver_id, "dispute_resolved", "dispute", dispute_id,
                {
                    "transaction_id": escrow_tx.id,
                    "outcome": outcome,
                    "settlement": settlement,
                    "amount": str(escrow_tx.amount),
                },
            )

        result = ResolutionResult(
            dispute_id=dispute.id,
            transaction_id=escrow_tx.id,
            dispute_status=dispute.status,
            transaction_status=escrow_tx.status,
            settlement=settlement,
            amount=str(escrow_tx.amount),
            buyer_id=escrow_tx.buyer_id,
            seller_id=escrow_tx.seller_id,
        )
        logger.info(
            f"⚖️ DISPUTE_RESOLVED: dispute={dispute_id} tx={escrow_tx.id} outcome={outcome} "
            f"settlement={settlement} by resolver {resolver_id}"
        )

        if settlement == DisputeSettlement.REFUND.value:
            summary = "The dispute was resolved with a full refund to the buyer."
        else:
            summary = "The dispute was resolved and funds were released to the seller."
        self.notifications.notify_many(
            [escrow_tx.buyer_id, escrow_tx.seller_id],
            NotificationType.DISPUTE_RESOLVED,
            "Dispute resolved",
            f"{summary} Notes: {notes}",
            result._asdict(),
            related_id=escrow_tx.id,
        )
        self.messaging.post_system_message(escrow_tx.id, summary)
        return result

    def get_dispute(self, dispute_id: int, user_id: int) -> Dispute:
        with self.session_factory() as session:
            dispute = session.get(Dispute, dispute_id)
            if dispute is None:
                raise NotFoundError(f"Dispute {dispute_id} not found")
            escrow_tx = session.get(EscrowTransaction, dispute.escrow_transaction_id)
            if not escrow_tx.is_party(user_id):
                user = session.get(User, user_id)
                if user is None or not user.is_resolver:
                    raise ForbiddenError("You cannot view this dispute")
            return dispute

    def list_disputes(self, resolver_id: int, status: Optional[str] = None) -> List[Dispute]:
        stmt = select(Dispute)
        if status is not None:
            try:
                stmt = stmt.where(Dispute.status == DisputeStatus(status).value)
            except ValueError:
                raise ValidationError(f"Unknown dispute status '{status}'", details={"field": "status"})

        with self.session_factory() as session:
            UserService.require_resolver(session, resolver_id)
            return list(session.execute(stmt.order_by(Dispute.created_at, Dispute.id)).scalars())
