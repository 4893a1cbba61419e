"""
Listing Service - listing registry and availability gate

A listing can be held by at most one funded escrow transaction at a time. The
gate is a single conditional update on ``is_available``: exactly one caller
flips it from true to false, every other caller gets ConflictError.
"""

import logging
from decimal import Decimal
from typing import List, Optional, Union

from sqlalchemy import select, update
from sqlalchemy.orm import Session, sessionmaker

from config import Config
from models import EscrowStatus, EscrowTransaction, Listing, ListingStatus
from services.audit_logger import AuditLogger
from services.user_service import UserService
from utils.atomic_transactions import atomic_transaction
from utils.decimal_precision import MonetaryDecimal
from utils.exception_handler import (
    ConflictError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)

# Escrow states that keep a listing reserved
ACTIVE_HOLD_STATES = (
    EscrowStatus.ESCROW_HELD.value,
    EscrowStatus.DELIVERED.value,
    EscrowStatus.DISPUTED.value,
)

EDITABLE_FIELDS = ("title", "description", "game", "price")


class ListingService:
    """Seller listings, moderation and the availability gate"""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    # ------------------------------------------------------------------
    # Availability gate (runs inside the caller's atomic unit)
    # ------------------------------------------------------------------

    @staticmethod
    def reserve(session: Session, listing_id: int) -> None:
        """Atomically take an approved, available listing off the market"""
        stmt = (
            update(Listing)
            .where(
                Listing.id == listing_id,
                Listing.is_available.is_(True),
                Listing.status == ListingStatus.APPROVED.value,
            )
            .values(is_available=False)
            .execution_options(synchronize_session=False)
        )
        result = session.execute(stmt)
        if result.rowcount == 0:
            exists = session.execute(select(Listing.id).where(Listing.id == listing_id)).first()
            if exists is None:
                raise NotFoundError(f"Listing {listing_id} not found", details={"listing_id": listing_id})
            logger.warning(f"🔒 LISTING_RESERVE_CONFLICT: listing {listing_id} is no longer available")
            raise ConflictError(
                "Listing is no longer available", details={"listing_id": listing_id}
            )
        logger.info(f"📌 LISTING_RESERVED: listing {listing_id}")

    @staticmethod
    def release(session: Session, listing_id: int) -> bool:
        """
        Put a listing back on the market.

        No-op while another funded escrow still holds it, or once it has left
        the approved state.
        """
        holder = session.execute(
            select(EscrowTransaction.id).where(
                EscrowTransaction.listing_id == listing_id,
                EscrowTransaction.status.in_(ACTIVE_HOLD_STATES),
            ).limit(1)
        ).first()
        if holder is not None:
            logger.info(f"Listing {listing_id} still held by escrow transaction {holder[0]}; not released")
            return False

        result = session.execute(
            update(Listing)
            .where(Listing.id == listing_id, Listing.status == ListingStatus.APPROVED.value)
            .values(is_available=True)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            logger.info(f"🔓 LISTING_RELEASED: listing {listing_id}")
        return bool(result.rowcount)

    @staticmethod
    def mark_sold(session: Session, listing_id: int) -> None:
        session.execute(
            update(Listing)
            .where(Listing.id == listing_id)
            .values(status=ListingStatus.SOLD.value, is_available=False)
            .execution_options(synchronize_session=False)
        )
        logger.info(f"🏷️ LISTING_SOLD: listing {listing_id}")

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    @staticmethod
    def _validated_price(price: Union[Decimal, str, int]) -> Decimal:
        value = MonetaryDecimal.positive(price, "listing price")
        if value < Config.MIN_LISTING_PRICE:
            raise ValidationError(
                f"Listing price must be at least {Config.MIN_LISTING_PRICE}", details={"field": "price"}
            )
        return value

    @staticmethod
    def _load_owned(session: Session, listing_id: int, seller_id: int, lock: bool = False) -> Listing:
        listing = session.get(Listing, listing_id, with_for_update=lock)
        if listing is None:
            raise NotFoundError(f"Listing {listing_id} not found")
        if listing.seller_id != seller_id:
            raise ForbiddenError("Only the seller can modify this listing")
        return listing

    @staticmethod
    def _is_held(session: Session, listing_id: int) -> bool:
        return session.execute(
            select(EscrowTransaction.id).where(
                EscrowTransaction.listing_id == listing_id,
                EscrowTransaction.status.in_(ACTIVE_HOLD_STATES),
            ).limit(1)
        ).first() is not None

    def create_listing(
        self,
        seller_id: int,
        title: str,
        price: Union[Decimal, str, int],
        description: Optional[str] = None,
        game: Optional[str] = None,
    ) -> Listing:
        if not title or not title.strip():
            raise ValidationError("Listing title is required", details={"field": "title"})
        listing_price = self._validated_price(price)

        with atomic_transaction(self.session_factory) as session:
            listing = Listing(
                seller_id=seller_id,
                title=title.strip(),
                description=description,
                game=game,
                price=listing_price,
                currency=Config.PLATFORM_CURRENCY,
                is_available=True,
                status=ListingStatus.DRAFT.value,
            )
            session.add(listing)
            session.flush()

        logger.info(f"📝 Listing {listing.id} created by seller {seller_id} at {listing_price}")
        return listing

    def update_listing(self, listing_id: int, seller_id: int, **changes) -> Listing:
        """Seller edits; existing escrow transactions keep their price snapshot"""
        unknown = set(changes) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")

        with atomic_transaction(self.session_factory) as session:
            listing = self._load_owned(session, listing_id, seller_id, lock=True)
            if listing.status in (ListingStatus.SOLD.value, ListingStatus.REMOVED.value):
                raise InvalidTransitionError(f"Cannot edit a {listing.status} listing")
            if self._is_held(session, listing_id):
                raise InvalidTransitionError("Cannot edit a listing held by an active escrow transaction")

            if "price" in changes:
                changes["price"] = self._validated_price(changes["price"])
            if "title" in changes and not (changes["title"] or "").strip():
                raise ValidationError("Listing title is required", details={"field": "title"})

            for field, value in changes.items():
                setattr(listing, field, value)
            session.flush()

        logger.info(f"✏️ Listing {listing_id} updated by seller {seller_id}: {sorted(changes)}")
        return listing

    def submit_for_review(self, listing_id: int, seller_id: int) -> Listing:
        with atomic_transaction(self.session_factory) as session:
            listing = self._load_owned(session, listing_id, seller_id)
            if listing.status not in (ListingStatus.DRAFT.value, ListingStatus.REJECTED.value):
                raise InvalidTransitionError(f"Cannot submit a {listing.status} listing for review")
            listing.status = ListingStatus.PENDING_VERIFICATION.value
            listing.moderation_notes = None
            session.flush()

        logger.info(f"📤 Listing {listing_id} submitted for verification")
        return listing

    def moderate(self, listing_id: int, moderator_id: int, approve: bool, notes: Optional[str] = None) -> Listing:
        """pending_verification -> approved | rejected"""
        with atomic_transaction(self.session_factory) as session:
            UserService.require_resolver(session, moderator_id)
            listing = session.get(Listing, listing_id)
            if listing is None:
                raise NotFoundError(f"Listing {listing_id} not found")
            if listing.status != ListingStatus.PENDING_VERIFICATION.value:
                raise InvalidTransitionError(f"Listing {listing_id} is not awaiting verification")

            listing.status = ListingStatus.APPROVED.value if approve else ListingStatus.REJECTED.value
            listing.is_available = bool(approve)
            listing.moderation_notes = notes
            session.flush()

            AuditLogger.log_admin_action(
                session,
                moderator_id,
                "listing_approved" if approve else "listing_rejected",
                "listing",
                listing_id,
                {"notes": notes},
            )

        return listing

    def remove_listing(self, listing_id: int, seller_id: int) -> Listing:
        with atomic_transaction(self.session_factory) as session:
            listing = self._load_owned(session, listing_id, seller_id, lock=True)
            if listing.status == ListingStatus.SOLD.value:
                raise InvalidTransitionError("Cannot remove a sold listing")
            seen_status, seen_available = listing.status, listing.is_available
            if self._is_held(session, listing_id):
                raise InvalidTransitionError("Cannot remove a listing held by an active escrow transaction")

            # Applies only if the row still matches what was checked above
            result = session.execute(
                update(Listing)
                .where(
                    Listing.id == listing_id,
                    Listing.status == seen_status,
                    Listing.is_available.is_(seen_available),
                )
                .values(status=ListingStatus.REMOVED.value, is_available=False)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                logger.warning(f"🔒 LISTING_REMOVE_CONFLICT: listing {listing_id} changed while being removed")
                raise ConflictError("Listing changed while being removed; reload and retry")
            session.refresh(listing)

        logger.info(f"🗑️ Listing {listing_id} removed by seller {seller_id}")
        return listing

    def get_listing(self, listing_id: int) -> Listing:
        with self.session_factory() as session:
            listing = session.get(Listing, listing_id)
            if listing is None:
                raise NotFoundError(f"Listing {listing_id} not found")
            return listing

    def list_available(self, game: Optional[str] = None, limit: int = 50) -> List[Listing]:
        stmt = select(Listing).where(
            Listing.status == ListingStatus.APPROVED.value,
            Listing.is_available.is_(True),
        )
        if game:
            stmt = stmt.where(Listing.game == game)
        with self.session_factory() as session:
            return list(session.execute(stmt.order_by(Listing.created_at.desc()).limit(limit)).scalars())

    def list_seller_listings(self, seller_id: int) -> List[Listing]:
        with self.session_factory() as session:
            return list(
                session.execute(
                    select(Listing).where(Listing.seller_id == seller_id).order_by(Listing.id.desc())
                ).scalars()
            )

    def list_pending_verification(self) -> List[Listing]:
        with self.session_factory() as session:
            return list(
                session.execute(
                    select(Listing)
                    .where(Listing.status == ListingStatus.PENDING_VERIFICATION.value)
                    .order_by(Listing.created_at)
                ).scalars()
            )
