"""
Seller reviews

A buyer rates the seller once per completed transaction; submitting again
edits the existing review. The seller's average_rating and review_count are
recomputed from the reviews table in the same atomic unit as the write.
"""

import logging
from typing import List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from models import EscrowStatus, EscrowTransaction, Review, User
from services.notification_service import NotificationService, NotificationType
from utils.atomic_transactions import atomic_transaction
from utils.datetime_helpers import get_naive_utc_now
from utils.decimal_precision import MonetaryDecimal
from utils.exception_handler import (
    ConflictError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)

MIN_RATING = 1
MAX_RATING = 5
MAX_COMMENT_LENGTH = 1000


class ReviewService:
    def __init__(self, session_factory: sessionmaker, notifications: Optional[NotificationService] = None):
        self.session_factory = session_factory
        self.notifications = notifications or NotificationService(session_factory)

    @staticmethod
    def _validated_rating(rating) -> int:
        if isinstance(rating, bool) or not isinstance(rating, int):
            raise ValidationError("Rating must be a whole number", details={"field": "rating"})
        if not MIN_RATING <= rating <= MAX_RATING:
            raise ValidationError(
                f"Rating must be between {MIN_RATING} and {MAX_RATING}", details={"field": "rating"}
            )
        return rating

    @staticmethod
    def _refresh_rating(session, user_id: int) -> None:
        # Row lock on the seller serialises concurrent recomputations
        session.execute(select(User.id).where(User.id == user_id).with_for_update())
        average, count = session.execute(
            select(func.avg(Review.rating), func.count(Review.id)).where(Review.reviewed_user_id == user_id)
        ).one()
        session.execute(
            update(User)
            .where(User.id == user_id)
            .values(
                average_rating=MonetaryDecimal.quantize(average) if count else None,
                review_count=count,
            )
            .execution_options(synchronize_session=False)
        )

    def submit_review(
        self, transaction_id: int, reviewer_id: int, rating: int, comment: Optional[str] = None
    ) -> Review:
        """Create or edit the buyer's review of a completed transaction"""
        rating = self._validated_rating(rating)
        comment = (comment or "").strip() or None
        if comment and len(comment) > MAX_COMMENT_LENGTH:
            raise ValidationError(
                f"Comment exceeds {MAX_COMMENT_LENGTH} characters", details={"field": "comment"}
            )

        try:
            with atomic_transaction(self.session_factory) as session:
                escrow_tx = session.get(EscrowTransaction, transaction_id)
                if escrow_tx is None:
                    raise NotFoundError(f"Transaction {transaction_id} not found")
                if escrow_tx.buyer_id != reviewer_id:
                    raise ForbiddenError("Only the buyer can review this transaction")
                if escrow_tx.status != EscrowStatus.COMPLETED.value:
                    raise InvalidTransitionError(
                        f"Only completed transactions can be reviewed (status: {escrow_tx.status})"
                    )

                review = session.execute(
                    select(Review).where(
                        Review.escrow_transaction_id == transaction_id,
                        Review.reviewer_id == reviewer_id,
                    )
                ).scalar_one_or_none()
                created = review is None
                if created:
                    review = Review(
                        escrow_transaction_id=transaction_id,
                        reviewer_id=reviewer_id,
                        reviewed_user_id=escrow_tx.seller_id,
                        rating=rating,
                        comment=comment,
                    )
                    session.add(review)
                else:
                    review.rating = rating
                    review.comment = comment
                    review.updated_at = get_naive_utc_now()
                session.flush()

                self._refresh_rating(session, escrow_tx.seller_id)
                seller_id = escrow_tx.seller_id
        except IntegrityError as e:
            logger.warning(f"⚠️ Concurrent review submission on transaction {transaction_id}: {e}")
            raise ConflictError("Review was submitted concurrently; reload and retry") from e

        logger.info(
            f"⭐ REVIEW_{'CREATED' if created else 'UPDATED'}: tx={transaction_id} seller={seller_id} rating={rating}"
        )
        if created:
            self.notifications.notify(
                seller_id,
                NotificationType.REVIEW_RECEIVED,
                "New review",
                f"A buyer rated your sale {rating} out of {MAX_RATING}.",
                {"rating": rating},
                related_id=transaction_id,
            )
        return review

    def get_transaction_review(self, transaction_id: int, user_id: int) -> Optional[Review]:
        with self.session_factory() as session:
            escrow_tx = session.get(EscrowTransaction, transaction_id)
            if escrow_tx is None:
                raise NotFoundError(f"Transaction {transaction_id} not found")
            if not escrow_tx.is_party(user_id):
                raise ForbiddenError("You are not a party to this transaction")
            return session.execute(
                select(Review).where(
                    Review.escrow_transaction_id == transaction_id,
                    Review.reviewer_id == escrow_tx.buyer_id,
                )
            ).scalar_one_or_none()

    def list_reviews_for_user(self, user_id: int, limit: int = 50) -> List[Review]:
        with self.session_factory() as session:
            if session.get(User, user_id) is None:
                raise NotFoundError(f"User {user_id} not found")
            return list(
                session.execute(
                    select(Review)
                    .where(Review.reviewed_user_id == user_id)
                    .order_by(Review.created_at.desc(), Review.id.desc())
                    .limit(limit)
                ).scalars()
            )
