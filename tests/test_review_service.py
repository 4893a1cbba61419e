"""
Seller Review Tests
Buyer-only ratings on completed transactions and the seller's rating aggregate
"""

from decimal import Decimal

import pytest
from sqlalchemy import select

from models import Notification, Review
from utils.exception_handler import ForbiddenError, InvalidTransitionError, NotFoundError, ValidationError


@pytest.fixture
def completed_transaction(services, buyer, delivered_transaction):
    def _make(price="300.00"):
        escrow_tx = delivered_transaction(price)
        return services.escrow.accept(escrow_tx.id, buyer.id)

    return _make


@pytest.mark.unit
class TestReviewRules:
    def test_buyer_reviews_completed_transaction(self, services, session_factory, buyer, seller,
                                                 completed_transaction):
        escrow_tx = completed_transaction()

        review = services.reviews.submit_review(escrow_tx.id, buyer.id, 4, "  Smooth handover  ")

        assert review.rating == 4
        assert review.comment == "Smooth handover"
        assert review.reviewed_user_id == seller.id
        rated = services.users.get_user(seller.id)
        assert rated.average_rating == Decimal("4.00")
        assert rated.review_count == 1
        with session_factory() as session:
            kinds = [n.type for n in session.query(Notification).filter(Notification.user_id == seller.id)]
        assert "review_received" in kinds

    def test_resubmitting_edits_the_same_review(self, services, session_factory, buyer, seller,
                                                completed_transaction):
        escrow_tx = completed_transaction()
        first = services.reviews.submit_review(escrow_tx.id, buyer.id, 2)

        edited = services.reviews.submit_review(escrow_tx.id, buyer.id, 5, "Seller fixed the issue")

        assert edited.id == first.id
        assert services.users.get_user(seller.id).average_rating == Decimal("5.00")
        assert services.users.get_user(seller.id).review_count == 1
        with session_factory() as session:
            assert len(session.execute(select(Review)).scalars().all()) == 1

    def test_average_over_several_sales(self, services, buyer, seller, completed_transaction):
        for rating in (5, 4, 4):
            escrow_tx = completed_transaction()
            services.reviews.submit_review(escrow_tx.id, buyer.id, rating)

        rated = services.users.get_user(seller.id)
        assert rated.average_rating == Decimal("4.33")
        assert rated.review_count == 3
        assert [r.rating for r in services.reviews.list_reviews_for_user(seller.id)] == [4, 4, 5]

    def test_seller_cannot_review(self, services, seller, completed_transaction):
        escrow_tx = completed_transaction()
        with pytest.raises(ForbiddenError):
            services.reviews.submit_review(escrow_tx.id, seller.id, 5)

    def test_only_completed_transactions(self, services, buyer, seller, delivered_transaction):
        escrow_tx = delivered_transaction()

        with pytest.raises(InvalidTransitionError):
            services.reviews.submit_review(escrow_tx.id, buyer.id, 5)
        assert services.users.get_user(seller.id).review_count == 0

    @pytest.mark.parametrize("rating", [0, 6, True, "5"])
    def test_rating_out_of_range_rejected(self, services, buyer, completed_transaction, rating):
        escrow_tx = completed_transaction()
        with pytest.raises(ValidationError):
            services.reviews.submit_review(escrow_tx.id, buyer.id, rating)

    def test_unknown_transaction(self, services, buyer):
        with pytest.raises(NotFoundError):
            services.reviews.submit_review(424242, buyer.id, 5)

    def test_parties_can_read_review_outsiders_cannot(self, services, buyer, seller, completed_transaction):
        escrow_tx = completed_transaction()
        assert services.reviews.get_transaction_review(escrow_tx.id, seller.id) is None
        services.reviews.submit_review(escrow_tx.id, buyer.id, 3)

        assert services.reviews.get_transaction_review(escrow_tx.id, seller.id).rating == 3
        outsider = services.users.register_user("outsider@example.com")
        with pytest.raises(ForbiddenError):
            services.reviews.get_transaction_review(escrow_tx.id, outsider.id)
