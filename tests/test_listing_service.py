"""
Listing Service Tests
Registry, moderation workflow and the availability gate
"""

from decimal import Decimal
from unittest.mock import patch

import pytest

from models import ListingStatus
from services.audit_logger import AuditLogger
from services.listing_service import ListingService
from utils.atomic_transactions import atomic_transaction
from utils.exception_handler import (
    ConflictError,
    ForbiddenError,
    InvalidTransitionError,
    ValidationError,
)


@pytest.mark.unit
class TestListingRegistry:
    def test_new_listing_starts_as_draft(self, services, seller):
        listing = services.listings.create_listing(seller.id, "  Epic account  ", Decimal("150.00"), game="CODM")

        assert listing.status == ListingStatus.DRAFT.value
        assert listing.title == "Epic account"
        assert listing.currency == "NGN"
        assert services.listings.list_available() == []

    def test_price_below_minimum_rejected(self, services, seller):
        with pytest.raises(ValidationError):
            services.listings.create_listing(seller.id, "Cheap", Decimal("0.50"))

    def test_moderation_approves_and_audits(self, services, session_factory, seller, moderator):
        listing = services.listings.create_listing(seller.id, "Epic account", Decimal("150.00"))
        services.listings.submit_for_review(listing.id, seller.id)
        assert [item.id for item in services.listings.list_pending_verification()] == [listing.id]

        approved = services.listings.moderate(listing.id, moderator.id, approve=True, notes="Verified")

        assert approved.status == ListingStatus.APPROVED.value
        assert approved.is_available is True
        assert [item.id for item in services.listings.list_available()] == [listing.id]
        with session_factory() as session:
            audit = [entry.action for entry in AuditLogger.list_entries(session, "listing", listing.id)]
        assert audit == ["listing_approved"]

    def test_rejected_listing_can_be_resubmitted(self, services, seller, moderator):
        listing = services.listings.create_listing(seller.id, "Epic account", Decimal("150.00"))
        services.listings.submit_for_review(listing.id, seller.id)
        rejected = services.listings.moderate(listing.id, moderator.id, approve=False, notes="Blurry screenshots")

        assert rejected.status == ListingStatus.REJECTED.value
        assert rejected.is_available is False
        resubmitted = services.listings.submit_for_review(listing.id, seller.id)
        assert resubmitted.status == ListingStatus.PENDING_VERIFICATION.value
        assert resubmitted.moderation_notes is None

    def test_regular_user_cannot_moderate(self, services, seller, buyer):
        listing = services.listings.create_listing(seller.id, "Epic account", Decimal("150.00"))
        services.listings.submit_for_review(listing.id, seller.id)

        with pytest.raises(ForbiddenError):
            services.listings.moderate(listing.id, buyer.id, approve=True)

    def test_only_owner_can_edit(self, services, seller, buyer):
        listing = services.listings.create_listing(seller.id, "Epic account", Decimal("150.00"))
        with pytest.raises(ForbiddenError):
            services.listings.update_listing(listing.id, buyer.id, title="Mine now")

    def test_unknown_fields_cannot_be_edited(self, services, seller):
        listing = services.listings.create_listing(seller.id, "Epic account", Decimal("150.00"))
        with pytest.raises(ValidationError):
            services.listings.update_listing(listing.id, seller.id, status="approved")

    def test_held_listing_cannot_be_edited_or_removed(self, services, buyer, seller, fund, approved_listing):
        fund(buyer.id, "500.00")
        listing = approved_listing()
        escrow_tx = services.escrow.create_transaction(buyer.id, listing.id)
        services.escrow.pay(escrow_tx.id, buyer.id)

        with pytest.raises(InvalidTransitionError):
            services.listings.update_listing(listing.id, seller.id, price=Decimal("999.00"))
        with pytest.raises(InvalidTransitionError):
            services.listings.remove_listing(listing.id, seller.id)

    def test_remove_conflicts_when_reserved_after_hold_check(self, services, approved_listing):
        listing = approved_listing()

        def reserved_after_check(session, listing_id):
            ListingService.reserve(session, listing_id)
            return False

        with patch.object(ListingService, "_is_held", side_effect=reserved_after_check):
            with pytest.raises(ConflictError):
                services.listings.remove_listing(listing.id, listing.seller_id)

        assert services.listings.get_listing(listing.id).status == ListingStatus.APPROVED.value

    def test_remove_unheld_listing(self, services, approved_listing):
        listing = approved_listing()

        removed = services.listings.remove_listing(listing.id, listing.seller_id)

        assert removed.status == ListingStatus.REMOVED.value
        assert removed.is_available is False
        assert services.listings.list_available() == []

    def test_filter_available_by_game(self, services, approved_listing):
        approved_listing(title="ML account", game="Mobile Legends")
        codm = approved_listing(title="CODM account", game="CODM")

        assert [item.id for item in services.listings.list_available(game="CODM")] == [codm.id]


@pytest.mark.unit
class TestAvailabilityGate:
    def test_reserve_is_exclusive(self, session_factory, approved_listing):
        listing = approved_listing()

        with atomic_transaction(session_factory) as session:
            ListingService.reserve(session, listing.id)

        with pytest.raises(ConflictError):
            with atomic_transaction(session_factory) as session:
                ListingService.reserve(session, listing.id)

    def test_release_restores_approved_listing(self, services, session_factory, approved_listing):
        listing = approved_listing()
        with atomic_transaction(session_factory) as session:
            ListingService.reserve(session, listing.id)

        with atomic_transaction(session_factory) as session:
            assert ListingService.release(session, listing.id) is True
        assert services.listings.get_listing(listing.id).is_available is True

    def test_release_is_noop_while_escrow_holds_listing(self, services, session_factory, buyer, fund,
                                                        approved_listing):
        fund(buyer.id, "500.00")
        listing = approved_listing()
        escrow_tx = services.escrow.create_transaction(buyer.id, listing.id)
        services.escrow.pay(escrow_tx.id, buyer.id)

        with atomic_transaction(session_factory) as session:
            assert ListingService.release(session, listing.id) is False
        assert services.listings.get_listing(listing.id).is_available is False
