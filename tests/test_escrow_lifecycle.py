"""
Escrow Lifecycle Tests
End-to-end buyer/seller flows over the ledger, listing gate and state machine
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

import pytest
from sqlalchemy import event

from database import build_session_factory, create_db_engine, create_tables
from handlers.dependencies import ServiceContainer
from models import EscrowMessage, EscrowStatus, LedgerReason, Listing, ListingStatus, Notification, UserRole
from services.ledger_service import LedgerService
from utils.atomic_transactions import atomic_transaction
from utils.exception_handler import (
    ConflictError,
    ForbiddenError,
    InsufficientBalanceError,
    InvalidTransitionError,
)


@pytest.mark.escrow
@pytest.mark.integration
class TestEscrowLifecycle:
    def test_pay_holds_funds_and_reserves_listing(self, services, buyer, fund, balance_of, approved_listing):
        fund(buyer.id, "500.00")
        listing = approved_listing("300.00")
        escrow_tx = services.escrow.create_transaction(buyer.id, listing.id)

        assert escrow_tx.status == EscrowStatus.PENDING.value
        assert escrow_tx.platform_fee == Decimal("15.00")
        assert escrow_tx.seller_payout == Decimal("285.00")

        paid = services.escrow.pay(escrow_tx.id, buyer.id)

        assert paid.status == EscrowStatus.ESCROW_HELD.value
        assert paid.version == 2
        assert paid.escrow_held_at is not None
        assert balance_of(buyer.id) == Decimal("200.00")
        assert services.listings.get_listing(listing.id).is_available is False

    def test_accept_releases_payout_and_fee(
        self, services, buyer, seller, balance_of, platform_balance, delivered_transaction
    ):
        escrow_tx = delivered_transaction()
        assert escrow_tx.status == EscrowStatus.DELIVERED.value
        assert escrow_tx.acceptance_deadline is not None

        completed = services.escrow.accept(escrow_tx.id, buyer.id)

        assert completed.status == EscrowStatus.COMPLETED.value
        assert completed.auto_released is False
        assert balance_of(seller.id) == Decimal("285.00")
        assert platform_balance() == Decimal("15.00")
        assert balance_of(buyer.id) == Decimal("200.00")
        assert services.listings.get_listing(escrow_tx.listing_id).status == ListingStatus.SOLD.value

    def test_insufficient_balance_changes_nothing(self, services, buyer, fund, balance_of, approved_listing):
        fund(buyer.id, "100.00")
        listing = approved_listing("300.00")
        escrow_tx = services.escrow.create_transaction(buyer.id, listing.id)

        with pytest.raises(InsufficientBalanceError):
            services.escrow.pay(escrow_tx.id, buyer.id)

        reloaded = services.escrow.get_transaction(escrow_tx.id, buyer.id)
        assert reloaded.status == EscrowStatus.PENDING.value
        assert reloaded.version == 1
        assert balance_of(buyer.id) == Decimal("100.00")
        assert services.listings.get_listing(listing.id).is_available is True

    def test_accept_after_dispute_is_rejected(self, services, buyer, delivered_transaction):
        escrow_tx = delivered_transaction()
        services.disputes.open_dispute(escrow_tx.id, buyer.id, "Wrong account", "Login details do not work")

        with pytest.raises(InvalidTransitionError):
            services.escrow.accept(escrow_tx.id, buyer.id)

    def test_only_seller_marks_delivered(self, services, buyer, fund, approved_listing):
        fund(buyer.id, "500.00")
        listing = approved_listing()
        escrow_tx = services.escrow.create_transaction(buyer.id, listing.id)
        services.escrow.pay(escrow_tx.id, buyer.id)

        with pytest.raises(ForbiddenError):
            services.escrow.mark_delivered(escrow_tx.id, buyer.id)

    def test_deliver_before_payment_is_invalid(self, services, buyer, seller, approved_listing):
        listing = approved_listing()
        escrow_tx = services.escrow.create_transaction(buyer.id, listing.id)

        with pytest.raises(InvalidTransitionError):
            services.escrow.mark_delivered(escrow_tx.id, seller.id)

    def test_accept_on_pending_changes_nothing(self, services, buyer, fund, balance_of, approved_listing):
        fund(buyer.id, "500.00")
        escrow_tx = services.escrow.create_transaction(buyer.id, approved_listing().id)

        with pytest.raises(InvalidTransitionError):
            services.escrow.accept(escrow_tx.id, buyer.id)

        assert balance_of(buyer.id) == Decimal("500.00")
        assert services.escrow.get_transaction(escrow_tx.id, buyer.id).status == EscrowStatus.PENDING.value

    def test_cancel_pending_moves_no_money(self, services, buyer, fund, balance_of, approved_listing):
        fund(buyer.id, "500.00")
        listing = approved_listing()
        escrow_tx = services.escrow.create_transaction(buyer.id, listing.id)

        cancelled = services.escrow.cancel(escrow_tx.id, buyer.id, reason="Changed my mind")

        assert cancelled.status == EscrowStatus.CANCELLED.value
        assert cancelled.cancelled_by == buyer.id
        assert balance_of(buyer.id) == Decimal("500.00")
        assert services.listings.get_listing(listing.id).is_available is True

    def test_cannot_cancel_after_payment(self, services, buyer, fund, approved_listing):
        fund(buyer.id, "500.00")
        listing = approved_listing()
        escrow_tx = services.escrow.create_transaction(buyer.id, listing.id)
        services.escrow.pay(escrow_tx.id, buyer.id)

        with pytest.raises(InvalidTransitionError):
            services.escrow.cancel(escrow_tx.id, buyer.id)

    def test_seller_cannot_buy_own_listing(self, services, seller, approved_listing):
        listing = approved_listing()
        with pytest.raises(ForbiddenError):
            services.escrow.create_transaction(seller.id, listing.id)

    def test_unapproved_listing_cannot_be_bought(self, services, buyer, seller):
        draft = services.listings.create_listing(seller.id, "Draft account", Decimal("300.00"))
        with pytest.raises(InvalidTransitionError):
            services.escrow.create_transaction(buyer.id, draft.id)

    def test_fee_snapshot_survives_listing_price_change(self, services, buyer, seller, approved_listing):
        listing = approved_listing("300.00")
        escrow_tx = services.escrow.create_transaction(buyer.id, listing.id)

        services.listings.update_listing(listing.id, seller.id, price=Decimal("400.00"))

        reloaded = services.escrow.get_transaction(escrow_tx.id, buyer.id)
        assert reloaded.amount == Decimal("300.00")
        assert reloaded.platform_fee == Decimal("15.00")

    def test_outsider_cannot_view_transaction(self, services, buyer, approved_listing):
        outsider = services.users.register_user("outsider@example.com")
        listing = approved_listing()
        escrow_tx = services.escrow.create_transaction(buyer.id, listing.id)

        with pytest.raises(ForbiddenError):
            services.escrow.get_transaction(escrow_tx.id, outsider.id)

    def test_list_transactions_by_role(self, services, buyer, seller, approved_listing):
        listing = approved_listing()
        escrow_tx = services.escrow.create_transaction(buyer.id, listing.id)

        assert [tx.id for tx in services.escrow.list_transactions(buyer.id, role="buyer")] == [escrow_tx.id]
        assert services.escrow.list_transactions(buyer.id, role="seller") == []
        assert [tx.id for tx in services.escrow.list_transactions(seller.id, status="pending")] == [escrow_tx.id]

    def test_state_changes_post_notifications_and_timeline(
        self, services, session_factory, buyer, seller, delivered_transaction
    ):
        escrow_tx = delivered_transaction()

        with session_factory() as session:
            kinds = {n.type for n in session.query(Notification).filter(Notification.related_id == escrow_tx.id)}
            timeline = [
                m.content
                for m in session.query(EscrowMessage)
                .filter(EscrowMessage.escrow_transaction_id == escrow_tx.id)
                .order_by(EscrowMessage.id)
            ]

        assert {"new_order", "delivered"} <= kinds
        assert any("Buyer has 48 hours to confirm or dispute" in text for text in timeline)

    def test_ledger_matches_balances_after_full_cycle(
        self, services, session_factory, buyer, seller, delivered_transaction
    ):
        escrow_tx = delivered_transaction()
        services.escrow.accept(escrow_tx.id, buyer.id)

        with session_factory() as session:
            for user_id in (buyer.id, seller.id):
                wallet = LedgerService.get_wallet(session, user_id)
                assert LedgerService.get_balance(session, wallet.id) == LedgerService.reconcile(session, wallet.id)


@pytest.mark.escrow
@pytest.mark.integration
class TestEscrowConcurrency:
    def test_second_buyer_loses_listing_and_is_not_charged(
        self, services, session_factory, buyer, fund, balance_of, approved_listing
    ):
        rival = services.users.register_user("rival@example.com", username="rival")
        fund(buyer.id, "500.00")
        fund(rival.id, "500.00")
        listing = approved_listing()

        first = services.escrow.create_transaction(buyer.id, listing.id)
        second = services.escrow.create_transaction(rival.id, listing.id)

        services.escrow.pay(first.id, buyer.id)
        with pytest.raises(ConflictError):
            services.escrow.pay(second.id, rival.id)

        assert balance_of(buyer.id) == Decimal("200.00")
        assert balance_of(rival.id) == Decimal("500.00")
        assert services.escrow.get_transaction(second.id, rival.id).status == EscrowStatus.PENDING.value
        with session_factory() as session:
            assert session.get(Listing, listing.id).is_available is False

    def test_stale_version_is_a_conflict(self, services, buyer, seller, fund, approved_listing):
        fund(buyer.id, "500.00")
        listing = approved_listing()
        escrow_tx = services.escrow.create_transaction(buyer.id, listing.id)
        paid = services.escrow.pay(escrow_tx.id, buyer.id, expected_version=1)

        with pytest.raises(ConflictError):
            services.escrow.mark_delivered(paid.id, seller.id, expected_version=1)

        delivered = services.escrow.mark_delivered(paid.id, seller.id, expected_version=paid.version)
        assert delivered.version == 3

    def test_repeated_accept_pays_once(self, services, session_factory, buyer, seller, balance_of,
                                       delivered_transaction):
        escrow_tx = delivered_transaction()
        services.escrow.accept(escrow_tx.id, buyer.id)

        with pytest.raises(InvalidTransitionError):
            services.escrow.accept(escrow_tx.id, buyer.id)

        assert balance_of(seller.id) == Decimal("285.00")
        with session_factory() as session:
            assert LedgerService.has_entry(session, escrow_tx.id, LedgerReason.ESCROW_RELEASE)
            assert not LedgerService.has_entry(session, escrow_tx.id, LedgerReason.REFUND)


@pytest.fixture
def file_backed_services(tmp_path, paystack):
    """Services over a SQLite file shared by several threads"""
    engine = create_db_engine(f"sqlite:///{tmp_path / 'escrow.db'}")

    # Writers queue on the database lock instead of failing with SQLITE_BUSY
    @event.listens_for(engine, "connect")
    def _driver_transactions_off(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(connection):
        connection.exec_driver_sql("BEGIN IMMEDIATE")

    create_tables(engine)
    container = ServiceContainer(build_session_factory(engine), paystack=paystack)
    container.bootstrap()
    yield container
    engine.dispose()


@pytest.mark.escrow
@pytest.mark.integration
class TestSimultaneousPay:
    def test_exactly_one_of_two_simultaneous_buyers_wins(self, file_backed_services):
        services = file_backed_services
        seller = services.users.register_user("seller@example.com", username="seller")
        moderator = services.users.register_user("mod@example.com", username="mod", role=UserRole.MODERATOR.value)
        buyers = [
            services.users.register_user(f"buyer{n}@example.com", username=f"buyer{n}") for n in range(2)
        ]
        with atomic_transaction(services.session_factory) as session:
            for buyer in buyers:
                wallet = LedgerService.get_or_create_wallet(session, buyer.id)
                LedgerService.credit(
                    session, wallet.id, Decimal("500.00"), LedgerReason.DEPOSIT,
                    external_reference=f"seed_{buyer.id}", description="Test funding",
                )

        listing = services.listings.create_listing(seller.id, "Mythic rank account", Decimal("300.00"))
        services.listings.submit_for_review(listing.id, seller.id)
        services.listings.moderate(listing.id, moderator.id, approve=True)
        transactions = {buyer.id: services.escrow.create_transaction(buyer.id, listing.id) for buyer in buyers}

        start = threading.Barrier(len(buyers))

        def attempt(buyer_id):
            start.wait(timeout=10)
            try:
                services.escrow.pay(transactions[buyer_id].id, buyer_id)
                return "paid"
            except ConflictError:
                return "conflict"

        with ThreadPoolExecutor(max_workers=len(buyers)) as pool:
            futures = {buyer.id: pool.submit(attempt, buyer.id) for buyer in buyers}
            outcomes = {buyer_id: future.result(timeout=30) for buyer_id, future in futures.items()}

        assert sorted(outcomes.values()) == ["conflict", "paid"]
        winner = next(buyer_id for buyer_id, outcome in outcomes.items() if outcome == "paid")
        loser = next(buyer_id for buyer_id, outcome in outcomes.items() if outcome == "conflict")

        with services.session_factory() as session:
            def balance(user_id):
                return LedgerService.get_balance(session, LedgerService.get_wallet(session, user_id).id)

            assert balance(winner) == Decimal("200.00")
            assert balance(loser) == Decimal("500.00")
            assert session.get(Listing, listing.id).is_available is False
        assert services.escrow.get_transaction(transactions[winner].id, winner).status == EscrowStatus.ESCROW_HELD.value
        assert services.escrow.get_transaction(transactions[loser].id, loser).status == EscrowStatus.PENDING.value
