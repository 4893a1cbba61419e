"""
Shared fixtures for the escrow marketplace test suite

Every test gets a fresh in-memory SQLite database, a service container wired
to it and a Paystack client whose network calls are replaced with AsyncMocks.
"""

import logging
from datetime import timedelta
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import update

from database import build_session_factory, create_db_engine, create_tables
from handlers.dependencies import ServiceContainer
from models import EscrowTransaction, LedgerReason, UserRole
from services.ledger_service import LedgerService
from services.paystack_service import PaystackService
from utils.atomic_transactions import atomic_transaction
from utils.datetime_helpers import get_naive_utc_now

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)


def pytest_configure(config):
    """Configure pytest with custom marks"""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "escrow: Escrow system tests")
    config.addinivalue_line("markers", "security: Security and signature tests")
    config.addinivalue_line("markers", "wallet: Wallet and funding tests")
    config.addinivalue_line("markers", "api: HTTP endpoint tests")


@pytest.fixture
def engine():
    engine = create_db_engine("sqlite://")
    create_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def paystack():
    """Paystack client with every network call mocked"""
    provider = PaystackService(secret_key="sk_test_escrow")
    provider.initialize_transaction = AsyncMock(
        return_value={
            "authorization_url": "https://checkout.paystack.com/test_access",
            "access_code": "test_access",
        }
    )
    provider.create_transfer_recipient = AsyncMock(return_value="RCP_test123")
    provider.initiate_transfer = AsyncMock(return_value={"transfer_code": "TRF_test123", "status": "pending"})
    provider.verify_transaction = AsyncMock(
        return_value={
            "status": "success",
            "amount": 100000,
            "currency": "NGN",
            "paid_at": "2024-05-01T10:00:00.000Z",
            "channel": "card",
        }
    )
    provider.list_banks = AsyncMock(return_value=[{"name": "Access Bank", "code": "044"}])
    provider.resolve_account = AsyncMock(
        return_value={"account_name": "ADA OBI", "account_number": "0123456789"}
    )
    return provider


@pytest.fixture
def services(session_factory, paystack):
    container = ServiceContainer(session_factory, paystack=paystack)
    container.bootstrap()
    return container


@pytest.fixture
def buyer(services):
    return services.users.register_user("buyer@example.com", username="buyer")


@pytest.fixture
def seller(services):
    return services.users.register_user("seller@example.com", username="seller")


@pytest.fixture
def moderator(services):
    return services.users.register_user("mod@example.com", username="mod", role=UserRole.MODERATOR.value)


@pytest.fixture
def fund(session_factory):
    """Seed a user's wallet through the ledger"""

    def _fund(user_id, amount):
        with atomic_transaction(session_factory) as session:
            wallet = LedgerService.get_or_create_wallet(session, user_id)
            LedgerService.credit(
                session, wallet.id, Decimal(str(amount)), LedgerReason.DEPOSIT,
                external_reference=f"seed_{user_id}", description="Test funding",
            )

    return _fund


@pytest.fixture
def balance_of(session_factory):
    def _balance(user_id):
        with session_factory() as session:
            wallet = LedgerService.get_wallet(session, user_id)
            return LedgerService.get_balance(session, wallet.id)

    return _balance


@pytest.fixture
def platform_balance(session_factory):
    def _balance():
        with session_factory() as session:
            return LedgerService.get_balance(session, LedgerService.get_platform_wallet(session).id)

    return _balance


@pytest.fixture
def approved_listing(services, seller, moderator):
    """Create, submit and approve a listing for the default seller"""

    def _make(price="300.00", title="Mythic rank account", game="Mobile Legends"):
        listing = services.listings.create_listing(seller.id, title, Decimal(price), game=game)
        services.listings.submit_for_review(listing.id, seller.id)
        return services.listings.moderate(listing.id, moderator.id, approve=True)

    return _make


@pytest.fixture
def delivered_transaction(services, buyer, seller, fund, approved_listing):
    """A paid and delivered 300 NGN transaction"""

    def _make(price="300.00"):
        fund(buyer.id, "500.00")
        listing = approved_listing(price)
        escrow_tx = services.escrow.create_transaction(buyer.id, listing.id)
        services.escrow.pay(escrow_tx.id, buyer.id)
        return services.escrow.mark_delivered(escrow_tx.id, seller.id)

    return _make


@pytest.fixture
def expire_acceptance_window(session_factory):
    """Move a transaction's acceptance deadline into the past"""

    def _expire(transaction_id, hours_ago=1):
        past = get_naive_utc_now() - timedelta(hours=hours_ago)
        with atomic_transaction(session_factory) as session:
            session.execute(
                update(EscrowTransaction)
                .where(EscrowTransaction.id == transaction_id)
                .values(acceptance_deadline=past)
            )
        return past

    return _expire
