"""
Auto-Release Service Tests
Overdue deliveries complete exactly once; buyers get one reminder
"""

from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import update

from models import EscrowStatus, EscrowTransaction, Notification
from utils.atomic_transactions import atomic_transaction
from utils.datetime_helpers import get_naive_utc_now


@pytest.mark.escrow
@pytest.mark.integration
class TestAutoRelease:
    def test_sweep_releases_overdue_delivery(self, services, buyer, seller, balance_of, platform_balance,
                                             delivered_transaction, expire_acceptance_window):
        escrow_tx = delivered_transaction()
        expire_acceptance_window(escrow_tx.id)

        stats = services.auto_release.process_auto_release()

        assert stats == {"checked": 1, "released": 1, "skipped": 0, "failed": 0}
        released = services.escrow.get_transaction(escrow_tx.id, seller.id)
        assert released.status == EscrowStatus.COMPLETED.value
        assert released.auto_released is True
        assert balance_of(seller.id) == Decimal("285.00")
        assert platform_balance() == Decimal("15.00")

    def test_sweep_matches_manual_accept(self, services, buyer, seller, balance_of, platform_balance,
                                         delivered_transaction):
        escrow_tx = delivered_transaction()

        services.auto_release.process_auto_release(now=escrow_tx.acceptance_deadline + timedelta(minutes=1))

        assert balance_of(buyer.id) == Decimal("200.00")
        assert balance_of(seller.id) == Decimal("285.00")
        assert platform_balance() == Decimal("15.00")

    def test_sweep_is_idempotent(self, services, seller, balance_of, delivered_transaction,
                                 expire_acceptance_window):
        escrow_tx = delivered_transaction()
        expire_acceptance_window(escrow_tx.id)

        services.auto_release.process_auto_release()
        second = services.auto_release.process_auto_release()

        assert second["released"] == 0
        assert balance_of(seller.id) == Decimal("285.00")

    def test_auto_release_direct_call_twice_pays_once(self, services, seller, balance_of,
                                                      delivered_transaction, expire_acceptance_window):
        escrow_tx = delivered_transaction()
        expire_acceptance_window(escrow_tx.id)

        assert services.escrow.auto_release(escrow_tx.id) is not None
        assert services.escrow.auto_release(escrow_tx.id) is None
        assert balance_of(seller.id) == Decimal("285.00")

    def test_deadline_not_reached_is_left_alone(self, services, seller, balance_of, delivered_transaction):
        escrow_tx = delivered_transaction()

        stats = services.auto_release.process_auto_release()

        assert stats["checked"] == 0
        assert services.escrow.get_transaction(escrow_tx.id, seller.id).status == EscrowStatus.DELIVERED.value
        assert balance_of(seller.id) == Decimal("0.00")

    def test_disputed_transaction_is_never_released(self, services, buyer, seller, balance_of,
                                                    delivered_transaction, expire_acceptance_window):
        escrow_tx = delivered_transaction()
        services.disputes.open_dispute(escrow_tx.id, buyer.id, "Wrong account", "Login fails")
        expire_acceptance_window(escrow_tx.id)

        stats = services.auto_release.process_auto_release()

        assert stats["released"] == 0
        assert services.escrow.get_transaction(escrow_tx.id, seller.id).status == EscrowStatus.DISPUTED.value
        assert balance_of(seller.id) == Decimal("0.00")

    def test_one_failure_does_not_stop_the_sweep(self, services, seller, balance_of, delivered_transaction,
                                                 expire_acceptance_window, monkeypatch):
        escrow_tx = delivered_transaction()
        expire_acceptance_window(escrow_tx.id)

        original = services.escrow.auto_release
        calls = []

        def flaky(transaction_id, now=None):
            calls.append(transaction_id)
            if len(calls) == 1:
                raise RuntimeError("database hiccup")
            return original(transaction_id, now=now)

        monkeypatch.setattr(services.escrow, "auto_release", flaky)
        first = services.auto_release.process_auto_release()
        second = services.auto_release.process_auto_release()

        assert first["failed"] == 1
        assert second["released"] == 1
        assert balance_of(seller.id) == Decimal("285.00")


@pytest.mark.escrow
@pytest.mark.integration
class TestAcceptanceReminders:
    def test_reminder_sent_once_inside_horizon(self, services, session_factory, buyer, delivered_transaction):
        escrow_tx = delivered_transaction()
        soon = get_naive_utc_now() + timedelta(hours=2)
        with atomic_transaction(session_factory) as session:
            session.execute(
                update(EscrowTransaction)
                .where(EscrowTransaction.id == escrow_tx.id)
                .values(acceptance_deadline=soon)
            )

        assert services.auto_release.send_acceptance_reminders() == 1
        assert services.auto_release.send_acceptance_reminders() == 0

        with session_factory() as session:
            reminders = session.query(Notification).filter(
                Notification.user_id == buyer.id, Notification.type == "acceptance_reminder"
            ).count()
            version = session.get(EscrowTransaction, escrow_tx.id).version
        assert reminders == 1
        assert version == escrow_tx.version

    def test_no_reminder_far_from_deadline(self, services, delivered_transaction):
        delivered_transaction()
        assert services.auto_release.send_acceptance_reminders() == 0

    def test_full_check_reports_both(self, services, delivered_transaction, expire_acceptance_window):
        escrow_tx = delivered_transaction()
        expire_acceptance_window(escrow_tx.id)

        stats = services.auto_release.run_full_check()

        assert stats["released"] == 1
        assert stats["reminders_sent"] == 0
