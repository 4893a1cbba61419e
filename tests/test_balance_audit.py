"""
Balance Audit Tests
"""

from decimal import Decimal

import pytest
from sqlalchemy import update

from models import Wallet
from utils.atomic_transactions import atomic_transaction


@pytest.mark.wallet
@pytest.mark.integration
class TestBalanceAudit:
    def test_clean_ledger_has_no_mismatches(self, services, buyer, delivered_transaction):
        escrow_tx = delivered_transaction()
        services.escrow.accept(escrow_tx.id, buyer.id)

        report = services.balance_audit.audit_all_wallets()

        # buyer, seller, moderator and the platform wallet
        assert report["wallets_checked"] == 4
        assert report["mismatches"] == []

    def test_write_bypassing_ledger_is_reported(self, services, session_factory, buyer, fund):
        fund(buyer.id, "500.00")
        with atomic_transaction(session_factory) as session:
            session.execute(
                update(Wallet).where(Wallet.user_id == buyer.id).values(balance=Wallet.balance + Decimal("25"))
            )

        report = services.balance_audit.audit_all_wallets()

        assert len(report["mismatches"]) == 1
        mismatch = report["mismatches"][0]
        assert mismatch["user_id"] == buyer.id
        assert mismatch["balance"] == Decimal("525.00")
        assert mismatch["ledger_total"] == Decimal("500.00")
        assert mismatch["difference"] == Decimal("25.00")
