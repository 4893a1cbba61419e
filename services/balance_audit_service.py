"""
Balance Audit Service - reconciles every wallet balance against its ledger

The ledger is append-only and every balance change writes exactly one entry,
so a wallet whose balance differs from the sum of its entries indicates a
write that bypassed the ledger. Mismatches are reported, never auto-corrected.
"""

import logging
from dataclasses import dataclass, asdict
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import sessionmaker

from models import LedgerEntry, Wallet
from utils.decimal_precision import MonetaryDecimal

logger = logging.getLogger(__name__)


@dataclass
class WalletDiscrepancy:
    wallet_id: int
    user_id: Optional[int]
    wallet_type: str
    currency: str
    balance: Decimal
    ledger_total: Decimal

    @property
    def difference(self) -> Decimal:
        return self.balance - self.ledger_total


class BalanceAuditService:
    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def audit_all_wallets(self) -> Dict[str, Any]:
        """Compare every wallet with its ledger in a single grouped query"""
        ledger_totals = (
            select(LedgerEntry.wallet_id, func.sum(LedgerEntry.amount).label("total"))
            .group_by(LedgerEntry.wallet_id)
            .subquery()
        )
        stmt = select(
            Wallet.id, Wallet.user_id, Wallet.wallet_type, Wallet.currency, Wallet.balance, ledger_totals.c.total
        ).outerjoin(ledger_totals, ledger_totals.c.wallet_id == Wallet.id)

        discrepancies: List[WalletDiscrepancy] = []
        checked = 0
        with self.session_factory() as session:
            for wallet_id, user_id, wallet_type, currency, balance, total in session.execute(stmt):
                checked += 1
                balance = MonetaryDecimal.quantize(balance)
                ledger_total = MonetaryDecimal.quantize(total if total is not None else 0)
                if balance != ledger_total:
                    discrepancies.append(
                        WalletDiscrepancy(wallet_id, user_id, wallet_type, currency, balance, ledger_total)
                    )

        for item in discrepancies:
            logger.error(
                f"🚨 BALANCE_MISMATCH: wallet={item.wallet_id} user={item.user_id} ({item.wallet_type}) "
                f"balance={item.balance} ledger={item.ledger_total} diff={item.difference}"
            )
        if discrepancies:
            logger.error(f"🚨 Balance audit found {len(discrepancies)} mismatched wallets out of {checked}")
        else:
            logger.info(f"✅ Balance audit passed: {checked} wallets reconcile with the ledger")

        return {
            "wallets_checked": checked,
            "mismatches": [
                {**asdict(item), "difference": item.difference} for item in discrepancies
            ],
        }
