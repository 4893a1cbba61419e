"""
Auto-Release Service

Completes delivered transactions whose acceptance window has passed without a
dispute, and reminds buyers once before their window closes. Every
transaction is handled in its own atomic unit, so one failure does not stop
the sweep and a re-run never double-pays.
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import sessionmaker

from config import Config
from models import EscrowStatus, EscrowTransaction
from services.escrow_service import EscrowService
from services.notification_service import NotificationService, NotificationType
from utils.datetime_helpers import get_naive_utc_now
from utils.exception_handler import EscrowPlatformError

logger = logging.getLogger(__name__)


class AutoReleaseService:
    def __init__(
        self,
        session_factory: sessionmaker,
        escrow_service: EscrowService,
        notifications: Optional[NotificationService] = None,
    ):
        self.session_factory = session_factory
        self.escrow_service = escrow_service
        self.notifications = notifications or escrow_service.notifications

    def find_overdue_deliveries(self, now: datetime) -> List[int]:
        with self.session_factory() as session:
            return list(
                session.execute(
                    select(EscrowTransaction.id)
                    .where(
                        EscrowTransaction.status == EscrowStatus.DELIVERED.value,
                        EscrowTransaction.acceptance_deadline.is_not(None),
                        EscrowTransaction.acceptance_deadline <= now,
                    )
                    .order_by(EscrowTransaction.acceptance_deadline)
                ).scalars()
            )

    def process_auto_release(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """Release every overdue delivered transaction; safe to run repeatedly"""
        now = now or get_naive_utc_now()
        stats = {"checked": 0, "released": 0, "skipped": 0, "failed": 0}

        for transaction_id in self.find_overdue_deliveries(now):
            stats["checked"] += 1
            try:
                released = self.escrow_service.auto_release(transaction_id, now=now)
            except EscrowPlatformError as e:
                # Lost a race with a buyer action; the next sweep re-evaluates
                logger.warning(f"⚠️ Auto-release skipped for tx={transaction_id}: {e.message}")
                stats["skipped"] += 1
                continue
            except Exception as e:
                logger.error(f"❌ Auto-release failed for tx={transaction_id}: {e}", exc_info=True)
                stats["failed"] += 1
                continue

            if released is None:
                stats["skipped"] += 1
            else:
                stats["released"] += 1

        if stats["checked"]:
            logger.info(
                f"⏰ AUTO_RELEASE_SWEEP: checked={stats['checked']} released={stats['released']} "
                f"skipped={stats['skipped']} failed={stats['failed']}"
            )
        return stats

    def send_acceptance_reminders(self, now: Optional[datetime] = None) -> int:
        """Warn buyers whose acceptance window closes within the reminder horizon"""
        now = now or get_naive_utc_now()
        horizon = now + timedelta(hours=Config.ACCEPTANCE_REMINDER_HOURS)

        with self.session_factory() as session:
            candidates = session.execute(
                select(EscrowTransaction).where(
                    EscrowTransaction.status == EscrowStatus.DELIVERED.value,
                    EscrowTransaction.reminder_sent.is_(False),
                    EscrowTransaction.acceptance_deadline > now,
                    EscrowTransaction.acceptance_deadline <= horizon,
                )
            ).scalars().all()

        sent = 0
        for escrow_tx in candidates:
            # Claim the reminder first so concurrent sweeps send it once
            with self.session_factory() as session:
                claimed = session.execute(
                    update(EscrowTransaction)
                    .where(
                        EscrowTransaction.id == escrow_tx.id,
                        EscrowTransaction.status == EscrowStatus.DELIVERED.value,
                        EscrowTransaction.reminder_sent.is_(False),
                    )
                    .values(reminder_sent=True)
                    .execution_options(synchronize_session=False)
                ).rowcount
                session.commit()
            if not claimed:
                continue

            remaining = escrow_tx.acceptance_deadline - now
            hours_left = max(1, int(remaining.total_seconds() // 3600))
            self.notifications.notify(
                escrow_tx.buyer_id,
                NotificationType.ACCEPTANCE_REMINDER,
                "Confirm your order",
                f"About {hours_left} hours left to confirm transaction #{escrow_tx.id} or open a dispute. "
                f"After that the funds are released to the seller automatically.",
                {"transaction_id": escrow_tx.id, "acceptance_deadline": escrow_tx.acceptance_deadline.isoformat()},
                related_id=escrow_tx.id,
            )
            sent += 1

        if sent:
            logger.info(f"🔔 Acceptance reminders sent: {sent}")
        return sent

    def run_full_check(self, now: Optional[datetime] = None) -> Dict[str, int]:
        now = now or get_naive_utc_now()
        reminders = self.send_acceptance_reminders(now)
        stats = self.process_auto_release(now)
        return {**stats, "reminders_sent": reminders}
