"""
Notification Service
Best-effort user notifications emitted after escrow state changes commit
"""

import logging
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import sessionmaker

from models import Notification
from utils.exception_handler import NotFoundError

logger = logging.getLogger(__name__)


class NotificationType:
    NEW_ORDER = "new_order"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    AUTO_RELEASED = "auto_released"
    ACCEPTANCE_REMINDER = "acceptance_reminder"
    DISPUTE_OPENED = "dispute_opened"
    DISPUTE_RESOLVED = "dispute_resolved"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"
    DEPOSIT_COMPLETED = "deposit_completed"
    WITHDRAWAL_COMPLETED = "withdrawal_completed"
    WITHDRAWAL_FAILED = "withdrawal_failed"
    KYC_UPDATE = "kyc_update"
    REVIEW_RECEIVED = "review_received"


class DatabaseNotificationSink:
    """Stores notifications as rows the client polls"""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def deliver(
        self,
        user_id: int,
        notification_type: str,
        title: str,
        message: str,
        payload: Optional[Dict[str, Any]] = None,
        related_id: Optional[int] = None,
    ) -> int:
        with self.session_factory() as session:
            notification = Notification(
                user_id=user_id,
                type=notification_type,
                title=title,
                message=message,
                payload=payload or {},
                related_id=related_id,
            )
            session.add(notification)
            session.commit()
            return notification.id


class NotificationService:
    """
    Fan-out to the configured sink.

    ``notify`` never raises: a failed notification is logged and dropped, it
    never undoes the money movement that triggered it.
    """

    def __init__(self, session_factory: sessionmaker, sink=None):
        self.session_factory = session_factory
        self.sink = sink or DatabaseNotificationSink(session_factory)

    @staticmethod
    def format_currency(amount, currency: str = "NGN") -> str:
        if isinstance(amount, Decimal):
            amount = float(amount)
        if currency == "NGN":
            return f"₦{amount:,.2f}"
        if currency == "USD":
            return f"${amount:,.2f}"
        return f"{amount:,.2f} {currency}"

    def notify(
        self,
        user_id: int,
        notification_type: str,
        title: str,
        message: str,
        payload: Optional[Dict[str, Any]] = None,
        related_id: Optional[int] = None,
    ) -> bool:
        try:
            self.sink.deliver(user_id, notification_type, title, message, payload, related_id)
            logger.debug(f"🔔 Notification '{notification_type}' sent to user {user_id}")
            return True
        except Exception as e:
            logger.error(f"❌ Failed to send '{notification_type}' notification to user {user_id}: {e}")
            return False

    def notify_many(self, user_ids: Iterable[int], notification_type: str, title: str, message: str,
                    payload: Optional[Dict[str, Any]] = None, related_id: Optional[int] = None) -> int:
        return sum(
            1 for user_id in user_ids
            if self.notify(user_id, notification_type, title, message, payload, related_id)
        )

    def list_notifications(self, user_id: int, unread_only: bool = False, limit: int = 50) -> List[Notification]:
        stmt = select(Notification).where(Notification.user_id == user_id)
        if unread_only:
            stmt = stmt.where(Notification.is_read.is_(False))
        with self.session_factory() as session:
            return list(
                session.execute(stmt.order_by(Notification.id.desc()).limit(limit)).scalars()
            )

    def mark_read(self, user_id: int, notification_id: int) -> None:
        with self.session_factory() as session:
            result = session.execute(
                update(Notification)
                .where(Notification.id == notification_id, Notification.user_id == user_id)
                .values(is_read=True)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise NotFoundError(f"Notification {notification_id} not found")
            session.commit()
