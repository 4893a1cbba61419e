"""Identity-verification results pushed by the KYC provider"""

import logging
from typing import Optional

from sqlalchemy.orm import sessionmaker

from models import KycStatus, User
from services.notification_service import NotificationService, NotificationType
from utils.atomic_transactions import atomic_transaction
from utils.datetime_helpers import get_naive_utc_now
from utils.exception_handler import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

# Provider vocabulary -> stored status
PROVIDER_STATUS_MAP = {
    "verified": KycStatus.VERIFIED,
    "approved": KycStatus.VERIFIED,
    "pending": KycStatus.PENDING,
    "processing": KycStatus.PENDING,
    "failed": KycStatus.REJECTED,
    "rejected": KycStatus.REJECTED,
}


class KycService:
    def __init__(self, session_factory: sessionmaker, notifications: Optional[NotificationService] = None):
        self.session_factory = session_factory
        self.notifications = notifications or NotificationService(session_factory)

    def on_verification_result(self, user_id: int, status: str) -> str:
        """Apply a provider verdict; returns the stored status"""
        mapped = PROVIDER_STATUS_MAP.get((status or "").strip().lower())
        if mapped is None:
            raise ValidationError(f"Unknown verification status '{status}'", details={"field": "status"})

        with atomic_transaction(self.session_factory) as session:
            user = session.get(User, user_id)
            if user is None:
                raise NotFoundError(f"User {user_id} not found")
            if user.kyc_status == KycStatus.VERIFIED.value and mapped != KycStatus.VERIFIED:
                # A verified identity is not downgraded by a late or replayed callback
                logger.warning(f"⚠️ KYC: ignoring '{status}' for already verified user {user_id}")
                return user.kyc_status
            previous = user.kyc_status
            user.kyc_status = mapped.value
            if mapped == KycStatus.VERIFIED:
                user.kyc_verified_at = get_naive_utc_now()

        logger.info(f"🪪 KYC_UPDATE: user={user_id} {previous} -> {mapped.value}")
        if previous != mapped.value:
            messages = {
                KycStatus.VERIFIED: "Your identity has been verified.",
                KycStatus.PENDING: "Your identity verification is being processed.",
                KycStatus.REJECTED: "Your identity verification was not successful. Please try again.",
            }
            self.notifications.notify(
                user_id,
                NotificationType.KYC_UPDATE,
                "Verification update",
                messages[mapped],
                {"kyc_status": mapped.value},
            )
        return mapped.value
