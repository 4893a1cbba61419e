"""
Service wiring and request-scoped dependencies for the FastAPI routers
"""

import logging
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.orm import sessionmaker

from models import User
from services.auto_release_service import AutoReleaseService
from services.balance_audit_service import BalanceAuditService
from services.dispute_resolution import DisputeResolutionService
from services.escrow_service import EscrowService
from services.kyc_service import KycService
from services.ledger_service import LedgerService
from services.listing_service import ListingService
from services.messaging_service import MessagingService
from services.notification_service import NotificationService
from services.paystack_service import PaystackService
from services.review_service import ReviewService
from services.user_service import UserService
from services.wallet_funding_service import WalletFundingService
from utils.atomic_transactions import atomic_transaction
from utils.exception_handler import NotFoundError

logger = logging.getLogger(__name__)


class ServiceContainer:
    """One instance per process, built around the pooled session factory"""

    def __init__(
        self,
        session_factory: sessionmaker,
        paystack: Optional[PaystackService] = None,
        notification_sink=None,
    ):
        self.session_factory = session_factory
        self.notifications = NotificationService(session_factory, notification_sink)
        self.messaging = MessagingService(session_factory)
        self.users = UserService(session_factory)
        self.listings = ListingService(session_factory)
        self.escrow = EscrowService(session_factory, self.notifications, self.messaging)
        self.disputes = DisputeResolutionService(session_factory, self.escrow, self.notifications, self.messaging)
        self.auto_release = AutoReleaseService(session_factory, self.escrow, self.notifications)
        self.balance_audit = BalanceAuditService(session_factory)
        self.paystack = paystack or PaystackService()
        self.funding = WalletFundingService(session_factory, self.paystack, self.notifications)
        self.kyc = KycService(session_factory, self.notifications)
        self.reviews = ReviewService(session_factory, self.notifications)

    def bootstrap(self) -> None:
        """Ensure the platform fee wallet exists"""
        with atomic_transaction(self.session_factory) as session:
            wallet = LedgerService.get_platform_wallet(session)
        logger.info(f"🏦 Platform wallet ready: id={wallet.id} ({wallet.currency})")


def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services


def get_current_user(
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
    services: ServiceContainer = Depends(get_services),
) -> User:
    """Caller identity as asserted by the authenticating gateway"""
    if not x_user_id or not x_user_id.strip().isdigit():
        raise HTTPException(status_code=401, detail="Missing or invalid X-User-Id header")
    try:
        return services.users.get_user(int(x_user_id))
    except NotFoundError:
        logger.warning(f"🚨 Request with unknown user id {x_user_id}")
        raise HTTPException(status_code=401, detail="Unknown user")
