"""User registration and role lookups"""

import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from models import User, UserRole
from services.ledger_service import LedgerService
from utils.atomic_transactions import atomic_transaction
from utils.exception_handler import ForbiddenError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)


class UserService:
    """Signup creates the user together with their wallet"""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def register_user(
        self,
        email: str,
        username: Optional[str] = None,
        display_name: Optional[str] = None,
        role: str = UserRole.USER.value,
    ) -> User:
        email = (email or "").strip().lower()
        if "@" not in email:
            raise ValidationError("A valid email address is required", details={"field": "email"})
        try:
            role_value = UserRole(role).value
        except ValueError:
            raise ValidationError(f"Unknown role '{role}'", details={"field": "role"})

        with atomic_transaction(self.session_factory) as session:
            taken = session.execute(select(User.id).where(User.email == email)).first()
            if taken is not None:
                raise ValidationError("Email is already registered", details={"field": "email"})

            user = User(email=email, username=username, display_name=display_name, role=role_value)
            session.add(user)
            session.flush()
            LedgerService.get_or_create_wallet(session, user.id)

        logger.info(f"👤 Registered user {user.id} ({role_value})")
        return user

    def get_user(self, user_id: int) -> User:
        with self.session_factory() as session:
            user = session.get(User, user_id)
            if user is None:
                raise NotFoundError(f"User {user_id} not found")
            return user

    @staticmethod
    def require_resolver(session: Session, user_id: int) -> User:
        """Moderators and admins are the authorized dispute resolvers"""
        user = session.get(User, user_id)
        if user is None or not user.is_resolver:
            logger.warning(f"🚫 User {user_id} attempted a resolver-only action")
            raise ForbiddenError("Only moderators or admins can perform this action")
        return user

    @staticmethod
    def resolver_ids(session: Session) -> List[int]:
        return list(
            session.execute(
                select(User.id).where(User.role.in_([UserRole.MODERATOR.value, UserRole.ADMIN.value]))
            ).scalars()
        )
