"""Per-transaction chat between buyer and seller, plus system timeline messages"""

import logging
from typing import List

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from models import EscrowMessage, EscrowTransaction, User
from utils.atomic_transactions import atomic_transaction
from utils.exception_handler import ForbiddenError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 4000


class MessagingService:
    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    @staticmethod
    def _load_for_user(session, transaction_id: int, user_id: int, allow_resolver: bool) -> EscrowTransaction:
        escrow_tx = session.get(EscrowTransaction, transaction_id)
        if escrow_tx is None:
            raise NotFoundError(f"Transaction {transaction_id} not found")
        if escrow_tx.is_party(user_id):
            return escrow_tx
        if allow_resolver:
            user = session.get(User, user_id)
            if user is not None and user.is_resolver:
                return escrow_tx
        raise ForbiddenError("Only the buyer and seller can access this conversation")

    def post_message(self, transaction_id: int, sender_id: int, content: str) -> EscrowMessage:
        content = (content or "").strip()
        if not content:
            raise ValidationError("Message cannot be empty", details={"field": "content"})
        if len(content) > MAX_MESSAGE_LENGTH:
            raise ValidationError(f"Message exceeds {MAX_MESSAGE_LENGTH} characters", details={"field": "content"})

        with atomic_transaction(self.session_factory) as session:
            self._load_for_user(session, transaction_id, sender_id, allow_resolver=False)
            message = EscrowMessage(
                escrow_transaction_id=transaction_id,
                sender_id=sender_id,
                content=content,
                is_system_message=False,
                read_by=[sender_id],
            )
            session.add(message)
            session.flush()

        logger.info(f"💬 Message {message.id} posted on transaction {transaction_id} by user {sender_id}")
        return message

    def post_system_message(self, transaction_id: int, content: str) -> bool:
        """Timeline entry; failures are logged, never raised"""
        try:
            with atomic_transaction(self.session_factory) as session:
                session.add(
                    EscrowMessage(
                        escrow_transaction_id=transaction_id,
                        sender_id=None,
                        content=content,
                        is_system_message=True,
                        read_by=[],
                    )
                )
            return True
        except Exception as e:
            logger.error(f"❌ Failed to post system message on transaction {transaction_id}: {e}")
            return False

    def list_messages(self, transaction_id: int, user_id: int) -> List[EscrowMessage]:
        with self.session_factory() as session:
            self._load_for_user(session, transaction_id, user_id, allow_resolver=True)
            return list(
                session.execute(
                    select(EscrowMessage)
                    .where(EscrowMessage.escrow_transaction_id == transaction_id)
                    .order_by(EscrowMessage.created_at, EscrowMessage.id)
                ).scalars()
            )

    def mark_read(self, transaction_id: int, user_id: int) -> int:
        """Add the reader to every message's read_by list; returns how many changed"""
        with atomic_transaction(self.session_factory) as session:
            self._load_for_user(session, transaction_id, user_id, allow_resolver=True)
            messages = session.execute(
                select(EscrowMessage).where(EscrowMessage.escrow_transaction_id == transaction_id)
            ).scalars()
            updated = 0
            for message in messages:
                readers = list(message.read_by or [])
                if user_id not in readers:
                    # Reassign so the JSON column is flagged dirty
                    message.read_by = readers + [user_id]
                    updated += 1
        return updated
