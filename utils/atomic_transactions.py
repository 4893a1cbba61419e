"""Atomic transaction utilities for money-moving operations and resolver actions"""

import logging
from contextlib import contextmanager
from typing import Generator, Union

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from models import EscrowTransaction
from utils.exception_handler import NotFoundError

logger = logging.getLogger(__name__)


@contextmanager
def atomic_transaction(session_source: Union[sessionmaker, Session]) -> Generator[Session, None, None]:
    """
    Synchronous context manager for atomic database transactions with proper rollback.

    Given a session factory, opens a fresh session, commits on success, rolls
    back on any error and always closes. Given an existing session, joins it:
    nested blocks defer the commit to the outermost one.
    """
    if isinstance(session_source, Session):
        session = session_source
        transaction_depth = getattr(session, "_atomic_transaction_depth", 0)
        setattr(session, "_atomic_transaction_depth", transaction_depth + 1)
        if transaction_depth > 0:
            logger.debug(f"Nested sync transaction detected (depth: {transaction_depth + 1})")
        try:
            yield session
            if transaction_depth == 0:
                session.commit()
                logger.debug("Outermost sync transaction committed successfully")
        except Exception as e:
            session.rollback()
            logger.debug(f"Sync transaction rolled back (depth: {transaction_depth + 1}): {e}")
            raise
        finally:
            current_depth = getattr(session, "_atomic_transaction_depth", 1)
            setattr(session, "_atomic_transaction_depth", max(0, current_depth - 1))
        return

    session = session_source()
    try:
        yield session
        session.commit()
        logger.debug("Sync atomic transaction committed successfully")
    except Exception as e:
        session.rollback()
        logger.debug(f"Sync transaction rolled back due to error: {type(e).__name__}: {e}")
        raise
    finally:
        session.close()


def locked_escrow_transaction(session: Session, transaction_id: int) -> EscrowTransaction:
    """
    Load an escrow transaction with a row lock (SELECT ... FOR UPDATE).

    SQLite ignores the lock clause; there the version compare-and-swap alone
    serialises competing writers.
    """
    stmt = (
        select(EscrowTransaction)
        .where(EscrowTransaction.id == transaction_id)
        .with_for_update()
    )
    escrow_tx = session.execute(stmt).scalar_one_or_none()
    if escrow_tx is None:
        raise NotFoundError(f"Transaction {transaction_id} not found", details={"transaction_id": transaction_id})

    logger.debug(f"🔒 Acquired lock on escrow transaction {transaction_id} (v{escrow_tx.version})")
    return escrow_tx
