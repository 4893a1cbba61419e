"""
Optimistic Locking Infrastructure
Version-based compare-and-swap updates for rows that carry a version column
"""

import logging
from typing import Any, Dict, Optional, Type

from sqlalchemy import update
from sqlalchemy.orm import Session

from models import Base
from utils.datetime_helpers import get_naive_utc_now
from utils.exception_handler import ConflictError

logger = logging.getLogger(__name__)


class OptimisticLockManager:
    """
    Manager for optimistic locking operations.

    Conflicts are reported, never retried: the caller reloads and decides.
    """

    def __init__(self, session: Session):
        self.session = session

    def versioned_update(
        self,
        model_class: Type[Base],
        entity_id: Any,
        updates: Dict[str, Any],
        expected_version: int,
        expected_status: Optional[str] = None,
    ) -> int:
        """
        Perform version-controlled update.

        Args:
            model_class: SQLAlchemy model class with ``version`` (and ``status``) columns
            entity_id: Primary key value
            updates: Dictionary of field updates
            expected_version: Version the caller read
            expected_status: Status the caller read; part of the swap condition when given

        Returns:
            int: the new version

        Raises:
            ConflictError: no row matched (id, status, version)
        """
        new_version = expected_version + 1
        conditions = [model_class.id == entity_id, model_class.version == expected_version]
        if expected_status is not None:
            conditions.append(model_class.status == expected_status)

        stmt = (
            update(model_class)
            .where(*conditions)
            .values(**updates, version=new_version, updated_at=get_naive_utc_now())
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)

        if result.rowcount == 0:
            logger.warning(
                f"🔒 Optimistic lock conflict: {model_class.__name__} id={entity_id} "
                f"expected_version={expected_version} expected_status={expected_status}"
            )
            raise ConflictError(
                f"{model_class.__name__} {entity_id} was modified concurrently; reload and retry",
                details={"id": entity_id, "expected_version": expected_version},
            )

        logger.debug(
            f"✅ Versioned update successful: {model_class.__name__} id={entity_id} "
            f"v{expected_version} → v{new_version}"
        )
        return new_version
