"""
Audit Logging for resolver and moderator actions
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from models import AuditLog

logger = logging.getLogger(__name__)


class AuditLogger:
    """Writes AuditLog rows inside the caller's atomic unit"""

    @staticmethod
    def log_admin_action(
        session: Session,
        actor_id: Optional[int],
        action: str,
        entity_type: str,
        entity_id: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> AuditLog:
        """Record an administrative action; commits or rolls back with the action itself"""
        entry = AuditLog(
            actor_id=actor_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            details=details or {},
        )
        session.add(entry)
        session.flush()

        logger.info(f"🛡️ ADMIN ACTION: user {actor_id} performed '{action}' on {entity_type} {entity_id or ''}")
        return entry

    @staticmethod
    def list_entries(
        session: Session,
        entity_type: Optional[str] = None,
        entity_id: Optional[int] = None,
        action: Optional[str] = None,
        actor_id: Optional[int] = None,
        limit: int = 100,
    ) -> List[AuditLog]:
        """Newest first, optionally filtered"""
        stmt = select(AuditLog)
        if entity_type:
            stmt = stmt.where(AuditLog.entity_type == entity_type)
        if entity_id is not None:
            stmt = stmt.where(AuditLog.entity_id == entity_id)
        if action:
            stmt = stmt.where(AuditLog.action == action)
        if actor_id is not None:
            stmt = stmt.where(AuditLog.actor_id == actor_id)
        return list(session.execute(stmt.order_by(AuditLog.id.desc()).limit(limit)).scalars())
