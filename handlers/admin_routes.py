"""Resolver-only administration endpoints"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from handlers.dependencies import ServiceContainer, get_current_user, get_services
from handlers.schemas import serialize_audit_log
from models import User
from services.audit_logger import AuditLogger
from services.user_service import UserService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/audit-logs")
def list_audit_logs(
    entity_type: Optional[str] = None,
    entity_id: Optional[int] = None,
    action: Optional[str] = None,
    actor_id: Optional[int] = None,
    limit: int = Query(100, ge=1, le=500),
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    with services.session_factory() as session:
        UserService.require_resolver(session, user.id)
        entries = AuditLogger.list_entries(
            session, entity_type=entity_type, entity_id=entity_id, action=action, actor_id=actor_id, limit=limit
        )
        return {"audit_logs": [serialize_audit_log(entry) for entry in entries]}
