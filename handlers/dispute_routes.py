"""Resolver endpoints for disputes"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends

from handlers.dependencies import ServiceContainer, get_current_user, get_services
from handlers.schemas import ResolveDisputeRequest, serialize_dispute
from models import User

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/disputes", tags=["disputes"])


@router.get("")
def list_disputes(
    status: Optional[str] = None,
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    return {"disputes": [serialize_dispute(d) for d in services.disputes.list_disputes(user.id, status)]}


@router.get("/{dispute_id}")
def get_dispute(
    dispute_id: int,
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    return serialize_dispute(services.disputes.get_dispute(dispute_id, user.id))


@router.post("/{dispute_id}/review")
def start_review(
    dispute_id: int,
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    return serialize_dispute(services.disputes.start_review(dispute_id, user.id))


@router.post("/{dispute_id}/resolve")
def resolve_dispute(
    dispute_id: int,
    body: ResolveDisputeRequest,
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    result = services.disputes.resolve(dispute_id, body.outcome, body.notes, user.id, body.settlement)
    return result._asdict()
