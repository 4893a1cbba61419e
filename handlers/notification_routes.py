from fastapi import APIRouter, Depends, Query

from handlers.dependencies import ServiceContainer, get_current_user, get_services
from handlers.schemas import serialize_notification
from models import User

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("")
def list_notifications(
    unread_only: bool = False,
    limit: int = Query(50, ge=1, le=200),
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    notifications = services.notifications.list_notifications(user.id, unread_only, limit)
    return {"notifications": [serialize_notification(n) for n in notifications]}


@router.post("/{notification_id}/read")
def mark_read(
    notification_id: int,
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    services.notifications.mark_read(user.id, notification_id)
    return {"status": "ok"}
