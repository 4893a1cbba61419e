"""Account signup, profile and seller reviews"""

import logging

from fastapi import APIRouter, Depends, Query

from handlers.dependencies import ServiceContainer, get_current_user, get_services
from handlers.schemas import SignupRequest, serialize_review, serialize_user
from models import User

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["users"])


@router.post("", status_code=201)
def register(body: SignupRequest, services: ServiceContainer = Depends(get_services)):
    user = services.users.register_user(body.email, username=body.username, display_name=body.display_name)
    return serialize_user(user)


@router.get("/me")
def me(user: User = Depends(get_current_user)):
    return serialize_user(user)


@router.get("/{user_id}/reviews")
def list_reviews(
    user_id: int,
    limit: int = Query(50, ge=1, le=200),
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    reviews = services.reviews.list_reviews_for_user(user_id, limit)
    seller = services.users.get_user(user_id)
    return {
        "user_id": seller.id,
        "average_rating": f"{seller.average_rating:.2f}" if seller.average_rating is not None else None,
        "review_count": seller.review_count,
        "reviews": [serialize_review(review) for review in reviews],
    }
