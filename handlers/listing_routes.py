"""Listing registry endpoints"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends

from handlers.dependencies import ServiceContainer, get_current_user, get_services
from handlers.schemas import (
    CreateListingRequest,
    ModerateListingRequest,
    UpdateListingRequest,
    serialize_listing,
)
from models import User

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/listings", tags=["listings"])


@router.post("", status_code=201)
def create_listing(
    body: CreateListingRequest,
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    listing = services.listings.create_listing(
        user.id, body.title, body.price, description=body.description, game=body.game
    )
    return serialize_listing(listing)


@router.get("")
def list_listings(game: Optional[str] = None, services: ServiceContainer = Depends(get_services)):
    return {"listings": [serialize_listing(listing) for listing in services.listings.list_available(game)]}


@router.get("/mine")
def my_listings(user: User = Depends(get_current_user), services: ServiceContainer = Depends(get_services)):
    return {"listings": [serialize_listing(listing) for listing in services.listings.list_seller_listings(user.id)]}


@router.get("/{listing_id}")
def get_listing(listing_id: int, services: ServiceContainer = Depends(get_services)):
    return serialize_listing(services.listings.get_listing(listing_id))


@router.patch("/{listing_id}")
def update_listing(
    listing_id: int,
    body: UpdateListingRequest,
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    changes = body.model_dump(exclude_unset=True)
    return serialize_listing(services.listings.update_listing(listing_id, user.id, **changes))


@router.post("/{listing_id}/submit")
def submit_listing(
    listing_id: int,
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    return serialize_listing(services.listings.submit_for_review(listing_id, user.id))


@router.post("/{listing_id}/moderate")
def moderate_listing(
    listing_id: int,
    body: ModerateListingRequest,
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    return serialize_listing(services.listings.moderate(listing_id, user.id, body.approve, body.notes))


@router.delete("/{listing_id}")
def remove_listing(
    listing_id: int,
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    return serialize_listing(services.listings.remove_listing(listing_id, user.id))
