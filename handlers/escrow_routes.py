"""
Escrow transaction endpoints

Every state change is its own typed endpoint; there is no generic update.
Bodies are optional and only carry the optimistic-lock version.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends

from handlers.dependencies import ServiceContainer, get_current_user, get_services
from handlers.schemas import (
    CancelRequest,
    CreateTransactionRequest,
    OpenDisputeRequest,
    PostMessageRequest,
    ReviewRequest,
    TransitionRequest,
    serialize_dispute,
    serialize_message,
    serialize_review,
    serialize_transaction,
)
from models import User

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/transactions", tags=["escrow"])


def _version(body: Optional[TransitionRequest]) -> Optional[int]:
    return body.expected_version if body else None


@router.post("", status_code=201)
def create_transaction(
    body: CreateTransactionRequest,
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    return serialize_transaction(services.escrow.create_transaction(user.id, body.listing_id))


@router.get("")
def list_transactions(
    role: Optional[str] = None,
    status: Optional[str] = None,
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    transactions = services.escrow.list_transactions(user.id, role=role, status=status)
    return {"transactions": [serialize_transaction(tx) for tx in transactions]}


@router.get("/{transaction_id}")
def get_transaction(
    transaction_id: int,
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    return serialize_transaction(services.escrow.get_transaction(transaction_id, user.id))


@router.post("/{transaction_id}/pay")
def pay(
    transaction_id: int,
    body: Optional[TransitionRequest] = None,
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    return serialize_transaction(services.escrow.pay(transaction_id, user.id, _version(body)))


@router.post("/{transaction_id}/deliver")
def mark_delivered(
    transaction_id: int,
    body: Optional[TransitionRequest] = None,
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    return serialize_transaction(services.escrow.mark_delivered(transaction_id, user.id, _version(body)))


@router.post("/{transaction_id}/accept")
def accept(
    transaction_id: int,
    body: Optional[TransitionRequest] = None,
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    return serialize_transaction(services.escrow.accept(transaction_id, user.id, _version(body)))


@router.post("/{transaction_id}/cancel")
def cancel(
    transaction_id: int,
    body: Optional[CancelRequest] = None,
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    reason = body.reason if body else None
    return serialize_transaction(services.escrow.cancel(transaction_id, user.id, reason, _version(body)))


@router.post("/{transaction_id}/dispute", status_code=201)
def open_dispute(
    transaction_id: int,
    body: OpenDisputeRequest,
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    dispute = services.disputes.open_dispute(transaction_id, user.id, body.reason, body.description)
    return serialize_dispute(dispute)


@router.get("/{transaction_id}/messages")
def list_messages(
    transaction_id: int,
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    messages = services.messaging.list_messages(transaction_id, user.id)
    return {"messages": [serialize_message(message) for message in messages]}


@router.post("/{transaction_id}/messages", status_code=201)
def post_message(
    transaction_id: int,
    body: PostMessageRequest,
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    return serialize_message(services.messaging.post_message(transaction_id, user.id, body.content))


@router.post("/{transaction_id}/messages/read")
def mark_messages_read(
    transaction_id: int,
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    return {"updated": services.messaging.mark_read(transaction_id, user.id)}


@router.get("/{transaction_id}/review")
def get_review(
    transaction_id: int,
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    review = services.reviews.get_transaction_review(transaction_id, user.id)
    return {"review": serialize_review(review) if review else None}


@router.post("/{transaction_id}/review")
def submit_review(
    transaction_id: int,
    body: ReviewRequest,
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    return serialize_review(services.reviews.submit_review(transaction_id, user.id, body.rating, body.comment))
