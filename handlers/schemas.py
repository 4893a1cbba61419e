"""
Request bodies and response serializers for the HTTP surface
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator

from models import (
    AuditLog,
    Dispute,
    EscrowMessage,
    EscrowTransaction,
    LedgerEntry,
    Listing,
    Notification,
    Review,
    User,
)


class SignupRequest(BaseModel):
    model_config = {"extra": "forbid"}

    email: str = Field(..., max_length=255)
    username: Optional[str] = Field(None, max_length=50)
    display_name: Optional[str] = Field(None, max_length=100)


class CreateListingRequest(BaseModel):
    model_config = {"extra": "forbid"}

    title: str = Field(..., min_length=1, max_length=200)
    price: Decimal = Field(..., gt=0)
    description: Optional[str] = None
    game: Optional[str] = Field(None, max_length=100)


class UpdateListingRequest(BaseModel):
    """Only the fields present in the body are changed"""

    model_config = {"extra": "forbid"}

    title: Optional[str] = Field(None, min_length=1, max_length=200)
    price: Optional[Decimal] = Field(None, gt=0)
    description: Optional[str] = None
    game: Optional[str] = Field(None, max_length=100)


class ModerateListingRequest(BaseModel):
    approve: bool
    notes: Optional[str] = None


class CreateTransactionRequest(BaseModel):
    listing_id: int


class TransitionRequest(BaseModel):
    """Optional optimistic-lock token for a state change"""

    expected_version: Optional[int] = Field(None, ge=1)


class CancelRequest(TransitionRequest):
    reason: Optional[str] = Field(None, max_length=500)


class OpenDisputeRequest(BaseModel):
    reason: str = Field(..., max_length=255)
    description: str


class ResolveDisputeRequest(BaseModel):
    outcome: str = Field(..., description="resolved_buyer, resolved_seller or closed")
    notes: str
    settlement: Optional[str] = Field(None, description="release or refund; required when closing")


class PostMessageRequest(BaseModel):
    content: str


class ReviewRequest(BaseModel):
    model_config = {"extra": "forbid"}

    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=1000)


class DepositRequest(BaseModel):
    amount: Decimal = Field(..., gt=0)


class WithdrawRequest(BaseModel):
    amount: Decimal = Field(..., gt=0)
    bank_code: str
    account_number: str

    @field_validator("account_number")
    @classmethod
    def account_number_must_be_digits(cls, v: str) -> str:
        v = v.strip()
        if len(v) != 10 or not v.isdigit():
            raise ValueError("Account number must be 10 digits")
        return v


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _money(value: Optional[Decimal]) -> Optional[str]:
    return None if value is None else f"{value:.2f}"


def serialize_user(user: User) -> Dict[str, Any]:
    return {
        "id": user.id,
        "email": user.email,
        "username": user.username,
        "display_name": user.display_name,
        "role": user.role,
        "kyc_status": user.kyc_status,
        "average_rating": _money(user.average_rating),
        "review_count": user.review_count,
    }


def serialize_listing(listing: Listing) -> Dict[str, Any]:
    return {
        "id": listing.id,
        "seller_id": listing.seller_id,
        "title": listing.title,
        "description": listing.description,
        "game": listing.game,
        "price": _money(listing.price),
        "currency": listing.currency,
        "is_available": listing.is_available,
        "status": listing.status,
        "moderation_notes": listing.moderation_notes,
        "created_at": _iso(listing.created_at),
    }


def serialize_transaction(escrow_tx: EscrowTransaction) -> Dict[str, Any]:
    return {
        "id": escrow_tx.id,
        "listing_id": escrow_tx.listing_id,
        "buyer_id": escrow_tx.buyer_id,
        "seller_id": escrow_tx.seller_id,
        "amount": _money(escrow_tx.amount),
        "platform_fee": _money(escrow_tx.platform_fee),
        "seller_payout": _money(escrow_tx.seller_payout),
        "currency": escrow_tx.currency,
        "status": escrow_tx.status,
        "version": escrow_tx.version,
        "created_at": _iso(escrow_tx.created_at),
        "escrow_held_at": _iso(escrow_tx.escrow_held_at),
        "delivered_at": _iso(escrow_tx.delivered_at),
        "acceptance_deadline": _iso(escrow_tx.acceptance_deadline),
        "completed_at": _iso(escrow_tx.completed_at),
        "disputed_at": _iso(escrow_tx.disputed_at),
        "refunded_at": _iso(escrow_tx.refunded_at),
        "cancelled_at": _iso(escrow_tx.cancelled_at),
        "auto_released": escrow_tx.auto_released,
    }


def serialize_dispute(dispute: Dispute) -> Dict[str, Any]:
    return {
        "id": dispute.id,
        "transaction_id": dispute.escrow_transaction_id,
        "opened_by": dispute.opened_by,
        "reason": dispute.reason,
        "description": dispute.description,
        "status": dispute.status,
        "reviewer_id": dispute.reviewer_id,
        "resolution_outcome": dispute.resolution_outcome,
        "resolution_notes": dispute.resolution_notes,
        "resolved_by": dispute.resolved_by,
        "created_at": _iso(dispute.created_at),
        "resolved_at": _iso(dispute.resolved_at),
    }


def serialize_message(message: EscrowMessage) -> Dict[str, Any]:
    return {
        "id": message.id,
        "transaction_id": message.escrow_transaction_id,
        "sender_id": message.sender_id,
        "content": message.content,
        "is_system_message": message.is_system_message,
        "read_by": list(message.read_by or []),
        "created_at": _iso(message.created_at),
    }


def serialize_notification(notification: Notification) -> Dict[str, Any]:
    return {
        "id": notification.id,
        "type": notification.type,
        "title": notification.title,
        "message": notification.message,
        "payload": notification.payload or {},
        "related_id": notification.related_id,
        "is_read": notification.is_read,
        "created_at": _iso(notification.created_at),
    }


def serialize_ledger_entry(entry: LedgerEntry) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "amount": _money(entry.amount),
        "reason": entry.reason,
        "transaction_id": entry.escrow_transaction_id,
        "external_reference": entry.external_reference,
        "description": entry.description,
        "created_at": _iso(entry.created_at),
    }


def serialize_review(review: Review) -> Dict[str, Any]:
    return {
        "id": review.id,
        "transaction_id": review.escrow_transaction_id,
        "reviewer_id": review.reviewer_id,
        "reviewed_user_id": review.reviewed_user_id,
        "rating": review.rating,
        "comment": review.comment,
        "created_at": _iso(review.created_at),
        "updated_at": _iso(review.updated_at),
    }


def serialize_audit_log(entry: AuditLog) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "actor_id": entry.actor_id,
        "action": entry.action,
        "entity_type": entry.entity_type,
        "entity_id": entry.entity_id,
        "details": entry.details or {},
        "created_at": _iso(entry.created_at),
    }
