"""
Escrow Marketplace - Database Schema
====================================

Schema for the game-account marketplace escrow core:
- Users with KYC state and resolver roles
- Wallets with an append-only ledger (balance == sum of ledger entries)
- Listings with an availability gate
- Escrow transactions with a versioned status column (compare-and-swap updates)
- Disputes (1:1 with the transaction they freeze)
- Seller reviews left by buyers on completed transactions
- Transaction chat, notifications, funding references and the admin audit log
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from sqlalchemy import (
    Integer, String, Numeric, DateTime, Boolean, Text, JSON,
    ForeignKey, UniqueConstraint, Index, CheckConstraint,
)
from sqlalchemy.orm import DeclarativeBase, relationship, Mapped, mapped_column

from utils.datetime_helpers import get_naive_utc_now

MONEY = Numeric(20, 2)


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


# ============================================================================
# ENUMS - Business Logic Constants
# ============================================================================

class UserRole(Enum):
    USER = "user"
    MODERATOR = "moderator"
    ADMIN = "admin"


class KycStatus(Enum):
    UNVERIFIED = "unverified"
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


class WalletType(Enum):
    USER = "user"
    PLATFORM = "platform"


class LedgerReason(Enum):
    """Reasons a ledger entry can be appended for"""
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    ESCROW_HOLD = "escrow_hold"
    ESCROW_RELEASE = "escrow_release"
    REFUND = "refund"
    FEE = "fee"


class ListingStatus(Enum):
    DRAFT = "draft"
    PENDING_VERIFICATION = "pending_verification"
    APPROVED = "approved"
    REJECTED = "rejected"
    SOLD = "sold"
    REMOVED = "removed"


class EscrowStatus(Enum):
    """Escrow transaction lifecycle states"""
    PENDING = "pending"
    ESCROW_HELD = "escrow_held"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    DISPUTED = "disputed"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"


class DisputeStatus(Enum):
    OPEN = "open"
    UNDER_REVIEW = "under_review"
    RESOLVED_BUYER = "resolved_buyer"
    RESOLVED_SELLER = "resolved_seller"
    CLOSED = "closed"


class DisputeSettlement(Enum):
    """Money outcome of a resolved dispute"""
    RELEASE = "release"
    REFUND = "refund"


class FundingDirection(Enum):
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"


class FundingStatus(Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REVERSED = "reversed"


def _in_clause(column: str, enum_cls) -> str:
    values = ", ".join(f"'{member.value}'" for member in enum_cls)
    return f"{column} IN ({values})"


# ============================================================================
# CORE ENTITIES
# ============================================================================

class User(Base):
    """Marketplace user (buyer, seller or resolver)"""
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    username: Mapped[Optional[str]] = mapped_column(String(50), nullable=True, unique=True)
    display_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    role: Mapped[str] = mapped_column(String(20), default=UserRole.USER.value, nullable=False)

    kyc_status: Mapped[str] = mapped_column(String(20), default=KycStatus.UNVERIFIED.value, nullable=False)
    kyc_verified_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Aggregate of reviews received as a seller
    average_rating: Mapped[Optional[Decimal]] = mapped_column(Numeric(3, 2), nullable=True)
    review_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=get_naive_utc_now, nullable=False)

    wallets: Mapped[list["Wallet"]] = relationship("Wallet", back_populates="user")

    __table_args__ = (
        CheckConstraint(_in_clause("role", UserRole), name="ck_user_role_valid"),
        CheckConstraint(_in_clause("kyc_status", KycStatus), name="ck_user_kyc_status_valid"),
    )

    @property
    def is_resolver(self) -> bool:
        return self.role in (UserRole.MODERATOR.value, UserRole.ADMIN.value)

    @property
    def name(self) -> str:
        return self.display_name or self.username or f"User_{self.id}"

    def __repr__(self):
        return f"<User(id={self.id}, role={self.role})>"


class Wallet(Base):
    """Wallet balance; only ever mutated through ledger operations"""
    __tablename__ = "wallets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    wallet_type: Mapped[str] = mapped_column(String(20), default=WalletType.USER.value, nullable=False)
    currency: Mapped[str] = mapped_column(String(10), nullable=False)
    balance: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=get_naive_utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=get_naive_utc_now, onupdate=get_naive_utc_now, nullable=False
    )

    user: Mapped[Optional["User"]] = relationship("User", back_populates="wallets")

    __table_args__ = (
        UniqueConstraint("user_id", "currency", name="uq_wallet_user_currency"),
        CheckConstraint("balance >= 0", name="ck_wallet_balance_non_negative"),
        CheckConstraint(_in_clause("wallet_type", WalletType), name="ck_wallet_type_valid"),
        CheckConstraint(
            "(wallet_type = 'platform' AND user_id IS NULL) OR (wallet_type = 'user' AND user_id IS NOT NULL)",
            name="ck_wallet_owner_matches_type",
        ),
        Index("ix_wallets_type_currency", "wallet_type", "currency"),
    )

    def __repr__(self):
        return f"<Wallet(id={self.id}, user_id={self.user_id}, balance={self.balance})>"


class LedgerEntry(Base):
    """Immutable record of a single balance change"""
    __tablename__ = "ledger_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    wallet_id: Mapped[int] = mapped_column(Integer, ForeignKey("wallets.id"), nullable=False)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)  # signed
    reason: Mapped[str] = mapped_column(String(20), nullable=False)
    escrow_transaction_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("escrow_transactions.id"), nullable=True
    )
    external_reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=get_naive_utc_now, nullable=False)

    __table_args__ = (
        CheckConstraint("amount <> 0", name="ck_ledger_amount_non_zero"),
        CheckConstraint(_in_clause("reason", LedgerReason), name="ck_ledger_reason_valid"),
        Index("ix_ledger_entries_wallet", "wallet_id", "created_at"),
        Index("ix_ledger_entries_escrow_reason", "escrow_transaction_id", "reason"),
        Index("ix_ledger_entries_external_ref", "external_reference"),
    )

    def __repr__(self):
        return f"<LedgerEntry(wallet_id={self.wallet_id}, amount={self.amount}, reason={self.reason})>"


class Listing(Base):
    """A game account offered for sale"""
    __tablename__ = "listings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    seller_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    game: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    price: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    currency: Mapped[str] = mapped_column(String(10), nullable=False)

    is_available: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    status: Mapped[str] = mapped_column(String(30), default=ListingStatus.DRAFT.value, nullable=False)
    moderation_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=get_naive_utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=get_naive_utc_now, onupdate=get_naive_utc_now, nullable=False
    )

    seller: Mapped["User"] = relationship("User", foreign_keys=[seller_id])

    __table_args__ = (
        CheckConstraint("price > 0", name="ck_listing_price_positive"),
        CheckConstraint(_in_clause("status", ListingStatus), name="ck_listing_status_valid"),
        Index("ix_listings_status_available", "status", "is_available"),
    )

    def __repr__(self):
        return f"<Listing(id={self.id}, status={self.status}, available={self.is_available})>"


class EscrowTransaction(Base):
    """Buyer/seller escrow transaction; status changes are versioned CAS updates"""
    __tablename__ = "escrow_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    listing_id: Mapped[int] = mapped_column(Integer, ForeignKey("listings.id"), nullable=False, index=True)
    buyer_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    seller_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    # Price snapshot taken at creation, immune to later listing edits
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    platform_fee: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    seller_payout: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    currency: Mapped[str] = mapped_column(String(10), nullable=False)

    status: Mapped[str] = mapped_column(String(20), default=EscrowStatus.PENDING.value, nullable=False)
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=get_naive_utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=get_naive_utc_now, nullable=False)
    escrow_held_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    delivered_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    acceptance_deadline: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    disputed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    refunded_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    cancelled_by: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("users.id"), nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    auto_released: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    reminder_sent: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    listing: Mapped["Listing"] = relationship("Listing", foreign_keys=[listing_id])
    buyer: Mapped["User"] = relationship("User", foreign_keys=[buyer_id])
    seller: Mapped["User"] = relationship("User", foreign_keys=[seller_id])

    __table_args__ = (
        CheckConstraint("buyer_id <> seller_id", name="ck_escrow_buyer_not_seller"),
        CheckConstraint("amount > 0", name="ck_escrow_amount_positive"),
        CheckConstraint("platform_fee >= 0", name="ck_escrow_fee_non_negative"),
        CheckConstraint("seller_payout = amount - platform_fee", name="ck_escrow_payout_equals_amount_minus_fee"),
        CheckConstraint(_in_clause("status", EscrowStatus), name="ck_escrow_status_valid"),
        Index("ix_escrow_transactions_status_deadline", "status", "acceptance_deadline"),
        Index("ix_escrow_transactions_listing_status", "listing_id", "status"),
    )

    def is_party(self, user_id: int) -> bool:
        return user_id in (self.buyer_id, self.seller_id)

    def __repr__(self):
        return f"<EscrowTransaction(id={self.id}, status={self.status}, version={self.version})>"


class Dispute(Base):
    """Dispute that freezes its escrow transaction until a resolver acts"""
    __tablename__ = "disputes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    escrow_transaction_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("escrow_transactions.id"), nullable=False, unique=True
    )
    opened_by: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    reason: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=DisputeStatus.OPEN.value, nullable=False)

    reviewer_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("users.id"), nullable=True)
    resolution_outcome: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    resolution_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    resolved_by: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("users.id"), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=get_naive_utc_now, nullable=False)
    review_started_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    escrow_transaction: Mapped["EscrowTransaction"] = relationship(
        "EscrowTransaction", foreign_keys=[escrow_transaction_id]
    )

    __table_args__ = (
        CheckConstraint(_in_clause("status", DisputeStatus), name="ck_dispute_status_valid"),
        Index("ix_disputes_status", "status"),
    )

    @property
    def is_active(self) -> bool:
        return self.status in (DisputeStatus.OPEN.value, DisputeStatus.UNDER_REVIEW.value)

    def __repr__(self):
        return f"<Dispute(escrow_transaction_id={self.escrow_transaction_id}, status={self.status})>"


# ============================================================================
# SUPPORTING ENTITIES
# ============================================================================

class EscrowMessage(Base):
    """Append-only chat entry scoped to an escrow transaction"""
    __tablename__ = "escrow_messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    escrow_transaction_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("escrow_transactions.id"), nullable=False
    )
    sender_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("users.id"), nullable=True)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    is_system_message: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    read_by: Mapped[list] = mapped_column(JSON, default=lambda: [], nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=get_naive_utc_now, nullable=False)

    __table_args__ = (
        Index("ix_escrow_messages_transaction", "escrow_transaction_id", "created_at"),
    )

    def __repr__(self):
        return f"<EscrowMessage(escrow_transaction_id={self.escrow_transaction_id}, system={self.is_system_message})>"


class Notification(Base):
    """User-facing notification stored by the database sink"""
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    payload: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    related_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=get_naive_utc_now, nullable=False)

    __table_args__ = (
        Index("ix_notifications_user_read", "user_id", "is_read"),
    )


class PaymentReference(Base):
    """Deposit or withdrawal routed through the payment provider"""
    __tablename__ = "payment_references"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    reference: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    direction: Mapped[str] = mapped_column(String(20), nullable=False)
    provider: Mapped[str] = mapped_column(String(20), default="paystack", nullable=False)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    fee: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    currency: Mapped[str] = mapped_column(String(10), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=FundingStatus.PENDING.value, nullable=False)
    authorization_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    provider_payload: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=get_naive_utc_now, nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_payment_reference_amount_positive"),
        CheckConstraint(_in_clause("direction", FundingDirection), name="ck_payment_reference_direction_valid"),
        CheckConstraint(_in_clause("status", FundingStatus), name="ck_payment_reference_status_valid"),
    )


class AuditLog(Base):
    """Record of resolver and moderator actions"""
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    actor_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("users.id"), nullable=True)
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    details: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=get_naive_utc_now, nullable=False)

    __table_args__ = (
        Index("ix_audit_logs_entity", "entity_type", "entity_id"),
        Index("ix_audit_logs_actor", "actor_id"),
    )


class Review(Base):
    """Buyer's rating of the seller on a completed transaction; one per reviewer"""
    __tablename__ = "reviews"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    escrow_transaction_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("escrow_transactions.id"), nullable=False
    )
    reviewer_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    reviewed_user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    rating: Mapped[int] = mapped_column(Integer, nullable=False)
    comment: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=get_naive_utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=get_naive_utc_now, nullable=False)

    __table_args__ = (
        UniqueConstraint("escrow_transaction_id", "reviewer_id", name="uq_review_transaction_reviewer"),
        CheckConstraint("rating BETWEEN 1 AND 5", name="ck_review_rating_range"),
        CheckConstraint("reviewer_id <> reviewed_user_id", name="ck_review_not_self"),
        Index("ix_reviews_reviewed_user", "reviewed_user_id", "created_at"),
    )

    def __repr__(self):
        return f"<Review(escrow_transaction_id={self.escrow_transaction_id}, rating={self.rating})>"
