"""SQLAlchemy models for donation persistence."""

import uuid
import json
import enum
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List, FrozenSet

from sqlalchemy import (
    String,
    Integer,
    Boolean,
    DateTime,
    ForeignKey,
    Text,
    Index,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, relationship, Mapped, mapped_column


def utcnow() -> datetime:
    """Current time as naive UTC, the convention for every timestamp column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _new_id() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class SubscriptionStatus(str, enum.Enum):
    """Platform subscription state of a church."""
    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    SUSPENDED = "suspended"
    CANCELED = "canceled"


BLOCKED_SUBSCRIPTION_STATUSES = frozenset(
    {SubscriptionStatus.SUSPENDED.value, SubscriptionStatus.CANCELED.value}
)


class DonationStatus(str, enum.Enum):
    """Lifecycle of a donation transaction."""
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    REFUNDED = "refunded"
    DISPUTED = "disputed"

    def can_transition_to(self, target: "DonationStatus") -> bool:
        return target in ALLOWED_TRANSITIONS.get(self, frozenset())


ALLOWED_TRANSITIONS: Dict[DonationStatus, FrozenSet[DonationStatus]] = {
    DonationStatus.PENDING: frozenset({DonationStatus.SUCCEEDED, DonationStatus.FAILED}),
    DonationStatus.SUCCEEDED: frozenset({DonationStatus.REFUNDED, DonationStatus.DISPUTED}),
}


class TransactionAction(str, enum.Enum):
    """Types of transaction actions tracked in history."""
    INITIATE = "initiate"
    SETTLE = "settle"
    FAIL = "fail"
    REFUND = "refund"
    PARTIAL_REFUND = "partial_refund"
    DISPUTE = "dispute"
    SWEEP = "sweep"


class Church(Base):
    """A tenant. Owns every other record."""
    __tablename__ = "churches"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, unique=True)
    country: Mapped[str] = mapped_column(String(2), nullable=False, default="US")
    onboarding_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    subscription_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=SubscriptionStatus.ACTIVE.value
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    stripe_connect_account: Mapped[Optional["StripeConnectAccount"]] = relationship(
        "StripeConnectAccount", back_populates="church", uselist=False
    )

    @property
    def subscription_blocked(self) -> bool:
        return self.subscription_status in BLOCKED_SUBSCRIPTION_STATUSES


class StripeConnectAccount(Base):
    """The church's connected account on the payment platform."""
    __tablename__ = "stripe_connect_accounts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    church_id: Mapped[str] = mapped_column(String(36), ForeignKey("churches.id"), nullable=False, unique=True)
    stripe_account_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    charges_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    payouts_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    details_submitted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    church: Mapped["Church"] = relationship("Church", back_populates="stripe_connect_account")


class DonationType(Base):
    """A fund donations are attributed to."""
    __tablename__ = "donation_types"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    church_id: Mapped[str] = mapped_column(String(36), ForeignKey("churches.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("church_id", "name", name="uq_donation_types_church_id_name"),
    )


class Donor(Base):
    """A giving profile, optionally linked to a member."""
    __tablename__ = "donors"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    church_id: Mapped[str] = mapped_column(String(36), ForeignKey("churches.id"), nullable=False, index=True)
    member_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    first_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    address_line1: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    address_line2: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    state: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    postal_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    country: Mapped[Optional[str]] = mapped_column(String(2), nullable=True)
    is_phone_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    stripe_customer_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class DonationTransaction(Base):
    """One attempted or completed donation payment."""
    __tablename__ = "donation_transactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    church_id: Mapped[str] = mapped_column(String(36), ForeignKey("churches.id"), nullable=False, index=True)
    donor_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("donors.id"), nullable=True)
    donation_type_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("donation_types.id"), nullable=False, index=True
    )
    donor_clerk_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    donor_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    donor_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Base amount the donor intended to give, and what was actually charged
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    charged_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=DonationStatus.PENDING.value)
    payment_method_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    stripe_payment_intent_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, unique=True)
    stripe_customer_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    idempotency_key: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)

    processing_fee_covered_by_donor: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    platform_fee: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    is_anonymous: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_international: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    donor_country: Mapped[Optional[str]] = mapped_column(String(2), nullable=True)
    donor_language: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)

    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Refund and dispute sub-state
    refunded_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    refunded_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    dispute_status: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    dispute_reason: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    disputed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    transaction_date: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    history: Mapped[List["TransactionHistory"]] = relationship(
        "TransactionHistory",
        back_populates="transaction",
        order_by="TransactionHistory.created_at",
    )

    __table_args__ = (
        Index("ix_donation_transactions_status", "status"),
        Index("ix_donation_transactions_transaction_date", "transaction_date"),
        Index("ix_donation_transactions_church_id_status", "church_id", "status"),
    )

    @property
    def donation_status(self) -> DonationStatus:
        return DonationStatus(self.status)


class TransactionHistory(Base):
    """Audit trail of state transitions of a donation transaction."""
    __tablename__ = "transaction_history"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    transaction_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("donation_transactions.id"), nullable=False, index=True
    )
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    previous_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    new_status: Mapped[str] = mapped_column(String(20), nullable=False)
    amount: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    stripe_event_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    transaction: Mapped["DonationTransaction"] = relationship("DonationTransaction", back_populates="history")


class ProcessedWebhookEvent(Base):
    """Marker for a webhook delivery that has already been applied."""
    __tablename__ = "processed_webhook_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    stripe_event_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    processed_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        Index("ix_processed_webhook_events_expires_at", "expires_at"),
    )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) > self.expires_at


class PayoutSummary(Base):
    """A settlement batch reported by the payment platform."""
    __tablename__ = "payout_summaries"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    stripe_payout_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    church_id: Mapped[str] = mapped_column(String(36), ForeignKey("churches.id"), nullable=False, index=True)
    payout_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    arrival_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="usd")
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Totals filled in by reconciliation
    transaction_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    gross_volume: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_fees: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_refunds: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_disputes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    net_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    reconciled_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    details_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("ix_payout_summaries_status", "status"),
        Index("ix_payout_summaries_church_id_payout_date", "church_id", "payout_date"),
    )

    @property
    def details(self) -> Optional[Dict[str, Any]]:
        """Reconciliation detail as a dictionary."""
        if self.details_json:
            return json.loads(self.details_json)
        return None

    @details.setter
    def details(self, value: Optional[Dict[str, Any]]) -> None:
        if value is not None:
            self.details_json = json.dumps(value)
        else:
            self.details_json = None
