"""Billing models for cycle events and webhook idempotency."""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field, field_validator, model_validator
from sqlalchemy import Column, DateTime, Enum as SQLEnum, ForeignKey, Integer, Numeric, String

from homebase.storage.models import Base


class BillingEventStatus(str, Enum):
    """Outcome of a subscription billing period."""
    PAID = "paid"
    FAILED = "failed"
    VOIDED = "voided"  # Subscription canceled / invoice voided


class BillingHistoryEvent(Base):
    """Append-only audit record of a processed billing cycle.

    Rows are shown in the user's billing history and are never updated.
    """
    __tablename__ = "billing_history_events"

    id = Column(Integer, primary_key=True)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False, index=True)

    # Invoice identification (provider invoice id, unique when present)
    invoice_id = Column(String(255), nullable=True, unique=True)

    # Period
    period_start = Column(DateTime, nullable=False)
    period_end = Column(DateTime, nullable=False)

    # Outcome
    status = Column(SQLEnum(BillingEventStatus), nullable=False)
    amount = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f"<BillingHistoryEvent(id={self.id}, account={self.account_id}, status={self.status})>"


class ProcessedWebhookEvent(Base):
    """Tracks processed webhook events for idempotency.

    Prevents duplicate processing of provider retries (e.g., Stripe invoice events).
    """
    __tablename__ = "processed_webhook_events"

    id = Column(Integer, primary_key=True)
    event_id = Column(String(255), unique=True, nullable=False, index=True)
    event_type = Column(String(100), nullable=False)  # e.g., "invoice.paid"
    source = Column(String(50), nullable=False)  # e.g., "stripe"
    processed_at = Column(DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f"<ProcessedWebhookEvent(id={self.event_id}, type={self.event_type})>"


# Pydantic models for API

class BillingEvent(BaseModel):
    """Inbound billing cycle event."""
    account_id: int
    period_start: datetime
    period_end: datetime
    status: BillingEventStatus
    amount: Decimal = Field(default=Decimal("0.00"), ge=0)
    invoice_id: str | None = Field(default=None, max_length=255)

    @field_validator("period_start", "period_end")
    @classmethod
    def _to_naive_utc(cls, value: datetime) -> datetime:
        # Stored as naive UTC
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    @model_validator(mode="after")
    def _check_period(self) -> "BillingEvent":
        if self.period_end < self.period_start:
            raise ValueError("period_end must not be before period_start")
        return self


class BillingEventResponse(BaseModel):
    """Result of processing a billing event."""
    billing_history_event_id: int
    duplicate: bool = False


class BillingHistoryResponse(BaseModel):
    """Billing history row."""
    id: int
    invoice_id: str | None
    period_start: datetime
    period_end: datetime
    status: BillingEventStatus
    amount: float
    created_at: datetime

    class Config:
        from_attributes = True
