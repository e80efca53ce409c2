"""Account records for homeowners, contractors and agents."""

from datetime import datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, EmailStr, Field
from sqlalchemy import Column, DateTime, Enum as SQLEnum, Integer, Numeric, String
from sqlalchemy.orm import validates

from homebase.storage.models import Base


class Role(str, Enum):
    """Marketplace roles."""
    HOMEOWNER = "homeowner"
    CONTRACTOR = "contractor"
    AGENT = "agent"      # Affiliate, earns one-time commissions


class SubscriptionStatus(str, Enum):
    """Subscription lifecycle states."""
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    GRANDFATHERED = "grandfathered"  # Legacy accounts, never billed


class AccountRecord(Base):
    """Per-user subscription state.

    Created at signup, mutated by billing events and credit recomputes.
    Accounts are never hard-deleted; cancellation is a subscription status.
    """
    __tablename__ = "accounts"

    id = Column(Integer, primary_key=True)

    # Identity
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=True)
    role = Column(SQLEnum(Role), nullable=False)

    # Subscription
    subscription_status = Column(SQLEnum(SubscriptionStatus), nullable=False, default=SubscriptionStatus.TRIALING)
    subscription_tier_name = Column(String(50), nullable=False)
    trial_ends_at = Column(DateTime, nullable=True)
    max_houses_allowed = Column(Integer, nullable=True)  # Homeowners only

    # Referrals
    referral_code = Column(String(20), unique=True, nullable=False, index=True)
    current_credits = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))

    # Billing provider / payouts
    stripe_customer_id = Column(String(255), nullable=True, unique=True, index=True)
    payout_account_id = Column(String(255), nullable=True)  # Stripe Connect destination

    # Fraud signals
    signup_fingerprint = Column(String(128), nullable=True, index=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @validates("current_credits")
    def _validate_credits(self, key, value):
        if value is not None and Decimal(value) < 0:
            raise ValueError("current_credits cannot be negative")
        return value

    def __repr__(self):
        return f"<AccountRecord(id={self.id}, role={self.role}, status={self.subscription_status})>"


# Pydantic models for API

class AccountCreate(BaseModel):
    """Signup request."""
    email: EmailStr
    name: str | None = Field(default=None, max_length=255)
    role: Role
    subscription_tier_name: str | None = None
    referral_code: str | None = Field(default=None, max_length=20)
    stripe_customer_id: str | None = None
    payout_account_id: str | None = None
    signup_fingerprint: str | None = Field(default=None, max_length=128)


class PlanChange(BaseModel):
    """Plan upgrade/downgrade request."""
    subscription_tier_name: str


class AccountResponse(BaseModel):
    """Account data for API responses."""
    id: int
    email: str
    name: str | None
    role: Role
    subscription_status: SubscriptionStatus
    subscription_tier_name: str
    trial_ends_at: datetime | None
    max_houses_allowed: int | None
    referral_code: str
    current_credits: float
    created_at: datetime

    class Config:
        from_attributes = True
