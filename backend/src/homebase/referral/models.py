"""Referral ledger database models."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field
from sqlalchemy import Column, DateTime, Enum as SQLEnum, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import relationship, validates

from homebase.errors import InvariantViolation
from homebase.storage.models import Base


class RewardKind(str, Enum):
    """How the referrer is rewarded, fixed when the relationship is created."""
    CREDIT = "credit"          # Recurring capped discount (homeowner/contractor referrers)
    COMMISSION = "commission"  # One-time payout (agent referrers)


class ReferralStatus(str, Enum):
    """Referral relationship states."""
    TRIAL = "trial"          # Referee still in free trial
    ACTIVE = "active"        # Referee paying
    ELIGIBLE = "eligible"    # Vesting threshold reached, payout created
    PAID = "paid"            # Payout transferred
    VOIDED = "voided"        # Fraud or referee cancellation, terminal


class PayoutStatus(str, Enum):
    """Agent payout transfer states."""
    PENDING = "pending"
    PROCESSING = "processing"
    PAID = "paid"
    FAILED = "failed"


class ReferralRelationship(Base):
    """Referrer → referee link.

    A referee has exactly one referrer; a referrer has many referrals.
    """
    __tablename__ = "referral_relationships"

    id = Column(Integer, primary_key=True)
    referrer_id = Column(Integer, ForeignKey("accounts.id"), nullable=False, index=True)
    referee_id = Column(Integer, ForeignKey("accounts.id"), nullable=False, unique=True)
    kind = Column(SQLEnum(RewardKind), nullable=False)

    # Status
    status = Column(SQLEnum(ReferralStatus), nullable=False, default=ReferralStatus.TRIAL)
    consecutive_months_paid = Column(Integer, nullable=False, default=0)
    last_cycle_period_start = Column(DateTime, nullable=True)

    # Fraud / voiding
    voided_at = Column(DateTime, nullable=True)
    void_reason = Column(Text, nullable=True)

    # Timestamps
    signup_date = Column(DateTime, nullable=False, default=datetime.utcnow)
    trial_end_date = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    referrer = relationship("AccountRecord", foreign_keys=[referrer_id])
    referee = relationship("AccountRecord", foreign_keys=[referee_id])
    payout = relationship("AgentPayout", back_populates="referral_relationship", uselist=False)

    @validates("consecutive_months_paid")
    def _validate_months(self, key, value):
        if value is not None and value < 0:
            raise InvariantViolation("consecutive_months_paid cannot be negative")
        return value

    @property
    def is_voided(self) -> bool:
        return self.status == ReferralStatus.VOIDED

    def __repr__(self):
        return f"<ReferralRelationship(referrer={self.referrer_id}, referee={self.referee_id}, status={self.status})>"


class AgentPayout(Base):
    """One-time agent commission for a vested referral."""
    __tablename__ = "agent_payouts"

    id = Column(Integer, primary_key=True)
    # Unique: at most one payout per relationship
    referral_relationship_id = Column(
        Integer, ForeignKey("referral_relationships.id"), nullable=False, unique=True
    )
    agent_id = Column(Integer, ForeignKey("accounts.id"), nullable=False, index=True)

    amount = Column(Numeric(10, 2), nullable=False)
    status = Column(SQLEnum(PayoutStatus), nullable=False, default=PayoutStatus.PENDING)
    attempts = Column(Integer, nullable=False, default=0)
    transfer_reference = Column(String(255), nullable=True)
    error_message = Column(Text, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    paid_at = Column(DateTime, nullable=True)

    # Relationships
    referral_relationship = relationship("ReferralRelationship", back_populates="payout")

    def __repr__(self):
        return f"<AgentPayout(id={self.id}, agent={self.agent_id}, amount={self.amount}, status={self.status})>"


# Pydantic models for API

class ReferralSummaryResponse(BaseModel):
    """Referral summary for a referrer."""
    referral_code: str
    referral_count: int
    earned_credits: float
    current_credits: float
    referral_credit_cap: float | None


class ValidateCodeResponse(BaseModel):
    """Response from code validation."""
    valid: bool
    referrer_name: str | None = None
    referrer_role: str | None = None


class AgentReferralResponse(BaseModel):
    """Referral row on the agent dashboard."""
    id: int
    referee_id: int
    referee_name: str
    referee_email: str
    status: ReferralStatus
    signup_date: datetime
    trial_end_date: datetime | None
    consecutive_months_paid: int
    months_until_payout: int


class AgentStatsResponse(BaseModel):
    """Aggregate agent earnings."""
    total_referrals: int
    active_referrals: int
    total_earnings: float
    pending_earnings: float


class AgentPayoutResponse(BaseModel):
    """Agent payout record."""
    id: int
    referral_relationship_id: int
    agent_id: int
    amount: float
    status: PayoutStatus
    attempts: int
    error_message: str | None
    created_at: datetime
    paid_at: datetime | None

    class Config:
        from_attributes = True


class ReferralFlagUpdate(BaseModel):
    """Admin status transition with audit notes."""
    status: ReferralStatus
    notes: str | None = Field(default=None, max_length=2000)


class ReferralRelationshipResponse(BaseModel):
    """Referral relationship record."""
    id: int
    referrer_id: int
    referee_id: int
    kind: RewardKind
    status: ReferralStatus
    consecutive_months_paid: int
    void_reason: str | None
    voided_at: datetime | None

    class Config:
        from_attributes = True
