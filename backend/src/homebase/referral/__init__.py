"""Referral system module for HomeBase.

- Homeowners and contractors earn $1/month off their plan per paying
  referral, up to a plan-dependent cap
- Agents earn a one-time $10 (or $15 on the partner program) commission
  once a referral has paid 4 consecutive months
"""

from homebase.referral.models import AgentPayout, ReferralRelationship, ReferralStatus, RewardKind
from homebase.referral.programs import RewardProgram, program_for
from homebase.referral.ledger import ReferralLedger
from homebase.referral.credits import CreditAccrualEngine
from homebase.referral.payouts import PayoutEligibilityEngine

__all__ = [
    "AgentPayout",
    "ReferralRelationship",
    "ReferralStatus",
    "RewardKind",
    "RewardProgram",
    "program_for",
    "ReferralLedger",
    "CreditAccrualEngine",
    "PayoutEligibilityEngine",
]
