"""Reward programs: what a referrer earns, by role.

Homeowners and contractors earn a recurring credit of ``per_referral_credit``
per active referral, clamped to a monthly cap that depends on their plan.
Agents earn a one-time flat commission per referral once the referee has
paid ``payout_threshold_months`` consecutive cycles.

Cap and payout values come from settings so they can be tuned per
deployment without code changes.
"""

from abc import ABC, abstractmethod
from decimal import Decimal

from homebase.accounts.models import Role
from homebase.referral.models import RewardKind
from homebase.settings import settings


class RewardProgram(ABC):
    """Base class for role-specific reward rules."""

    role: Role
    kind: RewardKind
    tiers: tuple[str, ...]
    default_tier: str

    def validate_tier(self, tier: str | None) -> str:
        """Return a valid tier name for this program (default when None)."""
        if tier is None:
            return self.default_tier
        tier = tier.strip().lower()
        if tier not in self.tiers:
            raise ValueError(
                f"Unknown {self.role.value} tier '{tier}', expected one of {', '.join(self.tiers)}"
            )
        return tier

    def _config_key(self, tier: str) -> str:
        return f"{self.role.value}-{tier}"

    @abstractmethod
    def credit_cap(self, tier: str) -> Decimal | None:
        """Maximum monthly credit for the tier, None when uncapped."""

    @abstractmethod
    def earned_credit(self, active_referrals: int) -> Decimal:
        """Credit earned before applying the cap."""

    @abstractmethod
    def payout_amount(self, tier: str) -> Decimal | None:
        """One-time commission per vested referral, None when not applicable."""

    def applied_credit(self, active_referrals: int, tier: str) -> Decimal:
        """Credit actually applied to the next bill: min(earned, cap)."""
        earned = self.earned_credit(active_referrals)
        cap = self.credit_cap(tier)
        if cap is None:
            return earned
        return min(earned, cap)


class _CreditProgram(RewardProgram):
    kind = RewardKind.CREDIT

    def credit_cap(self, tier: str) -> Decimal:
        key = self._config_key(self.validate_tier(tier))
        cap = settings.credit_caps.get(key)
        if cap is None:
            raise ValueError(f"No credit cap configured for {key}")
        return Decimal(cap)

    def earned_credit(self, active_referrals: int) -> Decimal:
        if active_referrals < 0:
            raise ValueError("active_referrals cannot be negative")
        return Decimal(active_referrals) * Decimal(settings.per_referral_credit)

    def payout_amount(self, tier: str) -> None:
        return None


class HomeownerProgram(_CreditProgram):
    role = Role.HOMEOWNER
    tiers = ("base", "premium", "premium_plus")
    default_tier = "base"


class ContractorProgram(_CreditProgram):
    role = Role.CONTRACTOR
    tiers = ("basic", "pro")
    default_tier = "basic"


class AgentProgram(RewardProgram):
    role = Role.AGENT
    kind = RewardKind.COMMISSION
    tiers = ("standard", "partner")
    default_tier = "standard"

    def credit_cap(self, tier: str) -> None:
        return None

    def earned_credit(self, active_referrals: int) -> Decimal:
        # Agents are paid per referral, never via recurring credit
        return Decimal("0")

    def payout_amount(self, tier: str) -> Decimal:
        key = self._config_key(self.validate_tier(tier))
        amount = settings.agent_payout_amounts.get(key)
        if amount is None:
            raise ValueError(f"No payout amount configured for {key}")
        return Decimal(amount)


PROGRAMS: dict[Role, RewardProgram] = {
    Role.HOMEOWNER: HomeownerProgram(),
    Role.CONTRACTOR: ContractorProgram(),
    Role.AGENT: AgentProgram(),
}

_missing = set(Role) - set(PROGRAMS)
if _missing:
    raise RuntimeError(f"No reward program for roles: {sorted(r.value for r in _missing)}")


def program_for(role: Role | str) -> RewardProgram:
    """Look up the reward program for a role."""
    return PROGRAMS[Role(role)]
