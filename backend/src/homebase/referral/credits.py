"""Referral credit accrual for homeowner and contractor referrers."""

from datetime import datetime
from decimal import Decimal

from sqlalchemy.orm import Session

from homebase.accounts.models import AccountRecord
from homebase.errors import NotFound
from homebase.logging_config import get_logger
from homebase.referral.ledger import ReferralLedger
from homebase.referral.programs import program_for

logger = get_logger(__name__)

_CENTS = Decimal("0.01")


class CreditAccrualEngine:
    """Projects the referral ledger onto ``AccountRecord.current_credits``.

    The ledger is the source of truth; ``current_credits`` is a cache
    refreshed whenever the ledger or the referrer's plan changes.
    """

    def __init__(self, session: Session):
        self.session = session
        self.ledger = ReferralLedger(session)

    def _get_referrer(self, referrer_id: int) -> AccountRecord:
        referrer = self.session.get(AccountRecord, referrer_id)
        if referrer is None:
            raise NotFound("Account", referrer_id)
        return referrer

    def earned_credits(self, referrer: AccountRecord) -> Decimal:
        """Credit earned from active referrals before the cap."""
        active = self.ledger.count_active_credit_referrals(referrer.id)
        return program_for(referrer.role).earned_credit(active).quantize(_CENTS)

    def recompute_credits(self, referrer_id: int) -> Decimal:
        """Recompute and store the credit applied to the referrer's next bill.

        Idempotent: unchanged ledger data yields the same value.

        Args:
            referrer_id: Referrer account id

        Returns:
            The applied credit

        Raises:
            NotFound: If the referrer does not exist
        """
        referrer = self._get_referrer(referrer_id)
        program = program_for(referrer.role)
        active = self.ledger.count_active_credit_referrals(referrer.id)
        applied = program.applied_credit(active, referrer.subscription_tier_name).quantize(_CENTS)

        previous = Decimal(referrer.current_credits or 0).quantize(_CENTS)
        if previous != applied:
            referrer.current_credits = applied
            referrer.updated_at = datetime.utcnow()
            self.session.flush()

        logger.info(
            "credits_recomputed",
            referrer_id=referrer_id,
            active_referrals=active,
            previous=str(previous),
            current=str(applied),
            cap=str(program.credit_cap(referrer.subscription_tier_name)),
        )
        return applied

    def summary(self, referrer_id: int) -> dict:
        """Referral summary for display on the referral page."""
        referrer = self._get_referrer(referrer_id)
        cap = program_for(referrer.role).credit_cap(referrer.subscription_tier_name)
        return {
            "referral_code": referrer.referral_code,
            "referral_count": self.ledger.referral_count(referrer.id),
            "earned_credits": float(self.earned_credits(referrer)),
            "current_credits": float(referrer.current_credits or 0),
            "referral_credit_cap": float(cap) if cap is not None else None,
        }
