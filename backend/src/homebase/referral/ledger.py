"""Referral ledger: who referred whom, and the relationship status."""

from datetime import datetime, timedelta

from sqlalchemy import func
from sqlalchemy.orm import Session

from homebase.accounts.models import AccountRecord
from homebase.errors import FraudFlag, InvariantViolation, NotFound
from homebase.logging_config import get_logger
from homebase.referral.models import ReferralRelationship, ReferralStatus, RewardKind
from homebase.referral.programs import program_for
from homebase.settings import settings

logger = get_logger(__name__)

SAME_DEVICE_REASON = "Same device fingerprint as referrer"


class ReferralLedger:
    """Creates referral relationships and moves them between states.

    Relationships are never deleted. Voiding is terminal.
    """

    def __init__(self, session: Session):
        self.session = session

    def get(self, relationship_id: int) -> ReferralRelationship:
        """Get a relationship by id.

        Raises:
            NotFound: If the relationship does not exist
        """
        relationship = self.session.get(ReferralRelationship, relationship_id)
        if relationship is None:
            raise NotFound("Referral relationship", relationship_id)
        return relationship

    def record_signup(
        self,
        referrer: AccountRecord,
        referee: AccountRecord,
        now: datetime | None = None,
    ) -> ReferralRelationship:
        """Record that ``referee`` signed up with ``referrer``'s code.

        A matching device fingerprint voids the relationship immediately.

        Raises:
            InvariantViolation: On self-referral or if the referee already has a referrer
        """
        now = now or datetime.utcnow()

        if referrer.id == referee.id:
            raise InvariantViolation("An account cannot refer itself")

        existing = self.session.query(ReferralRelationship).filter(
            ReferralRelationship.referee_id == referee.id
        ).first()
        if existing:
            raise InvariantViolation(f"Account {referee.id} already has a referrer")

        relationship = ReferralRelationship(
            referrer_id=referrer.id,
            referee_id=referee.id,
            kind=program_for(referrer.role).kind,
            status=ReferralStatus.TRIAL,
            consecutive_months_paid=0,
            signup_date=now,
            trial_end_date=referee.trial_ends_at or now + timedelta(days=settings.trial_days),
        )

        if referrer.signup_fingerprint and referrer.signup_fingerprint == referee.signup_fingerprint:
            relationship.status = ReferralStatus.VOIDED
            relationship.voided_at = now
            relationship.void_reason = SAME_DEVICE_REASON
            logger.warning(
                "referral_voided_at_signup",
                referrer_id=referrer.id,
                referee_id=referee.id,
                reason=SAME_DEVICE_REASON,
            )

        self.session.add(relationship)
        self.session.flush()

        logger.info(
            "referral_recorded",
            relationship_id=relationship.id,
            referrer_id=referrer.id,
            referee_id=referee.id,
            kind=relationship.kind.value,
            status=relationship.status.value,
        )
        return relationship

    def for_referee(self, referee_id: int) -> list[ReferralRelationship]:
        """Relationships where the account is the referee (zero or one)."""
        return self.session.query(ReferralRelationship).filter(
            ReferralRelationship.referee_id == referee_id
        ).all()

    def for_referrer(self, referrer_id: int) -> list[ReferralRelationship]:
        """All referrals made by an account, oldest first."""
        return self.session.query(ReferralRelationship).filter(
            ReferralRelationship.referrer_id == referrer_id
        ).order_by(ReferralRelationship.signup_date, ReferralRelationship.id).all()

    def count_active_credit_referrals(self, referrer_id: int) -> int:
        """Number of paying credit referrals counted toward the referrer's discount."""
        return self.session.query(func.count(ReferralRelationship.id)).filter(
            ReferralRelationship.referrer_id == referrer_id,
            ReferralRelationship.kind == RewardKind.CREDIT,
            ReferralRelationship.status == ReferralStatus.ACTIVE,
        ).scalar() or 0

    def referral_count(self, referrer_id: int) -> int:
        """Number of non-voided referrals."""
        return self.session.query(func.count(ReferralRelationship.id)).filter(
            ReferralRelationship.referrer_id == referrer_id,
            ReferralRelationship.status != ReferralStatus.VOIDED,
        ).scalar() or 0

    def activate(self, relationship: ReferralRelationship) -> bool:
        """Move a relationship from trial to active.

        Returns:
            True if the status changed

        Raises:
            FraudFlag: If the relationship is voided
        """
        if relationship.is_voided:
            raise FraudFlag(relationship.id, relationship.void_reason)
        if relationship.status != ReferralStatus.TRIAL:
            return False
        relationship.status = ReferralStatus.ACTIVE
        relationship.updated_at = datetime.utcnow()
        logger.info("referral_activated", relationship_id=relationship.id)
        return True

    def void(self, relationship_id: int, reason: str | None = None) -> ReferralRelationship:
        """Void a relationship (fraud determination or referee cancellation).

        Voiding an already voided relationship keeps the original reason.
        Credit referrers get their credits recomputed.
        """
        relationship = self.get(relationship_id)
        if relationship.is_voided:
            logger.info("referral_already_voided", relationship_id=relationship_id)
            return relationship

        previous = relationship.status
        now = datetime.utcnow()
        relationship.status = ReferralStatus.VOIDED
        relationship.voided_at = now
        relationship.void_reason = reason
        relationship.consecutive_months_paid = 0
        relationship.updated_at = now
        self.session.flush()

        logger.warning(
            "referral_voided",
            relationship_id=relationship_id,
            referrer_id=relationship.referrer_id,
            previous_status=previous.value,
            reason=reason,
        )

        if relationship.kind == RewardKind.CREDIT:
            from homebase.referral.credits import CreditAccrualEngine

            CreditAccrualEngine(self.session).recompute_credits(relationship.referrer_id)

        return relationship
