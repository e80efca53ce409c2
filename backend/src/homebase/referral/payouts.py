"""Agent commission vesting and payout lifecycle.

Each agent referral is a small state machine::

    trial -> active -> eligible -> paid
    (any state) -> voided, terminal

Paid billing cycles advance ``consecutive_months_paid``; a failed cycle
resets it to zero. When the counter reaches the vesting threshold the
relationship becomes ``eligible`` and exactly one ``AgentPayout`` is created.
The payout then moves pending -> processing -> paid | failed through the
transfer collaborator; failed payouts can be put back to pending.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from homebase.accounts.models import AccountRecord, Role
from homebase.billing.models import BillingEventStatus
from homebase.errors import InvariantViolation, NotFound, TransferFailure
from homebase.logging_config import get_logger
from homebase.referral.ledger import ReferralLedger
from homebase.referral.models import (
    AgentPayout,
    PayoutStatus,
    ReferralRelationship,
    ReferralStatus,
    RewardKind,
)
from homebase.referral.programs import program_for
from homebase.referral.transfers import PayoutTransferClient, StripeTransferClient
from homebase.settings import settings

logger = get_logger(__name__)

REFEREE_CANCELED_REASON = "Referee subscription canceled"

_VESTING_STATUSES = (ReferralStatus.ACTIVE, ReferralStatus.ELIGIBLE, ReferralStatus.PAID)
_OPEN_PAYOUT_STATUSES = (PayoutStatus.PENDING, PayoutStatus.PROCESSING, PayoutStatus.FAILED)


class PayoutEligibilityEngine:
    """Tracks vesting for agent referrals and manages their payouts."""

    def __init__(self, session: Session, transfer_client: PayoutTransferClient | None = None):
        self.session = session
        self.ledger = ReferralLedger(session)
        self._transfer_client = transfer_client

    @property
    def transfer_client(self) -> PayoutTransferClient:
        if self._transfer_client is None:
            self._transfer_client = StripeTransferClient()
        return self._transfer_client

    @property
    def threshold(self) -> int:
        return settings.payout_threshold_months

    # ==================== VESTING ====================

    def on_billing_cycle(
        self,
        relationship: ReferralRelationship,
        cycle_result: BillingEventStatus,
        period_start: datetime | None = None,
    ) -> AgentPayout | None:
        """Apply one billing cycle of the referee to an agent referral.

        Args:
            relationship: Agent referral relationship
            cycle_result: Outcome of the referee's billing period
            period_start: Start of the billing period

        Returns:
            The payout created by this cycle, if any
        """
        if relationship.kind != RewardKind.COMMISSION:
            raise InvariantViolation(f"Relationship {relationship.id} is not an agent referral")

        if relationship.is_voided:
            logger.info(
                "billing_cycle_ignored_voided",
                relationship_id=relationship.id,
                cycle_result=cycle_result.value,
            )
            return None

        payout = None
        now = datetime.utcnow()

        if cycle_result == BillingEventStatus.PAID and self._already_counted(relationship, period_start):
            logger.info(
                "agent_referral_cycle_already_counted",
                relationship_id=relationship.id,
                period_start=period_start.isoformat(),
            )
            return None

        if cycle_result == BillingEventStatus.PAID:
            relationship.consecutive_months_paid = (relationship.consecutive_months_paid or 0) + 1
            self.ledger.activate(relationship)
            if (
                relationship.consecutive_months_paid >= self.threshold
                and relationship.status == ReferralStatus.ACTIVE
            ):
                payout = self.create_payout(relationship)
        elif cycle_result == BillingEventStatus.FAILED:
            relationship.consecutive_months_paid = 0
        else:
            relationship.consecutive_months_paid = 0
            relationship.status = ReferralStatus.VOIDED
            relationship.voided_at = now
            relationship.void_reason = REFEREE_CANCELED_REASON

        if period_start is not None:
            relationship.last_cycle_period_start = period_start
        relationship.updated_at = now
        self.session.flush()

        logger.info(
            "agent_referral_cycle_applied",
            relationship_id=relationship.id,
            agent_id=relationship.referrer_id,
            cycle_result=cycle_result.value,
            consecutive_months_paid=relationship.consecutive_months_paid,
            status=relationship.status.value,
            payout_created=payout is not None,
        )
        return payout

    @staticmethod
    def _already_counted(relationship: ReferralRelationship, period_start: datetime | None) -> bool:
        # A failed cycle zeroes the counter, so a positive count for the same
        # period means that period was last applied as paid.
        return (
            period_start is not None
            and relationship.last_cycle_period_start == period_start
            and (relationship.consecutive_months_paid or 0) > 0
        )

    def create_payout(self, relationship: ReferralRelationship) -> AgentPayout:
        """Create the single payout for a vested agent referral.

        Raises:
            InvariantViolation: If a payout already exists or the referral has not vested
        """
        existing = self.session.query(AgentPayout).filter(
            AgentPayout.referral_relationship_id == relationship.id
        ).first()
        if existing:
            raise InvariantViolation(
                f"Payout {existing.id} already exists for relationship {relationship.id}"
            )
        if relationship.consecutive_months_paid < self.threshold:
            raise InvariantViolation(
                f"Relationship {relationship.id} has {relationship.consecutive_months_paid} "
                f"of {self.threshold} consecutive paid months"
            )

        agent = self.session.get(AccountRecord, relationship.referrer_id)
        if agent is None:
            raise NotFound("Account", relationship.referrer_id)

        payout = AgentPayout(
            referral_relationship=relationship,
            agent_id=agent.id,
            amount=program_for(agent.role).payout_amount(agent.subscription_tier_name),
            status=PayoutStatus.PENDING,
            attempts=0,
        )
        self.session.add(payout)
        try:
            self.session.flush()
        except IntegrityError as e:
            raise InvariantViolation(
                f"Payout already exists for relationship {relationship.id}"
            ) from e

        relationship.status = ReferralStatus.ELIGIBLE
        logger.info(
            "agent_payout_created",
            payout_id=payout.id,
            relationship_id=relationship.id,
            agent_id=agent.id,
            amount=str(payout.amount),
        )
        return payout

    # ==================== PAYOUT LIFECYCLE ====================

    def get_payout(self, payout_id: int) -> AgentPayout:
        """Get a payout by id.

        Raises:
            NotFound: If the payout does not exist
        """
        payout = self.session.get(AgentPayout, payout_id)
        if payout is None:
            raise NotFound("Agent payout", payout_id)
        return payout

    def process_payout(self, payout_id: int) -> AgentPayout:
        """Send a pending payout through the transfer collaborator.

        A transfer failure is recorded on the payout, not raised. The
        referral's vesting counter is left untouched either way.

        Raises:
            InvariantViolation: If the payout is not pending
        """
        payout = self.get_payout(payout_id)
        if payout.status != PayoutStatus.PENDING:
            raise InvariantViolation(
                f"Payout {payout_id} is {payout.status.value}, only pending payouts can be processed"
            )

        relationship = payout.referral_relationship
        if relationship is not None and relationship.is_voided:
            payout.status = PayoutStatus.FAILED
            payout.error_message = f"Referral voided: {relationship.void_reason or 'no reason given'}"
            self.session.flush()
            logger.warning("agent_payout_blocked_voided", payout_id=payout_id, relationship_id=relationship.id)
            return payout

        payout.status = PayoutStatus.PROCESSING
        payout.attempts = (payout.attempts or 0) + 1
        self.session.flush()

        agent = self.session.get(AccountRecord, payout.agent_id)
        destination = agent.payout_account_id if agent else None

        try:
            reference = self.transfer_client.transfer(
                payout.id, Decimal(payout.amount), destination, attempt=payout.attempts
            )
        except TransferFailure as e:
            payout.status = PayoutStatus.FAILED
            payout.error_message = str(e)
            self.session.flush()
            logger.warning(
                "agent_payout_failed",
                payout_id=payout_id,
                agent_id=payout.agent_id,
                attempts=payout.attempts,
                error=str(e),
            )
            return payout

        payout.status = PayoutStatus.PAID
        payout.paid_at = datetime.utcnow()
        payout.transfer_reference = reference
        payout.error_message = None
        if relationship is not None:
            relationship.status = ReferralStatus.PAID
            relationship.updated_at = payout.paid_at
        self.session.flush()

        logger.info(
            "agent_payout_paid",
            payout_id=payout_id,
            agent_id=payout.agent_id,
            amount=str(payout.amount),
            transfer_reference=reference,
        )
        return payout

    def retry_payout(self, payout_id: int) -> AgentPayout:
        """Put a failed payout back to pending.

        Raises:
            InvariantViolation: If the payout is not failed
        """
        payout = self.get_payout(payout_id)
        if payout.status != PayoutStatus.FAILED:
            raise InvariantViolation(
                f"Payout {payout_id} is {payout.status.value}, only failed payouts can be retried"
            )
        payout.status = PayoutStatus.PENDING
        payout.error_message = None
        self.session.flush()
        logger.info("agent_payout_retry_queued", payout_id=payout_id, attempts=payout.attempts)
        return payout

    def pending_payout_ids(self) -> list[int]:
        """Ids of all payouts waiting for a transfer, oldest first."""
        rows = self.session.query(AgentPayout.id).filter(
            AgentPayout.status == PayoutStatus.PENDING
        ).order_by(AgentPayout.created_at, AgentPayout.id).all()
        return [row.id for row in rows]

    # ==================== AGENT DASHBOARD ====================

    def _get_agent(self, agent_id: int) -> AccountRecord:
        agent = self.session.get(AccountRecord, agent_id)
        if agent is None or agent.role != Role.AGENT:
            raise NotFound("Agent", agent_id)
        return agent

    def list_payouts(self, agent_id: int) -> list[AgentPayout]:
        """All payouts for an agent, oldest first."""
        self._get_agent(agent_id)
        return self.session.query(AgentPayout).filter(
            AgentPayout.agent_id == agent_id
        ).order_by(AgentPayout.created_at, AgentPayout.id).all()

    def agent_referrals(self, agent_id: int) -> list[dict]:
        """Agent referrals joined with referee details and vesting progress."""
        self._get_agent(agent_id)
        rows = []
        for relationship in self.ledger.for_referrer(agent_id):
            referee = relationship.referee
            if relationship.status in (ReferralStatus.ELIGIBLE, ReferralStatus.PAID, ReferralStatus.VOIDED):
                remaining = 0
            else:
                remaining = max(0, self.threshold - relationship.consecutive_months_paid)
            rows.append({
                "id": relationship.id,
                "referee_id": relationship.referee_id,
                "referee_name": ((referee.name or "").strip() if referee else "") or "Unknown",
                "referee_email": referee.email if referee else "",
                "status": relationship.status,
                "signup_date": relationship.signup_date,
                "trial_end_date": relationship.trial_end_date,
                "consecutive_months_paid": relationship.consecutive_months_paid,
                "months_until_payout": remaining,
            })
        return rows

    def agent_stats(self, agent_id: int) -> dict:
        """Referral counts and earnings for the agent dashboard."""
        self._get_agent(agent_id)
        relationships = self.ledger.for_referrer(agent_id)

        paid_total = self.session.query(func.coalesce(func.sum(AgentPayout.amount), 0)).filter(
            AgentPayout.agent_id == agent_id,
            AgentPayout.status == PayoutStatus.PAID,
        ).scalar()
        # Payouts of voided referrals are never sent
        pending_total = self.session.query(func.coalesce(func.sum(AgentPayout.amount), 0)).join(
            AgentPayout.referral_relationship
        ).filter(
            AgentPayout.agent_id == agent_id,
            AgentPayout.status.in_(_OPEN_PAYOUT_STATUSES),
            ReferralRelationship.status != ReferralStatus.VOIDED,
        ).scalar()

        return {
            "total_referrals": len(relationships),
            "active_referrals": sum(1 for r in relationships if r.status in _VESTING_STATUSES),
            "total_earnings": float(paid_total or 0),
            "pending_earnings": float(pending_total or 0),
        }
