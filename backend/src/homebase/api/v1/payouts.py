"""Agent commission API v1 endpoints."""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from homebase.api.deps import get_transfer_client, require_admin
from homebase.logging_config import get_logger
from homebase.referral.models import AgentPayoutResponse, AgentReferralResponse, AgentStatsResponse
from homebase.referral.payouts import PayoutEligibilityEngine
from homebase.referral.transfers import PayoutTransferClient
from homebase.storage.db import get_db

logger = get_logger(__name__)

router = APIRouter(tags=["agent-payouts"])


@router.get("/agent-payouts/{agent_id}", response_model=list[AgentPayoutResponse])
async def list_agent_payouts(agent_id: int, db: Session = Depends(get_db)):
    """Payouts for an agent, oldest first."""
    return PayoutEligibilityEngine(db).list_payouts(agent_id)


@router.get("/agent-referrals/{agent_id}", response_model=list[AgentReferralResponse])
async def list_agent_referrals(agent_id: int, db: Session = Depends(get_db)):
    """Agent referrals with referee details and months until payout."""
    return PayoutEligibilityEngine(db).agent_referrals(agent_id)


@router.get("/agent-stats/{agent_id}", response_model=AgentStatsResponse)
async def get_agent_stats(agent_id: int, db: Session = Depends(get_db)):
    """Referral counts and paid/pending earnings for an agent."""
    return AgentStatsResponse(**PayoutEligibilityEngine(db).agent_stats(agent_id))


@router.post(
    "/agent-payouts/{payout_id}/process",
    response_model=AgentPayoutResponse,
    dependencies=[Depends(require_admin)],
)
async def process_agent_payout(
    payout_id: int,
    db: Session = Depends(get_db),
    transfer_client: PayoutTransferClient = Depends(get_transfer_client),
):
    """Transfer a pending payout to the agent.

    A transfer failure is returned on the payout (status ``failed``).
    """
    return PayoutEligibilityEngine(db, transfer_client).process_payout(payout_id)


@router.post(
    "/agent-payouts/{payout_id}/retry",
    response_model=AgentPayoutResponse,
    dependencies=[Depends(require_admin)],
)
async def retry_agent_payout(payout_id: int, db: Session = Depends(get_db)):
    """Put a failed payout back to pending."""
    return PayoutEligibilityEngine(db).retry_payout(payout_id)
