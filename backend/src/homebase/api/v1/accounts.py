"""Account API v1 endpoints."""

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from homebase.accounts.models import AccountCreate, AccountResponse, PlanChange
from homebase.accounts.service import AccountService
from homebase.logging_config import get_logger
from homebase.storage.db import get_db

logger = get_logger(__name__)

router = APIRouter(prefix="/accounts", tags=["accounts"])


@router.post("", response_model=AccountResponse, status_code=status.HTTP_201_CREATED)
async def create_account(data: AccountCreate, db: Session = Depends(get_db)):
    """Sign up a homeowner, contractor or agent.

    An optional referral code links the new account to its referrer.
    """
    return AccountService(db).create_account(data)


@router.get("/{account_id}", response_model=AccountResponse)
async def get_account(account_id: int, db: Session = Depends(get_db)):
    """Get an account."""
    return AccountService(db).get(account_id)


@router.patch("/{account_id}/plan", response_model=AccountResponse)
async def change_plan(account_id: int, data: PlanChange, db: Session = Depends(get_db)):
    """Upgrade or downgrade a plan.

    Referral credits are re-clamped to the new plan's cap immediately.
    """
    return AccountService(db).change_plan(account_id, data.subscription_tier_name)
