"""Referral API v1 endpoints."""

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from homebase.accounts.service import AccountService
from homebase.api.deps import require_admin
from homebase.api.rate_limit import REFERRAL_CODE_CHECK_LIMIT, limiter
from homebase.logging_config import get_logger
from homebase.referral.credits import CreditAccrualEngine
from homebase.referral.ledger import ReferralLedger
from homebase.referral.models import (
    ReferralFlagUpdate,
    ReferralRelationshipResponse,
    ReferralStatus,
    ReferralSummaryResponse,
    ValidateCodeResponse,
)
from homebase.storage.db import get_db

logger = get_logger(__name__)

router = APIRouter(tags=["referral"])


@router.get("/referral-summary/{user_id}", response_model=ReferralSummaryResponse)
async def get_referral_summary(user_id: int, db: Session = Depends(get_db)):
    """Referral code, referral count and credits for a referrer."""
    return ReferralSummaryResponse(**CreditAccrualEngine(db).summary(user_id))


@router.get("/referral/validate/{code}", response_model=ValidateCodeResponse)
@limiter.limit(REFERRAL_CODE_CHECK_LIMIT)
async def validate_referral_code(request: Request, code: str, db: Session = Depends(get_db)):
    """Validate a referral code entered at signup.

    Returns the referrer's first name for personalization.
    """
    referrer = AccountService(db).get_by_referral_code(code)
    if referrer is None:
        return ValidateCodeResponse(valid=False)

    first_name = referrer.name.split()[0] if referrer.name and referrer.name.strip() else None
    return ValidateCodeResponse(
        valid=True,
        referrer_name=first_name,
        referrer_role=referrer.role.value,
    )


@router.patch(
    "/referrals/{relationship_id}",
    response_model=ReferralRelationshipResponse,
    dependencies=[Depends(require_admin)],
)
async def flag_referral(relationship_id: int, body: ReferralFlagUpdate, db: Session = Depends(get_db)):
    """Void a referral after a fraud determination.

    Voiding is one-way; no other status can be set here.
    """
    if body.status != ReferralStatus.VOIDED:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Only the 'voided' status can be set on a referral",
        )

    relationship = ReferralLedger(db).void(relationship_id, reason=body.notes)
    logger.info("referral_flagged", relationship_id=relationship_id)
    return relationship
