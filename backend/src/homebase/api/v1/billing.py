"""Billing API v1 endpoints."""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from homebase.billing.models import BillingEvent, BillingEventResponse, BillingHistoryResponse
from homebase.billing.processor import BillingCycleProcessor
from homebase.logging_config import get_logger
from homebase.storage.db import get_db

logger = get_logger(__name__)

router = APIRouter(tags=["billing"])


@router.post("/billing-events", response_model=BillingEventResponse)
async def receive_billing_event(event: BillingEvent, db: Session = Depends(get_db)):
    """Apply a billing cycle event for one account.

    Returns the id of the billing history record. A repeated invoice id
    returns the original record without reapplying it.
    """
    history, duplicate = BillingCycleProcessor(db).process_event(event)
    return BillingEventResponse(billing_history_event_id=history.id, duplicate=duplicate)


@router.get("/billing-history/{account_id}", response_model=list[BillingHistoryResponse])
async def get_billing_history(account_id: int, db: Session = Depends(get_db)):
    """Billing history for an account, newest period first."""
    return BillingCycleProcessor(db).history(account_id)
