"""Stripe billing webhook.

Stripe retries deliveries until it gets a 2xx, so every event id is recorded
in ``processed_webhook_events`` and a replay is answered without touching
the ledger.
"""

from datetime import datetime, timedelta

from fastapi import APIRouter, HTTPException, Request, status

from homebase.accounts.service import AccountService
from homebase.billing.models import ProcessedWebhookEvent
from homebase.billing.processor import BillingCycleProcessor
from homebase.errors import HomeBaseError
from homebase.logging_config import get_logger
from homebase.storage import db as storage

logger = get_logger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

STRIPE = "stripe"


def _marker(event_id: str, event_type: str, source: str) -> ProcessedWebhookEvent:
    return ProcessedWebhookEvent(
        event_id=event_id,
        event_type=event_type,
        source=source,
        processed_at=datetime.utcnow(),
    )


def is_event_processed(event_id: str, source: str = STRIPE) -> bool:
    """True when this provider event id was already applied or acknowledged."""
    with storage.db.session() as session:
        seen = session.query(ProcessedWebhookEvent.id).filter_by(
            event_id=event_id, source=source
        ).first()
    return seen is not None


def mark_event_processed(event_id: str, event_type: str, source: str = STRIPE) -> None:
    """Record an event id in its own transaction."""
    with storage.db.session() as session:
        session.add(_marker(event_id, event_type, source))


def cleanup_old_events(days: int = 30) -> int:
    """Delete idempotency markers older than ``days``; returns the count removed."""
    cutoff = datetime.utcnow() - timedelta(days=days)
    with storage.db.session() as session:
        removed = session.query(ProcessedWebhookEvent).filter(
            ProcessedWebhookEvent.processed_at < cutoff
        ).delete(synchronize_session=False)
    logger.info("webhook_markers_cleaned", removed=removed, older_than_days=days)
    return removed


def handle_stripe_event(event_id: str, event_type: str, obj) -> dict:
    """Apply a verified Stripe billing event and mark it processed.

    On success the billing event and the idempotency marker are written in
    one transaction. Domain rejections (unknown customer, out-of-order
    period) are acknowledged so Stripe does not retry them forever.
    """
    from homebase.payments.stripe_service import (
        SUBSCRIPTION_UPDATED,
        billing_event_from_stripe,
        subscription_status_from_stripe,
    )

    customer_id = obj["customer"]
    try:
        with storage.db.session() as session:
            accounts = AccountService(session)
            account = accounts.get_by_stripe_customer(customer_id)
            if account is None:
                logger.error("stripe_webhook_unknown_customer", customer_id=customer_id, event_id=event_id)
                result = {"received": True, "ignored": True}
            elif event_type == SUBSCRIPTION_UPDATED:
                # Status sync only; billing cycles come from invoice events
                subscription_status = subscription_status_from_stripe(obj)
                accounts.set_subscription_status(account, subscription_status)
                result = {"received": True, "subscription_status": subscription_status.value}
            else:
                billing_event = billing_event_from_stripe(event_type, obj, account.id)
                if billing_event is None:
                    result = {"received": True, "ignored": True}
                else:
                    history, duplicate = BillingCycleProcessor(session).process_event(billing_event)
                    result = {
                        "received": True,
                        "billing_history_event_id": history.id,
                        "duplicate": duplicate,
                    }
            session.add(_marker(event_id, event_type, STRIPE))
            return result
    except HomeBaseError as e:
        logger.warning("stripe_webhook_rejected", event_id=event_id, customer_id=customer_id, error=str(e))
        mark_event_processed(event_id, event_type)
        return {"received": True, "ignored": True}


@router.post("/stripe")
async def receive_stripe_event(request: Request):
    """Turn Stripe invoice and subscription events into billing cycle events.

    ``invoice.paid``, ``invoice.payment_failed`` and
    ``customer.subscription.deleted`` are applied as billing cycles and
    ``customer.subscription.updated`` syncs the account status; other types
    are acknowledged and dropped.
    """
    from homebase.payments.stripe_service import HANDLED_EVENT_TYPES, verify_webhook_signature
    from homebase.settings import settings

    if not settings.stripe_webhook_secret:
        raise HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, detail="Stripe webhooks are not configured")

    try:
        event = verify_webhook_signature(await request.body(), request.headers.get("stripe-signature", ""))
    except ValueError as e:
        logger.warning("stripe_signature_rejected", error=str(e))
        raise HTTPException(status.HTTP_400_BAD_REQUEST, detail=str(e))

    event_id, event_type = event["id"], event["type"]

    if event_type not in HANDLED_EVENT_TYPES:
        logger.debug("stripe_event_skipped", event_id=event_id, event_type=event_type)
        return {"received": True}

    if is_event_processed(event_id):
        logger.info("stripe_event_replayed", event_id=event_id, event_type=event_type)
        return {"received": True, "duplicate": True}

    try:
        result = handle_stripe_event(event_id, event_type, event["data"]["object"])
    except Exception as e:
        # 5xx makes Stripe redeliver later
        logger.error("stripe_event_failed", event_id=event_id, event_type=event_type, error=str(e))
        raise HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Error processing billing event")

    logger.info("stripe_event_applied", event_id=event_id, event_type=event_type, **result)
    return result
