"""Stripe integration: webhook verification and invoice mapping."""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

import stripe

from homebase.accounts.models import SubscriptionStatus
from homebase.billing.models import BillingEvent, BillingEventStatus
from homebase.logging_config import get_logger
from homebase.settings import settings

logger = get_logger(__name__)

# Stripe event type -> billing cycle outcome
INVOICE_EVENT_STATUS = {
    "invoice.paid": BillingEventStatus.PAID,
    "invoice.payment_failed": BillingEventStatus.FAILED,
    "customer.subscription.deleted": BillingEventStatus.VOIDED,
}

SUBSCRIPTION_UPDATED = "customer.subscription.updated"

HANDLED_EVENT_TYPES = (*INVOICE_EVENT_STATUS, SUBSCRIPTION_UPDATED)

# Stripe subscription status -> account status
SUBSCRIPTION_STATUS = {
    "trialing": SubscriptionStatus.TRIALING,
    "active": SubscriptionStatus.ACTIVE,
    "past_due": SubscriptionStatus.PAST_DUE,
    "canceled": SubscriptionStatus.CANCELED,
}


def _field(obj: Any, key: str, default: Any = None) -> Any:
    """Read a key from a Stripe object or plain dict."""
    try:
        value = obj[key]
    except (KeyError, TypeError):
        return default
    return default if value is None else value


def _from_timestamp(value: int | None) -> datetime:
    if not value:
        return datetime.utcnow()
    return datetime.fromtimestamp(int(value), tz=timezone.utc).replace(tzinfo=None)


def verify_webhook_signature(payload: bytes, sig_header: str) -> stripe.Event:
    """Verify and parse a Stripe webhook event.

    Args:
        payload: Raw request body
        sig_header: Stripe-Signature header value

    Returns:
        Verified Stripe event

    Raises:
        ValueError: If signature is invalid
    """
    if not settings.stripe_webhook_secret:
        raise ValueError("Stripe webhook secret not configured")

    try:
        return stripe.Webhook.construct_event(
            payload,
            sig_header,
            settings.stripe_webhook_secret,
        )
    except stripe.SignatureVerificationError:
        raise ValueError("Invalid webhook signature")


def billing_event_from_stripe(event_type: str, obj: Any, account_id: int) -> BillingEvent | None:
    """Build a billing event from a Stripe invoice or subscription object.

    Args:
        event_type: Stripe event type (one of INVOICE_EVENT_STATUS)
        obj: ``event.data.object``
        account_id: Account mapped from the Stripe customer

    Returns:
        Billing event ready for the cycle processor, or None for the $0
        invoice Stripe issues when a trial starts (not a paid cycle)
    """
    status = INVOICE_EVENT_STATUS[event_type]

    if event_type == "customer.subscription.deleted":
        # Subscription objects carry no invoice; the cancellation closes the current period
        ended_at = _field(obj, "ended_at") or _field(obj, "canceled_at")
        return BillingEvent(
            account_id=account_id,
            period_start=_from_timestamp(_field(obj, "current_period_start") or ended_at),
            period_end=_from_timestamp(_field(obj, "current_period_end") or ended_at),
            status=status,
            amount=Decimal("0.00"),
            invoice_id=None,
        )

    if status == BillingEventStatus.PAID and not _field(obj, "amount_paid"):
        logger.info("stripe_zero_invoice_skipped", invoice_id=_field(obj, "id"), account_id=account_id)
        return None

    # An invoice can fail before it is paid, so the outcome is part of the id
    cents = _field(obj, "amount_paid") if status == BillingEventStatus.PAID else _field(obj, "amount_due")
    return BillingEvent(
        account_id=account_id,
        period_start=_from_timestamp(_field(obj, "period_start")),
        period_end=_from_timestamp(_field(obj, "period_end")),
        status=status,
        amount=(Decimal(cents or 0) / 100).quantize(Decimal("0.01")),
        invoice_id=f"{_field(obj, 'id')}:{status.value}" if _field(obj, "id") else None,
    )


def subscription_status_from_stripe(obj: Any) -> SubscriptionStatus:
    """Account status for a ``customer.subscription.updated`` object.

    Stripe statuses without a counterpart (incomplete, unpaid, paused) count
    as active; billing outcomes arrive separately as invoice events.
    """
    return SUBSCRIPTION_STATUS.get(_field(obj, "status"), SubscriptionStatus.ACTIVE)
