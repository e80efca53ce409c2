"""Billing cycle events and history."""

from homebase.billing.models import BillingEvent, BillingEventStatus, BillingHistoryEvent

__all__ = ["BillingEvent", "BillingEventStatus", "BillingHistoryEvent"]
