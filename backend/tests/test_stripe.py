"""Tests for Stripe invoice mapping and payout transfers."""

from datetime import datetime, timezone
from decimal import Decimal
from types import SimpleNamespace

import pytest
import stripe

from homebase.accounts.models import SubscriptionStatus
from homebase.billing.models import BillingEventStatus
from homebase.errors import TransferFailure
from homebase.payments.stripe_service import (
    billing_event_from_stripe,
    subscription_status_from_stripe,
    verify_webhook_signature,
)
from homebase.referral.transfers import StripeTransferClient
from homebase.settings import settings

JAN_1 = int(datetime(2026, 1, 1, tzinfo=timezone.utc).timestamp())
FEB_1 = int(datetime(2026, 2, 1, tzinfo=timezone.utc).timestamp())


class TestBillingEventFromStripe:
    """Tests for mapping Stripe objects to billing events."""

    def test_invoice_paid(self):
        """Test a paid invoice uses amount_paid."""
        event = billing_event_from_stripe(
            "invoice.paid",
            {"id": "in_1", "amount_paid": 4900, "amount_due": 4900, "period_start": JAN_1, "period_end": FEB_1},
            account_id=7,
        )

        assert event.account_id == 7
        assert event.status == BillingEventStatus.PAID
        assert event.amount == Decimal("49.00")
        assert event.period_start == datetime(2026, 1, 1)
        assert event.period_end == datetime(2026, 2, 1)
        assert event.invoice_id == "in_1:paid"

    def test_payment_failed(self):
        """Test a failed invoice keeps a distinct id from its later payment."""
        event = billing_event_from_stripe(
            "invoice.payment_failed",
            {"id": "in_1", "amount_paid": 0, "amount_due": 4900, "period_start": JAN_1, "period_end": FEB_1},
            account_id=7,
        )

        assert event.status == BillingEventStatus.FAILED
        assert event.amount == Decimal("49.00")
        assert event.invoice_id == "in_1:failed"

    def test_subscription_deleted(self):
        """Test a cancellation closes the current period."""
        event = billing_event_from_stripe(
            "customer.subscription.deleted",
            {"id": "sub_1", "current_period_start": JAN_1, "current_period_end": FEB_1, "ended_at": FEB_1},
            account_id=7,
        )

        assert event.status == BillingEventStatus.VOIDED
        assert event.invoice_id is None
        assert event.period_start == datetime(2026, 1, 1)

    def test_zero_amount_invoice_skipped(self):
        """Test the $0 invoice opening a trial is not a paid cycle."""
        event = billing_event_from_stripe(
            "invoice.paid",
            {"id": "in_0", "amount_paid": 0, "amount_due": 0, "period_start": JAN_1, "period_end": FEB_1},
            account_id=7,
        )

        assert event is None


class TestSubscriptionStatusFromStripe:
    """Tests for syncing subscription status from Stripe."""

    @pytest.mark.parametrize("stripe_status,expected", [
        ("trialing", SubscriptionStatus.TRIALING),
        ("active", SubscriptionStatus.ACTIVE),
        ("past_due", SubscriptionStatus.PAST_DUE),
        ("canceled", SubscriptionStatus.CANCELED),
        ("incomplete", SubscriptionStatus.ACTIVE),
    ])
    def test_status_mapping(self, stripe_status, expected):
        """Test Stripe statuses map to account statuses."""
        assert subscription_status_from_stripe({"status": stripe_status}) == expected


class TestVerifySignature:
    """Tests for webhook verification."""

    def test_missing_secret(self, monkeypatch):
        """Test verification fails without a secret."""
        monkeypatch.setattr(settings, "stripe_webhook_secret", None)
        with pytest.raises(ValueError, match="not configured"):
            verify_webhook_signature(b"{}", "t=1,v1=abc")

    def test_bad_signature(self, monkeypatch):
        """Test a forged signature is rejected."""
        monkeypatch.setattr(settings, "stripe_webhook_secret", "whsec_test")
        with pytest.raises(ValueError, match="Invalid webhook signature"):
            verify_webhook_signature(b'{"id": "evt_1"}', "t=1,v1=deadbeef")


class TestStripeTransferClient:
    """Tests for Stripe Connect transfers."""

    def test_transfer(self, monkeypatch):
        """Test amount in cents and a per-attempt idempotency key."""
        captured = {}

        def fake_create(**kwargs):
            captured.update(kwargs)
            return SimpleNamespace(id="tr_123")

        monkeypatch.setattr(stripe.Transfer, "create", fake_create)
        client = StripeTransferClient(api_key="sk_test_123")

        reference = client.transfer(5, Decimal("15.00"), "acct_9", attempt=2)

        assert reference == "tr_123"
        assert captured["amount"] == 1500
        assert captured["destination"] == "acct_9"
        assert captured["currency"] == "usd"
        assert captured["idempotency_key"] == "agent-payout-5-2"

    def test_stripe_error(self, monkeypatch):
        """Test Stripe errors become transfer failures."""

        def fail(**kwargs):
            raise stripe.StripeError("Insufficient funds in Stripe account")

        monkeypatch.setattr(stripe.Transfer, "create", fail)

        with pytest.raises(TransferFailure, match="Insufficient funds"):
            StripeTransferClient(api_key="sk_test_123").transfer(5, Decimal("10"), "acct_9")

    def test_missing_destination(self):
        """Test agents without a connected account cannot be paid."""
        with pytest.raises(TransferFailure, match="no connected payout account"):
            StripeTransferClient(api_key="sk_test_123").transfer(5, Decimal("10"), None)

    def test_not_configured(self, monkeypatch):
        """Test transfers fail without an API key."""
        monkeypatch.setattr(settings, "stripe_secret_key", None)
        with pytest.raises(TransferFailure, match="not configured"):
            StripeTransferClient().transfer(5, Decimal("10"), "acct_9")
