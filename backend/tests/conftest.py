"""Shared fixtures for referral core tests."""

import itertools
from datetime import datetime
from decimal import Decimal

import pytest

from homebase.accounts.models import AccountCreate, Role
from homebase.accounts.service import AccountService
from homebase.billing.models import BillingEvent, BillingEventStatus
from homebase.errors import TransferFailure
from homebase.storage.db import Database

_emails = itertools.count(1)


class FakeTransferClient:
    """Records transfer calls; fails while ``fail`` is set."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls = []

    def transfer(self, payout_id, amount, destination, attempt=1):
        self.calls.append((payout_id, amount, destination, attempt))
        if self.fail:
            raise TransferFailure("Your card was declined")
        return f"tr_{payout_id}_{attempt}"


def cycle(account_id, month, status=BillingEventStatus.PAID, invoice_id=None, year=2026):
    """Billing event for the month starting on the 1st."""
    start = datetime(year, month, 1)
    end = datetime(year + 1, 1, 1) if month == 12 else datetime(year, month + 1, 1)
    return BillingEvent(
        account_id=account_id,
        period_start=start,
        period_end=end,
        status=status,
        amount=Decimal("29.00") if status == BillingEventStatus.PAID else Decimal("0.00"),
        invoice_id=invoice_id,
    )


@pytest.fixture
def database(tmp_path):
    """File-backed SQLite database with all tables."""
    database = Database(f"sqlite:///{tmp_path / 'homebase_test.db'}")
    database.create_tables()
    yield database
    database.engine.dispose()


@pytest.fixture
def session(database):
    """Session that is rolled back after the test."""
    session = database.SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def make_account(session):
    """Factory creating accounts through the signup path."""

    def _make(role=Role.HOMEOWNER, tier=None, referral_code=None, name="Test User", **kwargs):
        data = AccountCreate(
            email=f"user{next(_emails)}@example.com",
            name=name,
            role=role,
            subscription_tier_name=tier,
            referral_code=referral_code,
            **kwargs,
        )
        return AccountService(session).create_account(data)

    return _make


@pytest.fixture
def transfer_client():
    """Transfer collaborator that always succeeds."""
    return FakeTransferClient()
