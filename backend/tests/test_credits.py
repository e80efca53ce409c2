"""Tests for referral credit accrual."""

from decimal import Decimal

import pytest

from homebase.accounts.models import Role
from homebase.accounts.service import AccountService
from homebase.billing.processor import BillingCycleProcessor
from homebase.errors import NotFound
from homebase.referral.credits import CreditAccrualEngine
from homebase.referral.ledger import ReferralLedger
from homebase.referral.programs import program_for

from conftest import cycle


@pytest.fixture
def refer_paying(session, make_account):
    """Create ``count`` referees of ``referrer`` that have each paid one cycle."""

    def _refer(referrer, count):
        processor = BillingCycleProcessor(session)
        referees = []
        for _ in range(count):
            referee = make_account(Role.HOMEOWNER, referral_code=referrer.referral_code)
            processor.process_event(cycle(referee.id, 1))
            referees.append(referee)
        return referees

    return _refer


class TestRecompute:
    """Tests for CreditAccrualEngine.recompute_credits."""

    def test_trial_referrals_earn_nothing(self, session, make_account):
        """Test referrals still in trial do not count."""
        referrer = make_account(Role.HOMEOWNER)
        make_account(referral_code=referrer.referral_code)

        assert CreditAccrualEngine(session).recompute_credits(referrer.id) == Decimal("0.00")

    def test_credit_per_active_referral(self, session, make_account, refer_paying):
        """Test one dollar per paying referral."""
        referrer = make_account(Role.HOMEOWNER, tier="premium")
        refer_paying(referrer, 3)

        assert referrer.current_credits == Decimal("3.00")

    def test_cap_clamps_credit(self, session, make_account, refer_paying):
        """Test eight referrals on base apply five dollars."""
        referrer = make_account(Role.HOMEOWNER, tier="base")
        refer_paying(referrer, 8)

        engine = CreditAccrualEngine(session)
        assert engine.recompute_credits(referrer.id) == Decimal("5.00")
        assert engine.earned_credits(referrer) == Decimal("8.00")
        assert referrer.current_credits == Decimal("5.00")

    def test_downgrade_reclamps(self, session, make_account, refer_paying):
        """Test a premium referrer with 18 referrals drops to 5 on base."""
        referrer = make_account(Role.HOMEOWNER, tier="premium")
        refer_paying(referrer, 18)
        assert referrer.current_credits == Decimal("18.00")

        AccountService(session).change_plan(referrer.id, "base")

        assert referrer.current_credits == Decimal("5.00")

    def test_upgrade_raises_cap(self, session, make_account, refer_paying):
        """Test upgrading releases credit held back by the cap."""
        referrer = make_account(Role.CONTRACTOR, tier="basic")
        refer_paying(referrer, 25)
        assert referrer.current_credits == Decimal("20.00")

        AccountService(session).change_plan(referrer.id, "pro")

        assert referrer.current_credits == Decimal("25.00")

    def test_idempotent(self, session, make_account, refer_paying):
        """Test recomputing twice gives the same value."""
        referrer = make_account(Role.HOMEOWNER, tier="premium")
        refer_paying(referrer, 4)

        engine = CreditAccrualEngine(session)
        first = engine.recompute_credits(referrer.id)
        second = engine.recompute_credits(referrer.id)

        assert first == second == Decimal("4.00")

    def test_void_removes_credit(self, session, make_account, refer_paying):
        """Test a voided referral stops counting immediately."""
        referrer = make_account(Role.HOMEOWNER, tier="premium")
        referees = refer_paying(referrer, 6)

        ledger = ReferralLedger(session)
        relationship = ledger.for_referee(referees[0].id)[0]
        ledger.void(relationship.id, reason="fake account")

        assert referrer.current_credits == Decimal("5.00")

    def test_never_exceeds_cap(self, session, make_account, refer_paying):
        """Test stored credit stays within the cap for every tier."""
        referrer = make_account(Role.HOMEOWNER, tier="base")
        refer_paying(referrer, 7)

        service = AccountService(session)
        program = program_for(Role.HOMEOWNER)
        for tier in ("premium", "base", "premium_plus", "base"):
            service.change_plan(referrer.id, tier)
            assert Decimal("0") <= referrer.current_credits <= program.credit_cap(tier)

    def test_unknown_referrer(self, session):
        """Test recomputing a missing account."""
        with pytest.raises(NotFound):
            CreditAccrualEngine(session).recompute_credits(12345)

    def test_agent_credit_is_zero(self, session, make_account):
        """Test agents never accrue credit."""
        agent = make_account(Role.AGENT)
        make_account(referral_code=agent.referral_code)

        assert CreditAccrualEngine(session).recompute_credits(agent.id) == Decimal("0.00")


class TestSummary:
    """Tests for the referral summary."""

    def test_summary(self, session, make_account, refer_paying):
        """Test summary values for a capped referrer."""
        referrer = make_account(Role.HOMEOWNER, tier="base")
        refer_paying(referrer, 6)
        make_account(referral_code=referrer.referral_code)

        summary = CreditAccrualEngine(session).summary(referrer.id)

        assert summary["referral_code"] == referrer.referral_code
        assert summary["referral_count"] == 7
        assert summary["earned_credits"] == 6.0
        assert summary["current_credits"] == 5.0
        assert summary["referral_credit_cap"] == 5.0

    def test_agent_summary_has_no_cap(self, session, make_account):
        """Test agents report no credit cap."""
        agent = make_account(Role.AGENT)

        assert CreditAccrualEngine(session).summary(agent.id)["referral_credit_cap"] is None
