"""Tests for role reward programs."""

from decimal import Decimal

import pytest

from homebase.accounts.models import Role
from homebase.referral.models import RewardKind
from homebase.referral.programs import PROGRAMS, program_for


class TestProgramLookup:
    """Tests for program_for."""

    def test_every_role_has_a_program(self):
        """Test that each role maps to a program."""
        assert set(PROGRAMS) == set(Role)

    def test_lookup_by_string(self):
        """Test lookup with the role value."""
        assert program_for("agent").role == Role.AGENT

    def test_reward_kinds(self):
        """Test credit vs commission split."""
        assert program_for(Role.HOMEOWNER).kind == RewardKind.CREDIT
        assert program_for(Role.CONTRACTOR).kind == RewardKind.CREDIT
        assert program_for(Role.AGENT).kind == RewardKind.COMMISSION


class TestCreditPrograms:
    """Tests for homeowner and contractor credit rules."""

    @pytest.mark.parametrize(
        "role,tier,cap",
        [
            (Role.HOMEOWNER, "base", Decimal("5")),
            (Role.HOMEOWNER, "premium", Decimal("20")),
            (Role.HOMEOWNER, "premium_plus", Decimal("40")),
            (Role.CONTRACTOR, "basic", Decimal("20")),
            (Role.CONTRACTOR, "pro", Decimal("40")),
        ],
    )
    def test_credit_caps(self, role, tier, cap):
        """Test configured monthly caps."""
        assert program_for(role).credit_cap(tier) == cap

    def test_applied_credit_is_clamped(self):
        """Test that eight referrals on base are clamped to five dollars."""
        program = program_for(Role.HOMEOWNER)
        assert program.earned_credit(8) == Decimal("8")
        assert program.applied_credit(8, "base") == Decimal("5")

    def test_applied_credit_below_cap(self):
        """Test that credit under the cap is applied in full."""
        assert program_for(Role.CONTRACTOR).applied_credit(3, "pro") == Decimal("3")

    def test_zero_referrals(self):
        """Test no referrals earns nothing."""
        assert program_for(Role.HOMEOWNER).applied_credit(0, "premium") == Decimal("0")

    def test_no_payout_for_credit_programs(self):
        """Test credit programs never pay commissions."""
        assert program_for(Role.HOMEOWNER).payout_amount("base") is None

    def test_negative_referrals_rejected(self):
        """Test negative counts are rejected."""
        with pytest.raises(ValueError):
            program_for(Role.HOMEOWNER).earned_credit(-1)


class TestAgentProgram:
    """Tests for agent commission rules."""

    def test_payout_amounts(self):
        """Test flat commission per tier."""
        program = program_for(Role.AGENT)
        assert program.payout_amount("standard") == Decimal("10")
        assert program.payout_amount("partner") == Decimal("15")

    def test_agents_earn_no_credit(self):
        """Test agents are uncapped and earn no recurring credit."""
        program = program_for(Role.AGENT)
        assert program.credit_cap("standard") is None
        assert program.applied_credit(12, "standard") == Decimal("0")


class TestTierValidation:
    """Tests for tier names."""

    def test_default_tier(self):
        """Test that a missing tier gets the default."""
        assert program_for(Role.HOMEOWNER).validate_tier(None) == "base"
        assert program_for(Role.CONTRACTOR).validate_tier(None) == "basic"
        assert program_for(Role.AGENT).validate_tier(None) == "standard"

    def test_tier_is_normalized(self):
        """Test case and whitespace are ignored."""
        assert program_for(Role.HOMEOWNER).validate_tier(" Premium_Plus ") == "premium_plus"

    def test_unknown_tier(self):
        """Test a tier from another role is rejected."""
        with pytest.raises(ValueError, match="Unknown contractor tier"):
            program_for(Role.CONTRACTOR).validate_tier("premium")
