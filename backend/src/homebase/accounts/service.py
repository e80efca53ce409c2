"""Account service: signup, lookups and plan changes."""

import secrets
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from homebase.accounts.models import AccountCreate, AccountRecord, Role, SubscriptionStatus
from homebase.errors import InvariantViolation, NotFound
from homebase.logging_config import get_logger
from homebase.referral.programs import program_for
from homebase.settings import settings

logger = get_logger(__name__)

# Exclude confusing characters: 0, O, I, l, 1
_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
_CODE_ATTEMPTS = 10


def _generate_code(length: int = 8) -> str:
    """Generate a readable referral code, e.g. ``K7QP2XMA``."""
    return "".join(secrets.choice(_CODE_ALPHABET) for _ in range(length))


class AccountService:
    """Reads and writes AccountRecords within one session."""

    def __init__(self, session: Session):
        self.session = session

    def get(self, account_id: int) -> AccountRecord:
        """Get an account by id.

        Raises:
            NotFound: If the account does not exist
        """
        account = self.session.get(AccountRecord, account_id)
        if account is None:
            raise NotFound("Account", account_id)
        return account

    def get_by_referral_code(self, code: str | None) -> AccountRecord | None:
        """Resolve a referral code (case-insensitive) to its owner."""
        if not code:
            return None
        code = code.upper().strip()
        return self.session.query(AccountRecord).filter(
            AccountRecord.referral_code == code
        ).first()

    def get_by_stripe_customer(self, customer_id: str) -> AccountRecord | None:
        """Map a billing-provider customer id to an account."""
        return self.session.query(AccountRecord).filter(
            AccountRecord.stripe_customer_id == customer_id
        ).first()

    def generate_unique_referral_code(self) -> str:
        """Generate a referral code not yet used by any account."""
        for _ in range(_CODE_ATTEMPTS):
            code = _generate_code()
            if self.get_by_referral_code(code) is None:
                return code
        raise InvariantViolation("Failed to generate unique referral code")

    def create_account(self, data: AccountCreate, now: datetime | None = None) -> AccountRecord:
        """Create an account at signup.

        Homeowners and contractors start a free trial; agents are affiliates
        and never subscribe. When ``data.referral_code`` is given, the
        referral relationship is recorded in the ledger.

        Args:
            data: Signup request
            now: Signup time (defaults to utcnow)

        Returns:
            The new account

        Raises:
            NotFound: If the referral code does not resolve to an account
            InvariantViolation: If the email is taken or the referral is not allowed
        """
        from homebase.referral.ledger import ReferralLedger

        now = now or datetime.utcnow()
        program = program_for(data.role)
        tier = program.validate_tier(data.subscription_tier_name)

        existing = self.session.query(AccountRecord).filter(
            AccountRecord.email == data.email
        ).first()
        if existing:
            raise InvariantViolation(f"Email {data.email} is already registered")

        referrer = None
        if data.referral_code:
            if data.role == Role.AGENT:
                raise InvariantViolation("Agents cannot sign up with a referral code")
            referrer = self.get_by_referral_code(data.referral_code)
            if referrer is None:
                raise NotFound("Referral code", data.referral_code)

        if data.role == Role.AGENT:
            status = SubscriptionStatus.ACTIVE
            trial_ends_at = None
            max_houses = None
        else:
            status = SubscriptionStatus.TRIALING
            trial_ends_at = now + timedelta(days=settings.trial_days)
            max_houses = settings.homeowner_default_max_houses if data.role == Role.HOMEOWNER else None

        account = AccountRecord(
            email=data.email,
            name=data.name,
            role=data.role,
            subscription_status=status,
            subscription_tier_name=tier,
            trial_ends_at=trial_ends_at,
            max_houses_allowed=max_houses,
            referral_code=self.generate_unique_referral_code(),
            stripe_customer_id=data.stripe_customer_id,
            payout_account_id=data.payout_account_id,
            signup_fingerprint=data.signup_fingerprint,
            created_at=now,
            updated_at=now,
        )
        self.session.add(account)
        self.session.flush()

        logger.info(
            "account_created",
            account_id=account.id,
            role=account.role.value,
            tier=tier,
            trial_ends_at=trial_ends_at.isoformat() if trial_ends_at else None,
        )

        if referrer is not None:
            ReferralLedger(self.session).record_signup(referrer, account, now=now)

        return account

    def change_plan(self, account_id: int, tier: str) -> AccountRecord:
        """Move an account to another tier and refresh its credit projection.

        A downgrade shrinks the credit cap, so credits are recomputed right
        away rather than left above the new cap.
        """
        from homebase.referral.credits import CreditAccrualEngine

        account = self.get(account_id)
        previous = account.subscription_tier_name
        account.subscription_tier_name = program_for(account.role).validate_tier(tier)
        account.updated_at = datetime.utcnow()
        self.session.flush()

        logger.info(
            "plan_changed",
            account_id=account_id,
            previous_tier=previous,
            tier=account.subscription_tier_name,
        )

        CreditAccrualEngine(self.session).recompute_credits(account_id)
        return account

    def set_subscription_status(self, account: AccountRecord, status: SubscriptionStatus) -> None:
        """Record a subscription status change from the billing provider."""
        if account.subscription_status == status:
            return
        previous = account.subscription_status
        account.subscription_status = status
        account.updated_at = datetime.utcnow()
        logger.info(
            "subscription_status_changed",
            account_id=account.id,
            previous=previous.value if previous else None,
            status=status.value,
        )
