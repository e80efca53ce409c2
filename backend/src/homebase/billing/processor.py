"""Billing cycle processing: fans each billing event out to the referral engines."""

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable

from sqlalchemy.orm import Session

from homebase.accounts.models import SubscriptionStatus
from homebase.accounts.service import AccountService
from homebase.billing.models import BillingEvent, BillingEventStatus, BillingHistoryEvent
from homebase.errors import HomeBaseError, InvariantViolation, NotFound
from homebase.logging_config import get_logger
from homebase.referral.credits import CreditAccrualEngine
from homebase.referral.ledger import ReferralLedger
from homebase.referral.models import ReferralStatus, RewardKind
from homebase.referral.payouts import REFEREE_CANCELED_REASON, PayoutEligibilityEngine
from homebase.storage.db import Database, db

logger = get_logger(__name__)

_SUBSCRIPTION_STATUS = {
    BillingEventStatus.PAID: SubscriptionStatus.ACTIVE,
    BillingEventStatus.FAILED: SubscriptionStatus.PAST_DUE,
    BillingEventStatus.VOIDED: SubscriptionStatus.CANCELED,
}


class BillingCycleProcessor:
    """Applies one billing event for one account inside a session."""

    def __init__(self, session: Session):
        self.session = session
        self.accounts = AccountService(session)
        self.ledger = ReferralLedger(session)
        self.credits = CreditAccrualEngine(session)
        self.payouts = PayoutEligibilityEngine(session)

    def _find_duplicate(self, event: BillingEvent) -> BillingHistoryEvent | None:
        if not event.invoice_id:
            return None
        return self.session.query(BillingHistoryEvent).filter(
            BillingHistoryEvent.invoice_id == event.invoice_id
        ).first()

    def _last_event(self, account_id: int) -> BillingHistoryEvent | None:
        return self.session.query(BillingHistoryEvent).filter(
            BillingHistoryEvent.account_id == account_id
        ).order_by(BillingHistoryEvent.period_start.desc(), BillingHistoryEvent.id.desc()).first()

    def process_event(self, event: BillingEvent) -> tuple[BillingHistoryEvent, bool]:
        """Apply a billing event.

        Updates the account's subscription status, advances or resets every
        referral where the account is the referee, recomputes credits for
        affected credit referrers, and appends a billing history record.

        Args:
            event: Billing cycle event

        Returns:
            (history record, duplicate flag). A repeated invoice id, or a
            second paid event for a period already applied as paid, returns
            the existing record and changes nothing.

        Raises:
            NotFound: If the account does not exist
            InvariantViolation: If the event is older than the last applied period
        """
        account = self.accounts.get(event.account_id)

        duplicate = self._find_duplicate(event)
        if duplicate is not None:
            if duplicate.account_id != account.id:
                raise InvariantViolation(
                    f"Invoice {event.invoice_id} already recorded for another account"
                )
            logger.info("billing_event_duplicate", account_id=account.id, invoice_id=event.invoice_id)
            return duplicate, True

        last = self._last_event(account.id)
        if last is not None and event.period_start < last.period_start:
            raise InvariantViolation(
                f"Billing period {event.period_start.isoformat()} for account {account.id} "
                f"is older than the last applied period {last.period_start.isoformat()}"
            )
        if (
            last is not None
            and event.period_start == last.period_start
            and event.status == last.status == BillingEventStatus.PAID
        ):
            logger.info(
                "billing_period_already_paid",
                account_id=account.id,
                period_start=event.period_start.isoformat(),
                billing_history_event_id=last.id,
            )
            return last, True

        self.accounts.set_subscription_status(account, _SUBSCRIPTION_STATUS[event.status])

        referrers_to_recompute: set[int] = set()
        for relationship in self.ledger.for_referee(account.id):
            if relationship.is_voided:
                logger.info(
                    "billing_cycle_ignored_voided",
                    relationship_id=relationship.id,
                    account_id=account.id,
                )
                continue

            if relationship.kind == RewardKind.COMMISSION:
                self.payouts.on_billing_cycle(relationship, event.status, event.period_start)
                continue

            if event.status == BillingEventStatus.PAID:
                if self.ledger.activate(relationship):
                    referrers_to_recompute.add(relationship.referrer_id)
            elif event.status == BillingEventStatus.VOIDED:
                relationship.status = ReferralStatus.VOIDED
                relationship.voided_at = datetime.utcnow()
                relationship.void_reason = REFEREE_CANCELED_REASON
                referrers_to_recompute.add(relationship.referrer_id)
            relationship.last_cycle_period_start = event.period_start

        self.session.flush()

        for referrer_id in sorted(referrers_to_recompute):
            try:
                self.credits.recompute_credits(referrer_id)
            except NotFound as e:
                logger.warning("credit_recompute_skipped", referrer_id=referrer_id, error=str(e))

        history = BillingHistoryEvent(
            account_id=account.id,
            invoice_id=event.invoice_id,
            period_start=event.period_start,
            period_end=event.period_end,
            status=event.status,
            amount=event.amount,
        )
        self.session.add(history)
        self.session.flush()

        logger.info(
            "billing_event_processed",
            account_id=account.id,
            billing_history_event_id=history.id,
            status=event.status.value,
            period_start=event.period_start.isoformat(),
        )
        return history, False

    def history(self, account_id: int) -> list[BillingHistoryEvent]:
        """Billing history for an account, newest first."""
        self.accounts.get(account_id)
        return self.session.query(BillingHistoryEvent).filter(
            BillingHistoryEvent.account_id == account_id
        ).order_by(BillingHistoryEvent.period_start.desc(), BillingHistoryEvent.id.desc()).all()


@dataclass
class BatchResult:
    """Outcome of a batch run."""
    processed: list[int] = field(default_factory=list)
    duplicates: list[int] = field(default_factory=list)
    failed: dict[int, str] = field(default_factory=dict)
    skipped: int = 0


def process_batch(events: Iterable[BillingEvent], database: Database | None = None) -> BatchResult:
    """Process billing events for many accounts.

    Events are applied per account in ``period_start`` order, one
    transaction per event. A failure stops that account's remaining events
    (later periods would be applied out of order) but never other accounts.
    """
    database = database or db
    result = BatchResult()

    by_account: dict[int, list[BillingEvent]] = defaultdict(list)
    for event in events:
        by_account[event.account_id].append(event)

    for account_id in sorted(by_account):
        account_events = sorted(by_account[account_id], key=lambda e: e.period_start)
        for index, event in enumerate(account_events):
            try:
                with database.session() as session:
                    history, duplicate = BillingCycleProcessor(session).process_event(event)
            except HomeBaseError as e:
                logger.warning("billing_event_failed", account_id=account_id, error=str(e))
                result.failed[account_id] = str(e)
                result.skipped += len(account_events) - index - 1
                break
            except Exception as e:
                logger.error("billing_event_error", account_id=account_id, error=str(e))
                result.failed[account_id] = str(e)
                result.skipped += len(account_events) - index - 1
                break

            if duplicate:
                result.duplicates.append(history.id)
            else:
                result.processed.append(history.id)

    logger.info(
        "billing_batch_processed",
        processed=len(result.processed),
        duplicates=len(result.duplicates),
        failed=len(result.failed),
        skipped=result.skipped,
    )
    return result
