"""Payout transfer collaborators."""

from decimal import Decimal
from typing import Protocol

import stripe

from homebase.errors import TransferFailure
from homebase.logging_config import get_logger
from homebase.settings import settings

logger = get_logger(__name__)


class PayoutTransferClient(Protocol):
    """Moves money to an agent. Returns a transfer reference or raises TransferFailure."""

    def transfer(self, payout_id: int, amount: Decimal, destination: str | None, attempt: int = 1) -> str:
        ...


class StripeTransferClient:
    """Sends agent commissions as Stripe Connect transfers."""

    def __init__(self, api_key: str | None = None, currency: str | None = None):
        self.api_key = api_key or settings.stripe_secret_key
        self.currency = currency or settings.payout_currency

    def transfer(self, payout_id: int, amount: Decimal, destination: str | None, attempt: int = 1) -> str:
        if not self.api_key:
            raise TransferFailure("Stripe is not configured")
        if not destination:
            raise TransferFailure("Agent has no connected payout account")

        try:
            transfer = stripe.Transfer.create(
                api_key=self.api_key,
                amount=int((amount * 100).to_integral_value()),
                currency=self.currency,
                destination=destination,
                metadata={"payout_id": str(payout_id)},
                idempotency_key=f"agent-payout-{payout_id}-{attempt}",
            )
        except stripe.StripeError as e:
            logger.error("stripe_transfer_failed", payout_id=payout_id, error=str(e))
            raise TransferFailure(str(e)) from e

        logger.info("stripe_transfer_created", payout_id=payout_id, transfer_id=transfer.id)
        return transfer.id
