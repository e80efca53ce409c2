"""Shared FastAPI dependencies."""

import secrets

from fastapi import Header, HTTPException, status

from homebase.logging_config import get_logger
from homebase.referral.transfers import PayoutTransferClient, StripeTransferClient
from homebase.settings import settings

logger = get_logger(__name__)


def require_admin(x_admin_key: str | None = Header(default=None, alias="X-Admin-Key")) -> None:
    """Require the admin API key for fraud flags and payout operations.

    Raises:
        HTTPException: 401 if the key is missing, 403 if it is wrong
    """
    if not x_admin_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Admin key required",
        )
    if not secrets.compare_digest(x_admin_key, settings.admin_api_key):
        logger.warning("admin_key_rejected")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )


def get_transfer_client() -> PayoutTransferClient:
    """Payout transfer collaborator used by admin payout endpoints."""
    return StripeTransferClient()
