"""Request throttling for public endpoints.

Referral code validation is public and guessable, so it gets its own tighter
limit on top of the default. Limits apply only in production.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from homebase.settings import settings

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[settings.rate_limit_default],
    storage_uri="memory://",
    enabled=settings.env == "production",
)

# Applied with @limiter.limit on GET /referral/validate/{code}
REFERRAL_CODE_CHECK_LIMIT = settings.referral_code_check_limit
