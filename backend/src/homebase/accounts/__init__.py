"""Account records for HomeBase users.

Every homeowner, contractor and agent has one AccountRecord holding
subscription state and the referral code others sign up with.
"""

from homebase.accounts.models import AccountRecord, Role, SubscriptionStatus

__all__ = ["AccountRecord", "Role", "SubscriptionStatus"]
