"""
Access evaluation: maps a user record to the entitlement the client and
every server-side enforcement point act on.

The priority order is fixed and must stay identical wherever it is applied:

1. pro_override                       -> pro
2. subscription_status == "active"    -> pro
3. trial window set, now < trial_end  -> trial
4. trial window set, now >= trial_end -> expired
5. no first entry written yet         -> trial (pre-trial grace)
6. otherwise                          -> expired
"""
from datetime import datetime
from typing import Any, Optional

from models.user import AccessLevel, SubscriptionStatus, UserAccess
from utils.shared_utils import utc_now


def evaluate(user: Any, now: Optional[datetime] = None) -> AccessLevel:
    if user is None:
        return AccessLevel.EXPIRED

    if getattr(user, "pro_override", False) is True:
        return AccessLevel.PRO

    if getattr(user, "subscription_status", None) == SubscriptionStatus.ACTIVE.value:
        return AccessLevel.PRO

    trial_start_at = getattr(user, "trial_start_at", None)
    trial_end_at = getattr(user, "trial_end_at", None)
    if trial_start_at is not None and trial_end_at is not None:
        current = now or utc_now()
        if current < trial_end_at:
            return AccessLevel.TRIAL
        return AccessLevel.EXPIRED

    if not getattr(user, "has_written_first_entry", False):
        return AccessLevel.TRIAL

    return AccessLevel.EXPIRED


def can_create_entries(user: Any, now: Optional[datetime] = None) -> bool:
    return evaluate(user, now) != AccessLevel.EXPIRED


def get_user_access(user: Any, now: Optional[datetime] = None) -> UserAccess:
    """Access level plus the access and billing fields the client displays."""
    level = evaluate(user, now)
    if user is None:
        return UserAccess(access_level=level)

    return UserAccess(
        access_level=level,
        has_written_first_entry=bool(getattr(user, "has_written_first_entry", False)),
        trial_start_at=getattr(user, "trial_start_at", None),
        trial_end_at=getattr(user, "trial_end_at", None),
        subscription_status=getattr(user, "subscription_status", None),
        pro_override=bool(getattr(user, "pro_override", False)),
        billing_customer_id=getattr(user, "billing_customer_id", None),
        billing_subscription_id=getattr(user, "billing_subscription_id", None),
        billing_price_id=getattr(user, "billing_price_id", None),
        billing_current_period_end=getattr(user, "billing_current_period_end", None),
        billing_cancel_at_period_end=bool(getattr(user, "billing_cancel_at_period_end", False)),
        scheduled_for_deletion_at=getattr(user, "scheduled_for_deletion_at", None),
    )
