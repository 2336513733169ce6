"""
Trial Service for managing the 30-day trial that starts with a user's first entry
"""
import logging
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Optional
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from crud.user import UserRepository
from models.user import SubscriptionStatus
from utils.shared_utils import utc_now, invalidate_after_commit, account_cache_key

logger = logging.getLogger(__name__)


class TrialStartResult(str, Enum):
    STARTED = "started"
    SKIPPED = "skipped"
    NOT_FOUND = "not_found"


class TrialService:
    """
    Service for managing user trial periods.
    Handles trial start and expiry.
    """

    def __init__(self, db: AsyncSession, user_repo: Optional[UserRepository] = None):
        """
        Initialize the trial service with database session and user repository.

        Args:
            db: AsyncSession instance for database operations
            user_repo: UserRepository instance for user operations
        """
        self.db = db
        self.user_repo = user_repo or UserRepository(db)
        self.trial_length = timedelta(days=settings.trial_days)

    async def start_trial_if_eligible(self, user_id: str, now: Optional[datetime] = None) -> TrialStartResult:
        """
        Start the trial window for a user on their first entry.

        The eligibility check and the write are one conditional UPDATE, so two
        concurrent first-entry saves produce exactly one set of trial fields.
        A user with pro_override or an existing trial is skipped, not an error.

        Args:
            user_id: Principal id of the user
            now: Override for the current time

        Returns:
            TrialStartResult.STARTED, SKIPPED, or NOT_FOUND
        """
        start = now or utc_now()
        changed = await self.user_repo.update_fields(
            user_id,
            {
                "has_written_first_entry": True,
                "trial_start_at": start,
                "trial_end_at": start + self.trial_length,
                "subscription_status": SubscriptionStatus.TRIALING.value,
            },
            trial_start_at=None,
            pro_override=False,
        )

        if changed:
            invalidate_after_commit(self.db, account_cache_key(user_id))
            logger.info(f"Trial started for user {user_id}, ends {start + self.trial_length}")
            return TrialStartResult.STARTED

        user = await self.user_repo.get_user_by_id(user_id)
        if user is None:
            logger.warning(f"Cannot start trial: no user record for {user_id}")
            return TrialStartResult.NOT_FOUND

        logger.debug(f"Trial start skipped for user {user_id}")
        return TrialStartResult.SKIPPED

    async def expire_trial_if_needed(self, user_id: str, user: Any, now: Optional[datetime] = None) -> bool:
        """
        Move a lapsed trial to ``expired``. Cheap and idempotent; called on
        every read of the account.

        Args:
            user_id: Principal id of the user
            user: The record (or view) as the caller last read it
            now: Override for the current time

        Returns:
            True if this call changed the status
        """
        if user is None:
            return False
        if getattr(user, "subscription_status", None) != SubscriptionStatus.TRIALING.value:
            return False

        trial_end_at = getattr(user, "trial_end_at", None)
        current = now or utc_now()
        if trial_end_at is None or not current > trial_end_at:
            return False

        changed = await self.user_repo.update_fields(
            user_id,
            {"subscription_status": SubscriptionStatus.EXPIRED.value},
            subscription_status=SubscriptionStatus.TRIALING.value,
        )
        if changed:
            invalidate_after_commit(self.db, account_cache_key(user_id))
            logger.info(f"Trial expired for user {user_id}")
        return bool(changed)

    def trial_days_remaining(self, user: Any, now: Optional[datetime] = None) -> Optional[int]:
        """
        Whole days left in the trial window (negative once it has passed),
        or None if the trial has not started.
        """
        trial_end_at = getattr(user, "trial_end_at", None)
        if trial_end_at is None:
            return None
        remaining = (trial_end_at - (now or utc_now())).total_seconds() / 86400
        return int(remaining)
