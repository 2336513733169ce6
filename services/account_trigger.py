"""
Account Update Trigger - pauses and resumes billing when an account enters
or leaves its deletion grace window.
"""
import logging
from typing import Any, Dict, Optional
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.utils.errors import ExternalServiceError
from crud.user import UserRepository
from services.billing_client import StripeBillingClient
from services.billing_service import ENTITLED_PROVIDER_STATUSES
from utils.shared_utils import invalidate_cached, account_cache_key

logger = logging.getLogger(__name__)


class AccountUpdateTrigger:
    """
    Reacts to a before/after pair of user record snapshots.

    Only ``scheduled_for_deletion_at`` is compared, and the trigger itself
    only writes ``billing_cancel_at_period_end``, so its own writes can never
    re-enter either branch.
    """

    def __init__(
        self,
        db: AsyncSession,
        billing_client: StripeBillingClient,
        user_repo: Optional[UserRepository] = None,
    ):
        self.db = db
        self.billing_client = billing_client
        self.user_repo = user_repo or UserRepository(db)

    async def on_user_update(self, user_id: str, before: Dict[str, Any], after: Dict[str, Any]) -> str:
        """
        Returns:
            "paused", "resumed", "noop", or "failed"
        """
        was_scheduled = bool(before.get("scheduled_for_deletion_at"))
        is_scheduled = bool(after.get("scheduled_for_deletion_at"))

        if not was_scheduled and is_scheduled:
            return await self._pause_billing(user_id, after)
        if was_scheduled and not is_scheduled:
            return await self._resume_billing(user_id, after)
        return "noop"

    async def _pause_billing(self, user_id: str, after: Dict[str, Any]) -> str:
        subscription_id = after.get("billing_subscription_id")
        logger.info(f"User {user_id} scheduled for deletion. Checking subscription.")
        if not subscription_id:
            return "noop"

        try:
            subscription = await self.billing_client.update_subscription(
                subscription_id, cancel_at_period_end=True
            )
            logger.info(f"Subscription {subscription.get('id', subscription_id)} set to cancel at period end.")
            await self.user_repo.update_fields(user_id, {"billing_cancel_at_period_end": True})
            await self.db.commit()
        except ExternalServiceError as e:
            logger.error(f"Error cancelling subscription for {user_id}: {e}")
            return "failed"
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Subscription {subscription_id} paused but the record was not updated for {user_id}: {e}", exc_info=True)
            return "failed"
        invalidate_cached(account_cache_key(user_id))
        return "paused"

    async def _resume_billing(self, user_id: str, after: Dict[str, Any]) -> str:
        subscription_id = after.get("billing_subscription_id")
        logger.info(f"User {user_id} restored account. Checking subscription.")
        if not subscription_id:
            return "noop"

        try:
            subscription = await self.billing_client.retrieve_subscription(subscription_id)

            # A subscription that already lapsed stays lapsed
            if not (
                subscription.get("cancel_at_period_end")
                and subscription.get("status") in ENTITLED_PROVIDER_STATUSES
            ):
                logger.info(
                    f"Subscription {subscription_id} not restorable "
                    f"(status={subscription.get('status')}, "
                    f"cancel_at_period_end={subscription.get('cancel_at_period_end')})"
                )
                return "noop"

            updated = await self.billing_client.update_subscription(
                subscription_id, cancel_at_period_end=False
            )
            logger.info(f"Subscription {updated.get('id', subscription_id)} reactivated (cancel_at_period_end: false).")
            await self.user_repo.update_fields(user_id, {"billing_cancel_at_period_end": False})
            await self.db.commit()
        except ExternalServiceError as e:
            logger.error(f"Error reactivating subscription for {user_id}: {e}")
            return "failed"
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Subscription {subscription_id} resumed but the record was not updated for {user_id}: {e}", exc_info=True)
            return "failed"
        invalidate_cached(account_cache_key(user_id))
        return "resumed"
