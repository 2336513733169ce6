"""
Billing Service - reconciles Stripe subscription state with user records
"""

import logging
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession

from backend.utils.errors import (
    FailedPreconditionError,
    InvalidArgumentError,
    NotFoundError,
    PermissionDeniedError,
)
from config.settings import settings
from crud.user import UserRepository
from database_models import UserRecord
from models.billing import (
    BillingEvent,
    CheckoutCompletedEvent,
    SubscriptionDeletedEvent,
    SubscriptionSnapshot,
    SubscriptionUpdatedEvent,
)
from models.user import SubscriptionStatus
from services.billing_client import StripeBillingClient
from utils.shared_utils import invalidate_after_commit, invalidate_cached, account_cache_key

logger = logging.getLogger(__name__)

# Provider statuses that grant paid access locally
ENTITLED_PROVIDER_STATUSES = ("active", "trialing")


def local_subscription_status(provider_status: str) -> str:
    """Map a provider status to the stored status: active/trialing collapse to active."""
    if provider_status in ENTITLED_PROVIDER_STATUSES:
        return SubscriptionStatus.ACTIVE.value
    return provider_status


class BillingService:
    """
    Service class for billing-related business logic.

    ``upsert_subscription_state`` is the only write path for the subscription
    fields; webhooks, manual sync, checkout verification and reactivation all
    funnel through it.
    """

    def __init__(
        self,
        db: AsyncSession,
        billing_client: StripeBillingClient,
        user_repo: Optional[UserRepository] = None,
    ):
        """
        Initialize the billing service.

        Args:
            db: AsyncSession instance for database operations
            billing_client: Billing provider client
            user_repo: UserRepository instance (built from db if omitted)
        """
        self.db = db
        self.billing_client = billing_client
        self.user_repo = user_repo or UserRepository(db)

    async def _require_user(self, user_id: str) -> UserRecord:
        user = await self.user_repo.get_user_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found in database.")
        return user

    # ------------------------------------------------------------------
    # Single write path
    # ------------------------------------------------------------------

    async def upsert_subscription_state(
        self,
        user_id: str,
        customer_id: Optional[str],
        snapshot: SubscriptionSnapshot,
    ) -> UserRecord:
        """
        Overwrite every subscription field from one provider snapshot.

        The snapshot is treated as the whole current truth, not a delta, so
        applying the same snapshot twice leaves the record unchanged.

        Args:
            user_id: Principal id of the user
            customer_id: Billing customer the subscription belongs to
            snapshot: Provider subscription state

        Returns:
            Updated UserRecord
        """
        user = await self._require_user(user_id)
        status = local_subscription_status(snapshot.status)

        await self.user_repo.update_user(user, {
            "billing_customer_id": customer_id or snapshot.customer_id or user.billing_customer_id,
            "billing_subscription_id": snapshot.id,
            "billing_price_id": snapshot.price_id,
            "subscription_status": status,
            "billing_current_period_end": snapshot.current_period_end,
            "billing_cancel_at_period_end": snapshot.cancel_at_period_end,
        })
        invalidate_after_commit(self.db, account_cache_key(user_id))

        logger.info(f"Updated subscription for user {user_id}: status={status}")
        return user

    # ------------------------------------------------------------------
    # Webhook events
    # ------------------------------------------------------------------

    async def handle_webhook_event(self, event: BillingEvent) -> str:
        """
        Apply a verified billing event.

        Expected negative outcomes (no matching user, non-subscription
        checkout) are logged and reported through the return value so the
        webhook can still acknowledge delivery. Provider or database failures
        propagate.

        Returns:
            "upserted", "expired", "ignored", or "user_not_found"
        """
        if isinstance(event, CheckoutCompletedEvent):
            return await self._handle_checkout_completed(event)
        if isinstance(event, SubscriptionUpdatedEvent):
            return await self._handle_subscription_updated(event)
        if isinstance(event, SubscriptionDeletedEvent):
            return await self._handle_subscription_deleted(event)

        logger.debug(f"Ignoring billing event {event!r}")
        return "ignored"

    async def _handle_checkout_completed(self, event: CheckoutCompletedEvent) -> str:
        if event.mode != "subscription":
            logger.info(f"Checkout session {event.session_id} is mode={event.mode}; nothing to record")
            return "ignored"

        user_id = None
        if event.metadata_user_id:
            if await self.user_repo.get_user_by_id(event.metadata_user_id) is not None:
                user_id = event.metadata_user_id
            else:
                logger.warning(
                    f"Checkout session {event.session_id} names unknown user "
                    f"{event.metadata_user_id}; falling back to customer lookup"
                )

        if user_id is None:
            user = await self.user_repo.get_user_by_billing_customer_id(event.customer_id)
            if user is not None:
                user_id = user.id

        if user_id is None or not event.subscription_id:
            logger.error(f"Could not find user for completed checkout session {event.session_id}")
            return "user_not_found"

        subscription = await self.billing_client.retrieve_subscription(event.subscription_id)
        await self.upsert_subscription_state(
            user_id, event.customer_id, SubscriptionSnapshot.from_stripe(subscription)
        )
        return "upserted"

    async def _handle_subscription_updated(self, event: SubscriptionUpdatedEvent) -> str:
        customer_id = event.customer_id or event.subscription.customer_id
        user = await self.user_repo.get_user_by_billing_customer_id(customer_id)
        if user is None:
            logger.error(f"No user linked to billing customer {customer_id} (subscription updated)")
            return "user_not_found"

        await self.upsert_subscription_state(user.id, customer_id, event.subscription)
        return "upserted"

    async def _handle_subscription_deleted(self, event: SubscriptionDeletedEvent) -> str:
        user = await self.user_repo.get_user_by_billing_customer_id(event.customer_id)
        if user is None:
            logger.error(f"No user linked to billing customer {event.customer_id} (subscription deleted)")
            return "user_not_found"

        # The customer id stays so a later resubscription links back to this user
        await self.user_repo.update_user(user, {
            "subscription_status": SubscriptionStatus.EXPIRED.value,
            "billing_subscription_id": None,
            "billing_price_id": None,
            "billing_current_period_end": None,
        })
        invalidate_after_commit(self.db, account_cache_key(user.id))
        logger.info(f"Subscription deleted/expired for user {user.id}")
        return "expired"

    # ------------------------------------------------------------------
    # On-demand reconciliation
    # ------------------------------------------------------------------

    async def sync_subscription(self, user_id: str) -> str:
        """
        Pull the current subscription from the provider and record it.

        Returns:
            "synced" (known subscription refreshed), "synced_found" (found via
            the customer's subscriptions), or "no_subscription"
        """
        user = await self._require_user(user_id)

        if user.billing_subscription_id:
            subscription = await self.billing_client.retrieve_subscription(user.billing_subscription_id)
            await self.upsert_subscription_state(
                user_id, user.billing_customer_id, SubscriptionSnapshot.from_stripe(subscription)
            )
            return "synced"

        if user.billing_customer_id:
            subscriptions = await self.billing_client.list_subscriptions(user.billing_customer_id, limit=1)
            if subscriptions:
                await self.upsert_subscription_state(
                    user_id, user.billing_customer_id, SubscriptionSnapshot.from_stripe(subscriptions[0])
                )
                return "synced_found"

        return "no_subscription"

    async def reactivate_subscription(self, user_id: str) -> UserRecord:
        """
        Undo a pending cancel-at-period-end.

        Raises:
            FailedPreconditionError: no subscription on file
        """
        user = await self._require_user(user_id)
        if not user.billing_subscription_id:
            raise FailedPreconditionError("No active subscription found to reactivate.")

        subscription = await self.billing_client.update_subscription(
            user.billing_subscription_id, cancel_at_period_end=False
        )
        return await self.upsert_subscription_state(
            user_id, user.billing_customer_id, SubscriptionSnapshot.from_stripe(subscription)
        )

    # ------------------------------------------------------------------
    # Checkout and portal
    # ------------------------------------------------------------------

    async def create_checkout_session(
        self,
        user_id: str,
        email: Optional[str],
        price_id: Optional[str],
        success_url: Optional[str] = None,
        cancel_url: Optional[str] = None,
    ) -> str:
        """
        Create a subscription Checkout session for the user.

        A provider customer is created and stored on first use so repeated
        checkouts reuse it.

        Returns:
            Checkout URL
        """
        if not price_id:
            raise InvalidArgumentError("The function must be called with a priceId.")

        user = await self._require_user(user_id)

        customer_id = user.billing_customer_id
        if not customer_id:
            customer_id = await self.billing_client.create_customer(email, user_id)
            await self.user_repo.update_user(user, {"billing_customer_id": customer_id})
            # Persist now so a failure below does not orphan the customer
            await self.db.commit()
            invalidate_cached(account_cache_key(user_id))

        frontend_url = settings.frontend_url or "http://localhost:5173"
        return await self.billing_client.create_checkout_session(
            customer_id=customer_id,
            price_id=price_id,
            success_url=success_url or f"{frontend_url}/settings?session_id={{CHECKOUT_SESSION_ID}}&success=true",
            cancel_url=cancel_url or f"{frontend_url}/#pricing",
            user_id=user_id,
        )

    async def create_billing_portal_session(self, user_id: str, return_url: Optional[str] = None) -> str:
        """
        Create a Billing Portal session for the user's customer.

        Returns:
            Portal URL
        """
        user = await self.user_repo.get_user_by_id(user_id)
        if user is None or not user.billing_customer_id:
            raise FailedPreconditionError("No Stripe Customer ID found for this user.")

        frontend_url = settings.frontend_url or "http://localhost:5173"
        return await self.billing_client.create_portal_session(
            user.billing_customer_id, return_url or f"{frontend_url}/settings"
        )

    async def verify_checkout_session(self, user_id: str, session_id: Optional[str]) -> str:
        """
        Confirm a finished Checkout session and record its subscription,
        for when the webhook is delayed.

        The session must belong to the caller: its ``metadata.user_id`` when
        present, otherwise its customer must be the caller's stored customer.

        Returns:
            "subscription_updated" or "verified"

        Raises:
            PermissionDeniedError: the session belongs to another account
        """
        if not session_id:
            raise InvalidArgumentError("The function must be called with a sessionId.")

        user = await self._require_user(user_id)
        session = await self.billing_client.retrieve_checkout_session(session_id)
        logger.info(
            f"Verifying checkout session {session.get('id')} for user {user_id}: "
            f"payment_status={session.get('payment_status')}, mode={session.get('mode')}"
        )

        if session.get("mode") == "payment" and session.get("payment_status") != "paid":
            raise FailedPreconditionError("Session not paid.")

        customer = session.get("customer")
        customer_id = customer.get("id") if isinstance(customer, dict) else customer
        owner_id = (session.get("metadata") or {}).get("user_id")
        if owner_id:
            owned = owner_id == user_id
        else:
            owned = bool(customer_id) and customer_id == user.billing_customer_id
        if not owned:
            logger.warning(f"User {user_id} tried to verify checkout session {session.get('id')} of another account")
            raise PermissionDeniedError("Checkout session does not belong to this account.")

        subscription = session.get("subscription")
        if isinstance(subscription, dict):
            await self.upsert_subscription_state(
                user_id, customer_id, SubscriptionSnapshot.from_stripe(subscription)
            )
            return "subscription_updated"

        return "verified"
