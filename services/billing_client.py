"""
Stripe RPC client.

A thin wrapper over the Stripe SDK that returns plain dicts and converts
SDK failures into ExternalServiceError. Every call passes the API key
explicitly, so nothing depends on module-level ``stripe.api_key`` state and
tests can swap in a fake through the ``get_billing_client`` dependency.
"""

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

import stripe

from backend.utils.errors import ExternalServiceError
from config.settings import settings

logger = logging.getLogger(__name__)


def _to_dict(obj: Any) -> Dict[str, Any]:
    if obj is None:
        return {}
    if isinstance(obj, dict) and not isinstance(obj, stripe.StripeObject):
        return obj
    # StripeObject renders itself as recursive JSON
    return json.loads(str(obj))


class StripeBillingClient:
    """
    Billing provider operations used by the account lifecycle.
    """

    def __init__(self, api_key: Optional[str], webhook_secret: Optional[str] = None):
        self.api_key = api_key
        self.webhook_secret = webhook_secret

    def _require_key(self, action: str) -> str:
        if not self.api_key:
            logger.error(f"STRIPE_SECRET_KEY is not set. Cannot {action}.")
            raise ExternalServiceError(f"STRIPE_SECRET_KEY is not set. Cannot {action}.")
        return self.api_key

    async def _call(self, action: str, func, *args, **kwargs) -> Any:
        api_key = self._require_key(action)
        try:
            # The SDK is blocking; keep it off the event loop
            return await asyncio.to_thread(func, *args, api_key=api_key, **kwargs)
        except stripe.StripeError as e:
            logger.error(f"Stripe call failed ({action}): {e}")
            raise ExternalServiceError(getattr(e, "user_message", None) or str(e)) from e

    # ------------------------------------------------------------------
    # Customers
    # ------------------------------------------------------------------

    async def create_customer(self, email: Optional[str], user_id: str) -> str:
        customer = await self._call(
            "create customer",
            stripe.Customer.create,
            email=email,
            metadata={"user_id": user_id},
        )
        return customer.id

    async def list_customer_ids_by_email(self, email: str, limit: int = 3) -> List[str]:
        customers = await self._call(
            "list customers", stripe.Customer.list, email=email, limit=limit
        )
        return [c.id for c in customers.data]

    # ------------------------------------------------------------------
    # Checkout and portal sessions
    # ------------------------------------------------------------------

    async def create_checkout_session(
        self,
        customer_id: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
        user_id: str,
    ) -> str:
        session = await self._call(
            "create checkout session",
            stripe.checkout.Session.create,
            mode="subscription",
            payment_method_types=["card"],
            customer=customer_id,
            line_items=[{
                "price": price_id,
                "quantity": 1,
            }],
            success_url=success_url,
            cancel_url=cancel_url,
            allow_promotion_codes=True,
            metadata={"user_id": user_id},
            subscription_data={"metadata": {"user_id": user_id}},
        )
        return session.url

    async def retrieve_checkout_session(self, session_id: str) -> Dict[str, Any]:
        session = await self._call(
            "retrieve checkout session",
            stripe.checkout.Session.retrieve,
            session_id,
            expand=["subscription"],
        )
        return _to_dict(session)

    async def create_portal_session(self, customer_id: str, return_url: str) -> str:
        session = await self._call(
            "create billing portal session",
            stripe.billing_portal.Session.create,
            customer=customer_id,
            return_url=return_url,
        )
        return session.url

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    async def retrieve_subscription(self, subscription_id: str) -> Dict[str, Any]:
        subscription = await self._call(
            "retrieve subscription", stripe.Subscription.retrieve, subscription_id
        )
        return _to_dict(subscription)

    async def list_subscriptions(
        self,
        customer_id: str,
        status: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"customer": customer_id}
        if status:
            params["status"] = status
        if limit:
            params["limit"] = limit
        subscriptions = await self._call("list subscriptions", stripe.Subscription.list, **params)
        return [_to_dict(s) for s in subscriptions.data]

    async def update_subscription(self, subscription_id: str, cancel_at_period_end: bool) -> Dict[str, Any]:
        subscription = await self._call(
            "update subscription",
            stripe.Subscription.modify,
            subscription_id,
            cancel_at_period_end=cancel_at_period_end,
        )
        return _to_dict(subscription)

    async def cancel_subscription(self, subscription_id: str) -> Dict[str, Any]:
        subscription = await self._call(
            "cancel subscription", stripe.Subscription.cancel, subscription_id
        )
        return _to_dict(subscription)

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    def construct_event(self, payload: bytes, signature: str) -> Dict[str, Any]:
        """
        Verify a webhook signature and return the event payload.

        Raises:
            stripe.SignatureVerificationError: signature does not match
            ValueError: payload is not valid JSON, or no webhook secret is configured
        """
        if not self.webhook_secret:
            raise ValueError("STRIPE_WEBHOOK_SECRET is not set")
        stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        return json.loads(payload)


def get_billing_client() -> StripeBillingClient:
    """FastAPI dependency: a billing client built from current settings."""
    return StripeBillingClient(
        api_key=settings.stripe_secret_key,
        webhook_secret=settings.stripe_webhook_secret,
    )
