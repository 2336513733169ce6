"""
Billing provider payloads, validated at the webhook boundary.

Stripe delivers events as loosely-typed JSON. Only the three kinds the
account lifecycle consumes are modelled; ``parse_billing_event`` returns
None for everything else so new event kinds are ignored rather than fatal.
"""
import logging
from datetime import datetime, timezone
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"
SUBSCRIPTION_UPDATED = "customer.subscription.updated"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"


def _from_epoch(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc).replace(tzinfo=None)


def _customer_id(value: Any) -> Optional[str]:
    # Expanded objects carry the id inside; plain references are strings
    if isinstance(value, dict):
        return value.get("id")
    return value


class SubscriptionSnapshot(BaseModel):
    """The provider's view of one subscription at a point in time."""
    id: str
    status: str
    customer_id: Optional[str] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    price_id: Optional[str] = None

    @classmethod
    def from_stripe(cls, data: Dict[str, Any]) -> "SubscriptionSnapshot":
        items = (data.get("items") or {}).get("data") or []
        first_item = items[0] if items else {}
        price = first_item.get("price") or {}
        price_id = price.get("id") if isinstance(price, dict) else price

        # Newer API versions report the billing period on the item instead
        period_end = data.get("current_period_end")
        if period_end is None:
            period_end = first_item.get("current_period_end")

        return cls(
            id=data["id"],
            status=data.get("status") or "",
            customer_id=_customer_id(data.get("customer")),
            current_period_end=_from_epoch(period_end),
            cancel_at_period_end=bool(data.get("cancel_at_period_end")),
            price_id=price_id,
        )


class CheckoutCompletedEvent(BaseModel):
    kind: Literal["checkout.session.completed"]
    event_id: Optional[str] = None
    session_id: str
    mode: Optional[str] = None
    customer_id: Optional[str] = None
    subscription_id: Optional[str] = None
    metadata_user_id: Optional[str] = None


class SubscriptionUpdatedEvent(BaseModel):
    kind: Literal["customer.subscription.updated"]
    event_id: Optional[str] = None
    customer_id: Optional[str] = None
    subscription: SubscriptionSnapshot


class SubscriptionDeletedEvent(BaseModel):
    kind: Literal["customer.subscription.deleted"]
    event_id: Optional[str] = None
    customer_id: Optional[str] = None
    subscription_id: Optional[str] = None


BillingEvent = Annotated[
    Union[CheckoutCompletedEvent, SubscriptionUpdatedEvent, SubscriptionDeletedEvent],
    Field(discriminator="kind"),
]

_billing_event_adapter = TypeAdapter(BillingEvent)


def parse_billing_event(payload: Dict[str, Any]) -> Optional[BillingEvent]:
    """
    Convert a verified Stripe event payload into a BillingEvent.

    Returns None for event kinds this service does not consume.
    Raises ValueError when a consumed kind is missing required fields.
    """
    kind = payload.get("type")
    obj = (payload.get("data") or {}).get("object") or {}
    event_id = payload.get("id")

    if kind == CHECKOUT_COMPLETED:
        subscription = obj.get("subscription")
        if isinstance(subscription, dict):
            subscription = subscription.get("id")
        raw = {
            "kind": kind,
            "event_id": event_id,
            "session_id": obj.get("id"),
            "mode": obj.get("mode"),
            "customer_id": _customer_id(obj.get("customer")),
            "subscription_id": subscription,
            "metadata_user_id": (obj.get("metadata") or {}).get("user_id"),
        }
    elif kind == SUBSCRIPTION_UPDATED:
        raw = {
            "kind": kind,
            "event_id": event_id,
            "customer_id": _customer_id(obj.get("customer")),
            "subscription": SubscriptionSnapshot.from_stripe(obj) if obj.get("id") else None,
        }
    elif kind == SUBSCRIPTION_DELETED:
        raw = {
            "kind": kind,
            "event_id": event_id,
            "customer_id": _customer_id(obj.get("customer")),
            "subscription_id": obj.get("id"),
        }
    else:
        logger.debug(f"Ignoring unhandled billing event type: {kind}")
        return None

    try:
        return _billing_event_adapter.validate_python(raw)
    except ValidationError as e:
        raise ValueError(f"Malformed {kind} event: {e}") from e
