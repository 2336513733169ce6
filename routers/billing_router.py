"""
Billing Router - Stripe webhook and the billing operations callable by the client
Webhook is defined FIRST to avoid middleware conflicts
"""

import logging
from typing import Optional
from fastapi import APIRouter, Request, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession
import stripe

from auth import get_current_user
from backend.utils.responses import success_response
from database import get_db
from models.billing import parse_billing_event
from services.billing_client import StripeBillingClient, get_billing_client
from services.billing_service import BillingService

logger = logging.getLogger(__name__)

# Create billing router
billing_router = APIRouter(prefix="/api/billing", tags=["billing"])


class CheckoutSessionRequest(BaseModel):
    price_id: Optional[str] = Field(default=None, alias="priceId")
    success_url: Optional[str] = Field(default=None, alias="successUrl")
    cancel_url: Optional[str] = Field(default=None, alias="cancelUrl")

    model_config = {"populate_by_name": True}


class PortalRequest(BaseModel):
    return_url: Optional[str] = Field(default=None, alias="returnUrl")

    model_config = {"populate_by_name": True}


class VerifySessionRequest(BaseModel):
    session_id: Optional[str] = Field(default=None, alias="sessionId")

    model_config = {"populate_by_name": True}


# WEBHOOK ENDPOINT - MUST BE DEFINED FIRST TO AVOID MIDDLEWARE CONFLICTS
@billing_router.post("/webhook")
async def stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    billing_client: StripeBillingClient = Depends(get_billing_client),
):
    """
    Handle Stripe webhook events with signature verification.

    - Missing or invalid signature, or an unparseable payload: HTTP 400, nothing processed.
    - Verified event: HTTP 200 {"received": true}, including unknown event
      kinds and events whose user cannot be resolved (logged server-side).
    - Business logic raised: HTTP 500 so Stripe retries the delivery.
    """
    # Get raw request body (required for signature verification)
    payload = await request.body()

    stripe_signature = request.headers.get("stripe-signature")
    if not stripe_signature:
        logger.error("Webhook signature verification failed: missing Stripe-Signature header")
        return JSONResponse(status_code=400, content={"received": False, "error": "Missing signature header"})

    try:
        raw_event = billing_client.construct_event(payload, stripe_signature)
        event = parse_billing_event(raw_event)
    except stripe.SignatureVerificationError as e:
        logger.error(f"Webhook signature verification failed: {e}")
        return JSONResponse(status_code=400, content={"received": False, "error": "Invalid webhook signature"})
    except ValueError as e:
        logger.error(f"Invalid webhook payload: {e}")
        return JSONResponse(status_code=400, content={"received": False, "error": "Invalid payload"})

    event_type = raw_event.get("type")
    logger.info(f"Received Stripe webhook: {event_type} ({raw_event.get('id')})")

    if event is None:
        return JSONResponse(status_code=200, content={"received": True})

    try:
        outcome = await BillingService(db, billing_client).handle_webhook_event(event)
        await db.commit()
    except Exception as e:
        logger.error(f"Webhook processing error for {event_type}: {e}", exc_info=True)
        await db.rollback()
        return JSONResponse(status_code=500, content={"received": False, "error": "Webhook processing error"})

    logger.info(f"Webhook {event_type} processed: {outcome}")
    return JSONResponse(status_code=200, content={"received": True})


@billing_router.post("/create-checkout-session")
async def create_checkout_session(
    request: CheckoutSessionRequest,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    billing_client: StripeBillingClient = Depends(get_billing_client),
):
    """
    Create a Stripe Checkout session for a subscription.

    Returns:
        {"url": <checkout url>}
    """
    url = await BillingService(db, billing_client).create_checkout_session(
        user_id=current_user["user_id"],
        email=current_user.get("email"),
        price_id=request.price_id,
        success_url=request.success_url,
        cancel_url=request.cancel_url,
    )
    return success_response({"url": url})


@billing_router.post("/portal")
async def create_billing_portal_session(
    request: PortalRequest,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    billing_client: StripeBillingClient = Depends(get_billing_client),
):
    """
    Create a Stripe Billing Portal session.

    Returns:
        {"url": <portal url>}
    """
    url = await BillingService(db, billing_client).create_billing_portal_session(
        current_user["user_id"], request.return_url
    )
    return success_response({"url": url})


@billing_router.post("/verify-session")
async def verify_checkout_session(
    request: VerifySessionRequest,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    billing_client: StripeBillingClient = Depends(get_billing_client),
):
    """
    Verify a Checkout session by id, for when the webhook is delayed.

    Returns:
        {"success": true, "status": "subscription_updated" | "verified"}
    """
    status = await BillingService(db, billing_client).verify_checkout_session(
        current_user["user_id"], request.session_id
    )
    return success_response({"success": True, "status": status})


@billing_router.post("/reactivate")
async def reactivate_subscription(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    billing_client: StripeBillingClient = Depends(get_billing_client),
):
    """
    Undo a pending cancel-at-period-end.

    Returns:
        {"success": true}
    """
    await BillingService(db, billing_client).reactivate_subscription(current_user["user_id"])
    return success_response({"success": True})


@billing_router.post("/sync")
async def sync_subscription(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    billing_client: StripeBillingClient = Depends(get_billing_client),
):
    """
    Refresh subscription state from Stripe.

    Returns:
        {"success": true, "status": "synced" | "synced_found" | "no_subscription"}
    """
    status = await BillingService(db, billing_client).sync_subscription(current_user["user_id"])
    return success_response({"success": True, "status": status})
