"""
Account Router - access level, soft delete, restore and permanent deletion
"""

import logging
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user
from backend.auth.access import get_user_access
from backend.utils.responses import success_response
from config.settings import settings
from crud.user import UserRepository
from database import get_db
from models.user import UserRecordView
from services.account_service import AccountService
from services.billing_client import StripeBillingClient, get_billing_client
from services.storage_service import LocalObjectStore, get_object_store
from services.trial_service import TrialService
from utils.shared_utils import get_cached, account_cache_key, utc_now

logger = logging.getLogger(__name__)

account_router = APIRouter(prefix="/api/account", tags=["account"])


@account_router.get("")
async def get_account(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Current access level and account fields.

    A trial whose window has passed is moved to ``expired`` on the way out.
    """
    user_id = current_user["user_id"]
    repo = UserRepository(db)

    async def load_snapshot():
        user = await repo.get_user_by_id(user_id)
        return user.to_dict() if user else None

    snapshot = await get_cached(account_cache_key(user_id), load_snapshot, settings.account_cache_ttl_seconds)
    if snapshot is None:
        access = get_user_access(None)
        return success_response({"user_id": user_id, "access": access.model_dump(mode="json")})

    view = UserRecordView(**snapshot)
    now = utc_now()
    if await TrialService(db, repo).expire_trial_if_needed(user_id, view, now=now):
        view = view.model_copy(update={"subscription_status": "expired"})

    access = get_user_access(view, now=now)
    return success_response({
        "user_id": user_id,
        "email": current_user.get("email"),
        "stickers": view.stickers,
        "access": access.model_dump(mode="json"),
    })


@account_router.post("/schedule-deletion")
async def schedule_account_deletion(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    billing_client: StripeBillingClient = Depends(get_billing_client),
    object_store: LocalObjectStore = Depends(get_object_store),
):
    """Start the grace period; the account is permanently deleted when it ends."""
    result = await AccountService(db, billing_client, object_store).schedule_for_deletion(current_user["user_id"])
    return success_response(result, message="Account scheduled for deletion")


@account_router.post("/restore")
async def restore_account(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    billing_client: StripeBillingClient = Depends(get_billing_client),
    object_store: LocalObjectStore = Depends(get_object_store),
):
    """Cancel a scheduled deletion during the grace period."""
    result = await AccountService(db, billing_client, object_store).restore(current_user["user_id"])
    return success_response(result, message="Account restored")


@account_router.post("/delete")
async def delete_account(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    billing_client: StripeBillingClient = Depends(get_billing_client),
    object_store: LocalObjectStore = Depends(get_object_store),
):
    """
    Permanently delete the caller's account now.

    Returns {"success": true} once the login is gone, even if some
    billing or storage cleanup only partly succeeded.
    """
    report = await AccountService(db, billing_client, object_store).permanently_delete(current_user["user_id"])
    if report.failed:
        logger.warning(f"Account {report.user_id} deleted with failed steps: {report.failed}")

    response = success_response({"success": True})
    response.delete_cookie("auth_token")
    return response
