"""
Account Service - soft delete, restore, and permanent teardown of accounts.

Permanent deletion spans four systems (billing, object storage, database,
identity) with no shared transaction, so it runs as an ordered saga:
each step is logged and isolated, and only the final identity step is
allowed to fail the operation. A failure in an earlier step leaves some
data behind but still removes the login, which is the outcome that must
hold. Re-running the deletion picks up whatever an earlier run left.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict, List, Optional
from sqlalchemy.ext.asyncio import AsyncSession

from backend.utils.errors import NotFoundError
from config.settings import settings
from crud.entry import EntryRepository
from crud.user import UserRepository
from database_models import UserRecord
from services.account_trigger import AccountUpdateTrigger
from services.billing_client import StripeBillingClient
from services.identity_service import IdentityService
from services.storage_service import LocalObjectStore, stickers_prefix, entries_prefix
from utils.shared_utils import utc_now, invalidate_cached, account_cache_key

logger = logging.getLogger(__name__)


@dataclass
class DeletionReport:
    user_id: str
    completed: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)
    identity_already_absent: bool = False

    @property
    def success(self) -> bool:
        return "delete_identity" in self.completed


@dataclass
class _DeletionContext:
    user_id: str
    email: Optional[str] = None
    customer_id: Optional[str] = None
    report: Optional[DeletionReport] = None


@dataclass
class SagaStep:
    name: str
    run: Callable[[_DeletionContext], Awaitable[None]]
    required: bool = False
    uses_db: bool = False


class AccountService:
    """
    Deletion lifecycle for one account: Active -> GracePeriod -> Deleted,
    with GracePeriod -> Active on restore and Active -> Deleted for
    immediate deletion.
    """

    def __init__(
        self,
        db: AsyncSession,
        billing_client: StripeBillingClient,
        object_store: LocalObjectStore,
        trigger: Optional[AccountUpdateTrigger] = None,
    ):
        self.db = db
        self.billing_client = billing_client
        self.object_store = object_store
        self.user_repo = UserRepository(db)
        self.entry_repo = EntryRepository(db)
        self.identity = IdentityService(db)
        self.trigger = trigger or AccountUpdateTrigger(db, billing_client, self.user_repo)
        self.grace_period = timedelta(days=settings.deletion_grace_days)

    async def _require_user(self, user_id: str) -> UserRecord:
        user = await self.user_repo.get_user_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found in database.")
        return user

    # ------------------------------------------------------------------
    # Soft delete and restore
    # ------------------------------------------------------------------

    async def _set_schedule(self, user_id: str, scheduled_at: Optional[datetime]) -> dict:
        user = await self._require_user(user_id)
        before = user.to_dict()
        await self.user_repo.update_user(user, {"scheduled_for_deletion_at": scheduled_at})
        after = user.to_dict()
        await self.db.commit()
        invalidate_cached(account_cache_key(user_id))

        billing = await self.trigger.on_user_update(user_id, before, after)
        return {
            "scheduled_for_deletion_at": after["scheduled_for_deletion_at"],
            "billing": billing,
        }

    async def schedule_for_deletion(self, user_id: str, now: Optional[datetime] = None) -> dict:
        """
        Start the grace window. Billing is set to cancel at period end by
        the account update trigger.
        """
        scheduled_at = now or utc_now()
        logger.info(f"Scheduling user {user_id} for deletion at {scheduled_at}")
        return await self._set_schedule(user_id, scheduled_at)

    async def restore(self, user_id: str) -> dict:
        """
        Leave the grace window. A pending cancellation is undone if the
        subscription is still running.
        """
        logger.info(f"Restoring user {user_id}")
        return await self._set_schedule(user_id, None)

    # ------------------------------------------------------------------
    # Permanent deletion saga
    # ------------------------------------------------------------------

    async def permanently_delete(self, user_id: str) -> DeletionReport:
        """
        Remove the account from billing, storage, the database and the
        identity provider, in that order.

        Raises:
            ExternalServiceError: the identity principal could not be deleted
        """
        logger.info(f"Starting deletion for user: {user_id}")
        ctx = await self._load_context(user_id)

        steps = [
            SagaStep("cancel_billing", self._cancel_billing),
            SagaStep("delete_storage_prefixes", self._delete_storage_prefixes),
            SagaStep("delete_entry_images", self._delete_entry_images, uses_db=True),
            SagaStep("delete_entries", self._delete_entries, uses_db=True),
            SagaStep("delete_user_record", self._delete_user_record, uses_db=True),
            SagaStep("delete_identity", self._delete_identity, required=True),
        ]

        for step in steps:
            try:
                await step.run(ctx)
            except Exception as e:
                if step.required:
                    logger.error(f"Account deletion for {user_id} failed at {step.name}: {e}")
                    raise
                logger.error(f"Deletion step {step.name} failed for {user_id}: {e}", exc_info=True)
                ctx.report.failed[step.name] = str(e)
                if step.uses_db:
                    await self.db.rollback()
                continue
            ctx.report.completed.append(step.name)

        invalidate_cached(account_cache_key(user_id))
        logger.info(
            f"Deletion finished for {user_id}: completed={ctx.report.completed}, "
            f"failed={list(ctx.report.failed)}"
        )
        return ctx.report

    async def _load_context(self, user_id: str) -> _DeletionContext:
        ctx = _DeletionContext(user_id=user_id, report=DeletionReport(user_id=user_id))

        try:
            user = await self.user_repo.get_user_by_id(user_id)
        except Exception as e:
            logger.error(f"Could not load user record for {user_id}: {e}")
            await self.db.rollback()
            user = None
        if user is not None:
            ctx.customer_id = user.billing_customer_id

        try:
            principal = await self.identity.get_principal(user_id)
        except Exception as e:
            logger.warning(f"Could not fetch principal for {user_id} (maybe already deleted): {e}")
            await self.db.rollback()
            principal = None
        if principal is not None:
            ctx.email = principal.email

        if user is None and principal is None:
            logger.warning(
                f"User record AND principal not found for {user_id}. Proceeding with best-effort cleanup."
            )
        else:
            logger.info(f"User data found for {user_id}. Billing customer: {ctx.customer_id or 'None'}")
        return ctx

    async def _cancel_billing(self, ctx: _DeletionContext) -> None:
        customer_ids: List[str] = []
        if ctx.customer_id:
            customer_ids.append(ctx.customer_id)

        # Customers sharing the email catch links the record lost
        if ctx.email:
            try:
                for customer_id in await self.billing_client.list_customer_ids_by_email(ctx.email, limit=3):
                    if customer_id not in customer_ids:
                        customer_ids.append(customer_id)
            except Exception as e:
                logger.warning(f"Error listing customers by email for {ctx.user_id}: {e}")
                ctx.report.warnings.append(f"list_customers_by_email: {e}")

        if not customer_ids:
            logger.info(f"No billing customers for {ctx.user_id}. Skipping cancellation.")
            return

        logger.info(f"Checking subscriptions for {len(customer_ids)} customer ids: {customer_ids}")
        for customer_id in customer_ids:
            try:
                subscriptions = await self.billing_client.list_subscriptions(customer_id, status="active")
            except Exception as e:
                logger.error(f"Error listing subscriptions for customer {customer_id}: {e}")
                ctx.report.warnings.append(f"list_subscriptions {customer_id}: {e}")
                continue

            for subscription in subscriptions:
                try:
                    await self.billing_client.cancel_subscription(subscription["id"])
                    logger.info(f"Cancelled subscription: {subscription['id']}")
                except Exception as e:
                    logger.error(f"Failed to cancel subscription {subscription['id']}: {e}")
                    ctx.report.warnings.append(f"cancel_subscription {subscription['id']}: {e}")

    async def _delete_storage_prefixes(self, ctx: _DeletionContext) -> None:
        for prefix in (stickers_prefix(ctx.user_id), entries_prefix(ctx.user_id)):
            try:
                await self.object_store.delete_by_prefix(prefix)
            except Exception as e:
                logger.warning(f"Storage: error deleting {prefix}: {e}")
                ctx.report.warnings.append(f"delete_by_prefix {prefix}: {e}")

    async def _delete_entry_images(self, ctx: _DeletionContext) -> None:
        entries = await self.entry_repo.list_for_user(ctx.user_id)
        logger.info(f"Found {len(entries)} entries to scan for images.")

        urls = []
        for entry in entries:
            for url in list(entry.image_urls or []) + list(entry.photos or []):
                if self.object_store.is_managed_url(url) and url not in urls:
                    urls.append(url)

        for url in urls:
            try:
                await self.object_store.delete_by_url(url)
            except Exception as e:
                logger.warning(f"Could not delete entry image {url}: {e}")
                ctx.report.warnings.append(f"delete_by_url {url}: {e}")
        if urls:
            logger.info(f"Processed {len(urls)} entry images for {ctx.user_id}")

    async def _delete_entries(self, ctx: _DeletionContext) -> None:
        batch_size = settings.deletion_batch_size
        total = 0
        while True:
            deleted = await self.entry_repo.delete_batch(ctx.user_id, batch_size)
            if deleted == 0:
                break
            await self.db.commit()
            total += deleted
            logger.info(f"Deleted batch of {deleted} entries.")
        logger.info(f"Deleted {total} entries for {ctx.user_id}")

    async def _delete_user_record(self, ctx: _DeletionContext) -> None:
        await self.user_repo.delete_user(ctx.user_id)
        await self.db.commit()
        logger.info(f"User record deleted for {ctx.user_id}.")

    async def _delete_identity(self, ctx: _DeletionContext) -> None:
        deleted = await self.identity.delete_principal(ctx.user_id)
        ctx.report.identity_already_absent = not deleted

    # ------------------------------------------------------------------
    # Scheduled sweep
    # ------------------------------------------------------------------

    async def delete_if_still_due(self, user_id: str, cutoff: datetime) -> str:
        """
        Delete an account selected by the sweep, unless it was restored or
        rescheduled after selection.

        Returns:
            "deleted" or "skipped"
        """
        user = await self.user_repo.get_user_by_id(user_id)
        if user is None or user.scheduled_for_deletion_at is None or user.scheduled_for_deletion_at > cutoff:
            logger.info(f"User {user_id} no longer due for deletion; skipping")
            return "skipped"
        await self.permanently_delete(user_id)
        return "deleted"

    async def process_scheduled_deletions(
        self,
        now: Optional[datetime] = None,
        delete_account: Optional[Callable[[str, datetime], Awaitable[str]]] = None,
    ) -> dict:
        """
        Delete every account whose grace window has run out.

        Each account is attempted independently and bounded by
        DELETION_TIMEOUT_SECONDS; a failure is logged and the sweep moves on.

        Args:
            now: Override for the current time
            delete_account: Per-account deletion callable, for running each
                account on its own session (defaults to this service)

        Returns:
            Summary with the selected, deleted, skipped and failed user ids
        """
        cutoff = (now or utc_now()) - self.grace_period
        logger.info(f"Starting check for expired accounts. Cutoff time: {cutoff.isoformat()}")

        user_ids = await self.user_repo.list_scheduled_for_deletion_before(cutoff)
        summary = {"selected": list(user_ids), "deleted": [], "skipped": [], "failed": []}
        if not user_ids:
            logger.info("No accounts found to delete.")
            return summary

        logger.info(f"Found {len(user_ids)} accounts to delete.")
        shared_session = delete_account is None
        delete_account = delete_account or self.delete_if_still_due

        for user_id in user_ids:
            try:
                outcome = await asyncio.wait_for(
                    delete_account(user_id, cutoff), timeout=settings.deletion_timeout_seconds
                )
            except Exception as e:
                logger.error(f"Failed to delete user {user_id}: {e!r}", exc_info=True)
                summary["failed"].append(user_id)
                if shared_session:
                    await self.db.rollback()
                continue
            summary[outcome].append(user_id)

        logger.info(
            f"Completed check: deleted={len(summary['deleted'])}, "
            f"skipped={len(summary['skipped'])}, failed={len(summary['failed'])}"
        )
        return summary
