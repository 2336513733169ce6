"""
Scheduled job that permanently deletes accounts whose grace window ran out.
"""
import logging
from datetime import datetime
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.ext.asyncio import async_sessionmaker

from config.settings import settings
from database import AsyncSessionLocal
from services.account_service import AccountService
from services.billing_client import StripeBillingClient, get_billing_client
from services.storage_service import LocalObjectStore, get_object_store

logger = logging.getLogger(__name__)

DELETION_JOB_ID = "process_scheduled_deletions"


async def run_scheduled_deletions(
    session_factory: async_sessionmaker = AsyncSessionLocal,
    billing_client: Optional[StripeBillingClient] = None,
    object_store: Optional[LocalObjectStore] = None,
    now: Optional[datetime] = None,
) -> dict:
    """
    Select due accounts, then delete each one on its own session so a
    failed or timed-out account leaves no broken state for the next.
    """
    billing_client = billing_client or get_billing_client()
    object_store = object_store or get_object_store()

    async def delete_account(user_id: str, cutoff: datetime) -> str:
        async with session_factory() as session:
            service = AccountService(session, billing_client, object_store)
            return await service.delete_if_still_due(user_id, cutoff)

    async with session_factory() as session:
        service = AccountService(session, billing_client, object_store)
        return await service.process_scheduled_deletions(now=now, delete_account=delete_account)


async def _scheduled_run() -> None:
    try:
        await run_scheduled_deletions()
    except Exception as e:
        logger.error(f"Scheduled deletion run failed: {e}", exc_info=True)


def create_scheduler() -> AsyncIOScheduler:
    """
    Build the scheduler with the daily deletion sweep registered.
    The caller starts and shuts it down.
    """
    scheduler = AsyncIOScheduler(timezone=settings.deletion_sweep_timezone)
    scheduler.add_job(
        _scheduled_run,
        trigger=CronTrigger(
            hour=settings.deletion_sweep_hour,
            minute=0,
            timezone=settings.deletion_sweep_timezone,
        ),
        id=DELETION_JOB_ID,
        name="Delete accounts past their grace period",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        misfire_grace_time=3600,
    )
    return scheduler
