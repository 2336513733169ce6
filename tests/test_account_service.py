"""
Unit tests for the deletion lifecycle: soft delete, restore, the teardown
saga, and the scheduled sweep
"""
import asyncio
import time
from datetime import datetime, timedelta

import pytest

from backend.utils.errors import ExternalServiceError, NotFoundError
from crud.entry import EntryRepository
from crud.principal import PrincipalRepository
from crud.user import UserRepository
from jobs.deletion_jobs import run_scheduled_deletions
from services.account_service import AccountService

NOW = datetime(2025, 6, 15, 3, 0, 0)


async def reload(test_db, user_id):
    test_db.expire_all()
    return await UserRepository(test_db).get_user_by_id(user_id)


@pytest.fixture
def service(test_db, billing_client, object_store):
    return AccountService(test_db, billing_client, object_store)


# ---------------------------------------------------------------------------
# Soft delete and restore
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_schedule_sets_marker_and_pauses_billing(service, test_db, make_user, billing_client):
    user = await make_user(billing_customer_id="cus_1", billing_subscription_id="sub_1", subscription_status="active")
    billing_client.add_subscription("sub_1", "cus_1")

    result = await service.schedule_for_deletion(user.id, now=NOW)

    assert result["billing"] == "paused"
    assert result["scheduled_for_deletion_at"] == NOW.isoformat()
    stored = await reload(test_db, user.id)
    assert stored.scheduled_for_deletion_at == NOW
    assert stored.billing_cancel_at_period_end is True
    assert billing_client.calls_to("update_subscription") == [("sub_1", True)]


@pytest.mark.asyncio
async def test_restore_clears_marker_and_resumes_billing(service, test_db, make_user, billing_client):
    user = await make_user(
        billing_customer_id="cus_1",
        billing_subscription_id="sub_1",
        subscription_status="active",
        scheduled_for_deletion_at=NOW - timedelta(days=3),
        billing_cancel_at_period_end=True,
    )
    billing_client.add_subscription("sub_1", "cus_1", cancel_at_period_end=True)

    result = await service.restore(user.id)

    assert result == {"scheduled_for_deletion_at": None, "billing": "resumed"}
    stored = await reload(test_db, user.id)
    assert stored.scheduled_for_deletion_at is None
    assert stored.billing_cancel_at_period_end is False


@pytest.mark.asyncio
async def test_schedule_unknown_user_raises(service):
    with pytest.raises(NotFoundError):
        await service.schedule_for_deletion("ghost", now=NOW)


@pytest.mark.asyncio
async def test_billing_failure_does_not_undo_schedule(service, test_db, make_user, billing_client):
    user = await make_user(billing_subscription_id="sub_1")
    billing_client.add_subscription("sub_1", "cus_1")
    billing_client.fail_on.add("update_subscription")

    result = await service.schedule_for_deletion(user.id, now=NOW)

    assert result["billing"] == "failed"
    stored = await reload(test_db, user.id)
    assert stored.scheduled_for_deletion_at == NOW
    assert stored.billing_cancel_at_period_end is False


# ---------------------------------------------------------------------------
# Permanent deletion saga
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_permanent_delete_removes_everything(service, test_db, make_user, billing_client, object_store):
    user = await make_user(email="gone@example.com", billing_customer_id="cus_1", billing_subscription_id="sub_1")
    billing_client.add_subscription("sub_1", "cus_1")
    billing_client.add_subscription("sub_old", "cus_email")
    billing_client.customers_by_email["gone@example.com"] = ["cus_1", "cus_email"]

    sticker_url = await object_store.put(f"stickers/{user.id}/a.webp", b"sticker")
    image_url = await object_store.put(f"entries/{user.id}/e1.jpg", b"image")
    legacy_url = await object_store.put(f"uploads/{user.id}/legacy.jpg", b"legacy")
    entries = EntryRepository(test_db)
    await entries.create_entry(user.id, text="one", image_urls=[image_url], sticker_id=sticker_url)
    await entries.create_entry(user.id, text="two", photos=[legacy_url, "https://elsewhere.test/x.jpg"])
    await test_db.commit()

    report = await service.permanently_delete(user.id)

    assert report.success
    assert report.failed == {}
    assert sorted(args[0] for args in billing_client.calls_to("cancel_subscription")) == ["sub_1", "sub_old"]
    assert not await object_store.exists(f"stickers/{user.id}/a.webp")
    assert not await object_store.exists(f"entries/{user.id}/e1.jpg")
    assert not await object_store.exists(f"uploads/{user.id}/legacy.jpg")
    assert await EntryRepository(test_db).count_for_user(user.id) == 0
    assert await reload(test_db, user.id) is None
    assert await PrincipalRepository(test_db).get_by_id(user.id) is None


@pytest.mark.asyncio
async def test_permanent_delete_batches_entries(service, test_db, make_user, monkeypatch):
    from config.settings import settings

    monkeypatch.setattr(settings, "deletion_batch_size", 2)
    user = await make_user()
    entries = EntryRepository(test_db)
    for i in range(5):
        await entries.create_entry(user.id, text=f"entry {i}")
    other = await make_user()
    await entries.create_entry(other.id, text="keep me")
    await test_db.commit()

    report = await service.permanently_delete(user.id)

    assert report.success
    assert await entries.count_for_user(user.id) == 0
    assert await entries.count_for_user(other.id) == 1


@pytest.mark.asyncio
async def test_billing_failure_still_removes_login(service, test_db, make_user, billing_client):
    user = await make_user(billing_customer_id="cus_1", billing_subscription_id="sub_1")
    billing_client.add_subscription("sub_1", "cus_1")
    billing_client.fail_on.add("list_subscriptions")

    report = await service.permanently_delete(user.id)

    assert report.success
    assert report.warnings
    assert await PrincipalRepository(test_db).get_by_id(user.id) is None


@pytest.mark.asyncio
async def test_failed_optional_step_is_reported_and_saga_continues(service, make_user, monkeypatch):
    user = await make_user()

    async def broken_listing(user_id):
        raise RuntimeError("entries unavailable")

    monkeypatch.setattr(service.entry_repo, "list_for_user", broken_listing)

    report = await service.permanently_delete(user.id)

    assert "delete_entry_images" in report.failed
    assert report.completed[-1] == "delete_identity"
    assert "delete_user_record" in report.completed
    assert report.success


@pytest.mark.asyncio
async def test_identity_failure_fails_the_deletion(service, make_user, monkeypatch):
    user = await make_user()

    async def fail(principal_id):
        raise ExternalServiceError("identity provider down")

    monkeypatch.setattr(service.identity, "delete_principal", fail)

    with pytest.raises(ExternalServiceError):
        await service.permanently_delete(user.id)


@pytest.mark.asyncio
async def test_already_deleted_identity_counts_as_success(service, test_db, make_user):
    user = await make_user()
    await PrincipalRepository(test_db).delete(user.id)
    await test_db.commit()

    report = await service.permanently_delete(user.id)

    assert report.success
    assert report.identity_already_absent is True


@pytest.mark.asyncio
async def test_permanent_delete_is_rerunnable(service, make_user):
    user = await make_user()
    await service.permanently_delete(user.id)

    report = await service.permanently_delete(user.id)

    assert report.success
    assert report.identity_already_absent is True


# ---------------------------------------------------------------------------
# Scheduled sweep
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_sweep_deletes_only_accounts_past_grace(service, test_db, make_user):
    due = await make_user(scheduled_for_deletion_at=NOW - timedelta(days=31))
    exactly_due = await make_user(scheduled_for_deletion_at=NOW - timedelta(days=30))
    recent = await make_user(scheduled_for_deletion_at=NOW - timedelta(days=29))
    active = await make_user()

    summary = await service.process_scheduled_deletions(now=NOW)

    assert sorted(summary["deleted"]) == sorted([due.id, exactly_due.id])
    assert summary["failed"] == []
    assert await reload(test_db, due.id) is None
    assert await reload(test_db, recent.id) is not None
    assert await reload(test_db, active.id) is not None


@pytest.mark.asyncio
async def test_sweep_grace_boundary_to_the_second(service, test_db, make_user):
    just_past = await make_user(scheduled_for_deletion_at=NOW - timedelta(days=30, seconds=1))
    just_short = await make_user(scheduled_for_deletion_at=NOW - timedelta(days=30) + timedelta(seconds=1))

    summary = await service.process_scheduled_deletions(now=NOW)

    assert summary["selected"] == [just_past.id]
    assert summary["deleted"] == [just_past.id]
    assert await reload(test_db, just_short.id) is not None


@pytest.mark.asyncio
async def test_sweep_continues_after_a_failed_account(
    test_db, session_factory, make_user, billing_client, object_store, monkeypatch
):
    first = await make_user(scheduled_for_deletion_at=NOW - timedelta(days=40))
    second = await make_user(scheduled_for_deletion_at=NOW - timedelta(days=35))

    async def flaky(self, user_id):
        if user_id == first.id:
            raise ExternalServiceError("identity provider down")
        return await original(self, user_id)

    from services.identity_service import IdentityService
    original = IdentityService.delete_principal
    monkeypatch.setattr(IdentityService, "delete_principal", flaky)

    summary = await run_scheduled_deletions(
        session_factory=session_factory,
        billing_client=billing_client,
        object_store=object_store,
        now=NOW,
    )

    assert summary["failed"] == [first.id]
    assert summary["deleted"] == [second.id]
    assert await PrincipalRepository(test_db).get_by_id(second.id) is None


@pytest.mark.asyncio
async def test_sweep_times_out_slow_accounts(service, make_user, monkeypatch):
    from config.settings import settings

    slow = await make_user(scheduled_for_deletion_at=NOW - timedelta(days=40))
    monkeypatch.setattr(settings, "deletion_timeout_seconds", 0.05)

    async def hang(user_id, cutoff):
        await asyncio.sleep(1)
        return "deleted"

    summary = await service.process_scheduled_deletions(now=NOW, delete_account=hang)

    assert summary["failed"] == [slow.id]
    assert summary["deleted"] == []


@pytest.mark.asyncio
async def test_sweep_timeout_covers_blocking_billing_calls(test_db, make_user, object_store, monkeypatch):
    import stripe

    from config.settings import settings
    from services.billing_client import StripeBillingClient

    slow = await make_user(
        billing_customer_id="cus_slow", scheduled_for_deletion_at=NOW - timedelta(days=40)
    )
    monkeypatch.setattr(settings, "deletion_timeout_seconds", 0.05)

    def stuck_customer_list(**kwargs):
        time.sleep(0.5)
        return None

    monkeypatch.setattr(stripe.Customer, "list", stuck_customer_list)
    service = AccountService(test_db, StripeBillingClient("sk_test_dummy"), object_store)

    started = time.monotonic()
    summary = await service.process_scheduled_deletions(now=NOW)
    elapsed = time.monotonic() - started

    assert summary["failed"] == [slow.id]
    assert elapsed < 0.4


@pytest.mark.asyncio
async def test_account_restored_after_selection_is_not_deleted(service, test_db, make_user):
    user = await make_user(scheduled_for_deletion_at=NOW - timedelta(days=40))
    cutoff = NOW - timedelta(days=30)

    selected = await UserRepository(test_db).list_scheduled_for_deletion_before(cutoff)
    assert selected == [user.id]

    # Restored between selection and deletion
    await service.restore(user.id)

    assert await service.delete_if_still_due(user.id, cutoff) == "skipped"
    assert await reload(test_db, user.id) is not None
