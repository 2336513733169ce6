"""
Unit tests for the trial lifecycle
"""
import asyncio
from datetime import datetime, timedelta

import pytest

from backend.auth.access import evaluate
from crud.user import UserRepository
from models.user import AccessLevel
from services.trial_service import TrialService, TrialStartResult

NOW = datetime(2025, 3, 1, 9, 30, 0)


@pytest.mark.asyncio
async def test_first_entry_starts_thirty_day_trial(test_db, make_user):
    user = await make_user()

    result = await TrialService(test_db).start_trial_if_eligible(user.id, now=NOW)
    await test_db.commit()
    await test_db.refresh(user)

    assert result == TrialStartResult.STARTED
    assert user.has_written_first_entry is True
    assert user.trial_start_at == NOW
    assert user.trial_end_at == NOW + timedelta(days=30)
    assert user.subscription_status == "trialing"
    assert evaluate(user, NOW + timedelta(days=10)) == AccessLevel.TRIAL


@pytest.mark.asyncio
async def test_second_entry_does_not_restart_trial(test_db, make_user):
    user = await make_user()
    service = TrialService(test_db)

    await service.start_trial_if_eligible(user.id, now=NOW)
    await test_db.commit()
    result = await service.start_trial_if_eligible(user.id, now=NOW + timedelta(days=5))
    await test_db.commit()
    await test_db.refresh(user)

    assert result == TrialStartResult.SKIPPED
    assert user.trial_start_at == NOW
    assert user.trial_end_at == NOW + timedelta(days=30)


@pytest.mark.asyncio
async def test_pro_override_user_never_gets_a_trial(test_db, make_user):
    user = await make_user(pro_override=True)

    result = await TrialService(test_db).start_trial_if_eligible(user.id, now=NOW)
    await test_db.commit()
    await test_db.refresh(user)

    assert result == TrialStartResult.SKIPPED
    assert user.trial_start_at is None
    assert user.trial_end_at is None
    assert user.subscription_status == "none"


@pytest.mark.asyncio
async def test_missing_user_is_reported_not_raised(test_db):
    result = await TrialService(test_db).start_trial_if_eligible("no-such-user", now=NOW)
    assert result == TrialStartResult.NOT_FOUND


@pytest.mark.asyncio
async def test_concurrent_first_entries_start_one_trial(session_factory, make_user):
    """Two sessions racing on the first entry produce exactly one trial window."""
    user = await make_user()

    async def first_entry(at):
        async with session_factory() as session:
            result = await TrialService(session).start_trial_if_eligible(user.id, now=at)
            await session.commit()
            return result

    results = await asyncio.gather(first_entry(NOW), first_entry(NOW + timedelta(seconds=1)))
    assert sorted(r.value for r in results) == ["skipped", "started"]

    async with session_factory() as session:
        stored = await UserRepository(session).get_user_by_id(user.id)
    assert stored.trial_end_at - stored.trial_start_at == timedelta(days=30)


@pytest.mark.asyncio
async def test_expire_trial_after_window(test_db, make_user):
    user = await make_user(
        has_written_first_entry=True,
        trial_start_at=NOW - timedelta(days=31),
        trial_end_at=NOW - timedelta(days=1),
        subscription_status="trialing",
    )
    service = TrialService(test_db)

    changed = await service.expire_trial_if_needed(user.id, user, now=NOW)
    await test_db.commit()
    await test_db.refresh(user)

    assert changed is True
    assert user.subscription_status == "expired"

    # Idempotent
    assert await service.expire_trial_if_needed(user.id, user, now=NOW) is False


@pytest.mark.asyncio
async def test_expire_trial_leaves_running_trial_alone(test_db, make_user):
    user = await make_user(
        has_written_first_entry=True,
        trial_start_at=NOW - timedelta(days=3),
        trial_end_at=NOW + timedelta(days=27),
        subscription_status="trialing",
    )

    assert await TrialService(test_db).expire_trial_if_needed(user.id, user, now=NOW) is False
    await test_db.refresh(user)
    assert user.subscription_status == "trialing"


@pytest.mark.asyncio
async def test_expire_trial_does_not_touch_paid_status(test_db, make_user):
    """A user who subscribed after the trial ended keeps the active status."""
    user = await make_user(
        has_written_first_entry=True,
        trial_start_at=NOW - timedelta(days=40),
        trial_end_at=NOW - timedelta(days=10),
        subscription_status="active",
    )

    assert await TrialService(test_db).expire_trial_if_needed(user.id, user, now=NOW) is False
    await test_db.refresh(user)
    assert user.subscription_status == "active"


def test_trial_days_remaining():
    from models.user import UserRecordView

    service = TrialService(db=None, user_repo=object())
    view = UserRecordView(id="u", trial_end_at=NOW + timedelta(days=12, hours=3))
    assert service.trial_days_remaining(view, now=NOW) == 12
    assert service.trial_days_remaining(UserRecordView(id="u"), now=NOW) is None


@pytest.mark.asyncio
async def test_account_cache_is_invalidated_only_after_commit(test_db, make_user, monkeypatch):
    import utils.shared_utils as shared_utils

    dropped = []
    monkeypatch.setattr(shared_utils, "invalidate_cached", dropped.append)
    user = await make_user()
    other = await make_user()
    service = TrialService(test_db)

    await service.start_trial_if_eligible(user.id, now=NOW)
    assert dropped == []

    await test_db.commit()
    assert dropped == [shared_utils.account_cache_key(user.id)]

    await service.start_trial_if_eligible(other.id, now=NOW)
    await test_db.rollback()
    await test_db.commit()
    assert dropped == [shared_utils.account_cache_key(user.id)]
