"""
Entries Router - journal entry writes gated by access level
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user
from backend.auth.access import can_create_entries
from backend.utils.errors import FailedPreconditionError, NotFoundError, PermissionDeniedError
from backend.utils.responses import success_response
from crud.entry import EntryRepository
from crud.user import UserRepository
from database import get_db
from services.trial_service import TrialService
from utils.shared_utils import utc_now

logger = logging.getLogger(__name__)

entries_router = APIRouter(prefix="/api/entries", tags=["entries"])


class EntryCreateRequest(BaseModel):
    text: str = ""
    photos: List[str] = Field(default_factory=list)
    image_urls: List[str] = Field(default_factory=list)
    sticker_id: Optional[str] = None
    mood: Optional[int] = Field(default=None, ge=1, le=5)
    entry_date: Optional[datetime] = None


def _entry_to_dict(entry) -> dict:
    return {
        "id": entry.id,
        "text": entry.text,
        "photos": list(entry.photos or []),
        "image_urls": list(entry.image_urls or []),
        "sticker_id": entry.sticker_id,
        "mood": entry.mood,
        "entry_date": entry.entry_date.isoformat() if entry.entry_date else None,
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
    }


@entries_router.post("")
async def create_entry(
    request: EntryCreateRequest,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Save a new entry. The first entry a user writes starts their trial.
    """
    user_id = current_user["user_id"]
    user_repo = UserRepository(db)
    user = await user_repo.get_user_by_id(user_id)
    if user is None:
        raise NotFoundError("User not found in database.")

    now = utc_now()
    if not can_create_entries(user, now=now):
        raise PermissionDeniedError("Your trial has ended. Subscribe to keep writing.")
    if user.scheduled_for_deletion_at is not None:
        raise FailedPreconditionError("Account is scheduled for deletion. Restore it to keep writing.")

    entry_date = request.entry_date
    if entry_date is not None and entry_date.tzinfo is not None:
        entry_date = entry_date.astimezone(timezone.utc).replace(tzinfo=None)

    entry = await EntryRepository(db).create_entry(
        user_id=user_id,
        text=request.text,
        photos=request.photos,
        image_urls=request.image_urls,
        sticker_id=request.sticker_id,
        mood=request.mood,
        entry_date=entry_date or now,
    )

    trial = await TrialService(db, user_repo).start_trial_if_eligible(user_id, now=now)
    logger.info(f"Entry {entry.id} saved for user {user_id} (trial: {trial.value})")

    return success_response({"entry": _entry_to_dict(entry), "trial": trial.value})


@entries_router.get("")
async def list_entries(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """List the caller's entries, newest first. Reading is never gated."""
    entries = await EntryRepository(db).list_for_user(current_user["user_id"])
    return success_response({"entries": [_entry_to_dict(e) for e in entries]})
