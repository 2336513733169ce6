"""
EntryRepository for journal entry queries
"""

from datetime import datetime
from typing import List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete, func
from database_models import JournalEntry
from utils.shared_utils import utc_now


class EntryRepository:
    """
    Repository class for JournalEntry database operations.
    """
    
    def __init__(self, db: AsyncSession):
        self.db = db
    
    async def create_entry(
        self,
        user_id: str,
        text: str = "",
        photos: Optional[List[str]] = None,
        image_urls: Optional[List[str]] = None,
        sticker_id: Optional[str] = None,
        mood: Optional[int] = None,
        entry_date: Optional[datetime] = None,
    ) -> JournalEntry:
        entry = JournalEntry(
            user_id=user_id,
            text=text,
            photos=list(photos or []),
            image_urls=list(image_urls or []),
            sticker_id=sticker_id,
            mood=mood,
            entry_date=entry_date or utc_now(),
        )
        self.db.add(entry)
        await self.db.flush()
        await self.db.refresh(entry)
        return entry
    
    async def list_for_user(self, user_id: str) -> List[JournalEntry]:
        """Entries belonging to a user, newest first."""
        result = await self.db.execute(
            select(JournalEntry)
            .where(JournalEntry.user_id == user_id)
            .order_by(JournalEntry.entry_date.desc())
        )
        return list(result.scalars().all())
    
    async def count_for_user(self, user_id: str) -> int:
        result = await self.db.execute(
            select(func.count()).select_from(JournalEntry).where(JournalEntry.user_id == user_id)
        )
        return result.scalar_one()
    
    async def is_sticker_used(self, user_id: str, sticker_url: str) -> bool:
        """True if any of the user's entries references the sticker."""
        result = await self.db.execute(
            select(JournalEntry.id)
            .where(JournalEntry.user_id == user_id)
            .where(JournalEntry.sticker_id == sticker_url)
            .limit(1)
        )
        return result.first() is not None
    
    async def delete_batch(self, user_id: str, batch_size: int) -> int:
        """
        Delete up to ``batch_size`` of a user's entries, ordered by id.
        
        Returns:
            Number of entries deleted in this batch
        """
        result = await self.db.execute(
            select(JournalEntry.id)
            .where(JournalEntry.user_id == user_id)
            .order_by(JournalEntry.id)
            .limit(batch_size)
        )
        ids = list(result.scalars().all())
        if not ids:
            return 0
        await self.db.execute(
            delete(JournalEntry).where(JournalEntry.id.in_(ids))
        )
        await self.db.flush()
        return len(ids)
