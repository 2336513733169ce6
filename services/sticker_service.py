"""
Sticker Service for the per-user sticker palette.

The palette is an ordered list of URLs on the user record. System stickers
are static assets; custom stickers are objects under ``stickers/{user_id}/``
in the object store.
"""
import logging
import time
from typing import List
from sqlalchemy.ext.asyncio import AsyncSession

from backend.utils.errors import InvalidArgumentError, NotFoundError
from crud.entry import EntryRepository
from crud.user import UserRepository
from services.storage_service import LocalObjectStore, stickers_prefix
from utils.security_utils import validate_sticker_upload
from utils.shared_utils import invalidate_after_commit, account_cache_key

logger = logging.getLogger(__name__)

SYSTEM_STICKER_URLS = [
    "/stickers/happy.png",
    "/stickers/love.png",
    "/stickers/idea.png",
    "/stickers/star.png",
    "/stickers/coffee.png",
]


class StickerService:
    def __init__(self, db: AsyncSession, object_store: LocalObjectStore):
        self.db = db
        self.object_store = object_store
        self.user_repo = UserRepository(db)
        self.entry_repo = EntryRepository(db)

    async def _require_user(self, user_id: str):
        user = await self.user_repo.get_user_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found in database.")
        return user

    async def _save(self, user, stickers: List[str]) -> List[str]:
        await self.user_repo.update_user(user, {"stickers": stickers})
        invalidate_after_commit(self.db, account_cache_key(user.id))
        return list(user.stickers)

    async def list_stickers(self, user_id: str) -> List[str]:
        user = await self.user_repo.get_user_by_id(user_id)
        if user is None or user.stickers is None:
            return list(SYSTEM_STICKER_URLS)
        return list(user.stickers)

    async def upload_sticker(self, user_id: str, filename: str, content: bytes) -> str:
        """
        Store a custom sticker and prepend it to the palette.

        Returns:
            Public URL of the stored sticker
        """
        user = await self._require_user(user_id)

        safe_name = validate_sticker_upload(filename, content)
        key = f"{stickers_prefix(user_id)}{int(time.time() * 1000)}_{safe_name}"
        url = await self.object_store.put(key, content)

        current = list(user.stickers) if user.stickers is not None else list(SYSTEM_STICKER_URLS)
        await self._save(user, [url] + [s for s in current if s != url])
        logger.info(f"Uploaded sticker {key} for user {user_id}")
        return url

    async def update_order(self, user_id: str, stickers: List[str]) -> List[str]:
        """Replace the palette order. The new list must hold the same stickers."""
        user = await self._require_user(user_id)
        current = list(user.stickers or [])
        if sorted(current) != sorted(stickers):
            raise InvalidArgumentError("Sticker order must contain exactly the current stickers.")
        return await self._save(user, list(stickers))

    async def delete_sticker(self, user_id: str, sticker_url: str) -> str:
        """
        Remove a sticker from the palette. The stored object is deleted only
        when it lives in managed storage and no entry still uses it.

        Returns:
            "deleted" (object removed), "in_use" (object kept for existing
            entries), or "removed" (not a stored object)
        """
        user = await self._require_user(user_id)
        await self._save(user, [s for s in (user.stickers or []) if s != sticker_url])

        if not self.object_store.is_managed_url(sticker_url):
            return "removed"

        if await self.entry_repo.is_sticker_used(user_id, sticker_url):
            logger.info(f"Sticker {sticker_url} is used in entries; keeping stored object")
            return "in_use"

        try:
            await self.object_store.delete_by_url(sticker_url)
        except (OSError, ValueError) as e:
            # The palette change stands even if the object could not be removed
            logger.error(f"Error deleting sticker object {sticker_url}: {e}")
        return "deleted"

    async def restore_from_storage(self, user_id: str) -> List[str]:
        """Rebuild the palette from stored custom stickers plus the system set."""
        user = await self._require_user(user_id)
        urls = await self.object_store.list_urls(stickers_prefix(user_id))
        merged: List[str] = []
        for url in urls + SYSTEM_STICKER_URLS:
            if url not in merged:
                merged.append(url)
        return await self._save(user, merged)
