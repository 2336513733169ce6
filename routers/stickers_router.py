"""
Stickers Router - the user's sticker palette
"""

from typing import List
from fastapi import APIRouter, Depends, File, UploadFile
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user
from backend.utils.responses import success_response
from database import get_db
from services.sticker_service import StickerService
from services.storage_service import LocalObjectStore, get_object_store

stickers_router = APIRouter(prefix="/api/stickers", tags=["stickers"])


class StickerOrderRequest(BaseModel):
    stickers: List[str]


class StickerDeleteRequest(BaseModel):
    url: str


@stickers_router.get("")
async def get_stickers(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    object_store: LocalObjectStore = Depends(get_object_store),
):
    stickers = await StickerService(db, object_store).list_stickers(current_user["user_id"])
    return success_response({"stickers": stickers})


@stickers_router.post("/upload")
async def upload_sticker(
    file: UploadFile = File(...),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    object_store: LocalObjectStore = Depends(get_object_store),
):
    """Store a custom sticker and put it first in the palette."""
    url = await StickerService(db, object_store).upload_sticker(
        current_user["user_id"], file.filename, await file.read()
    )
    return success_response({"url": url})


@stickers_router.put("/order")
async def update_sticker_order(
    request: StickerOrderRequest,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    object_store: LocalObjectStore = Depends(get_object_store),
):
    stickers = await StickerService(db, object_store).update_order(current_user["user_id"], request.stickers)
    return success_response({"stickers": stickers})


@stickers_router.delete("")
async def delete_sticker(
    request: StickerDeleteRequest,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    object_store: LocalObjectStore = Depends(get_object_store),
):
    """
    Remove a sticker from the palette. A stored sticker still used by an
    entry stays in storage (status "in_use").
    """
    status = await StickerService(db, object_store).delete_sticker(current_user["user_id"], request.url)
    return success_response({"status": status})


@stickers_router.post("/restore")
async def restore_stickers(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    object_store: LocalObjectStore = Depends(get_object_store),
):
    """Rebuild the palette from stored custom stickers plus the system set."""
    stickers = await StickerService(db, object_store).restore_from_storage(current_user["user_id"])
    return success_response({"stickers": stickers})
