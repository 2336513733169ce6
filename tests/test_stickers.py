"""
Tests for the sticker palette routes
"""
import pytest

from crud.entry import EntryRepository
from crud.user import UserRepository
from services.sticker_service import SYSTEM_STICKER_URLS


async def reload(test_db, user_id):
    test_db.expire_all()
    return await UserRepository(test_db).get_user_by_id(user_id)


@pytest.mark.asyncio
async def test_upload_prepends_custom_sticker(client, test_db, make_user, object_store, auth_headers):
    user = await make_user(stickers=list(SYSTEM_STICKER_URLS))

    response = await client.post(
        "/api/stickers/upload",
        files={"file": ("smile.webp", b"webp-bytes", "image/webp")},
        headers=auth_headers(user.id),
    )

    assert response.status_code == 200
    url = response.json()["data"]["url"]
    assert url.startswith(f"/media/stickers/{user.id}/")
    assert url.endswith("_smile.webp")
    assert object_store.is_managed_url(url)
    assert (await reload(test_db, user.id)).stickers == [url] + SYSTEM_STICKER_URLS


@pytest.mark.asyncio
async def test_upload_rejects_unsupported_type(client, make_user, auth_headers):
    user = await make_user()
    response = await client.post(
        "/api/stickers/upload",
        files={"file": ("notes.txt", b"hello", "text/plain")},
        headers=auth_headers(user.id),
    )
    assert response.status_code == 400
    assert response.json()["error"] == "invalid-argument"


@pytest.mark.asyncio
async def test_reorder_requires_same_stickers(client, test_db, make_user, auth_headers):
    user = await make_user(stickers=["/a.png", "/b.png"])
    headers = auth_headers(user.id)

    response = await client.put("/api/stickers/order", json={"stickers": ["/b.png", "/a.png"]}, headers=headers)
    assert response.json()["data"]["stickers"] == ["/b.png", "/a.png"]

    response = await client.put("/api/stickers/order", json={"stickers": ["/b.png", "/c.png"]}, headers=headers)
    assert response.status_code == 400
    assert (await reload(test_db, user.id)).stickers == ["/b.png", "/a.png"]


@pytest.mark.asyncio
async def test_delete_unused_custom_sticker_removes_object(client, test_db, make_user, object_store, auth_headers):
    user = await make_user()
    key = f"stickers/{user.id}/1_star.png"
    url = await object_store.put(key, b"png")
    await UserRepository(test_db).update_user(user, {"stickers": [url, "/stickers/happy.png"]})
    await test_db.commit()

    response = await client.request(
        "DELETE", "/api/stickers", json={"url": url}, headers=auth_headers(user.id)
    )

    assert response.json()["data"]["status"] == "deleted"
    assert not await object_store.exists(key)
    assert (await reload(test_db, user.id)).stickers == ["/stickers/happy.png"]


@pytest.mark.asyncio
async def test_delete_sticker_used_by_entry_keeps_object(client, test_db, make_user, object_store, auth_headers):
    user = await make_user()
    key = f"stickers/{user.id}/2_heart.png"
    url = await object_store.put(key, b"png")
    await UserRepository(test_db).update_user(user, {"stickers": [url]})
    await EntryRepository(test_db).create_entry(user.id, text="with sticker", sticker_id=url)
    await test_db.commit()

    response = await client.request(
        "DELETE", "/api/stickers", json={"url": url}, headers=auth_headers(user.id)
    )

    assert response.json()["data"]["status"] == "in_use"
    assert await object_store.exists(key)
    assert (await reload(test_db, user.id)).stickers == []


@pytest.mark.asyncio
async def test_delete_system_sticker_only_edits_palette(client, test_db, make_user, auth_headers):
    user = await make_user(stickers=list(SYSTEM_STICKER_URLS))

    response = await client.request(
        "DELETE", "/api/stickers", json={"url": "/stickers/love.png"}, headers=auth_headers(user.id)
    )

    assert response.json()["data"]["status"] == "removed"
    assert "/stickers/love.png" not in (await reload(test_db, user.id)).stickers


@pytest.mark.asyncio
async def test_restore_from_storage_merges_system_stickers(client, test_db, make_user, object_store, auth_headers):
    user = await make_user(stickers=[])
    url = await object_store.put(f"stickers/{user.id}/3_moon.png", b"png")

    response = await client.post("/api/stickers/restore", headers=auth_headers(user.id))

    assert response.json()["data"]["stickers"] == [url] + SYSTEM_STICKER_URLS
