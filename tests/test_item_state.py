import asyncio

import pytest
from bson import ObjectId

from utils.errors import NotFoundError
from utils.item_state import (
    increment_views,
    is_favorited,
    mark_item_sold,
    release_item,
    release_reservation,
    reserve_item,
    toggle_favorite,
)


class TestReservation:
    async def test_reserve_moves_active_item_to_pending(self, db, make_item, seller_id, buyer_id):
        item = await make_item(seller_id)

        reserved = await reserve_item(db, item["_id"], "chk-1", buyer_id)

        assert reserved["status"] == "pending"
        assert reserved["reservation_id"] == "chk-1"
        assert reserved["reserved_by"] == buyer_id

    async def test_reserve_fails_when_item_not_active(self, db, make_item, seller_id, buyer_id):
        item = await make_item(seller_id, status="sold")

        assert await reserve_item(db, item["_id"], "chk-1", buyer_id) is None

    async def test_only_one_of_two_concurrent_reservations_wins(self, db, make_item, seller_id):
        item = await make_item(seller_id)

        results = await asyncio.gather(
            reserve_item(db, item["_id"], "chk-a", ObjectId()),
            reserve_item(db, item["_id"], "chk-b", ObjectId()),
        )

        winners = [r for r in results if r is not None]
        assert len(winners) == 1
        stored = await db.items.find_one({"_id": item["_id"]})
        assert stored["reservation_id"] == winners[0]["reservation_id"]

    async def test_mark_sold_requires_matching_reservation(self, db, make_item, seller_id, buyer_id):
        item = await make_item(seller_id)
        await reserve_item(db, item["_id"], "chk-1", buyer_id)

        assert await mark_item_sold(db, item["_id"], "someone-else") is False
        assert await mark_item_sold(db, item["_id"], "chk-1") is True

        stored = await db.items.find_one({"_id": item["_id"]})
        assert stored["status"] == "sold"

    async def test_sold_item_is_never_released(self, db, make_item, seller_id, buyer_id):
        item = await make_item(seller_id)
        await reserve_item(db, item["_id"], "chk-1", buyer_id)
        await mark_item_sold(db, item["_id"], "chk-1")

        assert await release_item(db, item["_id"], "chk-1") is False
        stored = await db.items.find_one({"_id": item["_id"]})
        assert stored["status"] == "sold"

    async def test_release_returns_item_to_sale(self, db, make_item, seller_id, buyer_id):
        item = await make_item(seller_id)
        await reserve_item(db, item["_id"], "chk-1", buyer_id)

        assert await release_item(db, item["_id"], "chk-1") is True

        stored = await db.items.find_one({"_id": item["_id"]})
        assert stored["status"] == "active"
        assert "reservation_id" not in stored
        assert "reserved_by" not in stored

    async def test_release_reservation_frees_every_held_item(self, db, make_item, seller_id, buyer_id):
        first = await make_item(seller_id, title="Kettle")
        second = await make_item(seller_id, title="Toaster")
        other = await make_item(seller_id, title="Fan")
        await reserve_item(db, first["_id"], "chk-1", buyer_id)
        await reserve_item(db, second["_id"], "chk-1", buyer_id)
        await reserve_item(db, other["_id"], "chk-2", buyer_id)

        assert await release_reservation(db, "chk-1") == 2

        untouched = await db.items.find_one({"_id": other["_id"]})
        assert untouched["status"] == "pending"


class TestViewsAndFavorites:
    async def test_increment_views(self, db, make_item, seller_id):
        item = await make_item(seller_id)

        await increment_views(db, item["_id"])
        updated = await increment_views(db, item["_id"])

        assert updated["views"] == 2

    async def test_increment_views_unknown_item(self, db):
        with pytest.raises(NotFoundError):
            await increment_views(db, ObjectId())

    async def test_toggle_favorite_flips_membership(self, db, make_item, seller_id, buyer_id):
        item = await make_item(seller_id)

        assert await toggle_favorite(db, item["_id"], buyer_id) is True
        assert await is_favorited(db, item["_id"], buyer_id) is True

        assert await toggle_favorite(db, item["_id"], buyer_id) is False
        assert await is_favorited(db, item["_id"], buyer_id) is False

    async def test_favorites_are_a_set(self, db, make_item, seller_id):
        item = await make_item(seller_id)
        fans = [ObjectId(), ObjectId()]

        for fan in fans:
            await toggle_favorite(db, item["_id"], fan)

        stored = await db.items.find_one({"_id": item["_id"]})
        assert sorted(stored["saved_by"]) == sorted(fans)

    async def test_toggle_favorite_unknown_item(self, db, buyer_id):
        with pytest.raises(NotFoundError):
            await toggle_favorite(db, ObjectId(), buyer_id)
