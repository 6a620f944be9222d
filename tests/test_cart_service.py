import pytest
from bson import ObjectId

from utils import cart_service
from utils.errors import ConflictError, InvalidOperationError, NotFoundError


class TestAddItem:
    async def test_add_creates_cart_with_line(self, db, make_item, seller_id, buyer_id):
        item = await make_item(seller_id, price=12.5)

        cart = await cart_service.add_item(db, buyer_id, item["_id"], 2)

        assert cart["count"] == 1
        assert cart["items"][0]["quantity"] == 2
        assert cart["items"][0]["unit_price"] == 12.5
        assert cart["subtotal"] == 25.0

    async def test_adding_same_item_sets_quantity(self, db, make_item, seller_id, buyer_id):
        item = await make_item(seller_id)

        await cart_service.add_item(db, buyer_id, item["_id"], 1)
        cart = await cart_service.add_item(db, buyer_id, item["_id"], 3)

        assert cart["count"] == 1
        assert cart["items"][0]["quantity"] == 3

    async def test_cannot_add_own_item(self, db, make_item, seller_id):
        item = await make_item(seller_id)

        with pytest.raises(InvalidOperationError):
            await cart_service.add_item(db, seller_id, item["_id"], 1)

    async def test_cannot_add_unavailable_item(self, db, make_item, seller_id, buyer_id):
        item = await make_item(seller_id, title="Bike lock", status="pending")

        with pytest.raises(ConflictError) as exc:
            await cart_service.add_item(db, buyer_id, item["_id"], 1)

        assert exc.value.detail["title"] == "Bike lock"
        assert exc.value.status_code == 409

    async def test_unknown_item(self, db, buyer_id):
        with pytest.raises(NotFoundError):
            await cart_service.add_item(db, buyer_id, ObjectId(), 1)


class TestViewCart:
    async def test_missing_cart_is_empty(self, db, buyer_id):
        cart = await cart_service.view_cart(db, buyer_id)

        assert cart["items"] == []
        assert cart["subtotal"] == 0
        assert await db.carts.count_documents({}) == 0

    async def test_subtotal_uses_current_prices(self, db, make_item, seller_id, buyer_id):
        y = await make_item(seller_id, price=10, title="Y")
        z = await make_item(seller_id, price=25, title="Z")
        await cart_service.add_item(db, buyer_id, y["_id"], 2)
        await cart_service.add_item(db, buyer_id, z["_id"], 1)

        await db.items.update_one({"_id": z["_id"]}, {"$set": {"price": 30}})
        cart = await cart_service.view_cart(db, buyer_id)

        assert cart["subtotal"] == 50.0

    async def test_unavailable_items_are_pruned(self, db, make_item, seller_id, buyer_id):
        keep = await make_item(seller_id, title="Keep")
        gone = await make_item(seller_id, title="Gone")
        await cart_service.add_item(db, buyer_id, keep["_id"], 1)
        await cart_service.add_item(db, buyer_id, gone["_id"], 1)
        before = await db.carts.find_one({"user_id": buyer_id})

        await db.items.update_one({"_id": gone["_id"]}, {"$set": {"status": "sold"}})
        cart = await cart_service.view_cart(db, buyer_id)

        assert [line["title"] for line in cart["items"]] == ["Keep"]
        stored = await db.carts.find_one({"user_id": buyer_id})
        assert [entry["item_id"] for entry in stored["items"]] == [keep["_id"]]
        assert stored["updated_at"] >= before["updated_at"]


class TestUpdateAndRemove:
    async def test_update_quantity(self, db, make_item, seller_id, buyer_id):
        item = await make_item(seller_id, price=4)
        await cart_service.add_item(db, buyer_id, item["_id"], 1)

        cart = await cart_service.update_quantity(db, buyer_id, item["_id"], 5)

        assert cart["items"][0]["quantity"] == 5
        assert cart["subtotal"] == 20.0

    async def test_zero_quantity_removes_line(self, db, make_item, seller_id, buyer_id):
        item = await make_item(seller_id)
        await cart_service.add_item(db, buyer_id, item["_id"], 2)

        cart = await cart_service.update_quantity(db, buyer_id, item["_id"], 0)

        assert cart["items"] == []

    async def test_update_item_not_in_cart(self, db, make_item, seller_id, buyer_id):
        item = await make_item(seller_id)
        other = await make_item(seller_id)
        await cart_service.add_item(db, buyer_id, item["_id"], 1)

        with pytest.raises(NotFoundError):
            await cart_service.update_quantity(db, buyer_id, other["_id"], 2)

    async def test_remove_without_cart(self, db, buyer_id):
        with pytest.raises(NotFoundError):
            await cart_service.remove_item(db, buyer_id, ObjectId())

    async def test_remove_missing_line(self, db, make_item, seller_id, buyer_id):
        item = await make_item(seller_id)
        await cart_service.add_item(db, buyer_id, item["_id"], 1)

        with pytest.raises(NotFoundError):
            await cart_service.remove_item(db, buyer_id, ObjectId())

    async def test_clear_cart(self, db, make_item, seller_id, buyer_id):
        item = await make_item(seller_id)
        await cart_service.add_item(db, buyer_id, item["_id"], 1)

        await cart_service.clear_cart(db, buyer_id)

        cart = await cart_service.view_cart(db, buyer_id)
        assert cart["items"] == []
        assert cart["count"] == 0
