import logging
from datetime import datetime
from bson import ObjectId

from config.constants import ITEM_ACTIVE
from utils.errors import ConflictError, InvalidOperationError, NotFoundError

logger = logging.getLogger(__name__)


# ==============================
# Helpers
# ==============================

async def _load_purchasable_item(db, user_id: ObjectId, item_id: ObjectId) -> dict:
    item = await db.items.find_one({"_id": item_id})
    if not item:
        raise NotFoundError("item")

    if item.get("seller_id") == user_id:
        raise InvalidOperationError("Cannot add your own item to cart")

    if item.get("status") != ITEM_ACTIVE:
        raise ConflictError(
            f'Item "{item.get("title")}" is no longer available',
            item_id=item["_id"],
            title=item.get("title"),
        )

    return item


async def _ensure_cart(db, user_id: ObjectId, now: datetime):
    await db.carts.update_one(
        {"user_id": user_id},
        {"$setOnInsert": {"items": [], "created_at": now}},
        upsert=True,
    )


def _empty_view(user_id: ObjectId) -> dict:
    return {
        "user_id": user_id,
        "items": [],
        "count": 0,
        "subtotal": 0,
        "updated_at": None,
    }


# ==============================
# Read (prunes unavailable items)
# ==============================

async def view_cart(db, user_id: ObjectId) -> dict:
    cart = await db.carts.find_one({"user_id": user_id})
    if not cart:
        return _empty_view(user_id)

    entries = cart.get("items", [])
    item_ids = [entry["item_id"] for entry in entries]
    items = {}
    async for item in db.items.find({"_id": {"$in": item_ids}}):
        items[item["_id"]] = item

    lines = []
    stale = []
    subtotal = 0.0

    for entry in entries:
        item = items.get(entry["item_id"])
        if not item or item.get("status") != ITEM_ACTIVE:
            stale.append(entry["item_id"])
            continue

        qty = int(entry.get("quantity", 1))
        unit_price = float(item.get("price", 0))
        line_total = round(unit_price * qty, 2)
        subtotal += line_total

        lines.append({
            "item_id": item["_id"],
            "title": item.get("title"),
            "images": item.get("images", []),
            "seller_id": item.get("seller_id"),
            "status": item.get("status"),
            "quantity": qty,
            "unit_price": unit_price,
            "line_total": line_total,
            "added_at": entry.get("added_at"),
        })

    updated_at = cart.get("updated_at")
    if stale:
        updated_at = datetime.utcnow()
        await db.carts.update_one(
            {"_id": cart["_id"]},
            {
                "$pull": {"items": {"item_id": {"$in": stale}}},
                "$set": {"updated_at": updated_at},
            },
        )
        logger.info("CART_PRUNED user=%s removed=%d", user_id, len(stale))

    return {
        "user_id": user_id,
        "items": lines,
        "count": len(lines),
        "subtotal": round(subtotal, 2),
        "updated_at": updated_at,
    }


# ==============================
# Mutations
# ==============================

async def add_item(db, user_id: ObjectId, item_id: ObjectId, quantity: int = 1) -> dict:
    if quantity <= 0:
        raise InvalidOperationError("Quantity must be at least 1")

    await _load_purchasable_item(db, user_id, item_id)

    now = datetime.utcnow()
    await _ensure_cart(db, user_id, now)

    # existing entry: overwrite quantity
    res = await db.carts.update_one(
        {"user_id": user_id, "items.item_id": item_id},
        {"$set": {"items.$.quantity": quantity, "updated_at": now}},
    )
    if res.matched_count == 0:
        await db.carts.update_one(
            {"user_id": user_id, "items.item_id": {"$ne": item_id}},
            {
                "$push": {"items": {
                    "item_id": item_id,
                    "quantity": quantity,
                    "added_at": now,
                }},
                "$set": {"updated_at": now},
            },
        )

    return await view_cart(db, user_id)


async def update_quantity(db, user_id: ObjectId, item_id: ObjectId, quantity: int) -> dict:
    if quantity <= 0:
        return await remove_item(db, user_id, item_id)

    cart = await db.carts.find_one({"user_id": user_id})
    if not cart:
        raise NotFoundError("cart")
    if not any(entry["item_id"] == item_id for entry in cart.get("items", [])):
        raise NotFoundError("cart item", "Item not in cart")

    await _load_purchasable_item(db, user_id, item_id)

    res = await db.carts.update_one(
        {"user_id": user_id, "items.item_id": item_id},
        {"$set": {"items.$.quantity": quantity, "updated_at": datetime.utcnow()}},
    )
    if res.matched_count == 0:
        raise NotFoundError("cart item", "Item not in cart")

    return await view_cart(db, user_id)


async def remove_item(db, user_id: ObjectId, item_id: ObjectId) -> dict:
    cart = await db.carts.find_one({"user_id": user_id}, {"_id": 1})
    if not cart:
        raise NotFoundError("cart")

    res = await db.carts.update_one(
        {"user_id": user_id, "items.item_id": item_id},
        {
            "$pull": {"items": {"item_id": item_id}},
            "$set": {"updated_at": datetime.utcnow()},
        },
    )
    if res.modified_count == 0:
        raise NotFoundError("cart item", "Item not in cart")

    return await view_cart(db, user_id)


async def clear_cart(db, user_id: ObjectId):
    now = datetime.utcnow()
    await db.carts.update_one(
        {"user_id": user_id},
        {
            "$set": {"items": [], "updated_at": now},
            "$setOnInsert": {"created_at": now},
        },
        upsert=True,
    )


async def remove_purchased(db, user_id: ObjectId, item_ids: list):
    """Drop checked-out items from the buyer's cart."""
    if not item_ids:
        return
    await db.carts.update_one(
        {"user_id": user_id},
        {
            "$pull": {"items": {"item_id": {"$in": list(item_ids)}}},
            "$set": {"updated_at": datetime.utcnow()},
        },
    )
