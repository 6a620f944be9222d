import re
from fastapi import APIRouter, Depends, Query, status
from typing import Optional
from datetime import datetime
from bson import ObjectId
from pymongo import ReturnDocument

from config.constants import ITEM_ACTIVE
from database import get_db
from models.item import ItemCreate, ItemUpdate
from utils.errors import InvalidOperationError, NotFoundError
from utils.guards import parse_object_id
from utils.item_state import increment_views, is_favorited, toggle_favorite
from utils.security import get_current_user
from utils.serializers import serialize_item

router = APIRouter(prefix="/items", tags=["Items"])


# =========================
# BROWSE
# =========================

@router.get("")
async def browse_items(
    q: Optional[str] = Query(None, description="Search query"),
    category: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    page: int = 1,
    limit: int = 20,
    db=Depends(get_db),
):
    page = max(page, 1)
    limit = min(max(limit, 1), 50)
    skip = (page - 1) * limit

    query: dict = {"status": ITEM_ACTIVE}

    if q:
        pattern = re.escape(q)
        query["$or"] = [
            {"title": {"$regex": pattern, "$options": "i"}},
            {"description": {"$regex": pattern, "$options": "i"}},
        ]

    if category:
        query["category"] = category

    if min_price is not None or max_price is not None:
        query["price"] = {}
        if min_price is not None:
            query["price"]["$gte"] = min_price
        if max_price is not None:
            query["price"]["$lte"] = max_price

    cursor = (
        db.items
        .find(query)
        .sort("created_at", -1)
        .skip(skip)
        .limit(limit)
    )
    return [serialize_item(item) async for item in cursor]


@router.get("/mine")
async def my_listings(
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    cursor = db.items.find({"seller_id": user["_id"]}).sort("created_at", -1)
    return [serialize_item(item, user["_id"]) async for item in cursor]


@router.get("/favorites")
async def my_favorites(
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    cursor = db.items.find({"saved_by": user["_id"]}).sort("created_at", -1)
    return [serialize_item(item, user["_id"]) async for item in cursor]


# =========================
# LISTING LIFECYCLE (SELLER)
# =========================

@router.post("", status_code=status.HTTP_201_CREATED)
async def create_item(
    data: ItemCreate,
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    now = datetime.utcnow()
    item = {
        "_id": ObjectId(),
        **data.model_dump(),
        "price": round(data.price, 2),
        "seller_id": user["_id"],
        "status": ITEM_ACTIVE,
        "views": 0,
        "saved_by": [],
        "created_at": now,
        "updated_at": now,
    }
    await db.items.insert_one(item)

    return {
        "message": "Item created successfully",
        "item": serialize_item(item, user["_id"]),
    }


@router.get("/{item_id}")
async def get_item(
    item_id: str,
    db=Depends(get_db),
):
    item = await increment_views(db, parse_object_id(item_id, "item_id"))
    return serialize_item(item)


@router.put("/{item_id}")
async def update_item(
    item_id: str,
    data: ItemUpdate,
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    """
    Edits never touch availability and never reach existing orders:
    orders keep the price captured at checkout.
    """
    oid = parse_object_id(item_id, "item_id")
    changes = data.model_dump(exclude_none=True)
    if "price" in changes:
        changes["price"] = round(changes["price"], 2)
    changes["updated_at"] = datetime.utcnow()

    item = await db.items.find_one_and_update(
        {"_id": oid, "seller_id": user["_id"]},
        {"$set": changes},
        return_document=ReturnDocument.AFTER,
    )
    if not item:
        raise NotFoundError("item")

    return {
        "message": "Item updated successfully",
        "item": serialize_item(item, user["_id"]),
    }


@router.delete("/{item_id}")
async def delete_item(
    item_id: str,
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    oid = parse_object_id(item_id, "item_id")

    if await db.orders.find_one({"items.item_id": oid}, {"_id": 1}):
        raise InvalidOperationError("Item is referenced by an order and cannot be deleted")

    res = await db.items.delete_one({
        "_id": oid,
        "seller_id": user["_id"],
        "status": ITEM_ACTIVE,
    })
    if res.deleted_count == 0:
        existing = await db.items.find_one({"_id": oid, "seller_id": user["_id"]})
        if not existing:
            raise NotFoundError("item")
        raise InvalidOperationError("Only active listings can be deleted")

    return {"message": "Item deleted successfully"}


# =========================
# FAVORITES
# =========================

@router.post("/{item_id}/favorite")
async def favorite_item(
    item_id: str,
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    favorited = await toggle_favorite(db, parse_object_id(item_id, "item_id"), user["_id"])
    return {
        "message": "Item added to favorites" if favorited else "Item removed from favorites",
        "is_favorited": favorited,
    }


@router.get("/{item_id}/favorite-status")
async def favorite_status(
    item_id: str,
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    favorited = await is_favorited(db, parse_object_id(item_id, "item_id"), user["_id"])
    return {"is_favorited": favorited}
