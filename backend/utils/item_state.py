import logging
from datetime import datetime
from bson import ObjectId
from pymongo import ReturnDocument

from config.constants import ITEM_ACTIVE, ITEM_PENDING, ITEM_SOLD
from utils.errors import NotFoundError

logger = logging.getLogger(__name__)

# ==============================
# Availability transitions
#
# Every transition is a single conditional write: the expected
# current state lives in the filter, so a lost race matches nothing.
# ==============================

async def reserve_item(
    db,
    item_id: ObjectId,
    reservation_id: str,
    buyer_id: ObjectId,
):
    """
    active -> pending.
    Returns the reserved item (post-update) or None if the item was not active.
    """
    now = datetime.utcnow()
    return await db.items.find_one_and_update(
        {"_id": item_id, "status": ITEM_ACTIVE},
        {
            "$set": {
                "status": ITEM_PENDING,
                "reservation_id": reservation_id,
                "reserved_by": buyer_id,
                "reserved_at": now,
                "updated_at": now,
            }
        },
        return_document=ReturnDocument.AFTER,
    )


async def mark_item_sold(db, item_id: ObjectId, reservation_id: str) -> bool:
    """pending -> sold, only for the reservation that holds the item."""
    now = datetime.utcnow()
    result = await db.items.update_one(
        {
            "_id": item_id,
            "status": ITEM_PENDING,
            "reservation_id": reservation_id,
        },
        {
            "$set": {
                "status": ITEM_SOLD,
                "sold_at": now,
                "updated_at": now,
            }
        },
    )
    return result.modified_count == 1


async def release_item(db, item_id: ObjectId, reservation_id: str) -> bool:
    """pending -> active, so the item goes back on sale."""
    result = await db.items.update_one(
        {
            "_id": item_id,
            "status": ITEM_PENDING,
            "reservation_id": reservation_id,
        },
        {
            "$set": {"status": ITEM_ACTIVE, "updated_at": datetime.utcnow()},
            "$unset": {"reservation_id": "", "reserved_by": "", "reserved_at": ""},
        },
    )
    released = result.modified_count == 1
    if released:
        logger.info("ITEM_RELEASED item=%s reservation=%s", item_id, reservation_id)
    return released


async def release_reservation(db, reservation_id: str) -> int:
    """Release every item still held by a reservation."""
    released = 0
    cursor = db.items.find(
        {"status": ITEM_PENDING, "reservation_id": reservation_id},
        {"_id": 1},
    )
    async for item in cursor:
        if await release_item(db, item["_id"], reservation_id):
            released += 1
    return released


# ==============================
# Counters / favorite sets
# ==============================

async def increment_views(db, item_id: ObjectId):
    item = await db.items.find_one_and_update(
        {"_id": item_id},
        {"$inc": {"views": 1}},
        return_document=ReturnDocument.AFTER,
    )
    if not item:
        raise NotFoundError("item")
    return item


async def toggle_favorite(db, item_id: ObjectId, user_id: ObjectId) -> bool:
    """
    Flip the user's membership in the item's saved_by set.
    Returns True if the item is now favorited.
    """
    added = await db.items.update_one(
        {"_id": item_id, "saved_by": {"$ne": user_id}},
        {"$addToSet": {"saved_by": user_id}},
    )
    if added.modified_count:
        return True

    removed = await db.items.update_one(
        {"_id": item_id, "saved_by": user_id},
        {"$pull": {"saved_by": user_id}},
    )
    if removed.modified_count:
        return False

    if not await db.items.find_one({"_id": item_id}, {"_id": 1}):
        raise NotFoundError("item")

    # a concurrent toggle from the same user landed in between
    return await is_favorited(db, item_id, user_id)


async def is_favorited(db, item_id: ObjectId, user_id: ObjectId) -> bool:
    item = await db.items.find_one({"_id": item_id}, {"saved_by": 1})
    if not item:
        raise NotFoundError("item")
    return user_id in item.get("saved_by", [])
