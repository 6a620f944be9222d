import asyncio
import logging
from datetime import datetime, timedelta
from database import get_db
from config.constants import ITEM_PENDING
from config.env import PENDING_ORDER_TIMEOUT_MINUTES
from utils.checkout_service import cancel_order, complete_confirmed_order
from utils.errors import InvalidOperationError
from utils.item_state import mark_item_sold, release_item

CHECK_INTERVAL_SECONDS = 60  # every minute
logger = logging.getLogger(__name__)


async def expire_stale_orders(db, now=None, timeout_minutes=PENDING_ORDER_TIMEOUT_MINUTES) -> int:
    """Cancel checkouts that never reached confirmation and release their items."""
    now = now or datetime.utcnow()
    cutoff = now - timedelta(minutes=timeout_minutes)
    expired = 0

    cursor = db.orders.find({
        "status": "pending",
        "created_at": {"$lte": cutoff},
    })

    async for order in cursor:
        try:
            await cancel_order(
                db,
                order["_id"],
                reason="PAYMENT_TIMEOUT",
                actor_role="system",
            )
            expired += 1
        except InvalidOperationError:
            # confirmed while we were looking at it
            continue
        except Exception:
            logger.exception("ORDER_EXPIRY_ERROR order=%s", order.get("_id"))

    return expired


async def release_orphaned_reservations(db, now=None, timeout_minutes=PENDING_ORDER_TIMEOUT_MINUTES) -> int:
    """
    Items left pending by a checkout that died before writing (or before
    finishing) its orders.
    """
    now = now or datetime.utcnow()
    cutoff = now - timedelta(minutes=timeout_minutes)
    released = 0

    cursor = db.items.find({
        "status": ITEM_PENDING,
        "reserved_at": {"$lte": cutoff},
    })

    async for item in cursor:
        reservation_id = item.get("reservation_id")
        try:
            owner = await db.orders.find_one({
                "checkout_id": reservation_id,
                "items.item_id": item["_id"],
                "status": {"$ne": "cancelled"},
            })
            if owner is None:
                if await release_item(db, item["_id"], reservation_id):
                    released += 1
            elif owner["status"] != "pending":
                await mark_item_sold(db, item["_id"], reservation_id)
        except Exception:
            logger.exception("RESERVATION_RELEASE_ERROR item=%s", item.get("_id"))

    return released


async def repair_confirmed_orders(db) -> int:
    """Finish confirmations interrupted after their commit point."""
    repaired = 0
    cursor = db.orders.find({
        "status": {"$in": ["confirmed", "processing", "shipped", "delivered"]},
        "loyalty_credited": False,
    })

    async for order in cursor:
        try:
            await complete_confirmed_order(db, order)
            repaired += 1
        except Exception:
            logger.exception("ORDER_REPAIR_ERROR order=%s", order.get("_id"))

    return repaired


async def order_expiry_worker():
    db = get_db()

    while True:
        try:
            expired = await expire_stale_orders(db)
            released = await release_orphaned_reservations(db)
            repaired = await repair_confirmed_orders(db)
            if expired or released or repaired:
                logger.info(
                    "ORDER_SWEEP expired=%d released=%d repaired=%d",
                    expired, released, repaired,
                )
        except Exception:
            # Never crash the worker for one bad sweep
            logger.exception("ORDER_SWEEP_ERROR")

        await asyncio.sleep(CHECK_INTERVAL_SECONDS)
