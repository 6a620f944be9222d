from datetime import datetime, timedelta

from bson import ObjectId

from conftest import SHIPPING
from utils.checkout_service import (
    build_orders,
    confirm_order,
    insert_order,
    reserve_lines,
    resolve_lines,
)
from utils.item_state import reserve_item
from utils.loyalty_service import get_account
from workers.order_expiry_worker import (
    expire_stale_orders,
    release_orphaned_reservations,
    repair_confirmed_orders,
)


async def start_checkout(db, buyer_id, item, reservation_id="chk-1"):
    """Reserve and write orders without collecting payment."""
    lines = await resolve_lines(db, buyer_id, {"item_id": str(item["_id"])})
    reserved = await reserve_lines(db, buyer_id, lines, reservation_id)
    orders = build_orders(
        buyer_id=buyer_id,
        reserved=reserved,
        reservation_id=reservation_id,
        payment_method="cash",
        card=None,
        shipping=dict(SHIPPING),
        billing=dict(SHIPPING),
        notes=None,
        now=datetime.utcnow(),
    )
    return [await insert_order(db, order) for order in orders]


class TestExpireStaleOrders:
    async def test_stale_pending_order_is_cancelled(self, db, make_item, seller_id, buyer_id):
        item = await make_item(seller_id)
        [order] = await start_checkout(db, buyer_id, item)

        expired = await expire_stale_orders(db, now=datetime.utcnow() + timedelta(minutes=30))

        assert expired == 1
        stored = await db.orders.find_one({"_id": order["_id"]})
        assert stored["status"] == "cancelled"
        assert stored["cancel_reason"] == "PAYMENT_TIMEOUT"
        assert (await db.items.find_one({"_id": item["_id"]}))["status"] == "active"

    async def test_fresh_pending_order_is_left_alone(self, db, make_item, seller_id, buyer_id):
        item = await make_item(seller_id)
        [order] = await start_checkout(db, buyer_id, item)

        assert await expire_stale_orders(db) == 0
        stored = await db.orders.find_one({"_id": order["_id"]})
        assert stored["status"] == "pending"

    async def test_confirmed_orders_are_not_touched(self, db, make_item, seller_id, buyer_id):
        item = await make_item(seller_id)
        [order] = await start_checkout(db, buyer_id, item)
        await db.orders.update_one({"_id": order["_id"]}, {"$set": {"payment_status": "processing"}})
        await confirm_order(db, order["_id"], transaction_id="TXN_1")

        assert await expire_stale_orders(db, now=datetime.utcnow() + timedelta(minutes=30)) == 0
        assert (await db.items.find_one({"_id": item["_id"]}))["status"] == "sold"


class TestOrphanedReservations:
    async def test_reservation_without_order_is_released(self, db, make_item, seller_id, buyer_id):
        item = await make_item(seller_id)
        await reserve_item(db, item["_id"], "chk-dead", buyer_id)

        released = await release_orphaned_reservations(
            db, now=datetime.utcnow() + timedelta(minutes=30),
        )

        assert released == 1
        assert (await db.items.find_one({"_id": item["_id"]}))["status"] == "active"

    async def test_reservation_of_confirmed_order_is_marked_sold(self, db, make_item, seller_id, buyer_id):
        item = await make_item(seller_id)
        [order] = await start_checkout(db, buyer_id, item)
        # commit point reached, follow-up never ran
        await db.orders.update_one({"_id": order["_id"]}, {"$set": {"status": "confirmed"}})

        released = await release_orphaned_reservations(
            db, now=datetime.utcnow() + timedelta(minutes=30),
        )

        assert released == 0
        assert (await db.items.find_one({"_id": item["_id"]}))["status"] == "sold"

    async def test_recent_reservation_is_kept(self, db, make_item, seller_id, buyer_id):
        item = await make_item(seller_id)
        await reserve_item(db, item["_id"], "chk-live", ObjectId())

        assert await release_orphaned_reservations(db) == 0
        assert (await db.items.find_one({"_id": item["_id"]}))["status"] == "pending"


class TestRepairConfirmedOrders:
    async def test_interrupted_confirmation_is_completed(self, db, make_item, seller_id, buyer_id):
        item = await make_item(seller_id)
        [order] = await start_checkout(db, buyer_id, item)
        await db.orders.update_one(
            {"_id": order["_id"]},
            {"$set": {"status": "confirmed", "payment_status": "completed"}},
        )

        assert await repair_confirmed_orders(db) == 1
        assert await repair_confirmed_orders(db) == 0

        stored = await db.orders.find_one({"_id": order["_id"]})
        assert stored["loyalty_credited"] is True
        assert (await db.items.find_one({"_id": item["_id"]}))["status"] == "sold"
        assert (await get_account(db, buyer_id))["total_points"] == 5
        assert (await get_account(db, seller_id))["total_points"] == 10
