import asyncio
import logging
import uuid
from datetime import datetime, timedelta
from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from config.constants import (
    ESTIMATED_DELIVERY_DAYS,
    FULFILMENT_FLOW,
    MAX_CART_QUANTITY,
    ORDER_INSERT_ATTEMPTS,
    PAYMENT_METHODS,
    VERIFIABLE_STATUSES,
)
from config.env import PAYMENT_TIMEOUT_SECONDS
from utils.cart_service import remove_purchased, view_cart
from utils.errors import (
    ConflictError,
    InvalidOperationError,
    NotFoundError,
    PaymentFailedError,
    SelfPurchaseError,
    ValidationError,
)
from utils.guards import parse_object_id
from utils.item_state import mark_item_sold, release_item, release_reservation, reserve_item
from utils.loyalty_service import award_order_points
from utils.order_timeline import timeline_entry
from utils.payments import PaymentFailed, SimulatedPaymentProcessor
from utils.validators import (
    validate_billing_address,
    validate_card_details,
    validate_shipping_address,
)
from utils.verification import generate_order_number, generate_verification_code, verify_code

logger = logging.getLogger(__name__)


def normalize_payment_method(payment_method: str | None) -> str:
    method = (payment_method or "").strip().lower()
    if method not in PAYMENT_METHODS:
        raise ValidationError(
            "payment_method",
            f"Invalid payment method. Allowed: {', '.join(sorted(PAYMENT_METHODS))}",
        )
    return method


# ======================================================
# STEP 1: RESOLVE LINES (never trust client prices)
# ======================================================

def _requested_lines(request: dict) -> list | None:
    if request.get("items"):
        return [
            (line.get("item_id"), line.get("quantity", 1))
            for line in request["items"]
        ]
    if request.get("item_id"):
        return [(request["item_id"], request.get("quantity") or 1)]
    return None


async def resolve_lines(db, buyer_id: ObjectId, request: dict) -> list:
    requested = _requested_lines(request)
    if requested is None:
        cart = await view_cart(db, buyer_id)
        if not cart["items"]:
            raise ValidationError("items", "Cart is empty")
        requested = [(line["item_id"], line["quantity"]) for line in cart["items"]]

    merged: dict[ObjectId, int] = {}
    for raw_id, quantity in requested:
        item_id = parse_object_id(raw_id, "item_id")
        if not isinstance(quantity, int) or quantity < 1:
            raise ValidationError("quantity", "Quantity must be at least 1")
        merged[item_id] = merged.get(item_id, 0) + quantity
        if merged[item_id] > MAX_CART_QUANTITY:
            raise ValidationError("quantity", f"Quantity cannot exceed {MAX_CART_QUANTITY}")

    for item_id in merged:
        item = await db.items.find_one({"_id": item_id}, {"seller_id": 1, "title": 1})
        if not item:
            raise NotFoundError("item", f"Item {item_id} not found")
        if item.get("seller_id") == buyer_id:
            raise SelfPurchaseError(item_id, item.get("title"))

    return list(merged.items())


# ======================================================
# STEP 2: RESERVE (all or nothing)
# ======================================================

async def reserve_lines(db, buyer_id: ObjectId, lines: list, reservation_id: str) -> list:
    reserved = []
    for item_id, quantity in lines:
        item = await reserve_item(db, item_id, reservation_id, buyer_id)
        if item is None:
            for held, _ in reserved:
                await release_item(db, held["_id"], reservation_id)

            current = await db.items.find_one({"_id": item_id}, {"title": 1})
            title = current.get("title") if current else None
            logger.warning(
                "CHECKOUT_CONFLICT buyer=%s item=%s checkout=%s",
                buyer_id, item_id, reservation_id,
            )
            raise ConflictError(
                f'Item "{title}" is no longer available',
                item_id=item_id,
                title=title,
            )
        reserved.append((item, quantity))
    return reserved


# ======================================================
# STEP 3-4: PRICE SNAPSHOT + ORDER WRITE
# ======================================================

def build_orders(
    *,
    buyer_id: ObjectId,
    reserved: list,
    reservation_id: str,
    payment_method: str,
    card: dict | None,
    shipping: dict,
    billing: dict,
    notes: str | None,
    now: datetime,
) -> list:
    by_seller: dict[ObjectId, list] = {}
    for item, quantity in reserved:
        by_seller.setdefault(item["seller_id"], []).append((item, quantity))

    orders = []
    for seller_id, group in by_seller.items():
        lines = []
        for item, quantity in group:
            unit_price = round(float(item["price"]), 2)
            lines.append({
                "item_id": item["_id"],
                "title": item.get("title"),
                "quantity": quantity,
                "unit_price": unit_price,
                "line_total": round(unit_price * quantity, 2),
            })

        orders.append({
            "checkout_id": reservation_id,
            "buyer_id": buyer_id,
            "seller_id": seller_id,
            "items": lines,
            "total_amount": round(sum(l["unit_price"] * l["quantity"] for l in lines), 2),
            "status": "pending",
            "payment_status": "pending",
            "payment_method": payment_method,
            "payment_details": {
                "card_last4": card["card_last4"] if card else None,
                "card_type": card["card_type"] if card else None,
                "transaction_id": None,
            },
            "shipping_address": shipping,
            "billing_address": billing,
            "notes": notes,
            "estimated_delivery": now + timedelta(days=ESTIMATED_DELIVERY_DAYS),
            "verified_at": None,
            "loyalty_credited": False,
            "status_history": [
                timeline_entry(
                    status="pending",
                    payment_status="pending",
                    actor_role="buyer",
                    actor_id=buyer_id,
                    note="Order created",
                    at=now,
                )
            ],
            "created_at": now,
            "updated_at": now,
        })
    return orders


async def insert_order(db, order: dict) -> dict:
    """Insert with a fresh verification code / order number, retrying on collision."""
    order.setdefault("_id", ObjectId())
    for attempt in range(1, ORDER_INSERT_ATTEMPTS + 1):
        order["verification_code"] = generate_verification_code()
        order["order_number"] = generate_order_number(order["created_at"])
        try:
            await db.orders.insert_one(order)
            return order
        except DuplicateKeyError:
            logger.warning("ORDER_CODE_COLLISION attempt=%d checkout=%s", attempt, order["checkout_id"])
    raise RuntimeError("Could not allocate a unique verification code")


# ======================================================
# STEP 5: PAYMENT (bounded wait)
# ======================================================

async def collect_payment(db, processor, orders: list, payment_method: str, reservation_id: str, timeout: float) -> str:
    await db.orders.update_many(
        {"checkout_id": reservation_id, "status": "pending"},
        {"$set": {"payment_status": "processing", "updated_at": datetime.utcnow()}},
    )

    amount = round(sum(o["total_amount"] for o in orders), 2)
    try:
        return await asyncio.wait_for(
            processor.process(method=payment_method, amount=amount, reference=reservation_id),
            timeout=timeout,
        )
    except asyncio.TimeoutError:
        raise PaymentFailedError("Payment confirmation timed out")
    except PaymentFailed as exc:
        raise PaymentFailedError(str(exc) or "Payment was declined")


# ======================================================
# CONFIRM / CANCEL
# ======================================================

async def complete_confirmed_order(db, order: dict):
    """
    Follow-up of a committed confirmation. Every step is idempotent,
    so this is also the repair path for interrupted confirmations.
    """
    for line in order["items"]:
        await mark_item_sold(db, line["item_id"], order["checkout_id"])

    await remove_purchased(db, order["buyer_id"], [line["item_id"] for line in order["items"]])

    if not order.get("loyalty_credited"):
        await award_order_points(db, order)
        await db.orders.update_one(
            {"_id": order["_id"]},
            {"$set": {"loyalty_credited": True}},
        )


def _ensure_confirmable(order: dict):
    if order["status"] == "cancelled":
        raise InvalidOperationError("Order was cancelled and cannot be confirmed")
    if order["status"] == "pending":
        raise InvalidOperationError("Payment for this order has not been completed")


async def confirm_order(
    db,
    order_id: ObjectId,
    *,
    transaction_id: str,
    actor_role: str = "system",
    actor_id=None,
) -> dict:
    """
    Commit point: pending -> confirmed, only for an order whose payment
    is being collected and only with the processor's transaction id.
    """
    now = datetime.utcnow()
    order = await db.orders.find_one_and_update(
        {"_id": order_id, "status": "pending", "payment_status": "processing"},
        {
            "$set": {
                "status": "confirmed",
                "payment_status": "completed",
                "payment_details.transaction_id": transaction_id,
                "confirmed_at": now,
                "updated_at": now,
            },
            "$push": {"status_history": timeline_entry(
                status="confirmed",
                payment_status="completed",
                actor_role=actor_role,
                actor_id=actor_id,
                note="Payment confirmed",
                at=now,
            )},
        },
        return_document=ReturnDocument.AFTER,
    )

    if order is None:
        order = await db.orders.find_one({"_id": order_id})
        if not order:
            raise NotFoundError("order")
        _ensure_confirmable(order)
        logger.info("ORDER_CONFIRM_REPLAY order=%s status=%s", order_id, order["status"])
    else:
        logger.info("ORDER_CONFIRMED order=%s total=%.2f", order_id, order["total_amount"])

    await complete_confirmed_order(db, order)
    return await db.orders.find_one({"_id": order_id})


async def replay_confirmation(db, order_id: ObjectId) -> dict:
    """Re-run the follow-up of an already confirmed order. Never confirms."""
    order = await db.orders.find_one({"_id": order_id})
    if not order:
        raise NotFoundError("order")
    _ensure_confirmable(order)

    await complete_confirmed_order(db, order)
    return await db.orders.find_one({"_id": order_id})


async def cancel_order(
    db,
    order_id: ObjectId,
    *,
    reason: str,
    actor_role: str = "system",
    actor_id=None,
    unpaid_only: bool = False,
) -> dict:
    """
    pending -> cancelled and release the items. With `unpaid_only` an
    order whose payment is already being collected is left alone.
    """
    query = {"_id": order_id, "status": "pending"}
    if unpaid_only:
        query["payment_status"] = "pending"

    now = datetime.utcnow()
    order = await db.orders.find_one_and_update(
        query,
        {
            "$set": {
                "status": "cancelled",
                "payment_status": "failed",
                "cancel_reason": reason,
                "cancelled_at": now,
                "updated_at": now,
            },
            "$push": {"status_history": timeline_entry(
                status="cancelled",
                payment_status="failed",
                actor_role=actor_role,
                actor_id=actor_id,
                note=reason,
                at=now,
            )},
        },
        return_document=ReturnDocument.AFTER,
    )

    if order is None:
        order = await db.orders.find_one({"_id": order_id})
        if not order:
            raise NotFoundError("order")
        if order["status"] == "pending":
            raise InvalidOperationError("Payment for this order is being processed")
        if order["status"] != "cancelled":
            raise InvalidOperationError("Only pending orders can be cancelled")
    else:
        logger.info("ORDER_CANCELLED order=%s reason=%s", order_id, reason)

    for line in order["items"]:
        await release_item(db, line["item_id"], order["checkout_id"])

    return order


async def abort_checkout(db, orders: list, reservation_id: str, reason: str):
    """
    Compensation for a checkout that failed before its commit point.
    Every order is attempted; any that could not be cancelled is reported.
    """
    failed = []
    for order in orders:
        try:
            await cancel_order(db, order["_id"], reason=reason)
        except Exception as exc:
            logger.exception("CHECKOUT_ABORT_ERROR order=%s", order.get("_id"))
            failed.append(exc)

    # items reserved for orders that were never written
    await release_reservation(db, reservation_id)

    if failed:
        raise RuntimeError(
            f"Checkout {reservation_id} could not cancel {len(failed)} order(s)"
        ) from failed[0]


# ======================================================
# ORCHESTRATION
# ======================================================

async def checkout(
    db,
    buyer_id: ObjectId,
    request: dict,
    processor=None,
    payment_timeout: float = PAYMENT_TIMEOUT_SECONDS,
) -> list:
    """
    Cart (or single item) -> one order per seller.

    Reservation is all-or-nothing across every line. The conditional
    pending -> confirmed write on each order is the commit point; any
    failure before it cancels the orders and releases the items.
    """
    processor = processor or SimulatedPaymentProcessor()

    payment_method = normalize_payment_method(request.get("payment_method"))
    shipping = validate_shipping_address(request.get("shipping_address"))
    billing = validate_billing_address(request.get("billing_address"), shipping)
    card = validate_card_details(request.get("payment_details")) if payment_method == "card" else None

    lines = await resolve_lines(db, buyer_id, request)

    reservation_id = uuid.uuid4().hex
    reserved = await reserve_lines(db, buyer_id, lines, reservation_id)

    orders = build_orders(
        buyer_id=buyer_id,
        reserved=reserved,
        reservation_id=reservation_id,
        payment_method=payment_method,
        card=card,
        shipping=shipping,
        billing=billing,
        notes=request.get("notes"),
        now=datetime.utcnow(),
    )

    inserted = []
    try:
        for order in orders:
            inserted.append(await insert_order(db, order))
        transaction_id = await collect_payment(
            db, processor, orders, payment_method, reservation_id, payment_timeout,
        )
    except Exception as exc:
        reason = exc.message if isinstance(exc, PaymentFailedError) else "CHECKOUT_FAILED"
        logger.warning("CHECKOUT_ABORTED checkout=%s reason=%s", reservation_id, reason)
        await abort_checkout(db, inserted, reservation_id, reason)
        raise

    confirmed = []
    for order in orders:
        confirmed.append(await confirm_order(
            db,
            order["_id"],
            transaction_id=transaction_id,
            actor_role="buyer",
            actor_id=buyer_id,
        ))
    return confirmed


# ======================================================
# FULFILMENT (seller)
# ======================================================

async def advance_order_status(db, order_id: ObjectId, seller_id: ObjectId, new_status: str) -> dict:
    if new_status not in FULFILMENT_FLOW[1:]:
        raise ValidationError(
            "status",
            f"Status must be one of: {', '.join(FULFILMENT_FLOW[1:])}",
        )

    earlier = FULFILMENT_FLOW[:FULFILMENT_FLOW.index(new_status)]
    now = datetime.utcnow()
    update = {"status": new_status, "updated_at": now}
    if new_status == "delivered":
        update["delivered_at"] = now

    order = await db.orders.find_one_and_update(
        {"_id": order_id, "seller_id": seller_id, "status": {"$in": earlier}},
        {
            "$set": update,
            "$push": {"status_history": timeline_entry(
                status=new_status,
                payment_status="completed",
                actor_role="seller",
                actor_id=seller_id,
                at=now,
            )},
        },
        return_document=ReturnDocument.AFTER,
    )
    if order is None:
        existing = await db.orders.find_one({"_id": order_id, "seller_id": seller_id})
        if not existing:
            raise NotFoundError("order")
        raise InvalidOperationError(
            f"Cannot move order from {existing['status']} to {new_status}"
        )
    return order


async def verify_exchange(db, order_id: ObjectId, seller_id: ObjectId, code: str) -> dict:
    order = await db.orders.find_one({"_id": order_id, "seller_id": seller_id})
    if not order:
        raise NotFoundError("order")

    if order["status"] not in VERIFIABLE_STATUSES:
        raise InvalidOperationError("Order is not awaiting an exchange")

    if not verify_code(code, order.get("verification_code")):
        logger.warning("EXCHANGE_CODE_MISMATCH order=%s", order_id)
        raise ValidationError("code", "Verification code does not match")

    now = datetime.utcnow()
    updated = await db.orders.find_one_and_update(
        {"_id": order_id, "status": {"$in": list(VERIFIABLE_STATUSES)}},
        {
            "$set": {
                "status": "delivered",
                "verified_at": now,
                "delivered_at": now,
                "updated_at": now,
            },
            "$push": {"status_history": timeline_entry(
                status="delivered",
                payment_status=order.get("payment_status"),
                actor_role="seller",
                actor_id=seller_id,
                note="Exchange verified in person",
                at=now,
            )},
        },
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise InvalidOperationError("Order is not awaiting an exchange")
    return updated


# ======================================================
# READS
# ======================================================

async def list_orders(db, query: dict, limit: int = 100) -> list:
    cursor = db.orders.find(query).sort("created_at", -1).limit(limit)
    return [order async for order in cursor]


async def list_pending_orders(db, buyer_id: ObjectId) -> list:
    return await list_orders(db, {
        "buyer_id": buyer_id,
        "$or": [
            {"status": {"$in": ["pending", "processing"]}},
            {"payment_status": {"$in": ["pending", "processing"]}},
        ],
    })


async def get_order_for_user(db, order_id: ObjectId, user_id: ObjectId) -> dict:
    order = await db.orders.find_one({
        "_id": order_id,
        "$or": [{"buyer_id": user_id}, {"seller_id": user_id}],
    })
    if not order:
        raise NotFoundError("order")
    return order
