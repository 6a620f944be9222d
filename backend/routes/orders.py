from fastapi import APIRouter, Depends, HTTPException, status

from config.env import ORDER_RATE_LIMIT_PER_MINUTE
from database import get_db
from models.order import CreateOrderRequest, OrderStatusUpdate, VerifyExchangeRequest
from utils.checkout_service import (
    advance_order_status,
    cancel_order,
    checkout,
    get_order_for_user,
    list_orders,
    list_pending_orders,
    replay_confirmation,
    verify_exchange,
)
from utils.errors import NotFoundError
from utils.guards import parse_object_id
from utils.idempotency import (
    reserve_idempotency_key,
    complete_idempotency_key,
    fail_idempotency_key,
    clear_idempotency_key,
)
from utils.payments import get_payment_processor
from utils.rate_limit import rate_limit
from utils.security import get_current_user
from utils.serializers import serialize_order


router = APIRouter(
    prefix="/orders",
    tags=["Orders"]
)


# ======================================================
# CREATE ORDER (CHECKOUT)
# ======================================================

@router.post("", status_code=status.HTTP_201_CREATED)
async def create_order(
    data: CreateOrderRequest,
    user=Depends(get_current_user),
    db=Depends(get_db),
    processor=Depends(get_payment_processor),
):
    buyer_id = user["_id"]

    await rate_limit(
        db=db,
        key=f"create_order:{buyer_id}",
        max_requests=ORDER_RATE_LIMIT_PER_MINUTE,
        window_seconds=60,
    )

    idempotency_key = data.idempotency_key
    scope = f"create_order:{buyer_id}"
    if idempotency_key:
        existing_response = await reserve_idempotency_key(
            db=db,
            key=idempotency_key,
            scope=scope,
        )
        if existing_response:
            return existing_response

    try:
        orders = await checkout(db, buyer_id, data.model_dump(), processor=processor)

        serialized = [serialize_order(order, buyer_id) for order in orders]
        response = {
            "message": "Orders placed successfully",
            "orders": serialized,
            "order": serialized[0],
        }

        if idempotency_key:
            await complete_idempotency_key(
                db=db,
                key=idempotency_key,
                scope=scope,
                response=response,
            )
        return response
    except HTTPException:
        if idempotency_key:
            await clear_idempotency_key(db=db, key=idempotency_key, scope=scope)
        raise
    except Exception as e:
        if idempotency_key:
            await fail_idempotency_key(
                db=db,
                key=idempotency_key,
                scope=scope,
                error=str(e),
            )
        raise


# ======================================================
# LISTINGS
# ======================================================

@router.get("/my-purchases")
async def my_purchases(
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    orders = await list_orders(db, {"buyer_id": user["_id"]})
    return [serialize_order(o, user["_id"]) for o in orders]


@router.get("/my-sales")
async def my_sales(
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    orders = await list_orders(db, {"seller_id": user["_id"]})
    return [serialize_order(o, user["_id"]) for o in orders]


@router.get("/pending")
async def pending_orders(
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    orders = await list_pending_orders(db, user["_id"])
    return [serialize_order(o, user["_id"]) for o in orders]


@router.get("/{order_id}")
async def get_order(
    order_id: str,
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    order = await get_order_for_user(db, parse_object_id(order_id, "order_id"), user["_id"])
    return serialize_order(order, user["_id"])


# ======================================================
# CONFIRMATION REPLAY (CONFIRMED ORDERS ONLY, SAFE TO RETRY)
# ======================================================

@router.post("/{order_id}/confirm")
async def confirm(
    order_id: str,
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    oid = parse_object_id(order_id, "order_id")
    order = await get_order_for_user(db, oid, user["_id"])
    if order["buyer_id"] != user["_id"]:
        raise NotFoundError("order")

    order = await replay_confirmation(db, oid)
    return {
        "message": "Order confirmed",
        "order": serialize_order(order, user["_id"]),
    }


# ======================================================
# BUYER ABANDONS CHECKOUT
# ======================================================

@router.post("/{order_id}/cancel")
async def cancel(
    order_id: str,
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    oid = parse_object_id(order_id, "order_id")
    order = await get_order_for_user(db, oid, user["_id"])
    if order["buyer_id"] != user["_id"]:
        raise NotFoundError("order")

    order = await cancel_order(
        db,
        oid,
        reason="BUYER_CANCELLED",
        actor_role="buyer",
        actor_id=user["_id"],
        unpaid_only=True,
    )
    return {
        "message": "Order cancelled",
        "order": serialize_order(order, user["_id"]),
    }


# ======================================================
# SELLER FULFILMENT
# ======================================================

@router.patch("/{order_id}/status")
async def update_status(
    order_id: str,
    data: OrderStatusUpdate,
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    order = await advance_order_status(
        db,
        parse_object_id(order_id, "order_id"),
        user["_id"],
        data.status,
    )
    return {
        "message": f"Order marked as {order['status']}",
        "order": serialize_order(order, user["_id"]),
    }


@router.post("/{order_id}/verify")
async def verify(
    order_id: str,
    data: VerifyExchangeRequest,
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    order = await verify_exchange(
        db,
        parse_object_id(order_id, "order_id"),
        user["_id"],
        data.code,
    )
    return {
        "message": "Exchange verified",
        "order": serialize_order(order, user["_id"]),
    }
