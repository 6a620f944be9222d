import logging
import uuid
from datetime import datetime
from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from config.constants import (
    BUYER_PURCHASE_POINTS,
    ENTRY_BONUS,
    ENTRY_EARNED,
    ENTRY_SPENT,
    LOYALTY_TIERS,
    SELLER_SALE_POINTS,
)
from utils.errors import InsufficientPointsError

logger = logging.getLogger(__name__)

STATUS_PENDING = "pending"
STATUS_APPLIED = "applied"
STATUS_REJECTED = "rejected"

CREDIT_TYPES = {ENTRY_EARNED, ENTRY_BONUS}

# recent keys guard the apply step; older entries are already marked applied
LEDGER_KEYS_KEPT = 200


# ==============================
# Tier (derived only)
# ==============================

def tier_for_points(total_points: int) -> str:
    for name, minimum in LOYALTY_TIERS:
        if total_points >= minimum:
            return name
    return LOYALTY_TIERS[-1][0]


def account_view(account: dict) -> dict:
    view = {k: v for k, v in account.items() if k != "ledger_keys"}
    view["level"] = tier_for_points(view.get("total_points", 0))
    return view


def order_ledger_key(order_id, role: str) -> str:
    return f"{order_id}:{role}"


# ==============================
# Account
# ==============================

async def _ensure_account(db, user_id: ObjectId):
    now = datetime.utcnow()
    try:
        await db.loyalty_accounts.update_one(
            {"user_id": user_id},
            {"$setOnInsert": {
                "total_points": 0,
                "available_points": 0,
                "lifetime_earned": 0,
                "lifetime_spent": 0,
                "ledger_keys": [],
                "created_at": now,
                "updated_at": now,
            }},
            upsert=True,
        )
    except DuplicateKeyError:
        # concurrent first write created it
        pass


async def get_account(db, user_id: ObjectId) -> dict:
    await _ensure_account(db, user_id)
    account = await db.loyalty_accounts.find_one({"user_id": user_id})
    return account_view(account)


async def recent_transactions(db, user_id: ObjectId, limit: int = 10) -> list:
    cursor = (
        db.point_transactions
        .find({"user_id": user_id, "status": STATUS_APPLIED})
        .sort("created_at", -1)
        .limit(limit)
    )
    return [tx async for tx in cursor]


# ==============================
# Core: append + apply
#
# 1. insert the log entry as pending (unique ledger_key)
# 2. apply it to the account in one conditional write that also
#    records the key in a bounded window of recent keys
# 3. mark the entry applied / rejected
# Every step is safe to repeat.
# ==============================

async def _append_entry(
    db,
    *,
    user_id: ObjectId,
    entry_type: str,
    amount: int,
    reason: str,
    order_id: ObjectId | None,
    role: str | None,
    ledger_key: str,
) -> tuple[dict, bool]:
    if amount <= 0:
        raise ValueError("Loyalty amount must be positive")

    now = datetime.utcnow()
    try:
        await db.point_transactions.insert_one({
            "user_id": user_id,
            "type": entry_type,
            "amount": amount,
            "reason": reason,
            "order_id": order_id,
            "role": role,
            "ledger_key": ledger_key,
            "status": STATUS_PENDING,
            "created_at": now,
            "applied_at": None,
        })
    except DuplicateKeyError:
        existing = await db.point_transactions.find_one({"ledger_key": ledger_key})
        if existing and existing.get("status") == STATUS_APPLIED:
            account = await db.loyalty_accounts.find_one({"user_id": user_id})
            return account_view(account), False
        # pending (interrupted) or rejected: resume
        await db.point_transactions.update_one(
            {"ledger_key": ledger_key, "status": {"$ne": STATUS_APPLIED}},
            {"$set": {"status": STATUS_PENDING}},
        )

    await _ensure_account(db, user_id)

    query = {"user_id": user_id, "ledger_keys": {"$ne": ledger_key}}
    if entry_type in CREDIT_TYPES:
        inc = {
            "total_points": amount,
            "available_points": amount,
            "lifetime_earned": amount,
        }
    else:
        query["available_points"] = {"$gte": amount}
        inc = {"available_points": -amount, "lifetime_spent": amount}

    account = await db.loyalty_accounts.find_one_and_update(
        query,
        {
            "$inc": inc,
            "$push": {"ledger_keys": {"$each": [ledger_key], "$slice": -LEDGER_KEYS_KEPT}},
            "$set": {"updated_at": now},
        },
        return_document=ReturnDocument.AFTER,
    )
    applied = account is not None

    if not applied:
        account = await db.loyalty_accounts.find_one({"user_id": user_id})
        if ledger_key not in account.get("ledger_keys", []):
            await db.point_transactions.update_one(
                {"ledger_key": ledger_key},
                {"$set": {"status": STATUS_REJECTED}},
            )
            raise InsufficientPointsError(
                available=account.get("available_points", 0),
                requested=amount,
            )

    await db.point_transactions.update_one(
        {"ledger_key": ledger_key},
        {"$set": {"status": STATUS_APPLIED, "applied_at": now}},
    )

    if applied:
        logger.info(
            "LOYALTY_%s user=%s amount=%d key=%s",
            entry_type.upper(), user_id, amount, ledger_key,
        )
    return account_view(account), applied


async def credit(
    db,
    user_id: ObjectId,
    amount: int,
    reason: str,
    order_id: ObjectId | None = None,
    role: str | None = None,
    entry_type: str = ENTRY_EARNED,
) -> dict:
    """
    Credit points. With an order and role the credit is idempotent:
    the same (order, role) pair is only ever applied once.
    """
    if entry_type not in CREDIT_TYPES:
        raise ValueError(f"Not a credit entry type: {entry_type}")

    if order_id is not None and role:
        key = order_ledger_key(order_id, role)
    else:
        key = uuid.uuid4().hex

    account, _ = await _append_entry(
        db,
        user_id=user_id,
        entry_type=entry_type,
        amount=amount,
        reason=reason,
        order_id=order_id,
        role=role,
        ledger_key=key,
    )
    return account


async def debit(
    db,
    user_id: ObjectId,
    amount: int,
    reason: str,
    order_id: ObjectId | None = None,
    idempotency_key: str | None = None,
) -> dict:
    account, _ = await _append_entry(
        db,
        user_id=user_id,
        entry_type=ENTRY_SPENT,
        amount=amount,
        reason=reason,
        order_id=order_id,
        role=None,
        ledger_key=idempotency_key or uuid.uuid4().hex,
    )
    return account


async def award_order_points(db, order: dict):
    """Purchase and sale points for a confirmed order."""
    await credit(
        db,
        order["buyer_id"],
        BUYER_PURCHASE_POINTS,
        "Purchase completed",
        order_id=order["_id"],
        role="buyer",
    )
    await credit(
        db,
        order["seller_id"],
        SELLER_SALE_POINTS,
        "Item sold",
        order_id=order["_id"],
        role="seller",
    )


# ==============================
# Reconciliation
# ==============================

async def reconcile_account(db, user_id: ObjectId) -> dict:
    pipeline = [
        {"$match": {"user_id": user_id, "status": STATUS_APPLIED}},
        {"$group": {"_id": "$type", "amount": {"$sum": "$amount"}}},
    ]
    rows = await db.point_transactions.aggregate(pipeline).to_list(None)
    summary = {r["_id"]: r["amount"] for r in rows}

    earned = summary.get(ENTRY_EARNED, 0) + summary.get(ENTRY_BONUS, 0)
    spent = summary.get(ENTRY_SPENT, 0)

    account = await db.loyalty_accounts.find_one({"user_id": user_id}) or {}
    expected = {
        "total_points": earned,
        "available_points": earned - spent,
        "lifetime_earned": earned,
        "lifetime_spent": spent,
    }
    actual = {k: account.get(k, 0) for k in expected}

    return {
        "user_id": user_id,
        "expected": expected,
        "actual": actual,
        "consistent": expected == actual,
    }
