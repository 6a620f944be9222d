from pymongo import ASCENDING, DESCENDING
from pymongo.errors import OperationFailure

from utils.idempotency import IDEMPOTENCY_TTL_SECONDS


def _normalize_key_pairs(keys):
    return [(k, v) for k, v in keys]


async def _create_index_safe(collection, keys, **kwargs):
    """
    Create index safely.
    If Mongo reports IndexOptionsConflict/IndexKeySpecsConflict for same key pattern,
    drop the conflicting index and recreate with desired options.
    """
    desired_key = _normalize_key_pairs(keys)
    desired_name = kwargs.get("name")
    try:
        await collection.create_index(keys, **kwargs)
        return
    except OperationFailure as e:
        if getattr(e, "code", None) not in {85, 86}:
            raise

        conflicting_names = []
        async for idx in collection.list_indexes():
            idx_key = _normalize_key_pairs(list(idx.get("key", {}).items()))
            if idx_key == desired_key:
                idx_name = idx.get("name")
                if idx_name and idx_name != desired_name:
                    conflicting_names.append(idx_name)

        for idx_name in conflicting_names:
            await collection.drop_index(idx_name)

        await collection.create_index(keys, **kwargs)


async def ensure_indexes(db):
    # Items
    await _create_index_safe(
        db.items,
        [("status", ASCENDING), ("created_at", DESCENDING)],
        name="items_status_created_idx",
    )
    await _create_index_safe(
        db.items,
        [("seller_id", ASCENDING), ("created_at", DESCENDING)],
        name="items_seller_created_idx",
    )
    await _create_index_safe(
        db.items,
        [("reservation_id", ASCENDING)],
        name="items_reservation_idx",
        sparse=True,
    )

    # Carts
    await _create_index_safe(
        db.carts,
        [("user_id", ASCENDING)],
        name="carts_user_unique_idx",
        unique=True,
    )

    # Orders
    await _create_index_safe(
        db.orders,
        [("order_number", ASCENDING)],
        name="orders_order_number_unique",
        unique=True,
    )
    await _create_index_safe(
        db.orders,
        [("verification_code", ASCENDING)],
        name="orders_verification_code_unique",
        unique=True,
    )
    await _create_index_safe(
        db.orders,
        [("buyer_id", ASCENDING), ("created_at", DESCENDING)],
        name="orders_buyer_created_at_idx",
    )
    await _create_index_safe(
        db.orders,
        [("seller_id", ASCENDING), ("created_at", DESCENDING)],
        name="orders_seller_created_at_idx",
    )
    await _create_index_safe(
        db.orders,
        [("status", ASCENDING), ("created_at", ASCENDING)],
        name="orders_status_created_idx",
    )
    await _create_index_safe(
        db.orders,
        [("checkout_id", ASCENDING)],
        name="orders_checkout_idx",
    )

    # Loyalty
    await _create_index_safe(
        db.loyalty_accounts,
        [("user_id", ASCENDING)],
        name="loyalty_accounts_user_unique",
        unique=True,
    )
    await _create_index_safe(
        db.point_transactions,
        [("ledger_key", ASCENDING)],
        name="point_transactions_ledger_key_unique",
        unique=True,
    )
    await _create_index_safe(
        db.point_transactions,
        [("user_id", ASCENDING), ("created_at", DESCENDING)],
        name="point_transactions_user_created_idx",
    )

    # Idempotency
    await _create_index_safe(
        db.idempotency_keys,
        [("key", ASCENDING), ("scope", ASCENDING)],
        name="idempotency_key_scope_unique",
        unique=True,
    )
    await _create_index_safe(
        db.idempotency_keys,
        [("created_at", ASCENDING)],
        name="idempotency_ttl_idx",
        expireAfterSeconds=IDEMPOTENCY_TTL_SECONDS,
    )

    # Rate limits
    await _create_index_safe(
        db.rate_limits,
        [("key", ASCENDING), ("window", ASCENDING)],
        name="rate_limits_key_window_unique",
        unique=True,
    )
    await _create_index_safe(
        db.rate_limits,
        [("created_at", ASCENDING)],
        name="rate_limits_ttl_idx",
        expireAfterSeconds=60 * 60,
    )
