from datetime import datetime
from pymongo.errors import DuplicateKeyError

IDEMPOTENCY_TTL_SECONDS = 60 * 60 * 24  # 24 hours
IN_PROGRESS_STALE_SECONDS = 60 * 5      # 5 minutes

IN_PROGRESS_RESPONSE = {
    "message": "Request already in progress",
    "status": "processing",
}


async def reserve_idempotency_key(
    *,
    db,
    key: str,
    scope: str,
):
    """
    Reserve a client-supplied idempotency key for a checkout.
    Returns the stored response if the key already completed, an
    in-progress marker if another request holds it, else None.
    """
    existing = await db.idempotency_keys.find_one({"key": key, "scope": scope})

    if existing:
        if existing.get("status") == "completed":
            return existing.get("response")

        created_at = existing.get("created_at")
        age_seconds = (
            (datetime.utcnow() - created_at).total_seconds()
            if created_at else 0
        )
        if existing.get("status") == "reserved" and age_seconds <= IN_PROGRESS_STALE_SECONDS:
            return IN_PROGRESS_RESPONSE

        # stale or failed: let this request take over
        await db.idempotency_keys.delete_one({"_id": existing["_id"]})

    try:
        await db.idempotency_keys.insert_one({
            "key": key,
            "scope": scope,
            "status": "reserved",
            "response": None,
            "created_at": datetime.utcnow(),
        })
    except DuplicateKeyError:
        concurrent = await db.idempotency_keys.find_one({"key": key, "scope": scope})
        if concurrent and concurrent.get("status") == "completed":
            return concurrent.get("response")
        return IN_PROGRESS_RESPONSE
    return None


async def complete_idempotency_key(*, db, key: str, scope: str, response: dict):
    await db.idempotency_keys.update_one(
        {"key": key, "scope": scope},
        {
            "$set": {
                "status": "completed",
                "response": response,
                "completed_at": datetime.utcnow(),
            }
        },
    )


async def fail_idempotency_key(*, db, key: str, scope: str, error: str):
    """Mark as failed so a retry with the same key runs again."""
    await db.idempotency_keys.update_one(
        {"key": key, "scope": scope},
        {
            "$set": {
                "status": "failed",
                "error": error,
                "failed_at": datetime.utcnow(),
            }
        },
    )


async def clear_idempotency_key(*, db, key: str, scope: str):
    await db.idempotency_keys.delete_one({"key": key, "scope": scope})
