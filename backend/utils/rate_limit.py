from datetime import datetime
from fastapi import HTTPException, status


async def rate_limit(
    db,
    key: str,
    max_requests: int,
    window_seconds: int,
):
    """
    Fixed-window counter shared by every API process.
    One bucket document per (key, window).
    """
    now = datetime.utcnow()
    window = int(now.timestamp()) // window_seconds

    await db.rate_limits.update_one(
        {"key": key, "window": window},
        {
            "$inc": {"count": 1},
            "$setOnInsert": {"created_at": now},
        },
        upsert=True,
    )
    bucket = await db.rate_limits.find_one({"key": key, "window": window})

    if bucket and bucket["count"] > max(1, max_requests):
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many requests. Please try again later.",
        )
