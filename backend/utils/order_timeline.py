from datetime import datetime
from bson import ObjectId


def timeline_entry(
    *,
    status: str,
    payment_status: str,
    actor_role: str,
    actor_id=None,
    note: str | None = None,
    at: datetime | None = None,
) -> dict:
    """
    One row of an order's embedded status_history.
    Pushed in the same write that performs the transition.
    """
    return {
        "status": status,
        "payment_status": payment_status,
        "actor_role": actor_role,
        "actor_id": ObjectId(actor_id) if actor_id else None,
        "note": note,
        "at": at or datetime.utcnow(),
    }
