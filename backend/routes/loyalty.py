from fastapi import APIRouter, Depends

from database import get_db
from utils.loyalty_service import get_account, recent_transactions
from utils.security import get_current_user
from utils.serializers import serialize_loyalty

router = APIRouter(prefix="/loyalty", tags=["Loyalty"])


@router.get("/points")
async def loyalty_points(
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    account = await get_account(db, user["_id"])
    transactions = await recent_transactions(db, user["_id"], limit=10)
    return serialize_loyalty(account, transactions)
