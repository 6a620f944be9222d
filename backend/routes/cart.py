from fastapi import APIRouter, Depends

from database import get_db
from models.cart import CartAddItem, CartUpdateItem
from utils import cart_service
from utils.guards import parse_object_id
from utils.security import get_current_user
from utils.serializers import serialize_cart

router = APIRouter(prefix="/cart", tags=["Cart"])


@router.get("")
async def get_cart(
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    cart = await cart_service.view_cart(db, user["_id"])
    return serialize_cart(cart)


@router.post("/add")
async def add_to_cart(
    data: CartAddItem,
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    cart = await cart_service.add_item(
        db,
        user["_id"],
        parse_object_id(data.item_id, "item_id"),
        data.quantity,
    )
    return {"message": "Item added to cart", "cart": serialize_cart(cart)}


@router.put("/update/{item_id}")
async def update_cart_item(
    item_id: str,
    data: CartUpdateItem,
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    cart = await cart_service.update_quantity(
        db,
        user["_id"],
        parse_object_id(item_id, "item_id"),
        data.quantity,
    )
    return {"message": "Cart updated", "cart": serialize_cart(cart)}


@router.delete("/remove/{item_id}")
async def remove_cart_item(
    item_id: str,
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    cart = await cart_service.remove_item(
        db,
        user["_id"],
        parse_object_id(item_id, "item_id"),
    )
    return {"message": "Item removed from cart", "cart": serialize_cart(cart)}


@router.delete("/clear")
async def clear_cart(
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    await cart_service.clear_cart(db, user["_id"])
    return {"message": "Cart cleared"}
