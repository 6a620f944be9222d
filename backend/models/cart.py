from pydantic import AliasChoices, BaseModel, Field

from config.constants import MAX_CART_QUANTITY


class CartAddItem(BaseModel):
    item_id: str = Field(..., validation_alias=AliasChoices("item_id", "itemId"))
    quantity: int = Field(1, gt=0, le=MAX_CART_QUANTITY)


class CartUpdateItem(BaseModel):
    # zero or negative removes the entry
    quantity: int = Field(..., le=MAX_CART_QUANTITY)
