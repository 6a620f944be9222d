from pydantic import AliasChoices, BaseModel, Field
from typing import List, Optional


def _alias(*names):
    return AliasChoices(*names)


class Address(BaseModel):
    name: str = ""
    address: str = ""
    city: str = ""
    state: Optional[str] = None
    zip_code: str = Field("", validation_alias=_alias("zip_code", "zipCode"))
    phone: Optional[str] = None


class PaymentDetails(BaseModel):
    card_number: Optional[str] = Field(None, validation_alias=_alias("card_number", "cardNumber"))
    expiry_date: Optional[str] = Field(None, validation_alias=_alias("expiry_date", "expiryDate"))
    cvv: Optional[str] = None
    card_name: Optional[str] = Field(None, validation_alias=_alias("card_name", "cardName"))


class OrderLine(BaseModel):
    item_id: str = Field(..., validation_alias=_alias("item_id", "itemId"))
    quantity: int = Field(1, gt=0)


class CreateOrderRequest(BaseModel):
    """
    Either `items` (a cart snapshot), or `item_id` (buy now), or neither
    (check out the stored cart). Prices are never taken from the client.
    """

    items: Optional[List[OrderLine]] = None
    item_id: Optional[str] = Field(None, validation_alias=_alias("item_id", "itemId"))
    quantity: int = Field(1, gt=0)

    shipping_address: Optional[Address] = Field(
        None, validation_alias=_alias("shipping_address", "shippingAddress")
    )
    billing_address: Optional[Address] = Field(
        None, validation_alias=_alias("billing_address", "billingAddress")
    )
    payment_method: str = Field(..., validation_alias=_alias("payment_method", "paymentMethod"))
    payment_details: Optional[PaymentDetails] = Field(
        None, validation_alias=_alias("payment_details", "paymentDetails")
    )
    notes: Optional[str] = Field(None, max_length=500)
    idempotency_key: Optional[str] = Field(
        None, max_length=100, validation_alias=_alias("idempotency_key", "idempotencyKey")
    )


class OrderStatusUpdate(BaseModel):
    status: str


class VerifyExchangeRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=20)
