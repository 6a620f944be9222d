from bson import ObjectId
from datetime import datetime


def serialize_value(value):
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: serialize_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [serialize_value(v) for v in value]
    return value


def serialize_doc(doc: dict | None) -> dict | None:
    if not doc:
        return doc
    data = serialize_value(dict(doc))
    if "_id" in data:
        data["id"] = data.pop("_id")
    return data


def serialize_item(item: dict, viewer_id: ObjectId | None = None) -> dict:
    saved_by = item.get("saved_by", [])
    return {
        "id": str(item["_id"]),
        "seller_id": serialize_value(item.get("seller_id")),
        "title": item.get("title"),
        "description": item.get("description"),
        "category": item.get("category"),
        "condition": item.get("condition"),
        "location": item.get("location"),
        "images": item.get("images", []),
        "price": item.get("price"),
        "status": item.get("status"),
        "views": item.get("views", 0),
        "favorites": len(saved_by),
        "is_favorited": viewer_id in saved_by if viewer_id else False,
        "created_at": serialize_value(item.get("created_at")),
        "updated_at": serialize_value(item.get("updated_at")),
    }


def serialize_order(order: dict, viewer_id: ObjectId | None = None) -> dict:
    """
    The verification pin is a secret between the buyer and the in-person
    exchange: only the buyer gets to see it.
    """
    data = {
        "id": str(order["_id"]),
        "order_number": order.get("order_number"),
        "checkout_id": order.get("checkout_id"),
        "buyer_id": serialize_value(order["buyer_id"]),
        "seller_id": serialize_value(order["seller_id"]),

        "items": serialize_value(order.get("items", [])),
        "total_amount": order.get("total_amount"),

        "status": order["status"],
        "payment_status": order.get("payment_status"),
        "payment_method": order.get("payment_method"),
        "payment_details": order.get("payment_details"),

        "shipping_address": order.get("shipping_address"),
        "billing_address": order.get("billing_address"),
        "notes": order.get("notes"),

        "estimated_delivery": serialize_value(order.get("estimated_delivery")),
        "verified_at": serialize_value(order.get("verified_at")),
        "cancel_reason": order.get("cancel_reason"),
        "status_history": serialize_value(order.get("status_history", [])),

        "created_at": serialize_value(order.get("created_at")),
        "updated_at": serialize_value(order.get("updated_at")),
    }

    if viewer_id is None or viewer_id == order["buyer_id"]:
        data["verification_pin"] = order.get("verification_code")

    return data


def serialize_cart(cart: dict) -> dict:
    return serialize_value(cart)


def serialize_loyalty(account: dict, transactions: list) -> dict:
    return {
        "loyalty_points": serialize_doc(account),
        "recent_transactions": [serialize_doc(tx) for tx in transactions],
    }
