import re
from datetime import datetime

from utils.errors import ValidationError

PHONE_REGEX = re.compile(r"^\+?[\d\s\-()]{7,20}$")
ZIP_REGEX = re.compile(r"^[A-Za-z0-9][A-Za-z0-9\s\-]{1,9}$")
CARD_NUMBER_REGEX = re.compile(r"^\d{13,19}$")
EXPIRY_REGEX = re.compile(r"^(0[1-9]|1[0-2])/(\d{2})$")
CVV_REGEX = re.compile(r"^\d{3,4}$")

SHIPPING_REQUIRED = ("name", "address", "city", "zip_code", "phone")


def _require(address: dict, key: str, prefix: str) -> str:
    value = (address.get(key) or "").strip()
    if not value:
        raise ValidationError(f"{prefix}.{key}", f"{key.replace('_', ' ').capitalize()} is required")
    return value


def validate_shipping_address(address: dict | None) -> dict:
    if not address:
        raise ValidationError("shipping_address", "Shipping address is required")

    cleaned = {key: _require(address, key, "shipping_address") for key in SHIPPING_REQUIRED}
    cleaned["state"] = (address.get("state") or "").strip() or None

    if not ZIP_REGEX.match(cleaned["zip_code"]):
        raise ValidationError("shipping_address.zip_code", "Invalid postcode")

    if not PHONE_REGEX.match(cleaned["phone"]):
        raise ValidationError("shipping_address.phone", "Invalid phone number")

    return cleaned


def validate_billing_address(address: dict | None, shipping: dict) -> dict:
    if not address:
        return {k: shipping.get(k) for k in ("name", "address", "city", "state", "zip_code")}

    cleaned = {
        key: _require(address, key, "billing_address")
        for key in ("name", "address", "city", "zip_code")
    }
    cleaned["state"] = (address.get("state") or "").strip() or None
    return cleaned


# ===============================
# CARD FORMAT (never charged)
# ===============================

def luhn_valid(number: str) -> bool:
    total = 0
    for index, ch in enumerate(reversed(number)):
        digit = int(ch)
        if index % 2 == 1:
            digit *= 2
            if digit > 9:
                digit -= 9
        total += digit
    return total % 10 == 0


def detect_card_type(number: str) -> str:
    if number.startswith("4"):
        return "Visa"
    if re.match(r"^(5[1-5]|2[2-7])", number):
        return "Mastercard"
    if re.match(r"^3[47]", number):
        return "American Express"
    if number.startswith("6"):
        return "Discover"
    return "Unknown"


def validate_card_details(details: dict | None, now: datetime | None = None) -> dict:
    if not details:
        raise ValidationError("payment_details", "Card details are required")

    number = re.sub(r"[\s\-]", "", details.get("card_number") or "")
    if not number:
        raise ValidationError("payment_details.card_number", "Card number is required")
    if not CARD_NUMBER_REGEX.match(number) or not luhn_valid(number):
        raise ValidationError("payment_details.card_number", "Invalid card number")

    expiry = (details.get("expiry_date") or "").strip()
    match = EXPIRY_REGEX.match(expiry)
    if not match:
        raise ValidationError("payment_details.expiry_date", "Expiry date must be MM/YY")

    now = now or datetime.utcnow()
    month, year = int(match.group(1)), 2000 + int(match.group(2))
    if (year, month) < (now.year, now.month):
        raise ValidationError("payment_details.expiry_date", "Card has expired")

    if not CVV_REGEX.match((details.get("cvv") or "").strip()):
        raise ValidationError("payment_details.cvv", "Invalid CVV")

    if not (details.get("card_name") or "").strip():
        raise ValidationError("payment_details.card_name", "Cardholder name is required")

    return {
        "card_last4": number[-4:],
        "card_type": detect_card_type(number),
    }
