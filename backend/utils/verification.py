import hmac
import secrets
import string
from datetime import datetime

from config.constants import (
    ORDER_NUMBER_PREFIX,
    VERIFICATION_ALPHABET,
    VERIFICATION_CODE_LENGTH,
)

ORDER_NUMBER_ALPHABET = string.digits + string.ascii_uppercase


# ===============================
# EXCHANGE VERIFICATION CODE
# 31^8 ~ 8.5e11 values, unique index on orders.verification_code
# ===============================
def generate_verification_code() -> str:
    raw = "".join(
        secrets.choice(VERIFICATION_ALPHABET)
        for _ in range(VERIFICATION_CODE_LENGTH)
    )
    half = VERIFICATION_CODE_LENGTH // 2
    return f"{raw[:half]}-{raw[half:]}"


def normalize_verification_code(code: str) -> str:
    cleaned = "".join(ch for ch in (code or "").upper() if ch.isalnum())
    half = VERIFICATION_CODE_LENGTH // 2
    return f"{cleaned[:half]}-{cleaned[half:]}"


def verify_code(submitted: str, stored: str) -> bool:
    if not submitted or not stored:
        return False
    return hmac.compare_digest(
        normalize_verification_code(submitted).encode(),
        stored.encode(),
    )


# ===============================
# ORDER NUMBER (human readable, unique index)
# ===============================
def generate_order_number(now: datetime | None = None) -> str:
    now = now or datetime.utcnow()
    suffix = "".join(secrets.choice(ORDER_NUMBER_ALPHABET) for _ in range(6))
    return f"{ORDER_NUMBER_PREFIX}{now:%Y%m%d}{suffix}"
