import os
from dotenv import load_dotenv

load_dotenv()

# =====================================================
# ENV
# =====================================================
ENV = os.getenv("ENV", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# =====================================================
# DATABASE
# =====================================================
MONGODB_URI = os.getenv("MONGODB_URI") or os.getenv("MONGO_URI") or "mongodb://localhost:27017/campus_cycle"

# =====================================================
# JWT (tokens are issued by the identity service)
# =====================================================
JWT_SECRET = os.getenv("JWT_SECRET")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

# =====================================================
# CHECKOUT
# =====================================================
PAYMENT_TIMEOUT_SECONDS = float(os.getenv("PAYMENT_TIMEOUT_SECONDS", 10))
CARD_PROCESSING_DELAY_SECONDS = float(os.getenv("CARD_PROCESSING_DELAY_SECONDS", 0))
PENDING_ORDER_TIMEOUT_MINUTES = int(os.getenv("PENDING_ORDER_TIMEOUT_MINUTES", 15))
ORDER_RATE_LIMIT_PER_MINUTE = int(os.getenv("ORDER_RATE_LIMIT_PER_MINUTE", 10))

# =====================================================
# CORS
# =====================================================
CORS_ALLOWED_ORIGINS = os.getenv("CORS_ALLOWED_ORIGINS", "").split(",")


def validate_production_env() -> None:
    if (ENV or "").lower() != "production":
        return

    required = {
        "JWT_SECRET": JWT_SECRET,
        "MONGODB_URI": os.getenv("MONGODB_URI") or os.getenv("MONGO_URI"),
    }

    invalid = []
    for key, value in required.items():
        val = (value or "").strip()
        if not val or val.startswith("CHANGE_THIS"):
            invalid.append(key)

    if invalid:
        raise RuntimeError(f"Production env misconfigured. Invalid keys: {', '.join(sorted(invalid))}")
