# backend/config/constants.py

# -----------------------------
# ITEM AVAILABILITY
# -----------------------------

ITEM_ACTIVE = "active"
ITEM_PENDING = "pending"
ITEM_SOLD = "sold"

# -----------------------------
# ORDERS
# -----------------------------

ORDER_STATUSES = ("pending", "confirmed", "processing", "shipped", "delivered", "cancelled")
PAYMENT_STATUSES = ("pending", "processing", "completed", "failed", "refunded")
PAYMENT_METHODS = {"card", "cash"}

# forward-only fulfilment path after confirmation
FULFILMENT_FLOW = ["confirmed", "processing", "shipped", "delivered"]
VERIFIABLE_STATUSES = {"confirmed", "processing", "shipped"}

ESTIMATED_DELIVERY_DAYS = 7
MAX_CART_QUANTITY = 99
ORDER_INSERT_ATTEMPTS = 5

# -----------------------------
# VERIFICATION CODES
# -----------------------------

# no 0/O, 1/I/L: codes are read out loud between buyer and seller
VERIFICATION_ALPHABET = "23456789ABCDEFGHJKMNPQRSTUVWXYZ"
VERIFICATION_CODE_LENGTH = 8
ORDER_NUMBER_PREFIX = "CC"

# =========================================
# LOYALTY
# =========================================

BUYER_PURCHASE_POINTS = 5
SELLER_SALE_POINTS = 10

# minimum total points per level, highest first
LOYALTY_TIERS = [
    ("Platinum", 1000),
    ("Gold", 500),
    ("Silver", 100),
    ("Bronze", 0),
]

ENTRY_EARNED = "earned"
ENTRY_SPENT = "spent"
ENTRY_BONUS = "bonus"
