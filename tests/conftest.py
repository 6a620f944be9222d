import os

os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("ENV", "test")
os.environ.setdefault("CARD_PROCESSING_DELAY_SECONDS", "0")
os.environ.setdefault("ORDER_RATE_LIMIT_PER_MINUTE", "100")

from datetime import datetime, timedelta

import pytest
from bson import ObjectId
from httpx import ASGITransport, AsyncClient
from jose import jwt
from mongomock_motor import AsyncMongoMockClient

from config import env
from utils.indexes import ensure_indexes

SHIPPING = {
    "name": "Ada Buyer",
    "address": "1 College Road",
    "city": "Leeds",
    "state": "West Yorkshire",
    "zip_code": "LS2 9JT",
    "phone": "07700 900123",
}

CARD = {
    "card_number": "4242 4242 4242 4242",
    "expiry_date": "12/99",
    "cvv": "123",
    "card_name": "Ada Buyer",
}


def cash_request(**extra) -> dict:
    return {"payment_method": "cash", "shipping_address": dict(SHIPPING), **extra}


def card_request(**extra) -> dict:
    return {
        "payment_method": "card",
        "shipping_address": dict(SHIPPING),
        "payment_details": dict(CARD),
        **extra,
    }


def mint_token(claims: dict, expires_in: timedelta = timedelta(hours=1)) -> str:
    """Stand-in for the identity service that issues bearer tokens."""
    now = datetime.utcnow()
    payload = {**claims, "iat": now, "exp": now + expires_in}
    return jwt.encode(payload, env.JWT_SECRET, algorithm=env.JWT_ALGORITHM)


def auth_headers(user_id: ObjectId) -> dict:
    token = mint_token({"sub": str(user_id), "name": "Test User"})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
async def db():
    client = AsyncMongoMockClient()
    database = client["campus_cycle_test"]
    await ensure_indexes(database)
    yield database


@pytest.fixture
def seller_id():
    return ObjectId()


@pytest.fixture
def buyer_id():
    return ObjectId()


@pytest.fixture
def make_item(db):
    async def _make_item(seller_id, price=50.0, title="Desk lamp", status="active", **fields):
        now = datetime.utcnow()
        item = {
            "_id": ObjectId(),
            "seller_id": seller_id,
            "title": title,
            "description": f"A used {title.lower()}",
            "category": "Home",
            "condition": "Good",
            "location": "Main campus",
            "images": [],
            "price": price,
            "status": status,
            "views": 0,
            "saved_by": [],
            "created_at": now,
            "updated_at": now,
            **fields,
        }
        await db.items.insert_one(item)
        return item

    return _make_item


@pytest.fixture
async def client(db):
    from main import app
    from database import get_db

    app.dependency_overrides[get_db] = lambda: db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as http:
        yield http
    app.dependency_overrides.clear()
