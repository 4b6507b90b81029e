import asyncio
import os
from datetime import datetime, timedelta, timezone

os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("DEBUG", "false")

import pytest
from fastapi.testclient import TestClient
from mongomock_motor import AsyncMongoMockClient

import database
from core.security import create_access_token
from models.coupon import Coupon

NOW = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)

CUSTOMER = {
    "user_id":   "usr_customer001",
    "name":      "Asha",
    "email":     "asha@example.com",
    "role":      "customer",
    "user_type": "existing",
    "is_active": True,
}

OTHER_CUSTOMER = {
    "user_id":   "usr_customer002",
    "name":      "Ravi",
    "email":     "ravi@example.com",
    "role":      "customer",
    "user_type": "new",
    "is_active": True,
}

ADMIN = {
    "user_id":   "usr_admin00001",
    "name":      "Store Admin",
    "email":     "admin@spicestore.in",
    "role":      "admin",
    "user_type": "existing",
    "is_active": True,
}


def make_coupon(**overrides) -> Coupon:
    data = {
        "code":                "SPICE20",
        "description":         "20% off",
        "discount_type":       "percentage",
        "discount_value":      20,
        "max_discount_amount": 10,
        "min_order_amount":    0,
        "valid_from":          NOW - timedelta(days=10),
        "valid_until":         NOW + timedelta(days=10),
        "max_usage":           100,
        "max_usage_per_user":  1,
        "created_by":          ADMIN["user_id"],
    }
    data.update(overrides)
    return Coupon(**data)


def live_coupon(**overrides) -> Coupon:
    """Coupon valid around the real clock, for tests going through HTTP."""
    real_now = datetime.now(timezone.utc)
    overrides.setdefault("valid_from", real_now - timedelta(days=1))
    overrides.setdefault("valid_until", real_now + timedelta(days=30))
    return make_coupon(**overrides)


def auth_headers(user: dict) -> dict:
    return {"Authorization": f"Bearer {create_access_token({'sub': user['user_id']})}"}


@pytest.fixture
def mock_db():
    instance = AsyncMongoMockClient()["spicestore_test"]
    database.use_database(instance)
    yield instance
    database.use_database(None)


@pytest.fixture
def seeded_db(mock_db):
    async def _seed():
        for user in (CUSTOMER, OTHER_CUSTOMER, ADMIN):
            await mock_db.users.insert_one(dict(user))

    asyncio.run(_seed())
    return mock_db


@pytest.fixture
def client(seeded_db):
    from main import app

    # no context manager: the lifespan would connect to a real MongoDB
    return TestClient(app)


def insert_coupon(db, coupon: Coupon) -> None:
    asyncio.run(db.coupons.insert_one(coupon.to_document()))


def insert_order(db, **fields) -> dict:
    order = {
        "order_id":      "ord_000000000001",
        "user_id":       CUSTOMER["user_id"],
        "status":        "pending",
        "subtotal":      100.0,
        "shipping_cost": 40.0,
        "tax":           5.0,
        "total":         145.0,
        "coupon":        None,
    }
    order.update(fields)
    asyncio.run(db.orders.insert_one(dict(order)))
    return order
