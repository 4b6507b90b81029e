import asyncio
import os
import uuid
from datetime import datetime, timezone, timedelta

from motor.motor_asyncio import AsyncIOMotorClient

from core.security import create_access_token
from models.coupon import Coupon

MONGO_URL = os.environ.get("MONGO_URL", "mongodb://localhost:27017")
DB_NAME = os.environ.get("DB_NAME", "spicestore")

ADMIN = {
    "name":      "Store Admin",
    "email":     "admin@spicestore.in",
    "role":      "admin",
    "user_type": "existing",
}

SAMPLE_COUPONS = [
    {
        "code":                "WELCOME10",
        "description":         "10% off your first order",
        "discount_type":       "percentage",
        "discount_value":      10,
        "max_discount_amount": 200,
        "min_order_amount":    0,
        "max_usage":           1000,
        "max_usage_per_user":  1,
        "user_types":          ["new"],
        "metadata":            {"campaign_name": "Onboarding", "source": "seed"},
    },
    {
        "code":                "SPICE20",
        "description":         "20% off masalas, capped at ₹150",
        "discount_type":       "percentage",
        "discount_value":      20,
        "max_discount_amount": 150,
        "min_order_amount":    499,
        "max_usage":           500,
        "max_usage_per_user":  2,
        "metadata":            {"campaign_name": "Masala week", "source": "seed"},
    },
    {
        "code":                "FLAT50",
        "description":         "₹50 off orders above ₹299",
        "discount_type":       "fixed",
        "discount_value":      50,
        "min_order_amount":    299,
        "max_usage":           300,
        "max_usage_per_user":  0,
        "metadata":            {"campaign_name": "Festive", "source": "seed"},
    },
]


async def seed_coupons():
    print(f"🔌 Connecting to MongoDB: {DB_NAME}")
    client = AsyncIOMotorClient(MONGO_URL)
    db = client[DB_NAME]

    now = datetime.now(timezone.utc)

    admin = await db.users.find_one({"email": ADMIN["email"]})
    if admin:
        admin_id = admin["user_id"]
        print(f"⏩ Admin {ADMIN['email']} already exists.")
    else:
        admin_id = f"usr_{uuid.uuid4().hex[:12]}"
        await db.users.insert_one({
            **ADMIN,
            "user_id":    admin_id,
            "is_active":  True,
            "created_at": now,
            "updated_at": now,
        })
        print(f"✅ Admin {ADMIN['email']} created.")

    print("\n---------- COUPONS ------------")
    for data in SAMPLE_COUPONS:
        if await db.coupons.find_one({"code": data["code"]}):
            print(f"⏩ {data['code']} already exists.")
            continue
        coupon = Coupon(
            **data,
            valid_from=now,
            valid_until=now + timedelta(days=90),
            created_by=admin_id,
        )
        await db.coupons.insert_one(coupon.to_document())
        print(f"✅ {coupon.code} created ({coupon.discount_type} {coupon.discount_value}).")

    token = create_access_token({"sub": admin_id})
    print("\n🔑 Admin access token (dev only):")
    print(token)
    client.close()


if __name__ == "__main__":
    asyncio.run(seed_coupons())
