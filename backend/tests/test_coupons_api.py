"""HTTP tests for /api/coupons."""
from datetime import datetime, timedelta, timezone

from conftest import (
    ADMIN,
    CUSTOMER,
    OTHER_CUSTOMER,
    auth_headers,
    insert_coupon,
    insert_order,
    live_coupon,
)


def _new_coupon_payload(**overrides) -> dict:
    now = datetime.now(timezone.utc)
    payload = {
        "code":                "saffron10",
        "description":         "10% off saffron",
        "discount_type":       "percentage",
        "discount_value":      10,
        "max_discount_amount": 200,
        "min_order_amount":    0,
        "valid_from":          (now - timedelta(days=1)).isoformat(),
        "valid_until":         (now + timedelta(days=30)).isoformat(),
        "max_usage":           50,
        "max_usage_per_user":  1,
        "products":            ["prd_saffron"],
        "metadata":            {"campaign_name": "Saffron season"},
    }
    payload.update(overrides)
    return payload


def test_health(client):
    assert client.get("/health").json()["status"] == "ok"


# ── Public ────────────────────────────────────────────────────────────────────
def test_public_listing_hides_usage_log(client, seeded_db):
    insert_coupon(seeded_db, live_coupon(code="LIVE"))
    insert_coupon(seeded_db, live_coupon(code="DISABLED", is_active=False))

    response = client.get("/api/coupons/")
    assert response.status_code == 200
    coupons = response.json()["coupons"]
    assert [c["code"] for c in coupons] == ["LIVE"]
    assert "used_by" not in coupons[0]


# ── Auth ──────────────────────────────────────────────────────────────────────
def test_validate_requires_token(client):
    response = client.post("/api/coupons/validate", json={"code": "LIVE", "order_total": 10})
    assert response.status_code == 401


def test_admin_routes_forbidden_for_customers(client):
    response = client.get("/api/coupons/admin", headers=auth_headers(CUSTOMER))
    assert response.status_code == 403


def test_disabled_account_is_refused(client, seeded_db):
    import asyncio

    asyncio.run(seeded_db.users.update_one(
        {"user_id": CUSTOMER["user_id"]}, {"$set": {"is_active": False}},
    ))
    response = client.get(
        "/api/coupons/eligible", params={"order_total": 10}, headers=auth_headers(CUSTOMER),
    )
    assert response.status_code == 403


# ── Customer ──────────────────────────────────────────────────────────────────
def test_validate_coupon(client, seeded_db):
    insert_coupon(seeded_db, live_coupon())

    response = client.post(
        "/api/coupons/validate",
        json={"code": "spice20", "order_total": 30},
        headers=auth_headers(CUSTOMER),
    )
    assert response.status_code == 200
    body = response.json()
    assert body["valid"] is True
    assert body["discount_amount"] == 6
    assert body["coupon"]["code"] == "SPICE20"


def test_validate_reports_reason(client, seeded_db):
    insert_coupon(seeded_db, live_coupon(min_order_amount=499))

    response = client.post(
        "/api/coupons/validate",
        json={"code": "SPICE20", "order_total": 100},
        headers=auth_headers(CUSTOMER),
    )
    body = response.json()
    assert body["valid"] is False
    assert body["reason"] == "below_minimum_order"
    assert body["discount_amount"] == 0


def test_validate_item_scope(client, seeded_db):
    insert_coupon(seeded_db, live_coupon(categories=["cat_masala"]))

    response = client.post(
        "/api/coupons/validate",
        json={"code": "SPICE20", "order_total": 100, "category_ids": ["cat_tea"]},
        headers=auth_headers(CUSTOMER),
    )
    assert response.json()["reason"] == "not_applicable_to_items"


def test_validate_unknown_code(client):
    response = client.post(
        "/api/coupons/validate",
        json={"code": "NOPE", "order_total": 100},
        headers=auth_headers(CUSTOMER),
    )
    assert response.status_code == 404


def test_validate_rejects_negative_total(client):
    response = client.post(
        "/api/coupons/validate",
        json={"code": "SPICE20", "order_total": -1},
        headers=auth_headers(CUSTOMER),
    )
    assert response.status_code == 422


def test_eligible_coupons(client, seeded_db):
    insert_coupon(seeded_db, live_coupon(code="SMALL", discount_type="fixed", discount_value=5))
    insert_coupon(seeded_db, live_coupon(code="BIG", discount_value=50, max_discount_amount=0))
    insert_coupon(seeded_db, live_coupon(code="NEWONLY", user_types=["new"]))

    response = client.get(
        "/api/coupons/eligible", params={"order_total": 100}, headers=auth_headers(CUSTOMER),
    )
    assert response.status_code == 200
    assert [c["coupon"]["code"] for c in response.json()["coupons"]] == ["BIG", "SMALL"]

    response = client.get(
        "/api/coupons/eligible", params={"order_total": 100}, headers=auth_headers(OTHER_CUSTOMER),
    )
    assert len(response.json()["coupons"]) == 3


def test_apply_coupon_to_order(client, seeded_db):
    insert_coupon(seeded_db, live_coupon())
    insert_order(seeded_db)

    response = client.post(
        "/api/coupons/apply",
        json={"code": "SPICE20", "order_id": "ord_000000000001"},
        headers=auth_headers(CUSTOMER),
    )
    assert response.status_code == 200
    order = response.json()["order"]
    assert order["coupon"] == {"code": "SPICE20", "discount_amount": 10.0}
    assert order["total"] == 135.0

    # second redemption by the same user hits the per-user cap
    insert_order(seeded_db, order_id="ord_000000000002")
    response = client.post(
        "/api/coupons/apply",
        json={"code": "SPICE20", "order_id": "ord_000000000002"},
        headers=auth_headers(CUSTOMER),
    )
    assert response.status_code == 400
    assert response.json()["reason"] == "user_usage_limit_reached"


def test_apply_coupon_unknown_order(client, seeded_db):
    insert_coupon(seeded_db, live_coupon())
    response = client.post(
        "/api/coupons/apply",
        json={"code": "SPICE20", "order_id": "ord_missing"},
        headers=auth_headers(CUSTOMER),
    )
    assert response.status_code == 404


# ── Admin ─────────────────────────────────────────────────────────────────────
def test_admin_creates_and_lists_coupon(client):
    response = client.post(
        "/api/coupons/admin", json=_new_coupon_payload(), headers=auth_headers(ADMIN),
    )
    assert response.status_code == 201
    created = response.json()
    assert created["code"] == "SAFFRON10"
    assert created["created_by"] == ADMIN["user_id"]
    assert created["usage_count"] == 0

    response = client.get("/api/coupons/admin", headers=auth_headers(ADMIN))
    body = response.json()
    assert body["pagination"]["total_coupons"] == 1
    assert body["coupons"][0]["code"] == "SAFFRON10"


def test_admin_create_rejects_bad_terms(client):
    response = client.post(
        "/api/coupons/admin",
        json=_new_coupon_payload(discount_value=150),
        headers=auth_headers(ADMIN),
    )
    assert response.status_code == 400
    assert response.json()["reason"] == "invalid_percentage"

    now = datetime.now(timezone.utc)
    response = client.post(
        "/api/coupons/admin",
        json=_new_coupon_payload(
            valid_from=now.isoformat(), valid_until=(now - timedelta(days=1)).isoformat(),
        ),
        headers=auth_headers(ADMIN),
    )
    assert response.status_code == 400
    assert response.json()["reason"] == "invalid_date_range"


def test_admin_create_rejects_duplicate_code(client):
    client.post("/api/coupons/admin", json=_new_coupon_payload(), headers=auth_headers(ADMIN))
    response = client.post(
        "/api/coupons/admin", json=_new_coupon_payload(code="SAFFRON10"), headers=auth_headers(ADMIN),
    )
    assert response.status_code == 400
    assert response.json()["detail"] == "Coupon code already exists"


def test_admin_create_rejects_short_code(client):
    response = client.post(
        "/api/coupons/admin", json=_new_coupon_payload(code="AB"), headers=auth_headers(ADMIN),
    )
    assert response.status_code == 422


def test_admin_updates_and_disables_coupon(client, seeded_db):
    insert_coupon(seeded_db, live_coupon())
    headers = auth_headers(ADMIN)

    response = client.put("/api/coupons/admin/spice20", json={"discount_value": 30}, headers=headers)
    assert response.status_code == 200
    assert response.json()["discount_value"] == 30

    response = client.patch(
        "/api/coupons/admin/SPICE20/status", json={"is_active": False}, headers=headers,
    )
    assert response.status_code == 200
    assert response.json()["is_active"] is False

    response = client.post(
        "/api/coupons/validate",
        json={"code": "SPICE20", "order_total": 100},
        headers=auth_headers(CUSTOMER),
    )
    assert response.json()["reason"] == "coupon_expired_or_inactive"


def test_admin_update_unknown_coupon(client):
    response = client.put(
        "/api/coupons/admin/NOPE", json={"discount_value": 30}, headers=auth_headers(ADMIN),
    )
    assert response.status_code == 404


def test_admin_usage_log(client, seeded_db):
    insert_coupon(seeded_db, live_coupon())
    insert_order(seeded_db)
    client.post(
        "/api/coupons/apply",
        json={"code": "SPICE20", "order_id": "ord_000000000001"},
        headers=auth_headers(CUSTOMER),
    )

    response = client.get("/api/coupons/admin/SPICE20/usage", headers=auth_headers(ADMIN))
    assert response.status_code == 200
    report = response.json()
    assert report["usage_count"] == 1
    assert report["total_discount"] == 10
    assert report["used_by"][0]["user_id"] == CUSTOMER["user_id"]


def test_new_only_coupon_offered_to_account_without_segment(client, seeded_db):
    import asyncio

    asyncio.run(seeded_db.users.update_one(
        {"user_id": CUSTOMER["user_id"]}, {"$unset": {"user_type": ""}},
    ))
    insert_coupon(seeded_db, live_coupon(user_types=["new"]))

    response = client.post(
        "/api/coupons/validate",
        json={"code": "SPICE20", "order_total": 100},
        headers=auth_headers(CUSTOMER),
    )
    assert response.json()["valid"] is True
