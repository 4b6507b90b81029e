"""
Coupon service: persistence and order workflow around the coupon engine.
"""
import logging
import math
from datetime import datetime, timezone
from typing import List, Optional

from pymongo.errors import DuplicateKeyError

from config import settings
from core.exceptions import (
    INELIGIBILITY_MESSAGES,
    CouponNotApplicableError,
    DuplicateCouponError,
    IneligibilityReason,
    InvalidArgumentError,
    InvalidTermsError,
    RedemptionConflictError,
    not_found_exception,
)
from database import db
from models.common import OrderStatus
from models.coupon import (
    Coupon,
    CouponCreate,
    CouponSummary,
    CouponUpdate,
    CouponValidateResponse,
)
from services.coupon_engine import (
    check_user_eligibility,
    compute_discount,
    find_eligible_for_user,
    is_currently_valid,
    record_redemption,
    round_money,
    validate_terms,
)

logger = logging.getLogger(__name__)


def _normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def _to_coupon(doc: dict) -> Coupon:
    return Coupon.model_validate({k: v for k, v in doc.items() if k != "_id"})


def _summary(coupon: Coupon) -> CouponSummary:
    return CouponSummary.model_validate(coupon.model_dump())


def reason_message(reason: IneligibilityReason, coupon: Coupon) -> str:
    return INELIGIBILITY_MESSAGES[reason].format(
        symbol=settings.CURRENCY_SYMBOL,
        min_order_amount=coupon.min_order_amount,
    )


# ── Lookup ────────────────────────────────────────────────────────────────────
async def get_coupon(code: str) -> Optional[Coupon]:
    doc = await db.coupons.find_one({"code": _normalize_code(code)}, {"_id": 0})
    return _to_coupon(doc) if doc else None


async def get_coupon_or_404(code: str) -> Coupon:
    coupon = await get_coupon(code)
    if not coupon:
        raise not_found_exception("Coupon")
    return coupon


async def _load_active(now: datetime) -> List[Coupon]:
    # the date window and usage ceiling are re-checked by the engine
    cursor = db.coupons.find({"is_active": True}, {"_id": 0})
    docs = await cursor.to_list(length=None)
    return [c for c in map(_to_coupon, docs) if is_currently_valid(c, now)]


async def list_active_coupons(now: Optional[datetime] = None) -> List[dict]:
    """Public listing: usage log stripped."""
    now = now or datetime.now(timezone.utc)
    coupons = await _load_active(now)
    coupons.sort(key=lambda c: c.valid_until)
    return [
        c.model_dump(exclude={"used_by", "created_by"})
        for c in coupons[:settings.ACTIVE_COUPONS_LIMIT]
    ]


async def list_coupons(page: int = 1, limit: Optional[int] = None) -> dict:
    page = max(page, 1)
    limit = limit or settings.ADMIN_PAGE_SIZE
    skip = (page - 1) * limit

    cursor = db.coupons.find({}, {"_id": 0}).sort("created_at", -1).skip(skip).limit(limit)
    coupons = await cursor.to_list(length=limit)
    total = await db.coupons.count_documents({})
    total_pages = math.ceil(total / limit)
    return {
        "coupons": coupons,
        "pagination": {
            "current_page":  page,
            "total_pages":   total_pages,
            "total_coupons": total,
            "has_next":      page < total_pages,
            "has_prev":      page > 1,
        },
    }


# ── Admin ─────────────────────────────────────────────────────────────────────
async def create_coupon(body: CouponCreate, created_by: str) -> Coupon:
    validation = validate_terms(body)
    if not validation.ok:
        raise InvalidTermsError(validation.error, validation.message)

    if await db.coupons.find_one({"code": body.code}, {"_id": 1}):
        raise DuplicateCouponError("Coupon code already exists")

    coupon = Coupon(**body.model_dump(), created_by=created_by)
    try:
        await db.coupons.insert_one(coupon.to_document())
    except DuplicateKeyError:
        raise DuplicateCouponError("Coupon code already exists")

    logger.info(f"Coupon created: code={coupon.code} by={created_by}")
    return coupon


async def update_coupon(code: str, body: CouponUpdate) -> Coupon:
    coupon = await get_coupon_or_404(code)
    updates = body.model_dump(exclude_none=True)
    if not updates:
        raise InvalidArgumentError("No fields to update")

    merged = CouponCreate.model_validate({**coupon.model_dump(), **updates})
    validation = validate_terms(merged)
    if not validation.ok:
        raise InvalidTermsError(validation.error, validation.message)

    query = {"coupon_id": coupon.coupon_id}
    if "max_usage" in updates:
        if updates["max_usage"] < coupon.usage_count:
            raise InvalidArgumentError(
                f"max_usage cannot be lower than the current usage count ({coupon.usage_count})"
            )
        query["usage_count"] = {"$lte": updates["max_usage"]}

    updates["updated_at"] = datetime.now(timezone.utc)
    result = await db.coupons.update_one(query, {"$set": updates})
    if result.matched_count == 0:
        raise RedemptionConflictError("Coupon was redeemed while being updated, retry")

    logger.info(f"Coupon updated: code={coupon.code} fields={sorted(updates)}")
    return await get_coupon_or_404(coupon.code)


async def set_coupon_active(code: str, is_active: bool) -> Coupon:
    coupon = await get_coupon_or_404(code)
    await db.coupons.update_one(
        {"coupon_id": coupon.coupon_id},
        {"$set": {"is_active": is_active, "updated_at": datetime.now(timezone.utc)}},
    )
    logger.info(f"Coupon {'enabled' if is_active else 'disabled'}: code={coupon.code}")
    return await get_coupon_or_404(coupon.code)


async def coupon_usage(code: str) -> dict:
    coupon = await get_coupon_or_404(code)
    total_discount = round_money(sum(u.discount_amount for u in coupon.used_by))
    return {
        "code":           coupon.code,
        "usage_count":    coupon.usage_count,
        "max_usage":      coupon.max_usage,
        "remaining":      coupon.max_usage - coupon.usage_count,
        "total_discount": total_discount,
        "used_by":        [u.model_dump() for u in coupon.used_by],
    }


# ── Customer ──────────────────────────────────────────────────────────────────
async def validate_coupon(
    code: str,
    user: dict,
    order_total: float,
    category_ids: Optional[List[str]] = None,
    product_ids: Optional[List[str]] = None,
    now: Optional[datetime] = None,
) -> CouponValidateResponse:
    """Dry run: tells the customer what the coupon would take off the order."""
    now = now or datetime.now(timezone.utc)
    coupon = await get_coupon(code)
    if not coupon:
        raise not_found_exception("Coupon")

    eligibility = check_user_eligibility(
        coupon, user["user_id"], order_total, now,
        user_type=user.get("user_type"),
        category_ids=category_ids,
        product_ids=product_ids,
    )
    if not eligibility:
        return CouponValidateResponse(
            valid=False,
            reason=eligibility.reason.value,
            message=reason_message(eligibility.reason, coupon),
        )

    discount = compute_discount(coupon, order_total)
    if discount <= 0:
        return CouponValidateResponse(
            valid=False,
            message="This coupon does not reduce your order total",
            coupon=_summary(coupon),
        )
    return CouponValidateResponse(
        valid=True,
        message="Coupon is valid",
        coupon=_summary(coupon),
        discount_amount=discount,
    )


async def eligible_coupons(
    user: dict,
    order_total: float,
    now: Optional[datetime] = None,
) -> List[dict]:
    now = now or datetime.now(timezone.utc)
    candidates = await _load_active(now)
    eligible = find_eligible_for_user(
        candidates, user["user_id"], order_total, now, user_type=user.get("user_type"),
    )
    return [
        {"coupon": _summary(c), "discount_amount": compute_discount(c, order_total)}
        for c in eligible
    ]


async def redeem_coupon(
    coupon: Coupon,
    user_id: str,
    order_amount: float,
    discount_amount: float,
    user_type: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Coupon:
    """
    Record one redemption as a single compare-and-swap on usage_count: the
    write only lands if nobody redeemed the coupon since it was read. On a
    lost race the coupon is reloaded and re-checked before trying again.
    """
    now = now or datetime.now(timezone.utc)

    for attempt in range(1, settings.COUPON_REDEEM_MAX_RETRIES + 1):
        eligibility = check_user_eligibility(
            coupon, user_id, order_amount, now, user_type=user_type,
        )
        if not eligibility:
            raise CouponNotApplicableError(
                eligibility.reason, reason_message(eligibility.reason, coupon),
            )

        updated = record_redemption(coupon, user_id, order_amount, discount_amount, now)
        result = await db.coupons.update_one(
            {
                "coupon_id":   coupon.coupon_id,
                "is_active":   True,
                "usage_count": coupon.usage_count,
            },
            {
                "$inc":  {"usage_count": 1},
                "$push": {"used_by": updated.used_by[-1].model_dump()},
                "$set":  {"updated_at": now},
            },
        )
        if result.modified_count == 1:
            logger.info(
                "Coupon redeemed: code=%s user=%s order=%s discount=%s",
                coupon.code, user_id, order_amount, discount_amount,
            )
            return updated

        logger.warning(
            f"Redemption race on coupon {coupon.code} (attempt {attempt}), reloading"
        )
        coupon = await get_coupon(coupon.code)
        if coupon is None:
            break

    raise RedemptionConflictError("Coupon is being redeemed by other orders, please retry")


async def apply_coupon_to_order(
    code: str,
    order_id: str,
    user: dict,
    now: Optional[datetime] = None,
) -> dict:
    """
    Redeem a coupon on one of the user's pending orders and reprice it.

    The order is claimed with a conditional write before the coupon is
    redeemed, so two concurrent applies on one order redeem at most once.
    The claim is released if the redemption fails.
    """
    now = now or datetime.now(timezone.utc)
    owned_pending = {
        "order_id": order_id,
        "user_id":  user["user_id"],
        "status":   OrderStatus.PENDING.value,
    }
    order = await db.orders.find_one(owned_pending, {"_id": 0})
    if not order:
        raise not_found_exception("Order")
    if order.get("coupon"):
        raise InvalidArgumentError("A coupon is already applied to this order")

    coupon = await get_coupon_or_404(code)
    subtotal = order.get("subtotal", 0.0)
    eligibility = check_user_eligibility(
        coupon, user["user_id"], subtotal, now, user_type=user.get("user_type"),
    )
    if not eligibility:
        raise CouponNotApplicableError(
            eligibility.reason, reason_message(eligibility.reason, coupon),
        )

    discount = compute_discount(coupon, subtotal)
    if discount <= 0:
        raise InvalidArgumentError("This coupon does not reduce your order total")

    claim = await db.orders.update_one(
        {**owned_pending, "coupon": None},
        {"$set": {
            "coupon":     {"code": coupon.code, "discount_amount": discount, "pending": True},
            "updated_at": now,
        }},
    )
    if claim.modified_count == 0:
        raise InvalidArgumentError("A coupon is already applied to this order")

    try:
        await redeem_coupon(
            coupon, user["user_id"], subtotal, discount,
            user_type=user.get("user_type"), now=now,
        )
    except Exception:
        await db.orders.update_one(
            {"order_id": order_id, "coupon.pending": True},
            {"$set": {"coupon": None, "updated_at": now}},
        )
        logger.info(f"Coupon claim released: code={coupon.code} order={order_id}")
        raise

    total = round_money(
        subtotal + order.get("shipping_cost", 0.0) + order.get("tax", 0.0) - discount
    )
    await db.orders.update_one(
        {"order_id": order_id},
        {"$set": {
            "coupon":     {"code": coupon.code, "discount_amount": discount},
            "discount":   discount,
            "total":      total,
            "updated_at": now,
        }},
    )
    return await db.orders.find_one({"order_id": order_id}, {"_id": 0})
