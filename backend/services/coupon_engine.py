"""
Coupon engine: validity, eligibility and discount rules.

Pure functions over `Coupon` values. Nothing here touches the database,
logs or keeps state; `now` is always passed in by the caller.
Redemption must be serialized per coupon by the caller (see
`services.coupon_service.redeem_coupon`).
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_DOWN, ROUND_HALF_UP
from typing import Iterable, List, Optional

from core.exceptions import (
    CouponExhaustedError,
    IneligibilityReason,
    InvalidArgumentError,
    TermsError,
)
from models.common import DiscountType
from models.coupon import Coupon, CouponUsage

CENT = Decimal("0.01")


@dataclass(frozen=True)
class Eligibility:
    eligible: bool
    reason:   Optional[IneligibilityReason] = None

    def __bool__(self) -> bool:
        return self.eligible


ELIGIBLE = Eligibility(True)


@dataclass(frozen=True)
class TermsValidation:
    ok:      bool
    error:   Optional[TermsError] = None
    message: str = ""


def round_money(amount: float) -> float:
    """Round half-up at the cent."""
    return float(Decimal(str(amount)).quantize(CENT, rounding=ROUND_HALF_UP))


def _require_amount(name: str, amount: float) -> None:
    if amount is None or amount < 0:
        raise InvalidArgumentError(f"{name} must be a non-negative amount, got {amount!r}")


def _require_user(user_id: str) -> None:
    if not user_id:
        raise InvalidArgumentError("user_id is required")


# ── Terms ─────────────────────────────────────────────────────────────────────
def validate_terms(terms) -> TermsValidation:
    """Check coupon terms at creation or update time (not at redemption)."""
    if terms.valid_from >= terms.valid_until:
        return TermsValidation(
            False, TermsError.INVALID_DATE_RANGE,
            "Valid from date must be before valid until date",
        )
    if terms.discount_type == DiscountType.PERCENTAGE and terms.discount_value > 100:
        return TermsValidation(
            False, TermsError.INVALID_PERCENTAGE,
            "Percentage discount cannot exceed 100%",
        )
    return TermsValidation(True)


# ── Validity ──────────────────────────────────────────────────────────────────
def check_validity(coupon: Coupon, now: datetime) -> Eligibility:
    if not coupon.is_active or not (coupon.valid_from <= now <= coupon.valid_until):
        return Eligibility(False, IneligibilityReason.EXPIRED_OR_INACTIVE)
    if coupon.usage_count >= coupon.max_usage:
        return Eligibility(False, IneligibilityReason.EXHAUSTED)
    return ELIGIBLE


def is_currently_valid(coupon: Coupon, now: datetime) -> bool:
    return check_validity(coupon, now).eligible


def user_usage_count(coupon: Coupon, user_id: str) -> int:
    return sum(1 for usage in coupon.used_by if usage.user_id == user_id)


def _user_under_limit(coupon: Coupon, user_id: str) -> bool:
    if coupon.max_usage_per_user == 0:
        return True
    return user_usage_count(coupon, user_id) < coupon.max_usage_per_user


def can_user_use(coupon: Coupon, user_id: str, now: datetime) -> bool:
    _require_user(user_id)
    if not is_currently_valid(coupon, now):
        return False
    return _user_under_limit(coupon, user_id)


def applies_to_items(
    coupon: Coupon,
    category_ids: Optional[Iterable[str]] = None,
    product_ids: Optional[Iterable[str]] = None,
) -> bool:
    """
    An empty scope on the coupon means it applies to everything. Otherwise at
    least one item of the order must fall inside the scope.
    """
    if not coupon.categories and not coupon.products:
        return True
    if coupon.categories and set(category_ids or ()) & set(coupon.categories):
        return True
    if coupon.products and set(product_ids or ()) & set(coupon.products):
        return True
    return False


def check_user_eligibility(
    coupon: Coupon,
    user_id: str,
    order_amount: float,
    now: datetime,
    user_type: Optional[str] = None,
    category_ids: Optional[Iterable[str]] = None,
    product_ids: Optional[Iterable[str]] = None,
) -> Eligibility:
    """
    Full redemption check with the reason of the first failing rule.

    User type and item scope are only enforced when the caller knows them.
    """
    _require_user(user_id)
    _require_amount("order_amount", order_amount)

    validity = check_validity(coupon, now)
    if not validity:
        return validity
    if order_amount < coupon.min_order_amount:
        return Eligibility(False, IneligibilityReason.BELOW_MINIMUM_ORDER)
    if not _user_under_limit(coupon, user_id):
        return Eligibility(False, IneligibilityReason.USER_LIMIT_REACHED)
    if user_type is not None and coupon.user_types and user_type not in coupon.user_types:
        return Eligibility(False, IneligibilityReason.USER_TYPE_NOT_ELIGIBLE)
    if (category_ids is not None or product_ids is not None) and not applies_to_items(
        coupon, category_ids, product_ids
    ):
        return Eligibility(False, IneligibilityReason.NOT_APPLICABLE_TO_ITEMS)
    return ELIGIBLE


# ── Discount ──────────────────────────────────────────────────────────────────
def _unrounded_discount(coupon: Coupon, order_amount: float) -> float:
    _require_amount("order_amount", order_amount)
    if order_amount < coupon.min_order_amount:
        return 0.0

    if coupon.discount_type == DiscountType.PERCENTAGE:
        discount = order_amount * coupon.discount_value / 100
        if coupon.max_discount_amount > 0:
            discount = min(discount, coupon.max_discount_amount)
        return discount
    return coupon.discount_value


def raw_discount(coupon: Coupon, order_amount: float) -> float:
    """
    Discount as the storefront has always computed it. A fixed coupon is not
    clamped, so it can exceed the order amount.
    """
    return round_money(_unrounded_discount(coupon, order_amount))


def compute_discount(coupon: Coupon, order_amount: float) -> float:
    """Discount to apply, always within [0, order_amount]. 0 means not applied."""
    discount = round_money(max(0.0, min(_unrounded_discount(coupon, order_amount), order_amount)))
    if discount > order_amount:
        # half-up went past an order amount with sub-cent precision
        discount = float(Decimal(str(order_amount)).quantize(CENT, rounding=ROUND_DOWN))
    return discount


def find_eligible_for_user(
    coupons: Iterable[Coupon],
    user_id: str,
    order_amount: float,
    now: datetime,
    user_type: Optional[str] = None,
) -> List[Coupon]:
    """Coupons the user can redeem on this order, best discount first."""
    eligible = [
        c for c in coupons
        if check_user_eligibility(c, user_id, order_amount, now, user_type=user_type)
    ]
    eligible.sort(key=lambda c: compute_discount(c, order_amount), reverse=True)
    return eligible


# ── Redemption ────────────────────────────────────────────────────────────────
def record_redemption(
    coupon: Coupon,
    user_id: str,
    order_amount: float,
    discount_amount: float,
    now: datetime,
) -> Coupon:
    """
    Return a copy of the coupon with one more usage recorded. The original
    instance is left untouched.
    """
    _require_user(user_id)
    _require_amount("order_amount", order_amount)
    _require_amount("discount_amount", discount_amount)
    if coupon.usage_count >= coupon.max_usage:
        raise CouponExhaustedError(f"Coupon {coupon.code} has reached its usage limit")

    usage = CouponUsage(
        user_id=user_id,
        used_at=now,
        order_amount=order_amount,
        discount_amount=discount_amount,
    )
    return coupon.model_copy(update={
        "usage_count": coupon.usage_count + 1,
        "used_by":     [*coupon.used_by, usage],
        "updated_at":  now,
    })
