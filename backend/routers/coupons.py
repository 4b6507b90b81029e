"""
Router coupons: public listing, customer validation/redemption, admin back-office.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from core.dependencies import get_current_user, require_admin
from models.coupon import (
    Coupon,
    CouponApplyRequest,
    CouponCreate,
    CouponStatusUpdate,
    CouponUpdate,
    CouponValidateRequest,
    CouponValidateResponse,
)
from services.coupon_service import (
    apply_coupon_to_order,
    coupon_usage,
    create_coupon,
    eligible_coupons,
    list_active_coupons,
    list_coupons,
    set_coupon_active,
    update_coupon,
    validate_coupon,
)

router = APIRouter()


# ── Public ────────────────────────────────────────────────────────────────────
@router.get("/", summary="Active coupons (public)")
async def get_active_coupons():
    return {"coupons": await list_active_coupons()}


# ── Customer ──────────────────────────────────────────────────────────────────
@router.post("/validate", response_model=CouponValidateResponse, summary="Check a coupon code")
async def validate(
    body: CouponValidateRequest,
    current_user: dict = Depends(get_current_user),
):
    return await validate_coupon(
        body.code,
        current_user,
        body.order_total,
        category_ids=body.category_ids,
        product_ids=body.product_ids,
    )


@router.get("/eligible", summary="Coupons I can use on this order, best first")
async def get_eligible_coupons(
    order_total: float = Query(..., ge=0),
    current_user: dict = Depends(get_current_user),
):
    return {"coupons": await eligible_coupons(current_user, order_total)}


@router.post("/apply", summary="Apply a coupon to a pending order")
async def apply(
    body: CouponApplyRequest,
    current_user: dict = Depends(get_current_user),
):
    order = await apply_coupon_to_order(body.code, body.order_id, current_user)
    return {"message": "Coupon applied successfully", "order": order}


# ── Admin ─────────────────────────────────────────────────────────────────────
@router.get("/admin", summary="All coupons (admin)")
async def admin_list_coupons(
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1, le=100),
    _admin=Depends(require_admin),
):
    return await list_coupons(page, limit)


@router.post(
    "/admin",
    response_model=Coupon,
    status_code=status.HTTP_201_CREATED,
    summary="Create a coupon (admin)",
)
async def admin_create_coupon(
    body: CouponCreate,
    admin: dict = Depends(require_admin),
):
    return await create_coupon(body, created_by=admin["user_id"])


@router.put("/admin/{code}", response_model=Coupon, summary="Edit coupon terms (admin)")
async def admin_update_coupon(
    code: str,
    body: CouponUpdate,
    _admin=Depends(require_admin),
):
    return await update_coupon(code, body)


@router.patch("/admin/{code}/status", response_model=Coupon, summary="Enable / disable (admin)")
async def admin_set_status(
    code: str,
    body: CouponStatusUpdate,
    _admin=Depends(require_admin),
):
    return await set_coupon_active(code, body.is_active)


@router.get("/admin/{code}/usage", summary="Redemption log (admin)")
async def admin_coupon_usage(
    code: str,
    _admin=Depends(require_admin),
):
    return await coupon_usage(code)
