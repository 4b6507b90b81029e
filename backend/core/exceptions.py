from enum import Enum

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse


# ── Domain errors ─────────────────────────────────────────────────────────────
class TermsError(str, Enum):
    INVALID_DATE_RANGE = "invalid_date_range"
    INVALID_PERCENTAGE = "invalid_percentage"


class IneligibilityReason(str, Enum):
    EXPIRED_OR_INACTIVE     = "coupon_expired_or_inactive"
    EXHAUSTED               = "coupon_exhausted"
    BELOW_MINIMUM_ORDER     = "below_minimum_order"
    USER_LIMIT_REACHED      = "user_usage_limit_reached"
    USER_TYPE_NOT_ELIGIBLE  = "user_type_not_eligible"
    NOT_APPLICABLE_TO_ITEMS = "not_applicable_to_items"


INELIGIBILITY_MESSAGES = {
    IneligibilityReason.EXPIRED_OR_INACTIVE:     "Invalid or expired coupon code",
    IneligibilityReason.EXHAUSTED:               "Coupon usage limit exceeded",
    IneligibilityReason.BELOW_MINIMUM_ORDER:     "Minimum order amount of {symbol}{min_order_amount:.2f} required for this coupon",
    IneligibilityReason.USER_LIMIT_REACHED:      "You have already used this coupon the maximum number of times",
    IneligibilityReason.USER_TYPE_NOT_ELIGIBLE:  "This coupon is not available for your account",
    IneligibilityReason.NOT_APPLICABLE_TO_ITEMS: "This coupon does not apply to the items in your order",
}


class CouponError(Exception):
    """Base class for coupon workflow errors."""


class InvalidArgumentError(CouponError, ValueError):
    pass


class InvalidTermsError(CouponError):
    def __init__(self, error: TermsError, message: str):
        super().__init__(message)
        self.error = error
        self.message = message


class DuplicateCouponError(CouponError):
    pass


class CouponExhaustedError(CouponError):
    pass


class RedemptionConflictError(CouponError):
    """Raised when a redemption keeps losing the race on usage_count."""


class CouponNotApplicableError(CouponError):
    def __init__(self, reason: IneligibilityReason, message: str):
        super().__init__(message)
        self.reason = reason
        self.message = message


# ── HTTP ──────────────────────────────────────────────────────────────────────
def credentials_exception() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid credentials or expired token",
        headers={"WWW-Authenticate": "Bearer"},
    )


def forbidden_exception(detail: str = "Access denied") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail=detail,
    )


def not_found_exception(resource: str = "Resource") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"{resource} not found",
    )


def conflict_exception(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail=detail,
    )


def bad_request_exception(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail=detail,
    )


_ERROR_STATUS = {
    InvalidArgumentError:     status.HTTP_400_BAD_REQUEST,
    InvalidTermsError:        status.HTTP_400_BAD_REQUEST,
    DuplicateCouponError:     status.HTTP_400_BAD_REQUEST,
    CouponNotApplicableError: status.HTTP_400_BAD_REQUEST,
    CouponExhaustedError:     status.HTTP_400_BAD_REQUEST,
    RedemptionConflictError:  status.HTTP_409_CONFLICT,
}


async def coupon_error_handler(request: Request, exc: CouponError) -> JSONResponse:
    """Turns coupon workflow errors raised by the services into HTTP responses."""
    status_code = next(
        (code for cls, code in _ERROR_STATUS.items() if isinstance(exc, cls)),
        status.HTTP_400_BAD_REQUEST,
    )
    content = {"detail": str(exc)}
    reason = getattr(exc, "reason", None) or getattr(exc, "error", None)
    if reason is not None:
        content["reason"] = reason.value
    return JSONResponse(status_code=status_code, content=content)
