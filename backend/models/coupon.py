from datetime import datetime, timezone
from typing import List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from models.common import DiscountType, UserType


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # MongoDB hands back naive datetimes, stored as UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class CouponMetadata(BaseModel):
    campaign_name: Optional[str] = None
    source:        Optional[str] = None
    notes:         Optional[str] = None


class CouponUsage(BaseModel):
    user_id:         str
    used_at:         datetime
    order_amount:    float
    discount_amount: float

    @field_validator("used_at")
    @classmethod
    def used_at_as_utc(cls, v: datetime) -> datetime:
        return _as_utc(v)


class CouponCreate(BaseModel):
    """
    Terms an administrator sets on a coupon.

    Cross-field rules (date range, percentage ceiling) are not enforced here:
    they are checked by `coupon_engine.validate_terms` so the admin workflow
    can report which rule failed.
    """
    model_config = ConfigDict(use_enum_values=True)

    code:                str = Field(min_length=3, max_length=20)
    description:         str = Field(default="", max_length=200)
    discount_type:       DiscountType
    discount_value:      float = Field(ge=0)
    max_discount_amount: float = Field(default=0.0, ge=0)   # 0 = no cap
    min_order_amount:    float = Field(default=0.0, ge=0)
    valid_from:          datetime
    valid_until:         datetime
    max_usage:           int   = Field(ge=1)
    max_usage_per_user:  int   = Field(default=1, ge=0)     # 0 = unlimited per user
    is_active:           bool  = True
    categories:          List[str]      = []                # empty = every category
    products:            List[str]      = []                # empty = every product
    user_types:          List[UserType] = []                # empty = every user
    metadata:            Optional[CouponMetadata] = None

    @field_validator("code", mode="before")
    @classmethod
    def normalize_code(cls, v):
        if isinstance(v, str):
            return v.strip().upper()
        return v

    @field_validator("valid_from", "valid_until")
    @classmethod
    def dates_as_utc(cls, v: datetime) -> datetime:
        return _as_utc(v)


class CouponUpdate(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    description:         Optional[str]   = Field(default=None, max_length=200)
    discount_type:       Optional[DiscountType] = None
    discount_value:      Optional[float] = Field(default=None, ge=0)
    max_discount_amount: Optional[float] = Field(default=None, ge=0)
    min_order_amount:    Optional[float] = Field(default=None, ge=0)
    valid_from:          Optional[datetime] = None
    valid_until:         Optional[datetime] = None
    max_usage:           Optional[int]   = Field(default=None, ge=1)
    max_usage_per_user:  Optional[int]   = Field(default=None, ge=0)
    is_active:           Optional[bool]  = None
    categories:          Optional[List[str]]      = None
    products:            Optional[List[str]]      = None
    user_types:          Optional[List[UserType]] = None
    metadata:            Optional[CouponMetadata] = None


class CouponStatusUpdate(BaseModel):
    is_active: bool


class Coupon(CouponCreate):
    """Stored coupon. Invalid terms never make it into an instance."""
    coupon_id:   str      = Field(default_factory=lambda: f"cpn_{uuid4().hex[:12]}")
    usage_count: int      = Field(default=0, ge=0)
    used_by:     List[CouponUsage] = []
    created_by:  str      = ""
    created_at:  datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at:  datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @model_validator(mode="after")
    def check_invariants(self):
        # coupon_engine imports this module
        from services.coupon_engine import validate_terms

        result = validate_terms(self)
        if not result.ok:
            raise ValueError(result.message)
        if self.usage_count != len(self.used_by):
            raise ValueError("usage_count must match the number of usage records")
        if self.usage_count > self.max_usage:
            raise ValueError("usage_count cannot exceed max_usage")
        return self

    def to_document(self) -> dict:
        return self.model_dump(mode="python")


# ── Requests / responses ──────────────────────────────────────────────────────
class CouponValidateRequest(BaseModel):
    code:         str
    order_total:  float = Field(ge=0)
    category_ids: Optional[List[str]] = None
    product_ids:  Optional[List[str]] = None


class CouponApplyRequest(BaseModel):
    code:     str
    order_id: str


class CouponSummary(BaseModel):
    coupon_id:           str
    code:                str
    description:         str
    discount_type:       DiscountType
    discount_value:      float
    max_discount_amount: float
    min_order_amount:    float
    valid_until:         datetime


class CouponValidateResponse(BaseModel):
    valid:           bool
    reason:          Optional[str] = None
    message:         str
    coupon:          Optional[CouponSummary] = None
    discount_amount: float = 0.0
