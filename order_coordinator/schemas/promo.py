"""Promo code schemas."""
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import Field

from order_coordinator.models import DiscountType, PromoScope
from order_coordinator.schemas.base import BaseSchema


class UsageLimitSchema(BaseSchema):
    total: Optional[int] = Field(None, ge=1)
    per_user: int = Field(1, ge=1)


class PromoValidateRequest(BaseSchema):
    code: str = Field(..., min_length=1)
    order_amount: int = Field(..., ge=0)
    restaurant_id: str


class PromoValidateResponse(BaseSchema):
    valid: bool
    code: Optional[str] = None
    discount: int = 0
    reason: Optional[str] = None
    message: Optional[str] = None


class PromoCodeCreate(BaseSchema):
    code: str = Field(..., min_length=1)
    description: Optional[str] = None
    discount_type: DiscountType
    value: int = Field(..., gt=0)
    min_order_amount: int = Field(0, ge=0)
    max_discount: Optional[int] = Field(None, gt=0)
    usage_limit: UsageLimitSchema = UsageLimitSchema()
    valid_from: datetime
    valid_until: datetime
    is_active: bool = True
    applicable_to: PromoScope = PromoScope.ALL
    restaurants: List[str] = []


class PromoCodeUpdate(BaseSchema):
    """Only the fields sent are changed."""
    description: Optional[str] = None
    value: Optional[int] = Field(None, gt=0)
    min_order_amount: Optional[int] = Field(None, ge=0)
    max_discount: Optional[int] = Field(None, gt=0)
    usage_limit: Optional[UsageLimitSchema] = None
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    is_active: Optional[bool] = None
    applicable_to: Optional[PromoScope] = None
    restaurants: Optional[List[str]] = None


class PromoToggleRequest(BaseSchema):
    is_active: bool


class PromoCodeResponse(BaseSchema):
    code: str
    description: Optional[str] = None
    discount_type: DiscountType
    value: int
    min_order_amount: int
    max_discount: Optional[int] = None
    usage_limit: UsageLimitSchema
    usage_count: int
    valid_from: datetime
    valid_until: datetime
    is_active: bool
    applicable_to: PromoScope
    restaurants: List[str]
    created_at: datetime
    updated_at: datetime


class PromoStatsResponse(BaseSchema):
    code: str
    usage_count: int
    usage_limit_total: Optional[int] = None
    usage_limit_per_user: int
    remaining: Optional[int] = None
    unique_users: int
    redemptions: Dict[str, int]


class PromoSummary(BaseSchema):
    """What customers see when browsing offers; counters stay private."""
    code: str
    description: Optional[str] = None
    discount_type: DiscountType
    value: int
    min_order_amount: int
    max_discount: Optional[int] = None
    applicable_to: PromoScope
    valid_until: datetime
