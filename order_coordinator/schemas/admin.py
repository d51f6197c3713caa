"""Admin schemas."""
from datetime import datetime
from typing import Optional

from order_coordinator.models import ReviewKind
from order_coordinator.schemas.base import BaseSchema


class ReleaseRiderRequest(BaseSchema):
    reason: Optional[str] = None


class ReviewItemResponse(BaseSchema):
    id: str
    kind: ReviewKind
    detail: str
    order_id: Optional[str] = None
    payment_id: Optional[str] = None
    provider: Optional[str] = None
    transaction_ref: Optional[str] = None
    reported_status: Optional[str] = None
    promo_code: Optional[str] = None
    created_at: datetime
