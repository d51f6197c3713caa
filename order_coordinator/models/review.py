"""Operational review queue entries."""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from order_coordinator.models.base import StoredModel, StrictEnum, utcnow


class ReviewKind(StrictEnum):
    UNKNOWN_TRANSACTION = "unknown_transaction"
    STATUS_CONFLICT = "status_conflict"
    UNRECOGNIZED_STATUS = "unrecognized_status"
    PAID_AFTER_CANCELLATION = "paid_after_cancellation"
    PROMO_LIMIT_OVERFLOW = "promo_limit_overflow"


@dataclass
class ReviewItem(StoredModel):
    """Something an operator has to look at; never shown to end users."""
    table_name = "review_queue"

    id: str
    kind: ReviewKind
    detail: str
    order_id: Optional[str] = None
    payment_id: Optional[str] = None
    provider: Optional[str] = None
    transaction_ref: Optional[str] = None
    reported_status: Optional[str] = None
    promo_code: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
