"""Payment schemas."""
from datetime import datetime
from typing import Any, List, Optional

from pydantic import Field

from order_coordinator.models import PaymentMethod, PaymentRecordStatus
from order_coordinator.schemas.base import BaseSchema


class CheckoutRequest(BaseSchema):
    """Bind a gateway session to an order's payment."""
    order_id: str
    provider: str = Field(..., min_length=1)
    transaction_ref: str = Field(..., min_length=1)
    method: Optional[str] = None


class PaymentCallback(BaseSchema):
    """
    Normalized gateway callback.

    ``status`` stays a plain string: unrecognized values are queued for
    review instead of failing validation. ``payload`` is kept verbatim.
    """
    transaction_ref: str = Field(..., min_length=1)
    status: str
    payload: Optional[Any] = None


class RefundRequest(BaseSchema):
    amount: Optional[int] = Field(None, gt=0)
    reason: str = Field(..., min_length=1)


class RefundResponse(BaseSchema):
    amount: int
    reason: str
    refund_id: str
    refunded_at: datetime


class PaymentResponse(BaseSchema):
    id: str
    order_id: str
    customer_id: str
    amount: int
    method: PaymentMethod
    status: PaymentRecordStatus
    provider: Optional[str] = None
    transaction_ref: Optional[str] = None
    refund: Optional[RefundResponse] = None
    is_active: bool
    created_at: datetime
    updated_at: datetime


class CallbackAck(BaseSchema):
    """What the gateway sees; conflicts are acknowledged, not exposed."""
    result: str
    payment_id: Optional[str] = None


class PaymentHistoryResponse(BaseSchema):
    payments: List[PaymentResponse]
    total: int
    page: int
    pages: int
