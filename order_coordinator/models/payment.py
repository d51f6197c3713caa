"""Payment record model."""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from order_coordinator.models.base import StoredModel, StrictEnum, utcnow
from order_coordinator.models.order import PaymentMethod


class PaymentRecordStatus(StrictEnum):
    """Gateway-facing payment status."""
    PENDING = "pending"
    INITIATED = "initiated"
    SUCCESS = "success"
    FAILED = "failed"
    REFUNDED = "refunded"

    @property
    def is_terminal(self) -> bool:
        return self in (
            PaymentRecordStatus.SUCCESS,
            PaymentRecordStatus.FAILED,
            PaymentRecordStatus.REFUNDED,
        )


@dataclass
class Refund:
    amount: int
    reason: str
    refund_id: str
    refunded_at: datetime = field(default_factory=utcnow)


@dataclass
class PaymentRecord(StoredModel):
    """One payment attempt for an order. Only one record per order is active."""
    table_name = "payments"

    id: str
    order_id: str
    customer_id: str
    amount: int
    method: PaymentMethod
    status: PaymentRecordStatus = PaymentRecordStatus.PENDING
    provider: Optional[str] = None
    transaction_ref: Optional[str] = None
    # Opaque gateway body kept for audit; never interpreted here.
    raw_payload: Any = None
    refund: Optional[Refund] = None
    is_active: bool = True
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def mark(self, status: PaymentRecordStatus, raw_payload: Any = None) -> None:
        self.status = status
        if raw_payload is not None:
            self.raw_payload = raw_payload
        self.updated_at = utcnow()
