"""Order model for delivery orders."""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from order_coordinator.models.base import StoredModel, StrictEnum, utcnow


class OrderStatus(StrictEnum):
    """Order status enumeration."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY = "ready"
    PICKED_UP = "picked_up"
    ON_THE_WAY = "on_the_way"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.DELIVERED, OrderStatus.CANCELLED)


class PaymentStatus(StrictEnum):
    """Payment status as seen on the order."""
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentMethod(StrictEnum):
    """Payment method enumeration."""
    BKASH = "bkash"
    NAGAD = "nagad"
    ROCKET = "rocket"
    CARD = "card"
    COD = "cod"


class ActorRole(StrictEnum):
    """Who is asking for an order change."""
    CUSTOMER = "customer"
    RESTAURANT = "restaurant"
    RIDER = "rider"
    ADMIN = "admin"


@dataclass
class Customization:
    name: str
    option: str
    price_delta: int = 0


@dataclass
class OrderItem:
    """Line item with the price snapshot taken at checkout."""
    menu_item_id: str
    name: str
    quantity: int
    unit_price: int
    customizations: List[Customization] = field(default_factory=list)
    special_instructions: Optional[str] = None

    @property
    def line_total(self) -> int:
        unit = self.unit_price + sum(c.price_delta for c in self.customizations)
        return unit * self.quantity


@dataclass
class DeliveryAddress:
    label: Optional[str] = None
    house_no: Optional[str] = None
    road_no: Optional[str] = None
    area: Optional[str] = None
    thana: Optional[str] = None
    district: Optional[str] = None
    postal_code: Optional[str] = None
    landmark: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None


@dataclass
class StatusHistoryEntry:
    status: OrderStatus
    timestamp: datetime
    note: Optional[str] = None


@dataclass
class OrderRating:
    food_rating: int
    delivery_rating: int
    review: Optional[str] = None
    rated_at: datetime = field(default_factory=utcnow)


@dataclass
class Order(StoredModel):
    """Delivery order record."""
    table_name = "orders"

    id: str
    order_number: str
    customer_id: str
    restaurant_id: str
    items: List[OrderItem]
    delivery_address: DeliveryAddress
    payment_method: PaymentMethod
    subtotal: int
    delivery_fee: int
    tax: int
    discount: int = 0
    total: int = 0
    rider_id: Optional[str] = None
    status: OrderStatus = OrderStatus.PENDING
    payment_status: PaymentStatus = PaymentStatus.PENDING
    status_history: List[StatusHistoryEntry] = field(default_factory=list)
    promo_code: Optional[str] = None
    special_instructions: Optional[str] = None
    cancellation_reason: Optional[str] = None
    rating: Optional[OrderRating] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    delivered_at: Optional[datetime] = None

    def __post_init__(self):
        if self.discount < 0 or self.discount > self.subtotal:
            raise ValueError("discount must be between 0 and subtotal")
        if min(self.subtotal, self.delivery_fee, self.tax) < 0:
            raise ValueError("monetary amounts must be non-negative")
        self.total = self.subtotal - self.discount + self.delivery_fee + self.tax

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def totals_consistent(self) -> bool:
        return (
            0 <= self.discount <= self.subtotal
            and self.total == self.subtotal - self.discount + self.delivery_fee + self.tax
        )

    def record_status(self, status: OrderStatus, note: Optional[str] = None) -> StatusHistoryEntry:
        """Append one history entry and move the order to ``status``."""
        now = utcnow()
        entry = StatusHistoryEntry(status=status, timestamp=now, note=note)
        self.status = status
        self.status_history.append(entry)
        self.updated_at = now
        return entry

    def channels(self) -> List[str]:
        """Notification channels interested in this order."""
        channels = [
            f"order:{self.id}",
            f"customer:{self.customer_id}",
            f"restaurant:{self.restaurant_id}",
        ]
        if self.rider_id:
            channels.append(f"rider:{self.rider_id}")
        return channels

    def summary(self) -> Dict[str, Any]:
        return {
            "order_id": self.id,
            "order_number": self.order_number,
            "status": self.status.value,
            "payment_status": self.payment_status.value,
            "total": self.total,
        }
