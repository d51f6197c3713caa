"""Order request and response schemas."""
from datetime import datetime
from typing import List, Optional

from pydantic import Field, computed_field

from order_coordinator.models import (
    Customization,
    DeliveryAddress,
    OrderItem,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
)
from order_coordinator.schemas.base import BaseSchema


class CustomizationSchema(BaseSchema):
    name: str
    option: str
    price_delta: int = 0


class OrderItemCreate(BaseSchema):
    """Line item with the unit price shown to the customer at checkout."""
    menu_item_id: str
    name: str
    quantity: int = Field(..., ge=1)
    unit_price: int = Field(..., ge=0)
    customizations: List[CustomizationSchema] = []
    special_instructions: Optional[str] = None

    def to_model(self) -> OrderItem:
        return OrderItem(
            menu_item_id=self.menu_item_id,
            name=self.name,
            quantity=self.quantity,
            unit_price=self.unit_price,
            customizations=[Customization(**c.model_dump()) for c in self.customizations],
            special_instructions=self.special_instructions,
        )


class OrderItemResponse(OrderItemCreate):
    @computed_field
    @property
    def line_total(self) -> int:
        unit = self.unit_price + sum(c.price_delta for c in self.customizations)
        return unit * self.quantity


class DeliveryAddressSchema(BaseSchema):
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

    def to_model(self) -> DeliveryAddress:
        return DeliveryAddress(**self.model_dump())


class OrderCreate(BaseSchema):
    """Place an order; the customer comes from the actor headers."""
    restaurant_id: str
    items: List[OrderItemCreate] = Field(..., min_length=1)
    delivery_address: DeliveryAddressSchema
    payment_method: PaymentMethod
    promo_code: Optional[str] = None
    special_instructions: Optional[str] = None


class TransitionRequest(BaseSchema):
    # plain string so unknown statuses reach the state machine and get a typed rejection
    status: str
    note: Optional[str] = None


class CancelRequest(BaseSchema):
    reason: str = Field(..., min_length=1)


class RatingRequest(BaseSchema):
    food_rating: int = Field(..., ge=1, le=5)
    delivery_rating: int = Field(..., ge=1, le=5)
    review: Optional[str] = None


class StatusHistoryResponse(BaseSchema):
    status: OrderStatus
    timestamp: datetime
    note: Optional[str] = None


class OrderRatingResponse(BaseSchema):
    food_rating: int
    delivery_rating: int
    review: Optional[str] = None
    rated_at: datetime


class OrderResponse(BaseSchema):
    """Order response with all fields."""
    id: str
    order_number: str
    customer_id: str
    restaurant_id: str
    rider_id: Optional[str] = None
    items: List[OrderItemResponse]
    delivery_address: DeliveryAddressSchema
    subtotal: int
    delivery_fee: int
    tax: int
    discount: int
    total: int
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    status: OrderStatus
    status_history: List[StatusHistoryResponse]
    promo_code: Optional[str] = None
    special_instructions: Optional[str] = None
    cancellation_reason: Optional[str] = None
    rating: Optional[OrderRatingResponse] = None
    created_at: datetime
    updated_at: datetime
    delivered_at: Optional[datetime] = None


class OrderSummary(BaseSchema):
    """Compact order row for lists."""
    id: str
    order_number: str
    restaurant_id: str
    rider_id: Optional[str] = None
    status: OrderStatus
    payment_status: PaymentStatus
    total: int
    created_at: datetime
