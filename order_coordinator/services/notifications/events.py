"""
Order lifecycle events
Defines event types and the envelope delivered through the notification fanout
"""
from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from order_coordinator.models import Order, PaymentRecord, ReviewItem


class EventType(str, Enum):
    """Event types published by the coordinator"""
    ORDER_CREATED = "order.created"
    ORDER_STATUS_CHANGED = "order.status_changed"
    ORDER_AVAILABLE = "order.available"
    RIDER_ASSIGNED = "order.rider_assigned"
    RIDER_RELEASED = "order.rider_released"
    ORDER_RATED = "order.rated"
    PAYMENT_STATUS_CHANGED = "payment.status_changed"
    REVIEW_QUEUED = "review.queued"


class Event(BaseModel):
    """
    Envelope for every notification.

    Delivery is at-least-once with no ordering across channels, so consumers
    that care de-duplicate on ``id``.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    type: EventType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    source: str = "order-coordinator"
    data: Dict[str, Any] = Field(default_factory=dict)
    correlation_id: Optional[str] = None
    version: str = "1.0"

    def to_dict(self) -> Dict[str, Any]:
        """Convert event to dictionary for serialization"""
        return self.model_dump(mode="json")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Event":
        """Create event from dictionary"""
        return cls.model_validate(data)

    def to_json(self) -> str:
        """Convert event to JSON string"""
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, json_str: str) -> "Event":
        """Create event from JSON string"""
        return cls.from_dict(json.loads(json_str))


def order_created(order: Order) -> Event:
    return Event(type=EventType.ORDER_CREATED, data=order.summary(), correlation_id=order.id)


def order_status_changed(order: Order, old_status: str, new_status: str, note: Optional[str] = None) -> Event:
    return Event(
        type=EventType.ORDER_STATUS_CHANGED,
        data={
            "order_id": order.id,
            "order_number": order.order_number,
            "old_status": old_status,
            "new_status": new_status,
            "note": note,
        },
        correlation_id=order.id,
    )


def order_available(order: Order) -> Event:
    return Event(
        type=EventType.ORDER_AVAILABLE,
        data={
            "order_id": order.id,
            "order_number": order.order_number,
            "restaurant_id": order.restaurant_id,
            "delivery_fee": order.delivery_fee,
        },
        correlation_id=order.id,
    )


def rider_assigned(order: Order) -> Event:
    return Event(
        type=EventType.RIDER_ASSIGNED,
        data={"order_id": order.id, "rider_id": order.rider_id},
        correlation_id=order.id,
    )


def rider_released(order: Order, rider_id: str, reason: Optional[str]) -> Event:
    return Event(
        type=EventType.RIDER_RELEASED,
        data={"order_id": order.id, "rider_id": rider_id, "reason": reason},
        correlation_id=order.id,
    )


def order_rated(order: Order) -> Event:
    rating = order.rating
    return Event(
        type=EventType.ORDER_RATED,
        data={
            "order_id": order.id,
            "food_rating": rating.food_rating if rating else None,
            "delivery_rating": rating.delivery_rating if rating else None,
        },
        correlation_id=order.id,
    )


def payment_status_changed(payment: PaymentRecord, order: Order, old_status: str) -> Event:
    return Event(
        type=EventType.PAYMENT_STATUS_CHANGED,
        data={
            "order_id": order.id,
            "payment_id": payment.id,
            "old_status": old_status,
            "new_status": payment.status.value,
            "order_payment_status": order.payment_status.value,
        },
        correlation_id=order.id,
    )


def review_queued(item: ReviewItem) -> Event:
    return Event(
        type=EventType.REVIEW_QUEUED,
        data={
            "review_id": item.id,
            "kind": item.kind.value,
            "order_id": item.order_id,
            "payment_id": item.payment_id,
            "detail": item.detail,
        },
        correlation_id=item.order_id,
    )
