"""
Domain models package.

This file makes it easy to import all models at once.
"""

from .base import StoredModel, StrictEnum, utcnow
from .order import (
    ActorRole,
    Customization,
    DeliveryAddress,
    Order,
    OrderItem,
    OrderRating,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    StatusHistoryEntry,
)
from .payment import PaymentRecord, PaymentRecordStatus, Refund
from .promo import DiscountType, PromoCode, PromoScope, UsageLimit
from .review import ReviewItem, ReviewKind

__all__ = [
    "StoredModel",
    "StrictEnum",
    "utcnow",
    "ActorRole",
    "Customization",
    "DeliveryAddress",
    "Order",
    "OrderItem",
    "OrderRating",
    "OrderStatus",
    "PaymentMethod",
    "PaymentStatus",
    "StatusHistoryEntry",
    "PaymentRecord",
    "PaymentRecordStatus",
    "Refund",
    "DiscountType",
    "PromoCode",
    "PromoScope",
    "UsageLimit",
    "ReviewItem",
    "ReviewKind",
]
