"""
Schemas package for the order coordinator HTTP API.

Pydantic models for request/response validation:
- base: Base schemas and common types
- order: Order placement, transitions, cancellation and rating
- payment: Checkout, gateway callbacks and refunds
- promo: Promo code validation and administration
- admin: Rider release and the review queue
"""

from order_coordinator.schemas.base import BaseSchema
