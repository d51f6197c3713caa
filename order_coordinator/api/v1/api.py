"""Main API router."""
from fastapi import APIRouter
from order_coordinator.api.v1.endpoints import (
    admin,
    customers,
    events,
    orders,
    payments,
    promo_codes,
    riders,
)

# Create main router
api_router = APIRouter()

api_router.include_router(
    orders.router,
    prefix="/orders",
    tags=["Orders"]
)

api_router.include_router(
    customers.router,
    prefix="/customers",
    tags=["Orders"]
)

api_router.include_router(
    riders.router,
    prefix="/riders",
    tags=["Riders"]
)

api_router.include_router(
    payments.router,
    prefix="/payments",
    tags=["Payments"]
)

api_router.include_router(
    promo_codes.router,
    prefix="/promo-codes",
    tags=["Promo Codes"]
)

api_router.include_router(
    admin.router,
    prefix="/admin",
    tags=["Admin"]
)

api_router.include_router(
    events.router,
    prefix="/events",
    tags=["Notifications"]
)
