"""Rider endpoints: available orders and the accept race."""
from typing import Any, List

from fastapi import APIRouter, Depends, HTTPException, status

from order_coordinator.core.dependencies import Actor, get_coordinator, require_role
from order_coordinator.models import ActorRole
from order_coordinator.models.results import AcceptOutcome
from order_coordinator.schemas.order import OrderResponse, OrderSummary
from order_coordinator.services.orders.coordinator import OrderCoordinator

router = APIRouter()


@router.get("/available-orders", response_model=List[OrderSummary])
async def list_available_orders(
    actor: Actor = Depends(require_role(ActorRole.RIDER, ActorRole.ADMIN)),
    coordinator: OrderCoordinator = Depends(get_coordinator),
) -> Any:
    """Ready orders nobody has claimed yet, oldest first."""
    return coordinator.list_assignable_orders()


@router.post("/orders/{order_id}/accept", response_model=OrderResponse)
async def accept_order(
    order_id: str,
    actor: Actor = Depends(require_role(ActorRole.RIDER)),
    coordinator: OrderCoordinator = Depends(get_coordinator),
) -> Any:
    """
    Claim a ready order.

    Exactly one of many concurrent riders wins; the rest get 409.
    """
    result = await coordinator.accept_order(order_id, actor.id)
    if result.outcome is AcceptOutcome.ALREADY_ASSIGNED:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Order already taken")
    if result.outcome is AcceptOutcome.NOT_ACCEPTABLE:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=result.reason)
    return result.order
