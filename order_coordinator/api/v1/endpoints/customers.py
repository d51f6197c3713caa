"""Customer order list."""
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status

from order_coordinator.core.dependencies import Actor, get_actor, get_coordinator
from order_coordinator.models import ActorRole, OrderStatus
from order_coordinator.schemas.order import OrderSummary
from order_coordinator.services.orders.coordinator import OrderCoordinator

router = APIRouter()


@router.get("/{customer_id}/orders", response_model=List[OrderSummary])
async def list_customer_orders(
    customer_id: str,
    order_status: Optional[OrderStatus] = None,
    actor: Actor = Depends(get_actor),
    coordinator: OrderCoordinator = Depends(get_coordinator),
) -> Any:
    """Orders of one customer, newest first, optionally filtered by status."""
    if actor.role != ActorRole.ADMIN and not (actor.role == ActorRole.CUSTOMER and actor.id == customer_id):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed to list these orders")
    return coordinator.list_customer_orders(customer_id, order_status)
