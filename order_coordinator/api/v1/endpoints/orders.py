"""Order endpoints."""
from typing import Any, List

from fastapi import APIRouter, Depends, HTTPException, status

from order_coordinator.core.dependencies import Actor, get_actor, get_coordinator, require_role
from order_coordinator.models import ActorRole, Order
from order_coordinator.schemas.order import (
    CancelRequest,
    OrderCreate,
    OrderResponse,
    RatingRequest,
    StatusHistoryResponse,
    TransitionRequest,
)
from order_coordinator.services.orders.coordinator import OrderCoordinator

router = APIRouter()


def _visible_order(coordinator: OrderCoordinator, order_id: str, actor: Actor) -> Order:
    order = coordinator.get_order(order_id)
    if not coordinator.is_actor(order, actor.role, actor.id):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed to view this order")
    return order


@router.post("", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
async def create_order(
    order_in: OrderCreate,
    actor: Actor = Depends(require_role(ActorRole.CUSTOMER)),
    coordinator: OrderCoordinator = Depends(get_coordinator),
) -> Any:
    """
    Place an order for the calling customer.

    Prices come from the item snapshots in the request. A rejected promo code
    fails the whole request with the specific reason.
    """
    try:
        result = await coordinator.create_order(
            customer_id=actor.id,
            restaurant_id=order_in.restaurant_id,
            items=[item.to_model() for item in order_in.items],
            address=order_in.delivery_address.to_model(),
            payment_method=order_in.payment_method,
            promo_code=order_in.promo_code,
            special_instructions=order_in.special_instructions,
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    if not result.ok:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"reason": result.promo.reason.value, "message": result.promo.message},
        )
    return result.order


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: str,
    actor: Actor = Depends(get_actor),
    coordinator: OrderCoordinator = Depends(get_coordinator),
) -> Any:
    """Get specific order details."""
    return _visible_order(coordinator, order_id, actor)


@router.get("/{order_id}/history", response_model=List[StatusHistoryResponse])
async def get_order_history(
    order_id: str,
    actor: Actor = Depends(get_actor),
    coordinator: OrderCoordinator = Depends(get_coordinator),
) -> Any:
    return _visible_order(coordinator, order_id, actor).status_history


@router.post("/{order_id}/transitions", response_model=OrderResponse)
async def transition_order(
    order_id: str,
    transition: TransitionRequest,
    actor: Actor = Depends(get_actor),
    coordinator: OrderCoordinator = Depends(get_coordinator),
) -> Any:
    """Move an order to the next status allowed for the calling actor."""
    result = await coordinator.transition_order(
        order_id, actor.role, actor.id, transition.status, transition.note
    )
    if not result.ok:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=result.reason)
    return result.order


@router.post("/{order_id}/cancel", response_model=OrderResponse)
async def cancel_order(
    order_id: str,
    cancel: CancelRequest,
    actor: Actor = Depends(get_actor),
    coordinator: OrderCoordinator = Depends(get_coordinator),
) -> Any:
    result = await coordinator.cancel_order(order_id, actor.role, actor.id, cancel.reason)
    if not result.ok:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=result.reason)
    return result.order


@router.post("/{order_id}/rating", response_model=OrderResponse)
async def rate_order(
    order_id: str,
    rating: RatingRequest,
    actor: Actor = Depends(require_role(ActorRole.CUSTOMER)),
    coordinator: OrderCoordinator = Depends(get_coordinator),
) -> Any:
    result = await coordinator.rate_order(
        order_id, actor.id, rating.food_rating, rating.delivery_rating, rating.review
    )
    if not result.ok:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=result.reason)
    return result.order
