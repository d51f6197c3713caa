"""Admin endpoints: rider reassignment and the operational review queue."""
from typing import Any, List

from fastapi import APIRouter, Depends, HTTPException, status

from order_coordinator.core.dependencies import Actor, get_coordinator, require_admin
from order_coordinator.schemas.admin import ReleaseRiderRequest, ReviewItemResponse
from order_coordinator.schemas.order import OrderResponse
from order_coordinator.services.orders.coordinator import OrderCoordinator

router = APIRouter()


@router.post("/orders/{order_id}/release-rider", response_model=OrderResponse)
async def release_rider(
    order_id: str,
    release: ReleaseRiderRequest,
    actor: Actor = Depends(require_admin),
    coordinator: OrderCoordinator = Depends(get_coordinator),
) -> Any:
    """Take a ready order away from its rider and reopen it to nearby riders."""
    result = await coordinator.release_rider(order_id, actor.id, release.reason)
    if not result.ok:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=result.reason)
    return result.order


@router.get("/review-queue", response_model=List[ReviewItemResponse])
async def list_review_queue(
    actor: Actor = Depends(require_admin),
    coordinator: OrderCoordinator = Depends(get_coordinator),
) -> Any:
    return coordinator.list_review_items()
