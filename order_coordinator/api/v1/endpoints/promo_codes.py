"""Promo code endpoints: customer validation and offers, admin management."""
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status

from order_coordinator.core.dependencies import Actor, get_actor, get_coordinator, require_admin, require_role
from order_coordinator.models import ActorRole, PromoCode, UsageLimit
from order_coordinator.schemas.promo import (
    PromoCodeCreate,
    PromoCodeResponse,
    PromoCodeUpdate,
    PromoStatsResponse,
    PromoSummary,
    PromoToggleRequest,
    PromoValidateRequest,
    PromoValidateResponse,
)
from order_coordinator.services.orders.coordinator import OrderCoordinator

router = APIRouter()


@router.post("/validate", response_model=PromoValidateResponse)
async def validate_promo(
    request: PromoValidateRequest,
    actor: Actor = Depends(require_role(ActorRole.CUSTOMER)),
    coordinator: OrderCoordinator = Depends(get_coordinator),
) -> Any:
    """Preview a code's discount for the caller's cart. Nothing is reserved."""
    validation = coordinator.validate_promo(request.code, actor.id, request.order_amount, request.restaurant_id)
    if not validation.ok:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"reason": validation.reason.value, "message": validation.message},
        )
    return PromoValidateResponse(valid=True, code=validation.code, discount=validation.discount)


@router.post("", response_model=PromoCodeResponse, status_code=status.HTTP_201_CREATED)
async def create_promo(
    promo_in: PromoCodeCreate,
    actor: Actor = Depends(require_admin),
    coordinator: OrderCoordinator = Depends(get_coordinator),
) -> Any:
    data = promo_in.model_dump()
    data["usage_limit"] = UsageLimit(**data["usage_limit"])
    try:
        return await coordinator.create_promo(PromoCode(**data))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.get("", response_model=List[PromoCodeResponse])
async def list_promos(
    is_active: Optional[bool] = None,
    actor: Actor = Depends(require_admin),
    coordinator: OrderCoordinator = Depends(get_coordinator),
) -> Any:
    return coordinator.promotions.list_codes(is_active)


@router.get("/active", response_model=List[PromoSummary])
async def list_active_promos(
    restaurant_id: Optional[str] = None,
    actor: Actor = Depends(get_actor),
    coordinator: OrderCoordinator = Depends(get_coordinator),
) -> Any:
    """Codes currently on offer, optionally including those limited to one restaurant."""
    return coordinator.promotions.active_codes(restaurant_id)


@router.get("/{code}", response_model=PromoCodeResponse)
async def get_promo(
    code: str,
    actor: Actor = Depends(require_admin),
    coordinator: OrderCoordinator = Depends(get_coordinator),
) -> Any:
    return coordinator.promotions.get(code)


@router.get("/{code}/stats", response_model=PromoStatsResponse)
async def get_promo_stats(
    code: str,
    actor: Actor = Depends(require_admin),
    coordinator: OrderCoordinator = Depends(get_coordinator),
) -> Any:
    return coordinator.promotions.stats(code)


@router.patch("/{code}", response_model=PromoCodeResponse)
async def update_promo(
    code: str,
    changes: PromoCodeUpdate,
    actor: Actor = Depends(require_admin),
    coordinator: OrderCoordinator = Depends(get_coordinator),
) -> Any:
    try:
        return await coordinator.update_promo(code, changes.model_dump(exclude_unset=True))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.post("/{code}/toggle", response_model=PromoCodeResponse)
async def toggle_promo(
    code: str,
    toggle: PromoToggleRequest,
    actor: Actor = Depends(require_admin),
    coordinator: OrderCoordinator = Depends(get_coordinator),
) -> Any:
    return await coordinator.set_promo_active(code, toggle.is_active)


@router.delete("/{code}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_promo(
    code: str,
    actor: Actor = Depends(require_admin),
    coordinator: OrderCoordinator = Depends(get_coordinator),
) -> None:
    await coordinator.delete_promo(code)
