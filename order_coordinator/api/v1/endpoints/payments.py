"""Payment endpoints: checkout, gateway callbacks, history and refunds."""
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse

from order_coordinator.core.dependencies import Actor, get_actor, get_coordinator, require_admin, require_role
from order_coordinator.models import ActorRole
from order_coordinator.models.results import ReconcileOutcome
from order_coordinator.schemas.payment import (
    CallbackAck,
    CheckoutRequest,
    PaymentCallback,
    PaymentHistoryResponse,
    PaymentResponse,
    RefundRequest,
)
from order_coordinator.services.orders.coordinator import OrderCoordinator
import logging

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/checkout", response_model=PaymentResponse)
async def begin_checkout(
    checkout: CheckoutRequest,
    actor: Actor = Depends(require_role(ActorRole.CUSTOMER, ActorRole.ADMIN)),
    coordinator: OrderCoordinator = Depends(get_coordinator),
) -> Any:
    """Bind the gateway session the client opened to the order's payment."""
    result = await coordinator.begin_checkout(
        checkout.order_id,
        checkout.provider,
        checkout.transaction_ref,
        method=checkout.method,
        customer_id=actor.id if actor.role == ActorRole.CUSTOMER else None,
    )
    if not result.ok:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=result.reason)
    return result.payment


@router.post("/callbacks/{provider}", response_model=CallbackAck)
async def payment_callback(
    provider: str,
    callback: PaymentCallback,
    coordinator: OrderCoordinator = Depends(get_coordinator),
) -> Any:
    """
    Gateway callback, already normalized by the gateway adapter.

    Conflicts are acknowledged with 202 so the gateway stops retrying; they
    wait in the review queue for an operator.
    """
    result = await coordinator.handle_payment_callback(
        provider, callback.transaction_ref, callback.status, callback.payload
    )
    ack = CallbackAck(result=result.outcome.value, payment_id=result.payment.id if result.payment else None)
    if result.outcome is ReconcileOutcome.CONFLICT:
        return JSONResponse(status_code=status.HTTP_202_ACCEPTED, content=ack.model_dump())
    return ack


@router.get("/history", response_model=PaymentHistoryResponse)
async def payment_history(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    actor: Actor = Depends(require_role(ActorRole.CUSTOMER)),
    coordinator: OrderCoordinator = Depends(get_coordinator),
) -> Any:
    """The caller's payment attempts across all orders, newest first."""
    payments, total = coordinator.list_customer_payments(actor.id, page, limit)
    return PaymentHistoryResponse(
        payments=[PaymentResponse.model_validate(p) for p in payments],
        total=total,
        page=page,
        pages=(total + limit - 1) // limit,
    )


@router.get("/orders/{order_id}", response_model=PaymentResponse)
async def get_order_payment(
    order_id: str,
    actor: Actor = Depends(get_actor),
    coordinator: OrderCoordinator = Depends(get_coordinator),
) -> Any:
    order = coordinator.get_order(order_id)
    if not coordinator.is_actor(order, actor.role, actor.id):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed to view this order")
    payment = coordinator.get_payment_for_order(order_id)
    if payment is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No payment for this order")
    return payment


@router.post("/{payment_id}/refund", response_model=PaymentResponse)
async def refund_payment(
    payment_id: str,
    refund: RefundRequest,
    actor: Actor = Depends(require_admin),
    coordinator: OrderCoordinator = Depends(get_coordinator),
) -> Any:
    logger.info(f"Admin {actor.id} requested refund of payment {payment_id}", extra={"payment_id": payment_id})
    result = await coordinator.refund_payment(payment_id, refund.amount, refund.reason)
    if not result.ok:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=result.reason)
    return result.payment
