"""Order status state machine."""
import logging
from typing import Dict, FrozenSet, List, Optional, Tuple, Union

from order_coordinator.models import ActorRole, Order, OrderStatus
from order_coordinator.models.results import TransitionOutcome, TransitionResult
from order_coordinator.services.notifications import events
from order_coordinator.services.notifications.events import Event

logger = logging.getLogger(__name__)

S = OrderStatus
A = ActorRole

# (from, to) -> actors allowed to make the move. Nothing outside this table is legal.
TRANSITIONS: Dict[Tuple[OrderStatus, OrderStatus], FrozenSet[ActorRole]] = {
    (S.PENDING, S.CONFIRMED): frozenset({A.RESTAURANT}),
    (S.PENDING, S.CANCELLED): frozenset({A.CUSTOMER, A.RESTAURANT, A.ADMIN}),
    (S.CONFIRMED, S.PREPARING): frozenset({A.RESTAURANT}),
    (S.CONFIRMED, S.CANCELLED): frozenset({A.RESTAURANT, A.ADMIN}),
    (S.PREPARING, S.READY): frozenset({A.RESTAURANT}),
    (S.PREPARING, S.CANCELLED): frozenset({A.ADMIN}),
    (S.READY, S.PICKED_UP): frozenset({A.RIDER}),
    (S.READY, S.CANCELLED): frozenset({A.ADMIN}),
    (S.PICKED_UP, S.ON_THE_WAY): frozenset({A.RIDER}),
    (S.PICKED_UP, S.CANCELLED): frozenset({A.ADMIN}),
    (S.ON_THE_WAY, S.DELIVERED): frozenset({A.RIDER}),
    (S.ON_THE_WAY, S.CANCELLED): frozenset({A.ADMIN}),
}


def allowed_targets(status: OrderStatus, role: ActorRole) -> List[OrderStatus]:
    """Statuses ``role`` may move an order to from ``status``."""
    return [to for (frm, to), roles in TRANSITIONS.items() if frm == status and role in roles]


class OrderStateMachine:
    """
    Validates and applies order status changes.

    Callers must hold the order's critical section. ``apply`` either performs
    the whole change (status, history entry, event) or leaves the order
    untouched.
    """

    def check(
        self,
        order: Order,
        actor_role: Union[ActorRole, str],
        actor_id: str,
        target: Union[OrderStatus, str],
        note: Optional[str] = None,
    ) -> Optional[str]:
        """Return why the change is illegal, or ``None`` when it is allowed."""
        role = ActorRole.parse(actor_role)
        if role is None:
            return f"Unknown actor role '{actor_role}'"
        target_status = OrderStatus.parse(target)
        if target_status is None:
            return f"Unknown order status '{target}'"

        if order.is_terminal:
            return f"Order is already {order.status.value}"

        roles = TRANSITIONS.get((order.status, target_status))
        if roles is None:
            return f"Cannot move order from {order.status.value} to {target_status.value}"
        if role not in roles:
            return f"{role.value} cannot move order from {order.status.value} to {target_status.value}"

        if role == ActorRole.CUSTOMER and actor_id != order.customer_id:
            return "Order belongs to another customer"
        if role == ActorRole.RESTAURANT and actor_id != order.restaurant_id:
            return "Order belongs to another restaurant"
        if role == ActorRole.RIDER and (order.rider_id is None or actor_id != order.rider_id):
            return "Only the assigned rider can update this order"

        if target_status == OrderStatus.CANCELLED and not (note and note.strip()):
            return "A cancellation reason is required"
        return None

    def apply(
        self,
        order: Order,
        actor_role: Union[ActorRole, str],
        actor_id: str,
        target: Union[OrderStatus, str],
        note: Optional[str] = None,
    ) -> Tuple[TransitionResult, Optional[Event]]:
        """
        Validate and perform one transition.

        Args:
            order: Live order record (caller holds its lock)
            actor_role: Role of the caller
            actor_id: Identity of the caller within that role
            target: Requested status
            note: Optional note stored in the status history

        Returns:
            The result and, when applied, the ``OrderStatusChanged`` event
        """
        reason = self.check(order, actor_role, actor_id, target, note)
        if reason is not None:
            logger.info(
                f"Rejected transition on order {order.id}: {reason}",
                extra={"order_id": order.id, "actor_role": str(actor_role)},
            )
            return TransitionResult(TransitionOutcome.INVALID_TRANSITION, reason=reason), None

        target_status = OrderStatus.parse(target)
        old_status = order.status
        entry = order.record_status(target_status, note)
        if target_status == OrderStatus.DELIVERED:
            order.delivered_at = entry.timestamp
        elif target_status == OrderStatus.CANCELLED:
            order.cancellation_reason = note

        logger.info(
            f"Order {order.id} {old_status.value} -> {target_status.value} by {ActorRole.parse(actor_role).value}",
            extra={"order_id": order.id},
        )
        event = events.order_status_changed(order, old_status.value, target_status.value, note)
        return TransitionResult(TransitionOutcome.APPLIED, order=order), event
