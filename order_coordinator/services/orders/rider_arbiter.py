"""Single-winner rider assignment."""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from order_coordinator.core.locks import KeyedLockManager, order_lock_key
from order_coordinator.models import OrderStatus, utcnow
from order_coordinator.models.results import (
    AcceptOutcome,
    AcceptResult,
    ReleaseOutcome,
    ReleaseResult,
)
from order_coordinator.repositories.store import CoordinatorStore
from order_coordinator.services.notifications import events
from order_coordinator.services.outbox import ADMIN_CHANNEL, Outbox

logger = logging.getLogger(__name__)


@dataclass
class RiderAssignment:
    """A rider's claim on a ready order, held until pickup."""
    order_id: str
    rider_id: str
    acquired_at: datetime = field(default_factory=utcnow)


class RiderAssignmentArbiter:
    """
    Lets exactly one rider claim a ready order.

    The claim is a compare-and-set on ``order.rider_id`` inside the order's
    critical section: the first caller to see no rider wins and everyone else
    is told the order is taken. Claims do not expire; only an admin can
    release one while the order is still ``ready``.
    """

    def __init__(self, store: CoordinatorStore, locks: KeyedLockManager):
        self.store = store
        self.locks = locks
        self._assignments: Dict[str, RiderAssignment] = {}

    async def try_accept(self, order_id: str, rider_id: str, outbox: Outbox) -> AcceptResult:
        async with self.locks.hold(order_lock_key(order_id)):
            order = self.store.get_order(order_id)
            if order.status != OrderStatus.READY:
                return AcceptResult(
                    AcceptOutcome.NOT_ACCEPTABLE,
                    order=order.snapshot(),
                    reason=f"Order is {order.status.value}, not ready for pickup",
                )
            if order.rider_id is not None:
                return AcceptResult(
                    AcceptOutcome.ALREADY_ASSIGNED,
                    order=order.snapshot(),
                    reason="Order already taken",
                )

            order.rider_id = rider_id
            order.updated_at = utcnow()
            self._assignments[order_id] = RiderAssignment(order_id=order_id, rider_id=rider_id)

            logger.info(f"Rider {rider_id} assigned to order {order_id}", extra={"order_id": order_id, "rider_id": rider_id})
            outbox.publish(order.channels(), events.rider_assigned(order))
            outbox.mirror(order)
            return AcceptResult(AcceptOutcome.ASSIGNED, order=order.snapshot())

    async def release(self, order_id: str, admin_id: str, reason: Optional[str], outbox: Outbox) -> ReleaseResult:
        """Clear the rider on a ready order so the race opens again."""
        async with self.locks.hold(order_lock_key(order_id)):
            order = self.store.get_order(order_id)
            if order.status != OrderStatus.READY or order.rider_id is None:
                return ReleaseResult(
                    ReleaseOutcome.NOT_ACCEPTABLE,
                    order=order.snapshot(),
                    reason="Only a ready order with an assigned rider can be released",
                )

            channels = order.channels() + [ADMIN_CHANNEL]
            rider_id = order.rider_id
            order.rider_id = None
            order.updated_at = utcnow()
            self.drop(order_id)

            logger.info(
                f"Admin {admin_id} released rider {rider_id} from order {order_id}",
                extra={"order_id": order_id, "rider_id": rider_id},
            )
            outbox.publish(channels, events.rider_released(order, rider_id, reason))
            outbox.mirror(order)
            return ReleaseResult(ReleaseOutcome.RELEASED, order=order.snapshot(), released_rider_id=rider_id)

    def drop(self, order_id: str) -> Optional[RiderAssignment]:
        """Forget the claim on ``order_id``; callers hold the order's lock."""
        return self._assignments.pop(order_id, None)

    def assignment_for(self, order_id: str) -> Optional[RiderAssignment]:
        return self._assignments.get(order_id)

    def assignments(self) -> List[RiderAssignment]:
        return list(self._assignments.values())
