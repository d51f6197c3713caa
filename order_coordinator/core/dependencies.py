"""Request dependencies: the coordinator instance and the calling actor."""
from dataclasses import dataclass
from typing import Callable, Optional
from fastapi import Depends, Header, HTTPException, Request, status
from order_coordinator.models import ActorRole
from order_coordinator.services.orders.coordinator import OrderCoordinator
import logging

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Actor:
    """Caller identity as asserted by the upstream auth gateway."""
    role: ActorRole
    id: str


def get_coordinator(request: Request) -> OrderCoordinator:
    return request.app.state.coordinator


async def get_actor(
    x_actor_role: Optional[str] = Header(None),
    x_actor_id: Optional[str] = Header(None),
) -> Actor:
    """
    Read the actor headers.

    Unknown roles are rejected rather than mapped to a default.
    """
    if not x_actor_role or not x_actor_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-Actor-Role and X-Actor-Id headers required",
        )

    role = ActorRole.parse(x_actor_role)
    if role is None:
        logger.warning(f"Rejected request with unknown actor role '{x_actor_role}'")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown actor role '{x_actor_role}'",
        )
    return Actor(role=role, id=x_actor_id.strip())


def require_role(*roles: ActorRole) -> Callable:
    """Dependency factory allowing only the given roles."""

    async def _check(actor: Actor = Depends(get_actor)) -> Actor:
        if actor.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"{actor.role.value} is not allowed to perform this action",
            )
        return actor

    return _check


require_admin = require_role(ActorRole.ADMIN)
