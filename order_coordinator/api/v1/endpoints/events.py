"""Notification channels: pull history over HTTP, push over WebSocket."""
import asyncio
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect, status

from order_coordinator.core.dependencies import Actor, get_actor, get_coordinator
from order_coordinator.core.errors import OrderNotFound
from order_coordinator.models import ActorRole
from order_coordinator.services.orders.coordinator import OrderCoordinator
from order_coordinator.services.outbox import ADMIN_CHANNEL

logger = logging.getLogger(__name__)
router = APIRouter()

_OWNED_CHANNELS = {
    "customer": ActorRole.CUSTOMER,
    "restaurant": ActorRole.RESTAURANT,
    "rider": ActorRole.RIDER,
}


def can_read_channel(coordinator: OrderCoordinator, actor: Actor, channel: str) -> bool:
    """Admins read everything; everyone else reads their own and their orders' channels."""
    if actor.role == ActorRole.ADMIN:
        return True
    if channel == ADMIN_CHANNEL:
        return False
    kind, _, key = channel.partition(":")
    if kind in _OWNED_CHANNELS:
        return actor.role == _OWNED_CHANNELS[kind] and actor.id == key
    if kind == "order":
        try:
            order = coordinator.get_order(key)
        except OrderNotFound:
            return False
        return coordinator.is_actor(order, actor.role, actor.id)
    return False


@router.get("/{channel}")
async def channel_history(
    channel: str,
    limit: int = Query(50, ge=1, le=500),
    actor: Actor = Depends(get_actor),
    coordinator: OrderCoordinator = Depends(get_coordinator),
) -> List[Dict[str, Any]]:
    """Recent events on a channel, oldest first. Clients de-duplicate on ``event_id``."""
    if not can_read_channel(coordinator, actor, channel):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed to read this channel")
    return await coordinator.fanout.history(channel, limit)


def _ws_actor(websocket: WebSocket) -> Optional[Actor]:
    role = ActorRole.parse(websocket.headers.get("x-actor-role"))
    actor_id = websocket.headers.get("x-actor-id")
    if role is None or not actor_id:
        return None
    return Actor(role=role, id=actor_id)


@router.websocket("/ws/{channel}")
async def channel_stream(websocket: WebSocket, channel: str):
    """
    Stream a channel.

    The server sends ``{"type": "subscribed"}`` once listening, then every
    event payload. Clients may send ``ping`` and get ``{"type": "pong"}``.
    """
    coordinator: OrderCoordinator = websocket.app.state.coordinator
    actor = _ws_actor(websocket)
    if actor is None or not can_read_channel(coordinator, actor, channel):
        await websocket.close(code=4003, reason="Not allowed to read this channel")
        return

    subscription = await coordinator.fanout.subscribe(channel)
    await websocket.accept()
    await websocket.send_json({"type": "subscribed", "channel": channel})

    async def forward():
        async for payload in subscription:
            await websocket.send_json(payload)

    forwarder = asyncio.create_task(forward())
    try:
        while True:
            message = await websocket.receive_text()
            if message == "ping":
                await websocket.send_json({"type": "pong"})
    except WebSocketDisconnect:
        logger.info(f"WebSocket for {channel} disconnected")
    finally:
        forwarder.cancel()
        await asyncio.gather(forwarder, return_exceptions=True)
        await subscription.close()
