"""
Notification fanout.

Every interested app listens on a channel (``order:<id>``, ``customer:<id>``,
``restaurant:<id>``, ``rider:<id>``, ``admin``). Clients either stream a
channel (``subscribe``) or poll its recent history (``history``). Delivery is
at-least-once with no ordering across channels; payloads carry ``event_id``
so clients can drop duplicates.
"""
from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from collections import OrderedDict, defaultdict, deque
from typing import Any, Deque, Dict, List, Optional, Set

import redis.asyncio as redis

from order_coordinator.services.notifications.events import Event

logger = logging.getLogger(__name__)


def envelope(channel: str, event: Event) -> Dict[str, Any]:
    """Payload delivered to clients for ``event`` on ``channel``."""
    payload = event.to_dict()
    payload["event_id"] = payload.pop("id")
    payload["channel"] = channel
    return payload


class Subscription(ABC):
    """Async iterator over one channel's payloads; ``close`` ends it."""

    def __aiter__(self) -> "Subscription":
        return self

    @abstractmethod
    async def __anext__(self) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def close(self) -> None:
        ...


class _QueueSubscription(Subscription):
    def __init__(self, fanout: "InMemoryFanout", channel: str, queue: asyncio.Queue):
        self.fanout = fanout
        self.channel = channel
        self.queue = queue

    async def __anext__(self) -> Dict[str, Any]:
        return await self.queue.get()

    async def close(self) -> None:
        self.fanout._unsubscribe(self.channel, self.queue)


class _PubSubSubscription(Subscription):
    def __init__(self, pubsub: Any, key: str):
        self.pubsub = pubsub
        self.key = key

    async def __anext__(self) -> Dict[str, Any]:
        while True:
            message = await self.pubsub.get_message(ignore_subscribe_messages=True, timeout=None)
            if message and message.get("type") == "message":
                return json.loads(message["data"])

    async def close(self) -> None:
        await self.pubsub.unsubscribe(self.key)
        await self.pubsub.aclose()


class NotificationFanout(ABC):
    """Message channel the coordinator publishes to after each commit."""

    @abstractmethod
    async def publish(self, channel: str, event: Event) -> None:
        ...

    @abstractmethod
    async def history(self, channel: str, limit: int = 50) -> List[Dict[str, Any]]:
        """Most recent payloads on ``channel``, oldest first."""

    @abstractmethod
    async def subscribe(self, channel: str) -> "Subscription":
        """Start receiving payloads published on ``channel`` from now on."""

    async def close(self) -> None:
        return None


class InMemoryFanout(NotificationFanout):
    """
    Single-process fanout with bounded history.

    Each channel keeps its last ``history_limit`` payloads, and only the
    ``max_channels`` most recently published channels keep any history at
    all. Order channels go quiet once the order is done, so the least
    recently used ones are dropped first.
    """

    def __init__(self, history_limit: int = 200, queue_size: int = 100, max_channels: int = 10000):
        self.history_limit = history_limit
        self.queue_size = queue_size
        self.max_channels = max_channels
        self._history: OrderedDict[str, Deque[Dict[str, Any]]] = OrderedDict()
        self._subscribers: Dict[str, Set[asyncio.Queue]] = defaultdict(set)

    async def publish(self, channel: str, event: Event) -> None:
        payload = envelope(channel, event)
        self._remember(channel, payload)
        for queue in list(self._subscribers.get(channel, ())):
            try:
                queue.put_nowait(payload)
            except asyncio.QueueFull:
                logger.warning(f"Subscriber queue full on {channel}; dropped event {payload['event_id']}")

    def _remember(self, channel: str, payload: Dict[str, Any]) -> None:
        history = self._history.get(channel)
        if history is None:
            history = self._history[channel] = deque(maxlen=self.history_limit)
        else:
            self._history.move_to_end(channel)
        history.append(payload)
        while len(self._history) > self.max_channels:
            evicted, _ = self._history.popitem(last=False)
            logger.debug(f"Dropped notification history for idle channel {evicted}")

    async def history(self, channel: str, limit: int = 50) -> List[Dict[str, Any]]:
        if channel not in self._history or limit <= 0:
            return []
        return list(self._history[channel])[-limit:]

    async def subscribe(self, channel: str) -> Subscription:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        self._subscribers[channel].add(queue)
        return _QueueSubscription(self, channel, queue)

    def _unsubscribe(self, channel: str, queue: asyncio.Queue) -> None:
        subscribers = self._subscribers.get(channel)
        if subscribers is None:
            return
        subscribers.discard(queue)
        if not subscribers:
            del self._subscribers[channel]

    def subscriber_count(self, channel: str) -> int:
        return len(self._subscribers.get(channel, ()))


class RedisFanout(NotificationFanout):
    """Redis pub/sub for push plus a capped list per channel for pull."""

    PREFIX = "notifications"

    def __init__(self, redis_url: str, history_limit: int = 200, history_ttl_seconds: int = 7 * 24 * 3600):
        self.redis_url = redis_url
        self.history_limit = history_limit
        self.history_ttl_seconds = history_ttl_seconds
        self.redis_client: Optional[redis.Redis] = None
        self.connection_pool: Optional[redis.ConnectionPool] = None

    async def _ensure_connection(self) -> redis.Redis:
        """Ensure Redis connection is established"""
        if self.redis_client is None:
            self.connection_pool = redis.ConnectionPool.from_url(
                self.redis_url,
                decode_responses=True,
                max_connections=20,
                retry_on_timeout=True,
                socket_connect_timeout=5.0,
                health_check_interval=30.0,
            )
            self.redis_client = redis.Redis(connection_pool=self.connection_pool)
            await self.redis_client.ping()
            logger.info("Redis notification fanout connected")
        return self.redis_client

    def _channel_key(self, channel: str) -> str:
        return f"{self.PREFIX}:{channel}"

    def _history_key(self, channel: str) -> str:
        return f"{self.PREFIX}:history:{channel}"

    async def publish(self, channel: str, event: Event) -> None:
        client = await self._ensure_connection()
        message = json.dumps(envelope(channel, event), default=str)
        async with client.pipeline(transaction=True) as pipe:
            pipe.publish(self._channel_key(channel), message)
            pipe.lpush(self._history_key(channel), message)
            pipe.ltrim(self._history_key(channel), 0, self.history_limit - 1)
            pipe.expire(self._history_key(channel), self.history_ttl_seconds)
            await pipe.execute()

    async def history(self, channel: str, limit: int = 50) -> List[Dict[str, Any]]:
        if limit <= 0:
            return []
        client = await self._ensure_connection()
        raw = await client.lrange(self._history_key(channel), 0, limit - 1)
        return [json.loads(item) for item in reversed(raw)]

    async def subscribe(self, channel: str) -> Subscription:
        client = await self._ensure_connection()
        pubsub = client.pubsub()
        await pubsub.subscribe(self._channel_key(channel))
        return _PubSubSubscription(pubsub, self._channel_key(channel))

    async def close(self) -> None:
        """Close Redis connection"""
        if self.redis_client:
            await self.redis_client.aclose()
            if self.connection_pool:
                await self.connection_pool.disconnect()
            self.redis_client = None
            logger.info("Redis notification fanout closed")


def build_fanout(
    backend: str,
    redis_url: Optional[str] = None,
    history_limit: int = 200,
    history_channels: int = 10000,
    history_ttl_seconds: int = 7 * 24 * 3600,
) -> NotificationFanout:
    if backend == "memory":
        return InMemoryFanout(history_limit=history_limit, max_channels=history_channels)
    if backend == "redis":
        if not redis_url:
            raise ValueError("REDIS_URL is required for the redis notification backend")
        return RedisFanout(redis_url, history_limit=history_limit, history_ttl_seconds=history_ttl_seconds)
    raise ValueError(f"Unknown notification backend '{backend}'")
