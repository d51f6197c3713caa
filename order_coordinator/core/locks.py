"""Per-key critical sections.

Usage:
    locks = KeyedLockManager(timeout_seconds=5)
    async with locks.hold(f"order:{order_id}"):
        # validate, mutate, append history

Different keys never contend. A key's lock is dropped once nobody holds or
waits for it, so the table only grows with in-flight work.
"""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict

from order_coordinator.core.errors import CoordinatorUnavailable

logger = logging.getLogger(__name__)


class KeyedLockManager:
    def __init__(self, timeout_seconds: float = 5.0):
        self.timeout_seconds = timeout_seconds
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] = self._users.get(key, 0) + 1
        try:
            try:
                await asyncio.wait_for(lock.acquire(), timeout=self.timeout_seconds)
            except asyncio.TimeoutError:
                logger.error(f"Timed out after {self.timeout_seconds}s waiting for {key}")
                raise CoordinatorUnavailable(f"Timed out waiting for {key}") from None
            try:
                yield
            finally:
                lock.release()
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


def order_lock_key(order_id: str) -> str:
    return f"order:{order_id}"
