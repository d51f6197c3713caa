"""
Write-behind mirror of committed records into Supabase.

The in-process store stays authoritative. Rows are upserted after the
critical section that produced them has been released; a failed write is
logged and never rolls anything back.
"""
import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, Optional, Protocol, Tuple

from order_coordinator.core.locks import KeyedLockManager
from order_coordinator.models import StoredModel

logger = logging.getLogger(__name__)

# conflict target per table
PRIMARY_KEYS = {
    "orders": "id",
    "payments": "id",
    "promo_codes": "code",
    "review_queue": "id",
}


class PersistenceMirror(Protocol):
    async def upsert(self, records: Iterable[StoredModel]) -> None:
        ...

    async def delete(self, record: StoredModel) -> None:
        ...


def row_key(record: StoredModel) -> Tuple[str, Any]:
    table = record.table_name
    return table, getattr(record, PRIMARY_KEYS.get(table, "id"))


class SupabaseMirror:
    """Upserts snapshots through the Supabase service client."""

    def __init__(self, client: Any):
        self.client = client

    async def upsert(self, records: Iterable[StoredModel]) -> None:
        for record in records:
            await self.upsert_one(record)

    async def upsert_one(self, record: StoredModel) -> bool:
        table = record.table_name
        on_conflict = PRIMARY_KEYS.get(table, "id")
        row = record.to_supabase_dict()
        try:
            # supabase-py is synchronous; keep its HTTP call off the event loop
            await asyncio.to_thread(
                lambda: self.client.table(table).upsert(row, on_conflict=on_conflict).execute()
            )
            logger.debug(f"Mirrored {table} row {row.get(on_conflict)}")
            return True
        except Exception as e:
            logger.error(f"Failed to mirror {table} row {row.get(on_conflict)}: {e}")
            return False

    async def delete(self, record: StoredModel) -> bool:
        table, value = row_key(record)
        column = PRIMARY_KEYS.get(table, "id")
        try:
            await asyncio.to_thread(
                lambda: self.client.table(table).delete().eq(column, value).execute()
            )
            logger.debug(f"Deleted mirrored {table} row {value}")
            return True
        except Exception as e:
            logger.error(f"Failed to delete mirrored {table} row {value}: {e}")
            return False


class SequencedMirror:
    """
    Keeps mirrored rows in commit order.

    Snapshots reach the mirror after the lock that produced them is released,
    so two calls on the same order can hand them over out of order. Writes for
    one row run one at a time and a snapshot older than the last one written
    for that row is dropped.
    """

    def __init__(self, inner: PersistenceMirror, lock_timeout_seconds: float = 30.0):
        self.inner = inner
        self.locks = KeyedLockManager(timeout_seconds=lock_timeout_seconds)
        self._written: Dict[Tuple[str, Any], datetime] = {}

    async def upsert(self, records: Iterable[StoredModel]) -> None:
        for record in records:
            key = row_key(record)
            async with self.locks.hold(f"mirror:{key[0]}:{key[1]}"):
                version = getattr(record, "updated_at", None)
                last = self._written.get(key)
                if version is not None and last is not None and version < last:
                    logger.debug(f"Skipped stale {key[0]} row {key[1]} from {version.isoformat()}")
                    continue
                await self.inner.upsert([record])
                if version is not None:
                    self._written[key] = version

    async def delete(self, record: StoredModel) -> None:
        key = row_key(record)
        async with self.locks.hold(f"mirror:{key[0]}:{key[1]}"):
            await self.inner.delete(record)
            self._written.pop(key, None)


def build_mirror(enabled: bool) -> Optional[SupabaseMirror]:
    if not enabled:
        return None
    from order_coordinator.config.database import get_supabase_service_client

    client = get_supabase_service_client()
    if client is None:
        return None
    return SupabaseMirror(client)
