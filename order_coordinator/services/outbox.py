"""Side effects collected inside a critical section and flushed after release."""
from dataclasses import dataclass, field
from typing import Iterable, List, Tuple

from order_coordinator.models import StoredModel
from order_coordinator.services.notifications.events import Event

ADMIN_CHANNEL = "admin"


@dataclass
class Outbox:
    """
    Events and committed rows produced by one coordinator call.

    Nothing here touches the network. The coordinator flushes the outbox once
    every lock taken for the call has been released.
    """

    events: List[Tuple[Tuple[str, ...], Event]] = field(default_factory=list)
    rows: List[StoredModel] = field(default_factory=list)

    def publish(self, channels: Iterable[str], event: Event) -> None:
        self.events.append((tuple(channels), event))

    def mirror(self, record: StoredModel) -> None:
        """Queue a snapshot of ``record`` for the persistence mirror."""
        self.rows.append(record.snapshot())

    def __bool__(self) -> bool:
        return bool(self.events or self.rows)
