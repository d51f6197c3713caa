"""Nearby rider lookup."""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional


@dataclass(frozen=True)
class RestaurantLocation:
    restaurant_id: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class GeoCandidateLookup(ABC):
    """
    Oracle answering "which riders should hear about this order?".

    Called after an order becomes ready, outside any critical section. The
    answer only decides who is notified; it never decides who wins the order.
    """

    @abstractmethod
    async def nearby_riders(self, restaurant_location: RestaurantLocation, zone: str) -> List[str]:
        ...


class StaticCandidateLookup(GeoCandidateLookup):
    """Riders registered per zone; used when no geo service is wired in."""

    def __init__(self, riders_by_zone: Optional[Dict[str, Iterable[str]]] = None):
        self._zones: Dict[str, List[str]] = {
            zone: list(riders) for zone, riders in (riders_by_zone or {}).items()
        }

    def register(self, zone: str, rider_id: str) -> None:
        riders = self._zones.setdefault(zone, [])
        if rider_id not in riders:
            riders.append(rider_id)

    def unregister(self, zone: str, rider_id: str) -> None:
        riders = self._zones.get(zone, [])
        if rider_id in riders:
            riders.remove(rider_id)

    async def nearby_riders(self, restaurant_location: RestaurantLocation, zone: str) -> List[str]:
        return list(self._zones.get(zone, []))
