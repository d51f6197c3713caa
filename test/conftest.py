import os

os.environ.setdefault("LOG_TO_FILE", "false")
os.environ.setdefault("NOTIFICATION_BACKEND", "memory")
os.environ.setdefault("SUPABASE_MIRROR_ENABLED", "false")

import pytest

from helpers import make_promo
from order_coordinator.core.locks import KeyedLockManager
from order_coordinator.repositories.store import CoordinatorStore
from order_coordinator.services.geo.candidates import StaticCandidateLookup
from order_coordinator.services.notifications.fanout import InMemoryFanout
from order_coordinator.services.orders.coordinator import OrderCoordinator
from order_coordinator.services.promotions.ledger import PromoLedger


@pytest.fixture
def fanout():
    return InMemoryFanout()


@pytest.fixture
def geo():
    return StaticCandidateLookup({"default": ["rider-1", "rider-2"]})


@pytest.fixture
def coordinator(fanout, geo):
    return OrderCoordinator(fanout=fanout, geo=geo)


@pytest.fixture
def store():
    return CoordinatorStore()


@pytest.fixture
def ledger(store):
    return PromoLedger(store, KeyedLockManager(timeout_seconds=1))


@pytest.fixture
async def save10(coordinator):
    """10% off, capped at 3000, minimum order 20000."""
    return await coordinator.create_promo(
        make_promo("SAVE10", value=10, max_discount=3000, min_order_amount=20000)
    )
