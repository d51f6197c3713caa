import asyncio
import re
from datetime import timedelta

import pytest

from helpers import CUSTOMER, RESTAURANT, advance_to_ready, make_address, make_items, pay, place_order
from order_coordinator.models import OrderItem, OrderStatus, PaymentMethod, PaymentRecordStatus, PaymentStatus
from order_coordinator.models.results import CancelOutcome, RatingOutcome, RejectionReason
from order_coordinator.services.geo.candidates import StaticCandidateLookup
from order_coordinator.services.notifications.fanout import InMemoryFanout
from order_coordinator.services.orders.coordinator import OrderCoordinator


class RecordingMirror:
    def __init__(self):
        self.rows = []
        self.deleted = []

    async def upsert(self, records):
        self.rows.extend(records)

    async def delete(self, record):
        self.deleted.append(record)


class StallingMirror(RecordingMirror):
    """Holds the first confirmed order row until released."""

    def __init__(self):
        super().__init__()
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def upsert(self, records):
        for record in records:
            if record.table_name == "orders" and record.status is OrderStatus.CONFIRMED and not self.entered.is_set():
                self.entered.set()
                await self.release.wait()
        await super().upsert(records)


class BrokenFanout(InMemoryFanout):
    async def publish(self, channel, event):
        raise ConnectionError("redis down")


class BrokenMirror:
    async def upsert(self, records):
        raise ConnectionError("supabase down")

    async def delete(self, record):
        raise ConnectionError("supabase down")


async def test_create_order_prices_with_promo(coordinator, save10, fanout):
    result = await coordinator.create_order(
        customer_id=CUSTOMER,
        restaurant_id=RESTAURANT,
        items=make_items(50000),
        address=make_address(),
        payment_method="bkash",
        promo_code="save10",
    )

    assert result.ok
    order = result.order
    assert re.match(r"^KL\d{12}$", order.order_number)
    assert (order.subtotal, order.discount, order.delivery_fee, order.tax) == (50000, 3000, 5000, 2500)
    assert order.total == 54500
    assert order.promo_code == "SAVE10"
    assert order.status is OrderStatus.PENDING
    assert order.payment_status is PaymentStatus.PENDING
    assert [h.status for h in order.status_history] == [OrderStatus.PENDING]
    assert result.payment.amount == 54500

    created = await fanout.history(f"restaurant:{RESTAURANT}")
    assert created[-1]["type"] == "order.created"
    assert created[-1]["event_id"]


async def test_order_numbers_are_unique(coordinator):
    numbers = {(await place_order(coordinator)).order_number for _ in range(5)}
    assert len(numbers) == 5


async def test_customizations_are_priced(coordinator):
    from order_coordinator.models import Customization

    items = [
        OrderItem(
            menu_item_id="m-1",
            name="Burger",
            quantity=2,
            unit_price=30000,
            customizations=[Customization(name="Cheese", option="Extra", price_delta=5000)],
        )
    ]
    result = await coordinator.create_order(CUSTOMER, RESTAURANT, items, make_address(), PaymentMethod.CARD)

    assert result.order.subtotal == 70000
    assert result.order.tax == 3500


async def test_rejected_promo_creates_nothing(coordinator, save10):
    result = await coordinator.create_order(
        CUSTOMER, RESTAURANT, make_items(10000), make_address(), "bkash", promo_code="SAVE10"
    )

    assert not result.ok
    assert result.promo.reason is RejectionReason.BELOW_MINIMUM
    assert coordinator.list_customer_orders(CUSTOMER) == []


@pytest.mark.parametrize(
    "method,items",
    [
        ("paypal", make_items()),
        ("bkash", []),
        ("bkash", [OrderItem(menu_item_id="m", name="Tea", quantity=0, unit_price=100)]),
        ("bkash", [OrderItem(menu_item_id="m", name="Tea", quantity=1, unit_price=-1)]),
    ],
)
async def test_bad_orders_raise(coordinator, method, items):
    with pytest.raises(ValueError):
        await coordinator.create_order(CUSTOMER, RESTAURANT, items, make_address(), method)


async def test_first_order_promo_only_once(coordinator):
    from helpers import make_promo
    from order_coordinator.models import PromoScope

    await coordinator.create_promo(make_promo("HELLO", value=20, applicable_to=PromoScope.FIRST_ORDER))

    first = await place_order(coordinator, promo_code="HELLO")
    assert first.discount == 10000

    second = await coordinator.create_order(
        CUSTOMER, RESTAURANT, make_items(), make_address(), "bkash", promo_code="HELLO"
    )
    assert second.promo.reason is RejectionReason.FIRST_ORDER_ONLY


async def test_pending_cancel_leaves_promo_unused(coordinator, save10):
    order = await place_order(coordinator, promo_code="SAVE10")

    result = await coordinator.cancel_order(order.id, "customer", CUSTOMER, "Changed my mind")

    assert result.outcome is CancelOutcome.CANCELLED
    assert result.order.cancellation_reason == "Changed my mind"
    assert coordinator.promotions.stats("SAVE10")["usage_count"] == 0


async def test_paid_cancel_keeps_promo_and_payment(coordinator, save10):
    order = await place_order(coordinator, promo_code="SAVE10")
    await pay(coordinator, order.id, "TRX1")
    await coordinator.transition_order(order.id, "restaurant", RESTAURANT, OrderStatus.CONFIRMED)

    result = await coordinator.cancel_order(order.id, "restaurant", RESTAURANT, "Out of stock")

    assert result.ok
    assert result.order.payment_status is PaymentStatus.PAID
    assert coordinator.promotions.stats("SAVE10")["usage_count"] == 1


async def test_cancel_without_permission(coordinator):
    order = await place_order(coordinator)
    await coordinator.transition_order(order.id, "restaurant", RESTAURANT, OrderStatus.CONFIRMED)

    result = await coordinator.cancel_order(order.id, "customer", CUSTOMER, "Too late?")

    assert result.outcome is CancelOutcome.INVALID_TRANSITION
    assert result.order.status is OrderStatus.CONFIRMED


async def test_full_lifecycle(coordinator, fanout):
    order = await place_order(coordinator)
    await pay(coordinator, order.id, "TRX1")

    ready = await advance_to_ready(coordinator, order.id)
    assert ready.status is OrderStatus.READY
    for rider in ("rider-1", "rider-2"):
        offers = await fanout.history(f"rider:{rider}")
        assert [p["type"] for p in offers] == ["order.available"]
        assert offers[0]["data"]["order_id"] == order.id

    assert (await coordinator.accept_order(order.id, "rider-1")).ok
    for target in (OrderStatus.PICKED_UP, OrderStatus.ON_THE_WAY, OrderStatus.DELIVERED):
        result = await coordinator.transition_order(order.id, "rider", "rider-1", target)
        assert result.ok, result.reason

    delivered = coordinator.get_order(order.id)
    assert delivered.status is OrderStatus.DELIVERED
    assert delivered.delivered_at is not None
    assert [h.status for h in coordinator.order_history(order.id)] == [
        OrderStatus.PENDING,
        OrderStatus.CONFIRMED,
        OrderStatus.PREPARING,
        OrderStatus.READY,
        OrderStatus.PICKED_UP,
        OrderStatus.ON_THE_WAY,
        OrderStatus.DELIVERED,
    ]
    assert delivered.totals_consistent()

    customer_feed = await fanout.history(f"customer:{CUSTOMER}", limit=100)
    changes = [p["data"]["new_status"] for p in customer_feed if p["type"] == "order.status_changed"]
    assert changes == ["confirmed", "preparing", "ready", "picked_up", "on_the_way", "delivered"]

    rider_feed = await fanout.history("rider:rider-1", limit=100)
    assert "order.rider_assigned" in [p["type"] for p in rider_feed]

    admin_feed = await fanout.history("admin", limit=100)
    assert len([p for p in admin_feed if p["type"] == "order.status_changed"]) == 6

    late = await coordinator.transition_order(order.id, "admin", "admin-1", OrderStatus.CANCELLED, "Too late")
    assert late.reason == "Order is already delivered"


async def test_no_nearby_riders_is_not_an_error(fanout):
    coordinator = OrderCoordinator(fanout=fanout, geo=StaticCandidateLookup())
    order = await place_order(coordinator)

    ready = await advance_to_ready(coordinator, order.id)

    assert ready.status is OrderStatus.READY
    assert [o.id for o in coordinator.list_assignable_orders()] == [order.id]


async def test_rating_rules(coordinator):
    order = await place_order(coordinator)

    early = await coordinator.rate_order(order.id, CUSTOMER, 5, 5)
    assert early.reason == "Only delivered orders can be rated"

    await advance_to_ready(coordinator, order.id)
    await coordinator.accept_order(order.id, "rider-1")
    for target in (OrderStatus.PICKED_UP, OrderStatus.ON_THE_WAY, OrderStatus.DELIVERED):
        await coordinator.transition_order(order.id, "rider", "rider-1", target)

    assert (await coordinator.rate_order(order.id, CUSTOMER, 6, 5)).outcome is RatingOutcome.INVALID_STATE
    assert (await coordinator.rate_order(order.id, "cust-2", 5, 5)).reason == "Order belongs to another customer"

    rated = await coordinator.rate_order(order.id, CUSTOMER, 4, 5, review="Hot and fast")
    assert rated.outcome is RatingOutcome.RATED
    assert rated.order.rating.food_rating == 4
    assert rated.order.rating.review == "Hot and fast"

    again = await coordinator.rate_order(order.id, CUSTOMER, 1, 1)
    assert again.reason == "Order has already been rated"


async def test_customer_order_listing(coordinator):
    first = await place_order(coordinator)
    second = await place_order(coordinator)
    await place_order(coordinator, customer_id="cust-2")
    await coordinator.cancel_order(first.id, "customer", CUSTOMER, "Duplicate")

    listed = coordinator.list_customer_orders(CUSTOMER)
    assert [o.id for o in listed] == [second.id, first.id]
    cancelled = coordinator.list_customer_orders(CUSTOMER, OrderStatus.CANCELLED)
    assert [o.id for o in cancelled] == [first.id]


async def test_snapshots_are_detached(coordinator):
    order = await place_order(coordinator)

    copy = coordinator.get_order(order.id)
    copy.status = OrderStatus.DELIVERED

    assert coordinator.get_order(order.id).status is OrderStatus.PENDING


async def test_committed_rows_are_mirrored(fanout, geo):
    mirror = RecordingMirror()
    coordinator = OrderCoordinator(fanout=fanout, geo=geo, mirror=mirror)

    order = await place_order(coordinator)
    await pay(coordinator, order.id, "TRX1")

    tables = [row.table_name for row in mirror.rows]
    assert tables.count("orders") >= 3
    assert "payments" in tables
    assert mirror.rows[-1].payment_status is PaymentStatus.PAID


async def test_mirror_keeps_the_latest_row_when_writes_overlap(fanout, geo):
    mirror = StallingMirror()
    coordinator = OrderCoordinator(fanout=fanout, geo=geo, mirror=mirror)
    order = await place_order(coordinator)

    slow = asyncio.create_task(
        coordinator.transition_order(order.id, "restaurant", RESTAURANT, OrderStatus.CONFIRMED)
    )
    await mirror.entered.wait()
    fast = asyncio.create_task(
        coordinator.transition_order(order.id, "restaurant", RESTAURANT, OrderStatus.PREPARING)
    )
    while coordinator.get_order(order.id).status is not OrderStatus.PREPARING:
        await asyncio.sleep(0)
    for _ in range(5):
        await asyncio.sleep(0)
    mirror.release.set()
    results = await asyncio.gather(slow, fast)

    assert all(r.ok for r in results)
    order_rows = [row for row in mirror.rows if row.table_name == "orders"]
    assert [row.status for row in order_rows[-2:]] == [OrderStatus.CONFIRMED, OrderStatus.PREPARING]
    assert order_rows[-1].status is coordinator.get_order(order.id).status


async def test_sequenced_mirror_drops_older_snapshots():
    from helpers import make_order
    from order_coordinator.repositories.supabase_mirror import SequencedMirror

    inner = RecordingMirror()
    mirror = SequencedMirror(inner)
    older = make_order(OrderStatus.CONFIRMED)
    newer = older.snapshot()
    newer.record_status(OrderStatus.PREPARING)
    newer.updated_at = older.updated_at + timedelta(seconds=1)

    await mirror.upsert([newer])
    await mirror.upsert([older])

    assert [row.status for row in inner.rows] == [OrderStatus.PREPARING]

    await mirror.delete(newer)
    await mirror.upsert([older])
    assert inner.deleted == [newer]
    assert [row.status for row in inner.rows] == [OrderStatus.PREPARING, OrderStatus.CONFIRMED]


async def test_deleted_promo_is_removed_from_mirror(fanout, geo):
    from helpers import make_promo
    from order_coordinator.core.errors import PromoCodeNotFound

    mirror = RecordingMirror()
    coordinator = OrderCoordinator(fanout=fanout, geo=geo, mirror=mirror)
    await coordinator.create_promo(make_promo("GONE10"))

    deleted = await coordinator.delete_promo("gone10")

    assert deleted.code == "GONE10"
    assert [row.code for row in mirror.deleted] == ["GONE10"]
    with pytest.raises(PromoCodeNotFound):
        coordinator.promotions.get("GONE10")
    with pytest.raises(PromoCodeNotFound):
        await coordinator.delete_promo("GONE10")


async def test_customer_payment_history_is_paged(coordinator):
    first = await place_order(coordinator)
    await coordinator.begin_checkout(first.id, "bkash", "TRX1")
    await coordinator.handle_payment_callback("bkash", "TRX1", "failed")
    await pay(coordinator, first.id, "TRX2")
    second = await place_order(coordinator)
    await place_order(coordinator, customer_id="cust-2")

    page, total = coordinator.list_customer_payments(CUSTOMER, page=1, limit=2)
    rest, _ = coordinator.list_customer_payments(CUSTOMER, page=2, limit=2)

    assert total == 3
    assert [p.order_id for p in page] == [second.id, first.id]
    assert (page[1].status, page[1].transaction_ref) == (PaymentRecordStatus.SUCCESS, "TRX2")
    assert [(p.order_id, p.transaction_ref) for p in rest] == [(first.id, "TRX1")]
    assert coordinator.list_customer_payments(CUSTOMER, page=3, limit=2) == ([], 3)


async def test_side_effect_failures_do_not_change_results(geo):
    coordinator = OrderCoordinator(fanout=BrokenFanout(), geo=geo, mirror=BrokenMirror())

    order = await place_order(coordinator)
    await advance_to_ready(coordinator, order.id)
    accepted = await coordinator.accept_order(order.id, "rider-1")

    assert accepted.ok
    assert coordinator.get_order(order.id).rider_id == "rider-1"


def test_actor_visibility(coordinator):
    from helpers import make_order
    from order_coordinator.models import ActorRole

    pending = make_order()
    ready = make_order(OrderStatus.READY)
    taken = make_order(OrderStatus.READY, rider_id="rider-1")

    assert coordinator.is_actor(pending, ActorRole.CUSTOMER, CUSTOMER)
    assert not coordinator.is_actor(pending, ActorRole.CUSTOMER, "cust-2")
    assert coordinator.is_actor(pending, ActorRole.RESTAURANT, RESTAURANT)
    assert coordinator.is_actor(pending, ActorRole.ADMIN, "admin-1")
    assert not coordinator.is_actor(pending, ActorRole.RIDER, "rider-1")
    assert coordinator.is_actor(ready, ActorRole.RIDER, "rider-9")
    assert coordinator.is_actor(taken, ActorRole.RIDER, "rider-1")
    assert not coordinator.is_actor(taken, ActorRole.RIDER, "rider-2")
