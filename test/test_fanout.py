import pytest

from helpers import make_order
from order_coordinator.services.notifications import events
from order_coordinator.services.notifications.fanout import InMemoryFanout, build_fanout


@pytest.fixture
def event():
    return events.order_created(make_order())


async def test_history_is_capped_per_channel(event):
    fanout = InMemoryFanout(history_limit=3)
    for _ in range(5):
        await fanout.publish("order:1", event)

    history = await fanout.history("order:1", limit=10)

    assert len(history) == 3
    assert history[-1]["channel"] == "order:1"
    assert history[-1]["event_id"] == event.id
    assert await fanout.history("order:1", limit=0) == []
    assert await fanout.history("order:unknown") == []


async def test_idle_channels_lose_history_first(event):
    fanout = InMemoryFanout(max_channels=2)
    await fanout.publish("order:a", event)
    await fanout.publish("order:b", event)
    await fanout.publish("order:a", event)
    await fanout.publish("order:c", event)

    assert await fanout.history("order:b") == []
    assert len(await fanout.history("order:a")) == 2
    assert len(await fanout.history("order:c")) == 1


async def test_subscribers_receive_only_their_channel(event):
    fanout = InMemoryFanout()
    subscription = await fanout.subscribe("customer:cust-1")

    await fanout.publish("customer:cust-2", event)
    await fanout.publish("customer:cust-1", event)

    payload = await subscription.__anext__()
    assert payload["channel"] == "customer:cust-1"
    assert subscription.queue.empty()

    await subscription.close()
    assert fanout.subscriber_count("customer:cust-1") == 0


def test_build_fanout_backends():
    fanout = build_fanout("memory", history_limit=5, history_channels=7)
    assert (fanout.history_limit, fanout.max_channels) == (5, 7)

    with pytest.raises(ValueError):
        build_fanout("redis")
    with pytest.raises(ValueError):
        build_fanout("kafka")
