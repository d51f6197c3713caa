import logging
import time
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from order_coordinator.main import create_app
from order_coordinator.models import utcnow

CUSTOMER = {"X-Actor-Role": "customer", "X-Actor-Id": "cust-1"}
OTHER_CUSTOMER = {"X-Actor-Role": "customer", "X-Actor-Id": "cust-2"}
RESTAURANT = {"X-Actor-Role": "restaurant", "X-Actor-Id": "rest-1"}
ADMIN = {"X-Actor-Role": "admin", "X-Actor-Id": "admin-1"}


def rider(rider_id):
    return {"X-Actor-Role": "rider", "X-Actor-Id": rider_id}


ORDER_BODY = {
    "restaurant_id": "rest-1",
    "items": [
        {"menu_item_id": "m-1", "name": "Kacchi Biryani", "quantity": 1, "unit_price": 25000},
        {"menu_item_id": "m-2", "name": "Borhani", "quantity": 2, "unit_price": 12500},
    ],
    "delivery_address": {"house_no": "12", "road_no": "5", "area": "Dhanmondi", "district": "Dhaka"},
    "payment_method": "bkash",
}


@pytest.fixture
def client(coordinator):
    with TestClient(create_app(coordinator)) as test_client:
        yield test_client


def create_order(client, **overrides):
    response = client.post("/api/v1/orders", json={**ORDER_BODY, **overrides}, headers=CUSTOMER)
    assert response.status_code == 201, response.text
    return response.json()


def move(client, order_id, status, headers):
    return client.post(f"/api/v1/orders/{order_id}/transitions", json={"status": status}, headers=headers)


def make_ready(client, order_id):
    for status in ("confirmed", "preparing", "ready"):
        assert move(client, order_id, status, RESTAURANT).status_code == 200


def create_save10(client):
    now = utcnow()
    response = client.post(
        "/api/v1/promo-codes",
        json={
            "code": "save10",
            "discount_type": "percentage",
            "value": 10,
            "max_discount": 3000,
            "min_order_amount": 20000,
            "usage_limit": {"total": 100, "per_user": 1},
            "valid_from": (now - timedelta(days=1)).isoformat(),
            "valid_until": (now + timedelta(days=30)).isoformat(),
        },
        headers=ADMIN,
    )
    assert response.status_code == 201, response.text
    return response.json()


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.headers["X-Request-ID"]


def test_create_order(client):
    order = create_order(client)

    assert order["customer_id"] == "cust-1"
    assert order["subtotal"] == 50000
    assert order["tax"] == 2500
    assert order["total"] == 57500
    assert order["status"] == "pending"
    assert order["items"][1]["line_total"] == 25000
    assert order["status_history"][0]["status"] == "pending"


def test_actor_headers_are_required(client):
    assert client.post("/api/v1/orders", json=ORDER_BODY).status_code == 401

    bad_role = client.post("/api/v1/orders", json=ORDER_BODY, headers={"X-Actor-Role": "chef", "X-Actor-Id": "x"})
    assert bad_role.status_code == 400

    as_rider = client.post("/api/v1/orders", json=ORDER_BODY, headers=rider("rider-1"))
    assert as_rider.status_code == 403


def test_invalid_order_body(client):
    response = client.post("/api/v1/orders", json={**ORDER_BODY, "payment_method": "paypal"}, headers=CUSTOMER)
    assert response.status_code == 422

    response = client.post("/api/v1/orders", json={**ORDER_BODY, "items": []}, headers=CUSTOMER)
    assert response.status_code == 422


def test_order_visibility(client):
    order = create_order(client)

    assert client.get(f"/api/v1/orders/{order['id']}", headers=CUSTOMER).status_code == 200
    assert client.get(f"/api/v1/orders/{order['id']}", headers=OTHER_CUSTOMER).status_code == 403
    assert client.get(f"/api/v1/orders/{order['id']}", headers=ADMIN).status_code == 200
    assert client.get("/api/v1/orders/missing", headers=ADMIN).status_code == 404


def test_illegal_transition_is_409(client):
    order = create_order(client)

    response = move(client, order["id"], "delivered", RESTAURANT)
    assert response.status_code == 409
    assert response.json()["detail"] == "Cannot move order from pending to delivered"

    response = move(client, order["id"], "teleported", RESTAURANT)
    assert response.status_code == 409

    history = client.get(f"/api/v1/orders/{order['id']}/history", headers=CUSTOMER).json()
    assert [h["status"] for h in history] == ["pending"]


def test_promo_flow(client):
    create_save10(client)

    preview = client.post(
        "/api/v1/promo-codes/validate",
        json={"code": "SAVE10", "order_amount": 50000, "restaurant_id": "rest-1"},
        headers=CUSTOMER,
    )
    assert preview.status_code == 200
    assert preview.json()["discount"] == 3000

    too_small = client.post(
        "/api/v1/promo-codes/validate",
        json={"code": "SAVE10", "order_amount": 1000, "restaurant_id": "rest-1"},
        headers=CUSTOMER,
    )
    assert too_small.status_code == 400
    assert too_small.json()["detail"]["reason"] == "below_minimum"

    order = create_order(client, promo_code="SAVE10")
    assert order["discount"] == 3000
    assert order["total"] == 54500

    unknown = client.post("/api/v1/orders", json={**ORDER_BODY, "promo_code": "NOPE"}, headers=CUSTOMER)
    assert unknown.status_code == 400
    assert unknown.json()["detail"]["message"] == "Invalid promo code"

    duplicate = client.post(
        "/api/v1/promo-codes",
        json={
            "code": "SAVE10",
            "discount_type": "fixed",
            "value": 100,
            "valid_from": utcnow().isoformat(),
            "valid_until": (utcnow() + timedelta(days=1)).isoformat(),
        },
        headers=ADMIN,
    )
    assert duplicate.status_code == 409


def test_promo_admin(client):
    create_save10(client)

    assert client.get("/api/v1/promo-codes", headers=CUSTOMER).status_code == 403

    listed = client.get("/api/v1/promo-codes", headers=ADMIN).json()
    assert [p["code"] for p in listed] == ["SAVE10"]

    patched = client.patch("/api/v1/promo-codes/SAVE10", json={"description": "Ten percent"}, headers=ADMIN)
    assert patched.json()["description"] == "Ten percent"

    toggled = client.post("/api/v1/promo-codes/save10/toggle", json={"is_active": False}, headers=ADMIN)
    assert toggled.json()["is_active"] is False

    stats = client.get("/api/v1/promo-codes/SAVE10/stats", headers=ADMIN).json()
    assert stats["usage_count"] == 0
    assert stats["remaining"] == 100

    assert client.get("/api/v1/promo-codes/GHOST", headers=ADMIN).status_code == 404


def test_active_promos_and_delete(client):
    create_save10(client)
    now = utcnow()
    client.post(
        "/api/v1/promo-codes",
        json={
            "code": "KACCHI50",
            "discount_type": "fixed",
            "value": 5000,
            "applicable_to": "specific_restaurants",
            "restaurants": ["rest-1"],
            "valid_from": (now - timedelta(days=1)).isoformat(),
            "valid_until": (now + timedelta(days=1)).isoformat(),
        },
        headers=ADMIN,
    )

    everywhere = client.get("/api/v1/promo-codes/active", headers=CUSTOMER)
    assert everywhere.status_code == 200
    assert [p["code"] for p in everywhere.json()] == ["SAVE10"]
    assert "usage_count" not in everywhere.json()[0]

    here = client.get("/api/v1/promo-codes/active", params={"restaurant_id": "rest-1"}, headers=CUSTOMER).json()
    assert {p["code"] for p in here} == {"SAVE10", "KACCHI50"}

    assert client.delete("/api/v1/promo-codes/SAVE10", headers=CUSTOMER).status_code == 403
    assert client.delete("/api/v1/promo-codes/save10", headers=ADMIN).status_code == 204
    assert client.delete("/api/v1/promo-codes/SAVE10", headers=ADMIN).status_code == 404
    assert client.get("/api/v1/promo-codes/SAVE10", headers=ADMIN).status_code == 404
    remaining = client.get("/api/v1/promo-codes/active", headers=CUSTOMER).json()
    assert remaining == []


def test_payment_history(client):
    first = create_order(client)
    second = create_order(client)
    client.post(
        "/api/v1/payments/checkout",
        json={"order_id": first["id"], "provider": "bkash", "transaction_ref": "TRX1"},
        headers=CUSTOMER,
    )
    client.post("/api/v1/orders", json=ORDER_BODY, headers=OTHER_CUSTOMER)

    page = client.get("/api/v1/payments/history", params={"limit": 1}, headers=CUSTOMER)
    assert page.status_code == 200
    body = page.json()
    assert (body["total"], body["page"], body["pages"]) == (2, 1, 2)
    assert [p["order_id"] for p in body["payments"]] == [second["id"]]

    last = client.get("/api/v1/payments/history", params={"page": 2, "limit": 1}, headers=CUSTOMER).json()
    assert [(p["order_id"], p["transaction_ref"]) for p in last["payments"]] == [(first["id"], "TRX1")]

    assert client.get("/api/v1/payments/history", params={"limit": 0}, headers=CUSTOMER).status_code == 422
    assert client.get("/api/v1/payments/history", headers=ADMIN).status_code == 403


def test_payment_callbacks(client):
    order = create_order(client)

    checkout = client.post(
        "/api/v1/payments/checkout",
        json={"order_id": order["id"], "provider": "bkash", "transaction_ref": "TRX1"},
        headers=CUSTOMER,
    )
    assert checkout.status_code == 200
    assert checkout.json()["status"] == "initiated"

    callback = {"transaction_ref": "TRX1", "status": "success", "payload": {"trxID": "TRX1"}}
    first = client.post("/api/v1/payments/callbacks/bkash", json=callback)
    assert first.status_code == 200
    assert first.json()["result"] == "applied"

    again = client.post("/api/v1/payments/callbacks/bkash", json=callback)
    assert again.json()["result"] == "ignored"

    conflict = client.post("/api/v1/payments/callbacks/bkash", json={**callback, "status": "failed"})
    assert conflict.status_code == 202
    assert conflict.json()["result"] == "conflict"

    unknown = client.post("/api/v1/payments/callbacks/bkash", json={"transaction_ref": "ZZZ", "status": "success"})
    assert unknown.status_code == 202

    payment = client.get(f"/api/v1/payments/orders/{order['id']}", headers=CUSTOMER).json()
    assert payment["status"] == "success"

    queue = client.get("/api/v1/admin/review-queue", headers=ADMIN).json()
    assert sorted(item["kind"] for item in queue) == ["status_conflict", "unknown_transaction"]

    refund = client.post(
        f"/api/v1/payments/{payment['id']}/refund",
        json={"amount": 5000, "reason": "Late delivery"},
        headers=ADMIN,
    )
    assert refund.status_code == 200
    assert refund.json()["refund"]["amount"] == 5000

    order_after = client.get(f"/api/v1/orders/{order['id']}", headers=CUSTOMER).json()
    assert order_after["payment_status"] == "refunded"
    assert order_after["status"] == "pending"


def test_refund_is_admin_only(client):
    order = create_order(client)
    payment = client.get(f"/api/v1/payments/orders/{order['id']}", headers=CUSTOMER).json()

    response = client.post(f"/api/v1/payments/{payment['id']}/refund", json={"reason": "x"}, headers=CUSTOMER)
    assert response.status_code == 403

    response = client.post(f"/api/v1/payments/{payment['id']}/refund", json={"reason": "x"}, headers=ADMIN)
    assert response.status_code == 409


def test_rider_flow(client):
    order = create_order(client)
    make_ready(client, order["id"])

    available = client.get("/api/v1/riders/available-orders", headers=rider("rider-1")).json()
    assert [o["id"] for o in available] == [order["id"]]

    won = client.post(f"/api/v1/riders/orders/{order['id']}/accept", headers=rider("rider-1"))
    assert won.status_code == 200
    assert won.json()["rider_id"] == "rider-1"

    lost = client.post(f"/api/v1/riders/orders/{order['id']}/accept", headers=rider("rider-2"))
    assert lost.status_code == 409
    assert lost.json()["detail"] == "Order already taken"

    assert client.get("/api/v1/riders/available-orders", headers=rider("rider-2")).json() == []

    released = client.post(
        f"/api/v1/admin/orders/{order['id']}/release-rider",
        json={"reason": "Rider unreachable"},
        headers=ADMIN,
    )
    assert released.status_code == 200
    assert released.json()["rider_id"] is None

    assert client.post(f"/api/v1/riders/orders/{order['id']}/accept", headers=rider("rider-2")).status_code == 200
    for status in ("picked_up", "on_the_way", "delivered"):
        assert move(client, order["id"], status, rider("rider-2")).status_code == 200

    rated = client.post(
        f"/api/v1/orders/{order['id']}/rating",
        json={"food_rating": 5, "delivery_rating": 4},
        headers=CUSTOMER,
    )
    assert rated.status_code == 200
    assert rated.json()["rating"]["food_rating"] == 5

    bad = client.post(
        f"/api/v1/orders/{order['id']}/rating",
        json={"food_rating": 7, "delivery_rating": 4},
        headers=CUSTOMER,
    )
    assert bad.status_code == 422


def test_cancel_requires_reason(client):
    order = create_order(client)

    missing = client.post(f"/api/v1/orders/{order['id']}/cancel", json={"reason": ""}, headers=CUSTOMER)
    assert missing.status_code == 422

    cancelled = client.post(f"/api/v1/orders/{order['id']}/cancel", json={"reason": "Ordered twice"}, headers=CUSTOMER)
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "cancelled"
    assert cancelled.json()["cancellation_reason"] == "Ordered twice"

    again = client.post(f"/api/v1/orders/{order['id']}/cancel", json={"reason": "Again"}, headers=CUSTOMER)
    assert again.status_code == 409


def test_customer_order_list(client):
    first = create_order(client)
    create_order(client)
    client.post(f"/api/v1/orders/{first['id']}/cancel", json={"reason": "Oops"}, headers=CUSTOMER)

    everything = client.get("/api/v1/customers/cust-1/orders", headers=CUSTOMER).json()
    assert len(everything) == 2

    cancelled = client.get("/api/v1/customers/cust-1/orders?order_status=cancelled", headers=CUSTOMER).json()
    assert [o["id"] for o in cancelled] == [first["id"]]

    assert client.get("/api/v1/customers/cust-1/orders", headers=OTHER_CUSTOMER).status_code == 403


def test_channel_history(client):
    order = create_order(client)
    make_ready(client, order["id"])

    feed = client.get(f"/api/v1/events/order:{order['id']}", headers=CUSTOMER)
    assert feed.status_code == 200
    assert [p["type"] for p in feed.json()] == ["order.created"] + ["order.status_changed"] * 3
    assert all(p["channel"] == f"order:{order['id']}" for p in feed.json())

    offers = client.get("/api/v1/events/rider:rider-1", headers=rider("rider-1")).json()
    assert offers[-1]["type"] == "order.available"

    assert client.get("/api/v1/events/rider:rider-1", headers=rider("rider-2")).status_code == 403
    assert client.get("/api/v1/events/admin", headers=CUSTOMER).status_code == 403
    assert client.get("/api/v1/events/admin", headers=ADMIN).status_code == 200


def test_websocket_subscription(client):
    with client.websocket_connect("/api/v1/events/ws/customer:cust-1", headers=CUSTOMER) as ws:
        assert ws.receive_json() == {"type": "subscribed", "channel": "customer:cust-1"}
        ws.send_text("ping")
        assert ws.receive_json() == {"type": "pong"}


def test_websocket_rejects_other_channels(client):
    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect("/api/v1/events/ws/customer:cust-1", headers=OTHER_CUSTOMER) as ws:
            ws.receive_json()


def test_websocket_close_releases_the_subscription(client, fanout):
    with client.websocket_connect("/api/v1/events/ws/customer:cust-1", headers=CUSTOMER) as ws:
        ws.receive_json()
        assert fanout.subscriber_count("customer:cust-1") == 1

    deadline = time.monotonic() + 2
    while fanout.subscriber_count("customer:cust-1") and time.monotonic() < deadline:
        time.sleep(0.01)
    assert fanout.subscriber_count("customer:cust-1") == 0


class ListHandler(logging.Handler):
    def __init__(self):
        super().__init__()
        self.records = []

    def emit(self, record):
        self.records.append(record)


def test_access_log_names_the_actor(client):
    handler = ListHandler()
    access_logger = logging.getLogger("order_coordinator.core.middleware")
    access_logger.addHandler(handler)
    try:
        response = client.get("/api/v1/customers/cust-1/orders", headers={**CUSTOMER, "X-Request-ID": "req-42"})
        client.post("/api/v1/payments/callbacks/bkash", json={"transaction_ref": "NOPE", "status": "success"})
    finally:
        access_logger.removeHandler(handler)

    assert response.headers["X-Request-ID"] == "req-42"
    customer_records = [r for r in handler.records if getattr(r, "request_id", None) == "req-42"]
    assert len(customer_records) == 2
    assert all((r.actor_role, r.actor_id) == ("customer", "cust-1") for r in customer_records)
    assert customer_records[-1].duration_ms >= 0
    assert "by customer:cust-1" in customer_records[-1].getMessage()

    callback_records = [r for r in handler.records if r.getMessage().startswith("Request: POST /api/v1/payments/callbacks")]
    assert callback_records[0].actor_role is None
    assert "by anonymous" in callback_records[0].getMessage()
