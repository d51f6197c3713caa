"""Builders shared by the test modules."""
from datetime import timedelta
from typing import List, Optional

from order_coordinator.models import (
    DeliveryAddress,
    DiscountType,
    Order,
    OrderItem,
    OrderStatus,
    PaymentMethod,
    PromoCode,
    UsageLimit,
    utcnow,
)

CUSTOMER = "cust-1"
RESTAURANT = "rest-1"


def make_items(subtotal: int = 50000) -> List[OrderItem]:
    """Two lines adding up to ``subtotal`` (even amounts only)."""
    half = subtotal // 2
    return [
        OrderItem(menu_item_id="m-1", name="Kacchi Biryani", quantity=1, unit_price=half),
        OrderItem(menu_item_id="m-2", name="Borhani", quantity=2, unit_price=half // 2),
    ]


def make_address() -> DeliveryAddress:
    return DeliveryAddress(label="Home", house_no="12", road_no="5", area="Dhanmondi", district="Dhaka")


def make_promo(
    code: str,
    value: int = 10,
    discount_type: DiscountType = DiscountType.PERCENTAGE,
    max_discount: Optional[int] = None,
    min_order_amount: int = 0,
    total: Optional[int] = None,
    per_user: int = 1,
    **fields,
) -> PromoCode:
    now = utcnow()
    fields.setdefault("valid_from", now - timedelta(days=1))
    fields.setdefault("valid_until", now + timedelta(days=1))
    return PromoCode(
        code=code,
        discount_type=discount_type,
        value=value,
        max_discount=max_discount,
        min_order_amount=min_order_amount,
        usage_limit=UsageLimit(total=total, per_user=per_user),
        **fields,
    )


def make_order(status: OrderStatus = OrderStatus.PENDING, rider_id: Optional[str] = None) -> Order:
    order = Order(
        id=Order.generate_uuid(),
        order_number="KL123456780001",
        customer_id=CUSTOMER,
        restaurant_id=RESTAURANT,
        items=make_items(),
        delivery_address=make_address(),
        payment_method=PaymentMethod.BKASH,
        subtotal=50000,
        delivery_fee=5000,
        tax=2500,
        discount=3000,
        rider_id=rider_id,
    )
    order.record_status(OrderStatus.PENDING, "Order placed")
    if status != OrderStatus.PENDING:
        order.record_status(status)
    return order


async def place_order(coordinator, customer_id: str = CUSTOMER, method: PaymentMethod = PaymentMethod.BKASH,
                      promo_code: Optional[str] = None, subtotal: int = 50000):
    result = await coordinator.create_order(
        customer_id=customer_id,
        restaurant_id=RESTAURANT,
        items=make_items(subtotal),
        address=make_address(),
        payment_method=method,
        promo_code=promo_code,
    )
    assert result.ok, result.promo
    return result.order


async def advance_to_ready(coordinator, order_id: str) -> Order:
    for target in (OrderStatus.CONFIRMED, OrderStatus.PREPARING, OrderStatus.READY):
        result = await coordinator.transition_order(order_id, "restaurant", RESTAURANT, target)
        assert result.ok, result.reason
    return result.order


async def pay(coordinator, order_id: str, ref: str, provider: str = "bkash"):
    checkout = await coordinator.begin_checkout(order_id, provider, ref)
    assert checkout.ok, checkout.reason
    return await coordinator.handle_payment_callback(provider, ref, "success", {"trxID": ref})
