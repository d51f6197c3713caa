"""Checkout pricing in minor units."""
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

from order_coordinator.models import OrderItem


@dataclass(frozen=True)
class PriceBreakdown:
    subtotal: int
    delivery_fee: int
    tax: int
    discount: int

    @property
    def total(self) -> int:
        return self.subtotal - self.discount + self.delivery_fee + self.tax


def compute_subtotal(items: Iterable[OrderItem]) -> int:
    return sum(item.line_total for item in items)


def compute_vat(amount: int, vat_percent: float) -> int:
    """VAT on ``amount``, rounded half-up to whole minor units."""
    raw = Decimal(amount) * Decimal(str(vat_percent)) / Decimal(100)
    return int(raw.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def price_order(items: Iterable[OrderItem], delivery_fee: int, vat_percent: float, discount: int = 0) -> PriceBreakdown:
    """VAT is charged on the subtotal before any promo discount."""
    subtotal = compute_subtotal(items)
    return PriceBreakdown(
        subtotal=subtotal,
        delivery_fee=delivery_fee,
        tax=compute_vat(subtotal, vat_percent),
        discount=discount,
    )
