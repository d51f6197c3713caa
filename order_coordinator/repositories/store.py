"""Authoritative in-process store for orders, payments and promo codes.

The store does no locking of its own. Callers mutate records only inside the
critical section for the record's key (``order:<id>`` or ``promo:<CODE>``);
reads outside a critical section must go through ``snapshot()`` copies.
"""
from __future__ import annotations

import itertools
import time
from typing import Dict, List, Optional, Tuple

from order_coordinator.core.errors import OrderNotFound, PaymentNotFound, PromoCodeNotFound
from order_coordinator.models import (
    Order,
    OrderStatus,
    PaymentRecord,
    PromoCode,
    ReviewItem,
)


def gateway_key(provider: str, transaction_ref: str) -> Tuple[str, str]:
    return provider.strip().lower(), transaction_ref.strip()


class CoordinatorStore:
    def __init__(self, order_number_prefix: str = "KL"):
        self.order_number_prefix = order_number_prefix
        self._orders: Dict[str, Order] = {}
        self._payments: Dict[str, PaymentRecord] = {}
        self._active_payment: Dict[str, str] = {}
        self._gateway_index: Dict[Tuple[str, str], str] = {}
        self._promos: Dict[str, PromoCode] = {}
        self._review_queue: List[ReviewItem] = []
        self._sequence = itertools.count(1)

    # -------------------- orders --------------------

    def next_order_number(self) -> str:
        """``KL`` + last 8 digits of epoch millis + 4-digit sequence."""
        millis = str(int(time.time() * 1000))[-8:]
        return f"{self.order_number_prefix}{millis}{next(self._sequence):04d}"

    def add_order(self, order: Order) -> None:
        if order.id in self._orders:
            raise ValueError(f"Order {order.id} already exists")
        self._orders[order.id] = order

    def get_order(self, order_id: str) -> Order:
        order = self._orders.get(order_id)
        if order is None:
            raise OrderNotFound(order_id)
        return order

    def orders_for_customer(self, customer_id: str, status: Optional[OrderStatus] = None) -> List[Order]:
        orders = [
            o for o in self._orders.values()
            if o.customer_id == customer_id and (status is None or o.status == status)
        ]
        return sorted(orders, key=lambda o: o.created_at, reverse=True)

    def has_prior_orders(self, customer_id: str) -> bool:
        return any(
            o.customer_id == customer_id and o.status != OrderStatus.CANCELLED
            for o in self._orders.values()
        )

    def assignable_orders(self) -> List[Order]:
        orders = [
            o for o in self._orders.values()
            if o.status == OrderStatus.READY and o.rider_id is None
        ]
        return sorted(orders, key=lambda o: o.created_at)

    # -------------------- payments --------------------

    def add_payment(self, payment: PaymentRecord) -> None:
        previous_id = self._active_payment.get(payment.order_id)
        if previous_id is not None:
            self._payments[previous_id].is_active = False
        self._payments[payment.id] = payment
        self._active_payment[payment.order_id] = payment.id
        if payment.provider and payment.transaction_ref:
            self.bind_gateway_ref(payment, payment.provider, payment.transaction_ref)

    def get_payment(self, payment_id: str) -> PaymentRecord:
        payment = self._payments.get(payment_id)
        if payment is None:
            raise PaymentNotFound(payment_id)
        return payment

    def payments_for_customer(self, customer_id: str) -> List[PaymentRecord]:
        # newest first, ties broken by insertion order
        payments = [p for p in reversed(self._payments.values()) if p.customer_id == customer_id]
        return sorted(payments, key=lambda p: p.created_at, reverse=True)

    def active_payment_for_order(self, order_id: str) -> Optional[PaymentRecord]:
        payment_id = self._active_payment.get(order_id)
        return self._payments.get(payment_id) if payment_id else None

    def gateway_ref_owner(self, provider: str, transaction_ref: str) -> Optional[str]:
        return self._gateway_index.get(gateway_key(provider, transaction_ref))

    def bind_gateway_ref(self, payment: PaymentRecord, provider: str, transaction_ref: str) -> None:
        key = gateway_key(provider, transaction_ref)
        owner = self._gateway_index.get(key)
        if owner is not None and owner != payment.id:
            raise ValueError(f"Transaction {provider}:{transaction_ref} belongs to another payment")
        # a rebound record must stop answering to its old reference
        previous = (payment.provider, payment.transaction_ref)
        if previous != key and self._gateway_index.get(previous) == payment.id:
            del self._gateway_index[previous]
        payment.provider, payment.transaction_ref = key
        self._gateway_index[key] = payment.id

    def find_payment_by_gateway_ref(self, provider: str, transaction_ref: str) -> Optional[PaymentRecord]:
        payment_id = self.gateway_ref_owner(provider, transaction_ref)
        return self._payments.get(payment_id) if payment_id else None

    # -------------------- promo codes --------------------

    def add_promo(self, promo: PromoCode) -> None:
        self._promos[promo.code] = promo

    def find_promo(self, code: str) -> Optional[PromoCode]:
        return self._promos.get(code.strip().upper())

    def get_promo(self, code: str) -> PromoCode:
        promo = self.find_promo(code)
        if promo is None:
            raise PromoCodeNotFound(code)
        return promo

    def remove_promo(self, code: str) -> PromoCode:
        promo = self.get_promo(code)
        del self._promos[promo.code]
        return promo

    def list_promos(self, is_active: Optional[bool] = None) -> List[PromoCode]:
        promos = [p for p in reversed(self._promos.values()) if is_active is None or p.is_active == is_active]
        return sorted(promos, key=lambda p: p.created_at, reverse=True)

    # -------------------- review queue --------------------

    def add_review_item(self, item: ReviewItem) -> None:
        self._review_queue.append(item)

    def review_items(self) -> List[ReviewItem]:
        return list(self._review_queue)
