"""Coordinator exceptions.

Only lookups of things that do not exist and infrastructure faults are raised;
business outcomes travel as result objects (see ``models.results``).
"""


class CoordinatorError(Exception):
    """Base class for coordinator exceptions."""


class OrderNotFound(CoordinatorError):
    def __init__(self, order_id: str):
        super().__init__(f"Order {order_id} not found")
        self.order_id = order_id


class PaymentNotFound(CoordinatorError):
    def __init__(self, payment_id: str):
        super().__init__(f"Payment {payment_id} not found")
        self.payment_id = payment_id


class PromoCodeNotFound(CoordinatorError):
    def __init__(self, code: str):
        super().__init__(f"Promo code {code} not found")
        self.code = code


class DuplicatePromoCode(CoordinatorError):
    def __init__(self, code: str):
        super().__init__(f"Promo code {code} already exists")
        self.code = code


class CoordinatorUnavailable(CoordinatorError):
    """
    Infrastructure fault (lock wait exceeded, storage unreachable).

    Safe to retry with the same idempotency key: order id or
    gateway transaction reference.
    """

    retry_after_seconds = 1
