"""Promo code validation and redemption accounting."""
import logging
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Dict, List, Optional

from order_coordinator.core.locks import KeyedLockManager
from order_coordinator.models import DiscountType, PromoCode, PromoScope, UsageLimit, utcnow
from order_coordinator.models.base import as_utc
from order_coordinator.models.results import (
    CommitOutcome,
    PromoOutcome,
    PromoValidation,
    RejectionReason,
)
from order_coordinator.core.errors import DuplicatePromoCode
from order_coordinator.repositories.store import CoordinatorStore

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = {
    "description",
    "value",
    "min_order_amount",
    "max_discount",
    "usage_limit",
    "valid_from",
    "valid_until",
    "applicable_to",
    "restaurants",
    "is_active",
}


def promo_lock_key(code: str) -> str:
    return f"promo:{code.strip().upper()}"


class PromoLedger:
    """
    Validates promo codes and commits their usage exactly once per order.

    Validation is a pure read used at checkout to price the order. Usage is
    committed only when the order's payment succeeds, inside the promo's own
    critical section, so abandoned or failed payments never consume a
    limited-use code.
    """

    def __init__(
        self,
        store: CoordinatorStore,
        locks: KeyedLockManager,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.locks = locks
        self.clock = clock

    # -------------------- validation --------------------

    def validate(
        self,
        code: str,
        user_id: str,
        order_amount: int,
        restaurant_id: str,
        is_first_order: bool,
    ) -> PromoValidation:
        """
        Check a code against an order's context and compute its discount.

        Args:
            code: Promo code as typed by the customer (case-insensitive)
            user_id: Customer placing the order
            order_amount: Order subtotal in minor units
            restaurant_id: Restaurant the order is placed with
            is_first_order: Whether the customer has no earlier live orders

        Returns:
            ``PromoValidation`` with the discount, or the rejection reason
        """
        normalized = code.strip().upper()
        promo = self.store.find_promo(normalized)
        if promo is None:
            return PromoValidation.rejected(normalized, RejectionReason.NOT_FOUND)
        if not promo.is_active:
            return PromoValidation.rejected(normalized, RejectionReason.INACTIVE)

        now = self.clock()
        if now < promo.valid_from:
            return PromoValidation.rejected(normalized, RejectionReason.NOT_YET_VALID)
        if now > promo.valid_until:
            return PromoValidation.rejected(normalized, RejectionReason.EXPIRED)

        if order_amount < promo.min_order_amount:
            return PromoValidation.rejected(normalized, RejectionReason.BELOW_MINIMUM)

        if promo.applicable_to == PromoScope.SPECIFIC_RESTAURANTS and restaurant_id not in promo.restaurants:
            return PromoValidation.rejected(normalized, RejectionReason.RESTAURANT_NOT_ELIGIBLE)
        if promo.applicable_to == PromoScope.FIRST_ORDER and not is_first_order:
            return PromoValidation.rejected(normalized, RejectionReason.FIRST_ORDER_ONLY)

        if promo.usage_limit.total is not None and promo.usage_count >= promo.usage_limit.total:
            return PromoValidation.rejected(normalized, RejectionReason.USAGE_LIMIT_REACHED)
        if promo.user_redemptions(user_id) >= promo.usage_limit.per_user:
            return PromoValidation.rejected(normalized, RejectionReason.USER_LIMIT_REACHED)

        return PromoValidation(
            outcome=PromoOutcome.DISCOUNT,
            code=normalized,
            discount=self.compute_discount(promo, order_amount),
        )

    @staticmethod
    def compute_discount(promo: PromoCode, order_amount: int) -> int:
        if promo.discount_type == DiscountType.PERCENTAGE:
            raw = Decimal(order_amount) * Decimal(promo.value) / Decimal(100)
            discount = int(raw.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
            if promo.max_discount is not None:
                discount = min(discount, promo.max_discount)
        else:
            discount = promo.value
        return max(0, min(discount, order_amount))

    # -------------------- commitment --------------------

    async def commit(self, code: str, order_id: str, user_id: str) -> CommitOutcome:
        """
        Count one redemption for ``order_id``.

        Idempotent per order. Refuses to go past the global or per-user limit
        even when many payments succeed at once; the caller keeps the order's
        discount and raises the overflow for review.
        """
        async with self.locks.hold(promo_lock_key(code)):
            promo = self.store.find_promo(code)
            if promo is None:
                logger.warning(f"Promo {code} vanished before commit for order {order_id}")
                return CommitOutcome.NOT_FOUND
            if order_id in promo.committed_orders:
                return CommitOutcome.ALREADY_COMMITTED
            if promo.usage_limit.total is not None and promo.usage_count >= promo.usage_limit.total:
                logger.warning(
                    f"Promo {promo.code} total limit reached; order {order_id} not counted",
                    extra={"promo_code": promo.code, "order_id": order_id},
                )
                return CommitOutcome.LIMIT_REACHED
            if promo.user_redemptions(user_id) >= promo.usage_limit.per_user:
                logger.warning(
                    f"Promo {promo.code} per-user limit reached for {user_id}; order {order_id} not counted",
                    extra={"promo_code": promo.code, "order_id": order_id},
                )
                return CommitOutcome.LIMIT_REACHED

            promo.usage_count += 1
            promo.redemptions[user_id] = promo.user_redemptions(user_id) + 1
            promo.committed_orders.add(order_id)
            promo.updated_at = utcnow()

        logger.info(
            f"Committed promo {promo.code} for order {order_id} ({promo.usage_count} used)",
            extra={"promo_code": promo.code, "order_id": order_id},
        )
        return CommitOutcome.COMMITTED

    async def reverse(self, code: str, order_id: str) -> bool:
        """
        Release the redemption held for a cancelled order.

        Usage is only counted at commitment, so an order cancelled before its
        payment succeeded holds nothing and this returns False. A committed
        redemption is kept: the customer paid the discounted price.
        """
        async with self.locks.hold(promo_lock_key(code)):
            promo = self.store.find_promo(code)
            committed = promo is not None and order_id in promo.committed_orders
        if committed:
            logger.info(
                f"Order {order_id} cancelled after paying with promo {code}; usage kept",
                extra={"promo_code": code, "order_id": order_id},
            )
        else:
            logger.debug(f"No committed usage of promo {code} for order {order_id}")
        return False

    def is_committed(self, code: str, order_id: str) -> bool:
        promo = self.store.find_promo(code)
        return promo is not None and order_id in promo.committed_orders

    # -------------------- administration --------------------

    async def create(self, promo: PromoCode) -> PromoCode:
        self._check_definition(promo)
        async with self.locks.hold(promo_lock_key(promo.code)):
            if self.store.find_promo(promo.code) is not None:
                raise DuplicatePromoCode(promo.code)
            self.store.add_promo(promo)
            snapshot = promo.snapshot()
        logger.info(f"Created promo code {promo.code}", extra={"promo_code": promo.code})
        return snapshot

    async def update(self, code: str, changes: Dict[str, Any]) -> PromoCode:
        """Apply admin edits; counters are never writable."""
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update fields: {', '.join(sorted(unknown))}")

        async with self.locks.hold(promo_lock_key(code)):
            promo = self.store.get_promo(code)
            candidate = promo.snapshot()
            for name, value in changes.items():
                if name == "usage_limit" and isinstance(value, dict):
                    value = UsageLimit(**value)
                elif name in ("valid_from", "valid_until"):
                    value = as_utc(value)
                setattr(candidate, name, value)
            self._check_definition(candidate)
            if candidate.usage_limit.total is not None and candidate.usage_limit.total < promo.usage_count:
                raise ValueError("Total usage limit cannot be below the current usage count")

            for name in changes:
                setattr(promo, name, getattr(candidate, name))
            promo.updated_at = utcnow()
            return promo.snapshot()

    async def set_active(self, code: str, is_active: bool) -> PromoCode:
        return await self.update(code, {"is_active": is_active})

    async def delete(self, code: str) -> PromoCode:
        async with self.locks.hold(promo_lock_key(code)):
            promo = self.store.remove_promo(code)
        logger.info(
            f"Deleted promo code {promo.code} after {promo.usage_count} uses",
            extra={"promo_code": promo.code},
        )
        return promo

    def get(self, code: str) -> PromoCode:
        return self.store.get_promo(code).snapshot()

    def active_codes(self, restaurant_id: Optional[str] = None) -> List[PromoCode]:
        """
        Codes a customer can currently see, newest first.

        Without a restaurant only codes valid everywhere are listed; with one,
        codes limited to that restaurant are included too.
        """
        now = self.clock()
        visible = []
        for promo in self.store.list_promos(is_active=True):
            if not promo.valid_from <= now <= promo.valid_until:
                continue
            if promo.applicable_to == PromoScope.SPECIFIC_RESTAURANTS and (
                restaurant_id is None or restaurant_id not in promo.restaurants
            ):
                continue
            visible.append(promo.snapshot())
        return visible

    def list_codes(self, is_active: Optional[bool] = None) -> List[PromoCode]:
        return [p.snapshot() for p in self.store.list_promos(is_active)]

    def stats(self, code: str) -> Dict[str, Any]:
        promo = self.store.get_promo(code)
        return {
            "code": promo.code,
            "usage_count": promo.usage_count,
            "usage_limit_total": promo.usage_limit.total,
            "usage_limit_per_user": promo.usage_limit.per_user,
            "remaining": promo.remaining,
            "unique_users": len(promo.redemptions),
            "redemptions": dict(promo.redemptions),
        }

    @staticmethod
    def _check_definition(promo: PromoCode) -> None:
        if promo.value <= 0:
            raise ValueError("Promo value must be positive")
        if promo.discount_type == DiscountType.PERCENTAGE and promo.value > 100:
            raise ValueError("Percentage promo value cannot exceed 100")
        if promo.discount_type == DiscountType.FIXED and promo.max_discount is not None:
            raise ValueError("max_discount only applies to percentage promos")
        if promo.valid_until <= promo.valid_from:
            raise ValueError("valid_until must be after valid_from")
        if promo.min_order_amount < 0:
            raise ValueError("min_order_amount cannot be negative")
        if promo.usage_limit.per_user < 1:
            raise ValueError("per_user limit must be at least 1")
        if promo.usage_limit.total is not None and promo.usage_limit.total < 1:
            raise ValueError("total limit must be at least 1")
        if promo.applicable_to == PromoScope.SPECIFIC_RESTAURANTS and not promo.restaurants:
            raise ValueError("specific_restaurants promos need at least one restaurant")
