"""
Order lifecycle coordinator.

The single entry point the HTTP layer talks to. Each call does its work inside
the per-order critical section (state machine, rider arbiter, payment
reconciler), then, with every lock released, commits promo usage, announces
ready orders to nearby riders, publishes events and mirrors committed rows.
"""
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from order_coordinator.config.settings import Settings
from order_coordinator.core.locks import KeyedLockManager, order_lock_key
from order_coordinator.models import (
    ActorRole,
    DeliveryAddress,
    Order,
    OrderItem,
    OrderRating,
    OrderStatus,
    PaymentMethod,
    PaymentRecord,
    PaymentStatus,
    PromoCode,
    ReviewItem,
    StatusHistoryEntry,
    utcnow,
)
from order_coordinator.models.results import (
    AcceptResult,
    CancelOutcome,
    CancelResult,
    CheckoutOutcome,
    CheckoutResult,
    CreateOrderResult,
    PromoValidation,
    RatingOutcome,
    RatingResult,
    ReconcileResult,
    RefundResult,
    ReleaseResult,
    TransitionResult,
)
from order_coordinator.repositories.store import CoordinatorStore
from order_coordinator.repositories.supabase_mirror import PersistenceMirror, SequencedMirror, build_mirror
from order_coordinator.services.geo.candidates import (
    GeoCandidateLookup,
    RestaurantLocation,
    StaticCandidateLookup,
)
from order_coordinator.services.notifications import events
from order_coordinator.services.notifications.fanout import (
    InMemoryFanout,
    NotificationFanout,
    build_fanout,
)
from order_coordinator.services.orders.pricing import price_order
from order_coordinator.services.orders.rider_arbiter import RiderAssignmentArbiter
from order_coordinator.services.orders.state_machine import OrderStateMachine
from order_coordinator.services.outbox import ADMIN_CHANNEL, Outbox
from order_coordinator.services.payments.reconciler import COD_PROVIDER, PaymentReconciler
from order_coordinator.services.promotions.ledger import PromoLedger

logger = logging.getLogger(__name__)


class OrderCoordinator:
    """Coordinates order status, rider assignment, payments and promo usage."""

    def __init__(
        self,
        store: Optional[CoordinatorStore] = None,
        fanout: Optional[NotificationFanout] = None,
        geo: Optional[GeoCandidateLookup] = None,
        mirror: Optional[PersistenceMirror] = None,
        *,
        delivery_fee: int = 5000,
        vat_percent: float = 5,
        rider_zone: str = "default",
        lock_timeout_seconds: float = 5.0,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store or CoordinatorStore()
        self.locks = KeyedLockManager(timeout_seconds=lock_timeout_seconds)
        self.fanout = fanout or InMemoryFanout()
        self.geo = geo or StaticCandidateLookup()
        self.mirror = SequencedMirror(mirror) if mirror is not None else None
        self.delivery_fee = delivery_fee
        self.vat_percent = vat_percent
        self.rider_zone = rider_zone

        self.state_machine = OrderStateMachine()
        self.promotions = PromoLedger(self.store, self.locks, clock=clock)
        self.arbiter = RiderAssignmentArbiter(self.store, self.locks)
        self.payments = PaymentReconciler(self.store, self.locks, self.promotions)

    @classmethod
    def from_settings(cls, settings: Settings, geo: Optional[GeoCandidateLookup] = None) -> "OrderCoordinator":
        return cls(
            store=CoordinatorStore(order_number_prefix=settings.ORDER_NUMBER_PREFIX),
            fanout=build_fanout(
                settings.NOTIFICATION_BACKEND,
                redis_url=settings.REDIS_URL,
                history_limit=settings.NOTIFICATION_HISTORY_LIMIT,
                history_channels=settings.NOTIFICATION_HISTORY_CHANNELS,
                history_ttl_seconds=settings.NOTIFICATION_HISTORY_TTL_SECONDS,
            ),
            geo=geo,
            mirror=build_mirror(settings.SUPABASE_MIRROR_ENABLED),
            delivery_fee=settings.DELIVERY_FEE,
            vat_percent=settings.VAT_PERCENT,
            rider_zone=settings.DEFAULT_RIDER_ZONE,
            lock_timeout_seconds=settings.ORDER_LOCK_TIMEOUT_SECONDS,
        )

    async def close(self) -> None:
        await self.fanout.close()

    # -------------------- orders --------------------

    async def create_order(
        self,
        customer_id: str,
        restaurant_id: str,
        items: Sequence[OrderItem],
        address: DeliveryAddress,
        payment_method: Any,
        promo_code: Optional[str] = None,
        special_instructions: Optional[str] = None,
    ) -> CreateOrderResult:
        """
        Price and place a new order together with its pending payment record.

        Item prices are the snapshots taken by the client at checkout. A promo
        code is only validated here; its usage is counted when the payment
        succeeds.

        Returns:
            ``CreateOrderResult`` with the order, or the promo rejection
        """
        method = PaymentMethod.parse(payment_method)
        if method is None:
            raise ValueError(f"Unknown payment method '{payment_method}'")
        if not items:
            raise ValueError("An order needs at least one item")
        for item in items:
            if item.quantity < 1:
                raise ValueError(f"Quantity for {item.name} must be at least 1")
            if item.unit_price < 0:
                raise ValueError(f"Price for {item.name} cannot be negative")

        pricing = price_order(items, self.delivery_fee, self.vat_percent)
        validation = None
        if promo_code:
            validation = self.validate_promo(promo_code, customer_id, pricing.subtotal, restaurant_id)
            if not validation.ok:
                logger.info(f"Order for {customer_id} rejected promo {validation.code}: {validation.reason.value}")
                return CreateOrderResult(promo=validation)

        order = Order(
            id=Order.generate_uuid(),
            order_number=self.store.next_order_number(),
            customer_id=customer_id,
            restaurant_id=restaurant_id,
            items=list(items),
            delivery_address=address,
            payment_method=method,
            subtotal=pricing.subtotal,
            delivery_fee=pricing.delivery_fee,
            tax=pricing.tax,
            discount=validation.discount if validation else 0,
            promo_code=validation.code if validation else None,
            special_instructions=special_instructions,
        )
        payment = PaymentRecord(
            id=PaymentRecord.generate_uuid(),
            order_id=order.id,
            customer_id=customer_id,
            amount=order.total,
            method=method,
        )
        if method == PaymentMethod.COD:
            payment.provider, payment.transaction_ref = COD_PROVIDER, order.order_number

        outbox = Outbox()
        async with self.locks.hold(order_lock_key(order.id)):
            order.record_status(OrderStatus.PENDING, "Order placed")
            self.store.add_order(order)
            self.store.add_payment(payment)
            outbox.publish(order.channels() + [ADMIN_CHANNEL], events.order_created(order))
            outbox.mirror(order)
            outbox.mirror(payment)
            result = CreateOrderResult(order=order.snapshot(), payment=payment.snapshot(), promo=validation)

        logger.info(
            f"Created order {order.order_number} total {order.total} for customer {customer_id}",
            extra={"order_id": order.id},
        )
        await self._flush(outbox)
        return result

    async def transition_order(
        self,
        order_id: str,
        actor_role: Any,
        actor_id: str,
        target_status: Any,
        note: Optional[str] = None,
    ) -> TransitionResult:
        outbox = Outbox()
        reverse_promo = None
        async with self.locks.hold(order_lock_key(order_id)):
            order = self.store.get_order(order_id)
            old_status = order.status
            result, event = self.state_machine.apply(order, actor_role, actor_id, target_status, note)
            if not result.ok:
                result.order = order.snapshot()
                return result

            channels = order.channels() + [ADMIN_CHANNEL]
            if order.status == OrderStatus.PICKED_UP:
                self.arbiter.drop(order.id)
            elif order.status == OrderStatus.CANCELLED:
                reverse_promo = self._cancellation_effects(order, old_status)

            outbox.publish(channels, event)
            outbox.mirror(order)
            result.order = order.snapshot()

        if reverse_promo is not None:
            await self.promotions.reverse(reverse_promo, order_id)
        if result.order.status == OrderStatus.READY:
            await self._announce_to_riders(result.order, outbox)
        await self._flush(outbox)
        return result

    def _cancellation_effects(self, order: Order, old_status: OrderStatus) -> Optional[str]:
        """
        Release the rider claim and report which promo to reverse.

        Payment is left as it is: a pending payment stays pending and a
        successful one is not refunded automatically.
        """
        assignment = self.arbiter.drop(order.id)
        if assignment is not None:
            logger.info(
                f"Released rider {assignment.rider_id} claim on cancelled order {order.id}",
                extra={"order_id": order.id, "rider_id": assignment.rider_id},
            )
        logger.info(
            f"Order {order.id} cancelled from {old_status.value}: {order.cancellation_reason}",
            extra={"order_id": order.id},
        )
        if order.promo_code and order.payment_status != PaymentStatus.PAID:
            return order.promo_code
        return None

    async def cancel_order(self, order_id: str, actor_role: Any, actor_id: str, reason: str) -> CancelResult:
        result = await self.transition_order(order_id, actor_role, actor_id, OrderStatus.CANCELLED, reason)
        if result.ok:
            return CancelResult(CancelOutcome.CANCELLED, order=result.order)
        return CancelResult(CancelOutcome.INVALID_TRANSITION, order=result.order, reason=result.reason)

    async def rate_order(
        self,
        order_id: str,
        customer_id: str,
        food_rating: int,
        delivery_rating: int,
        review: Optional[str] = None,
    ) -> RatingResult:
        """Record the customer's rating of a delivered order, once."""
        for value in (food_rating, delivery_rating):
            if not isinstance(value, int) or not 1 <= value <= 5:
                return RatingResult(RatingOutcome.INVALID_STATE, reason="Ratings must be between 1 and 5")

        outbox = Outbox()
        async with self.locks.hold(order_lock_key(order_id)):
            order = self.store.get_order(order_id)
            reason = None
            if order.customer_id != customer_id:
                reason = "Order belongs to another customer"
            elif order.status != OrderStatus.DELIVERED:
                reason = "Only delivered orders can be rated"
            elif order.rating is not None:
                reason = "Order has already been rated"
            if reason is not None:
                return RatingResult(RatingOutcome.INVALID_STATE, order=order.snapshot(), reason=reason)

            order.rating = OrderRating(food_rating=food_rating, delivery_rating=delivery_rating, review=review)
            order.updated_at = utcnow()
            outbox.publish([f"order:{order.id}", f"restaurant:{order.restaurant_id}"], events.order_rated(order))
            outbox.mirror(order)
            result = RatingResult(RatingOutcome.RATED, order=order.snapshot())

        await self._flush(outbox)
        return result

    # -------------------- riders --------------------

    async def accept_order(self, order_id: str, rider_id: str) -> AcceptResult:
        outbox = Outbox()
        result = await self.arbiter.try_accept(order_id, rider_id, outbox)
        await self._flush(outbox)
        return result

    async def release_rider(self, order_id: str, admin_id: str, reason: Optional[str] = None) -> ReleaseResult:
        outbox = Outbox()
        result = await self.arbiter.release(order_id, admin_id, reason, outbox)
        if result.ok:
            await self._announce_to_riders(result.order, outbox)
        await self._flush(outbox)
        return result

    async def _announce_to_riders(self, order: Order, outbox: Outbox) -> None:
        try:
            riders = await self.geo.nearby_riders(RestaurantLocation(order.restaurant_id), self.rider_zone)
        except Exception as e:
            logger.error(f"Rider lookup failed for order {order.id}: {e}", extra={"order_id": order.id})
            return
        if not riders:
            logger.warning(f"No nearby riders for order {order.id}", extra={"order_id": order.id})
            return
        event = events.order_available(order)
        outbox.publish([f"rider:{rider_id}" for rider_id in riders], event)

    # -------------------- payments --------------------

    async def begin_checkout(
        self,
        order_id: str,
        provider: str,
        transaction_ref: str,
        method: Optional[Any] = None,
        customer_id: Optional[str] = None,
    ) -> CheckoutResult:
        if customer_id is not None and self.store.get_order(order_id).customer_id != customer_id:
            return CheckoutResult(CheckoutOutcome.INVALID_STATE, reason="Order belongs to another customer")
        outbox = Outbox()
        result = await self.payments.begin_checkout(order_id, provider, transaction_ref, outbox, method=method)
        await self._flush(outbox)
        return result

    async def handle_payment_callback(
        self,
        provider: str,
        transaction_ref: str,
        status: Any,
        raw_payload: Any = None,
    ) -> ReconcileResult:
        outbox = Outbox()
        result = await self.payments.reconcile(provider, transaction_ref, status, raw_payload, outbox)
        await self._flush(outbox)
        return result

    async def refund_payment(self, payment_id: str, amount: Optional[int] = None, reason: str = "") -> RefundResult:
        outbox = Outbox()
        result = await self.payments.refund(payment_id, outbox, amount=amount, reason=reason)
        await self._flush(outbox)
        return result

    # -------------------- promo codes --------------------

    def validate_promo(
        self,
        code: str,
        customer_id: str,
        order_amount: int,
        restaurant_id: str,
    ) -> PromoValidation:
        is_first_order = not self.store.has_prior_orders(customer_id)
        return self.promotions.validate(code, customer_id, order_amount, restaurant_id, is_first_order)

    async def create_promo(self, promo: PromoCode) -> PromoCode:
        created = await self.promotions.create(promo)
        await self._mirror_rows([created])
        return created

    async def update_promo(self, code: str, changes: Dict[str, Any]) -> PromoCode:
        updated = await self.promotions.update(code, changes)
        await self._mirror_rows([updated])
        return updated

    async def set_promo_active(self, code: str, is_active: bool) -> PromoCode:
        return await self.update_promo(code, {"is_active": is_active})

    async def delete_promo(self, code: str) -> PromoCode:
        deleted = await self.promotions.delete(code)
        if self.mirror is not None:
            try:
                await self.mirror.delete(deleted)
            except Exception as e:
                logger.error(f"Persistence mirror failed to delete promo {deleted.code}: {e}")
        return deleted

    # -------------------- read models --------------------

    def get_order(self, order_id: str) -> Order:
        return self.store.get_order(order_id).snapshot()

    def order_history(self, order_id: str) -> List[StatusHistoryEntry]:
        return self.get_order(order_id).status_history

    def list_customer_orders(self, customer_id: str, status: Optional[OrderStatus] = None) -> List[Order]:
        return [o.snapshot() for o in self.store.orders_for_customer(customer_id, status)]

    def list_assignable_orders(self) -> List[Order]:
        return [o.snapshot() for o in self.store.assignable_orders()]

    def get_payment_for_order(self, order_id: str) -> Optional[PaymentRecord]:
        self.store.get_order(order_id)
        payment = self.store.active_payment_for_order(order_id)
        return payment.snapshot() if payment else None

    def list_customer_payments(self, customer_id: str, page: int = 1, limit: int = 20) -> Tuple[List[PaymentRecord], int]:
        """One page of the customer's payment attempts, newest first, and the total count."""
        payments = self.store.payments_for_customer(customer_id)
        start = (page - 1) * limit
        return [p.snapshot() for p in payments[start:start + limit]], len(payments)

    def list_review_items(self) -> List[ReviewItem]:
        return [item.snapshot() for item in self.store.review_items()]

    def is_actor(self, order: Order, role: ActorRole, actor_id: str) -> bool:
        """Whether ``actor_id`` may read ``order`` in ``role``."""
        if role == ActorRole.ADMIN:
            return True
        if role == ActorRole.CUSTOMER:
            return order.customer_id == actor_id
        if role == ActorRole.RESTAURANT:
            return order.restaurant_id == actor_id
        return order.rider_id == actor_id or (order.status == OrderStatus.READY and order.rider_id is None)

    # -------------------- side effects --------------------

    async def _flush(self, outbox: Outbox) -> None:
        """Publish events and mirror rows; failures are logged, never raised."""
        for channels, event in outbox.events:
            for channel in channels:
                try:
                    await self.fanout.publish(channel, event)
                except Exception as e:
                    logger.error(f"Failed to publish {event.type.value} to {channel}: {e}")
        await self._mirror_rows(outbox.rows)

    async def _mirror_rows(self, rows: List[Any]) -> None:
        if self.mirror is None or not rows:
            return
        try:
            await self.mirror.upsert(rows)
        except Exception as e:
            logger.error(f"Persistence mirror failed for {len(rows)} rows: {e}")
