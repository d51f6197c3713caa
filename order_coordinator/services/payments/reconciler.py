"""
Payment reconciliation.

Gateway callbacks arrive late, twice, or out of order. Each one is matched to
a payment record by ``(provider, transaction_ref)`` and applied only when it
moves the record forward; duplicates are ignored and contradictions are parked
in the review queue instead of overwriting settled state.
"""
import logging
import uuid
from typing import Any, Optional, Tuple

from order_coordinator.core.locks import KeyedLockManager, order_lock_key
from order_coordinator.models import (
    Order,
    OrderStatus,
    PaymentMethod,
    PaymentRecord,
    PaymentRecordStatus,
    PaymentStatus,
    Refund,
    ReviewItem,
    ReviewKind,
    utcnow,
)
from order_coordinator.models.results import (
    CheckoutOutcome,
    CheckoutResult,
    CommitOutcome,
    ReconcileOutcome,
    ReconcileResult,
    RefundOutcome,
    RefundResult,
)
from order_coordinator.repositories.store import CoordinatorStore
from order_coordinator.services.notifications import events
from order_coordinator.services.outbox import ADMIN_CHANNEL, Outbox
from order_coordinator.services.promotions.ledger import PromoLedger

logger = logging.getLogger(__name__)

P = PaymentRecordStatus

# Settlement provider for cash on delivery; the order number is the reference.
COD_PROVIDER = "cod"

_ORDER_PAYMENT_STATUS = {
    P.SUCCESS: PaymentStatus.PAID,
    P.FAILED: PaymentStatus.FAILED,
    P.REFUNDED: PaymentStatus.REFUNDED,
}


def classify(current: PaymentRecordStatus, reported: PaymentRecordStatus) -> ReconcileOutcome:
    """
    Decide what a reported status does to a record in ``current``.

    Forward moves apply, repeats and stale reports are ignored, and a report
    that contradicts a settled record is a conflict.
    """
    if not current.is_terminal:
        if reported in (P.SUCCESS, P.FAILED):
            return ReconcileOutcome.APPLIED
        if reported == P.INITIATED and current == P.PENDING:
            return ReconcileOutcome.APPLIED
        if reported == P.REFUNDED:
            return ReconcileOutcome.CONFLICT
        return ReconcileOutcome.IGNORED

    if not reported.is_terminal:
        return ReconcileOutcome.IGNORED
    if reported == current or (current == P.REFUNDED and reported == P.SUCCESS):
        return ReconcileOutcome.IGNORED
    return ReconcileOutcome.CONFLICT


class PaymentReconciler:
    """Owns every change to payment records and to the order's payment status."""

    def __init__(self, store: CoordinatorStore, locks: KeyedLockManager, ledger: PromoLedger):
        self.store = store
        self.locks = locks
        self.ledger = ledger

    # -------------------- callbacks --------------------

    async def reconcile(
        self,
        provider: str,
        transaction_ref: str,
        reported_status: Any,
        raw_payload: Any,
        outbox: Outbox,
    ) -> ReconcileResult:
        """
        Apply one gateway callback.

        Args:
            provider: Gateway name as it appears in the callback URL
            transaction_ref: Gateway transaction reference
            reported_status: Status string reported by the gateway
            raw_payload: Callback body, stored verbatim
            outbox: Collects events and rows to flush after release

        Returns:
            ``ReconcileResult`` with APPLIED, IGNORED or CONFLICT
        """
        matched = self.store.find_payment_by_gateway_ref(provider, transaction_ref)
        if matched is None:
            item = self._queue_review(
                outbox,
                ReviewKind.UNKNOWN_TRANSACTION,
                f"No payment matches {provider}:{transaction_ref}",
                provider=provider,
                transaction_ref=transaction_ref,
                reported_status=str(reported_status),
            )
            return ReconcileResult(ReconcileOutcome.CONFLICT, review_item=item, reason=item.detail)

        reported = PaymentRecordStatus.parse(reported_status)
        if reported is None:
            item = self._queue_review(
                outbox,
                ReviewKind.UNRECOGNIZED_STATUS,
                f"Unrecognized status {reported_status!r} for {provider}:{transaction_ref}",
                order_id=matched.order_id,
                payment_id=matched.id,
                provider=provider,
                transaction_ref=transaction_ref,
                reported_status=str(reported_status),
            )
            return ReconcileResult(ReconcileOutcome.CONFLICT, review_item=item, reason=item.detail)

        commit_promo: Optional[Tuple[str, str, str]] = None
        async with self.locks.hold(order_lock_key(matched.order_id)):
            payment = self.store.get_payment(matched.id)
            order = self.store.get_order(payment.order_id)
            current = payment.status
            outcome = classify(current, reported)

            if outcome is ReconcileOutcome.IGNORED:
                logger.info(
                    f"Ignoring {reported.value} callback for payment {payment.id} already {current.value}",
                    extra={"payment_id": payment.id, "order_id": order.id},
                )
                return ReconcileResult(outcome, payment=payment.snapshot(), order=order.snapshot())

            if outcome is ReconcileOutcome.CONFLICT:
                item = self._queue_review(
                    outbox,
                    ReviewKind.STATUS_CONFLICT,
                    f"Gateway reported {reported.value} for payment {payment.id} recorded as {current.value}",
                    order_id=order.id,
                    payment_id=payment.id,
                    provider=payment.provider,
                    transaction_ref=payment.transaction_ref,
                    reported_status=reported.value,
                )
                return ReconcileResult(
                    outcome,
                    payment=payment.snapshot(),
                    order=order.snapshot(),
                    review_item=item,
                    reason=item.detail,
                )

            payment.mark(reported, raw_payload)
            review_item = None
            if reported in _ORDER_PAYMENT_STATUS:
                self._set_order_payment_status(order, _ORDER_PAYMENT_STATUS[reported])

            if reported == P.SUCCESS and order.status == OrderStatus.CANCELLED:
                review_item = self._queue_review(
                    outbox,
                    ReviewKind.PAID_AFTER_CANCELLATION,
                    f"Payment {payment.id} succeeded after order {order.order_number} was cancelled",
                    order_id=order.id,
                    payment_id=payment.id,
                    provider=payment.provider,
                    transaction_ref=payment.transaction_ref,
                    reported_status=reported.value,
                )
            elif reported == P.SUCCESS and order.promo_code:
                commit_promo = (order.promo_code, order.id, order.customer_id)

            logger.info(
                f"Payment {payment.id} {current.value} -> {reported.value} via {provider}",
                extra={"payment_id": payment.id, "order_id": order.id},
            )
            outbox.publish(order.channels(), events.payment_status_changed(payment, order, current.value))
            outbox.mirror(payment)
            outbox.mirror(order)
            result = ReconcileResult(
                ReconcileOutcome.APPLIED,
                payment=payment.snapshot(),
                order=order.snapshot(),
                review_item=review_item,
            )

        if commit_promo is not None:
            result.promo_commit = await self._commit_promo(*commit_promo, outbox=outbox)
        return result

    async def _commit_promo(self, code: str, order_id: str, user_id: str, outbox: Outbox) -> CommitOutcome:
        outcome = await self.ledger.commit(code, order_id, user_id)
        if outcome is CommitOutcome.LIMIT_REACHED:
            self._queue_review(
                outbox,
                ReviewKind.PROMO_LIMIT_OVERFLOW,
                f"Order {order_id} paid with promo {code} after its usage limit was reached",
                order_id=order_id,
                promo_code=code,
            )
        promo = self.store.find_promo(code)
        if promo is not None:
            outbox.mirror(promo)
        return outcome

    # -------------------- checkout --------------------

    async def begin_checkout(
        self,
        order_id: str,
        provider: str,
        transaction_ref: str,
        outbox: Outbox,
        method: Optional[Any] = None,
    ) -> CheckoutResult:
        """
        Bind a gateway session to the order's active payment record.

        A failed record is superseded by a fresh one so the customer can retry,
        optionally with another method. Repeating the same binding is a no-op.
        """
        new_method = None
        if method is not None:
            new_method = PaymentMethod.parse(method)
            if new_method is None:
                return CheckoutResult(CheckoutOutcome.INVALID_STATE, reason=f"Unknown payment method '{method}'")

        async with self.locks.hold(order_lock_key(order_id)):
            order = self.store.get_order(order_id)
            payment = self.store.active_payment_for_order(order_id)

            reason = self._checkout_blocker(order, payment, new_method)
            if reason is None:
                owner = self.store.gateway_ref_owner(provider, transaction_ref)
                # a failed attempt keeps its reference; a retry needs a new one
                if owner is not None and (owner != payment.id or payment.status == P.FAILED):
                    reason = "Transaction reference already in use"
            if reason is not None:
                return CheckoutResult(
                    CheckoutOutcome.INVALID_STATE,
                    payment=payment.snapshot() if payment else None,
                    reason=reason,
                )

            if payment.status == P.INITIATED:
                if self.store.gateway_ref_owner(provider, transaction_ref) == payment.id:
                    return CheckoutResult(CheckoutOutcome.INITIATED, payment=payment.snapshot())
                return CheckoutResult(
                    CheckoutOutcome.INVALID_STATE,
                    payment=payment.snapshot(),
                    reason="Checkout already in progress",
                )

            old_status = payment.status.value
            if payment.status == P.FAILED:
                payment = PaymentRecord(
                    id=PaymentRecord.generate_uuid(),
                    order_id=order.id,
                    customer_id=order.customer_id,
                    amount=order.total,
                    method=new_method or payment.method,
                )
                self.store.add_payment(payment)
                self._set_order_payment_status(order, PaymentStatus.PENDING)
                logger.info(
                    f"Payment {payment.id} supersedes failed attempt for order {order.id}",
                    extra={"payment_id": payment.id, "order_id": order.id},
                )
            elif new_method is not None:
                payment.method = new_method

            order.payment_method = payment.method
            order.updated_at = utcnow()
            self.store.bind_gateway_ref(payment, provider, transaction_ref)
            payment.mark(P.INITIATED)

            outbox.publish(order.channels(), events.payment_status_changed(payment, order, old_status))
            outbox.mirror(payment)
            outbox.mirror(order)
            return CheckoutResult(CheckoutOutcome.INITIATED, payment=payment.snapshot())

    @staticmethod
    def _checkout_blocker(
        order: Order,
        payment: Optional[PaymentRecord],
        new_method: Optional[PaymentMethod],
    ) -> Optional[str]:
        if payment is None:
            return "Order has no payment record"
        if order.status == OrderStatus.CANCELLED:
            return "Order is cancelled"
        if order.payment_status in (PaymentStatus.PAID, PaymentStatus.REFUNDED):
            return "Order is already paid"
        if (new_method or payment.method) == PaymentMethod.COD:
            return "Cash on delivery orders are settled on delivery"
        return None

    # -------------------- refunds --------------------

    async def refund(
        self,
        payment_id: str,
        outbox: Outbox,
        amount: Optional[int] = None,
        reason: str = "",
    ) -> RefundResult:
        """Refund a successful payment, fully by default. Order status is untouched."""
        order_id = self.store.get_payment(payment_id).order_id
        async with self.locks.hold(order_lock_key(order_id)):
            payment = self.store.get_payment(payment_id)
            order = self.store.get_order(order_id)

            if payment.status != P.SUCCESS:
                return RefundResult(
                    RefundOutcome.INVALID_STATE,
                    payment=payment.snapshot(),
                    reason=f"Payment is {payment.status.value}",
                )
            refund_amount = payment.amount if amount is None else amount
            if not 0 < refund_amount <= payment.amount:
                return RefundResult(
                    RefundOutcome.INVALID_STATE,
                    payment=payment.snapshot(),
                    reason=f"Refund amount must be between 1 and {payment.amount}",
                )

            payment.refund = Refund(
                amount=refund_amount,
                reason=reason,
                refund_id=f"RF-{uuid.uuid4().hex[:12].upper()}",
            )
            payment.mark(P.REFUNDED)
            self._set_order_payment_status(order, PaymentStatus.REFUNDED)

            logger.info(
                f"Refunded {refund_amount} of payment {payment.id}",
                extra={"payment_id": payment.id, "order_id": order.id},
            )
            outbox.publish(order.channels(), events.payment_status_changed(payment, order, P.SUCCESS.value))
            outbox.mirror(payment)
            outbox.mirror(order)
            return RefundResult(RefundOutcome.REFUNDED, payment=payment.snapshot())

    # -------------------- helpers --------------------

    @staticmethod
    def _set_order_payment_status(order: Order, status: PaymentStatus) -> None:
        order.payment_status = status
        order.updated_at = utcnow()

    def _queue_review(self, outbox: Outbox, kind: ReviewKind, detail: str, **fields: Any) -> ReviewItem:
        item = ReviewItem(id=ReviewItem.generate_uuid(), kind=kind, detail=detail, **fields)
        self.store.add_review_item(item)
        logger.warning(
            f"Queued {kind.value} for review: {detail}",
            extra={"order_id": item.order_id, "payment_id": item.payment_id},
        )
        outbox.publish([ADMIN_CHANNEL], events.review_queued(item))
        outbox.mirror(item)
        return item
