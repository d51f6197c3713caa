"""
Typed outcomes returned by the coordinator.

Expected business outcomes (an illegal transition, a lost rider race, a
contradicting gateway callback, a rejected promo) are values, not exceptions.
Each result pairs an outcome enum with the snapshot the caller needs.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from order_coordinator.models.order import Order
from order_coordinator.models.payment import PaymentRecord
from order_coordinator.models.review import ReviewItem


class TransitionOutcome(str, Enum):
    APPLIED = "applied"
    INVALID_TRANSITION = "invalid_transition"


class CancelOutcome(str, Enum):
    CANCELLED = "cancelled"
    INVALID_TRANSITION = "invalid_transition"


class AcceptOutcome(str, Enum):
    ASSIGNED = "assigned"
    ALREADY_ASSIGNED = "already_assigned"
    NOT_ACCEPTABLE = "not_acceptable"


class ReleaseOutcome(str, Enum):
    RELEASED = "released"
    NOT_ACCEPTABLE = "not_acceptable"


class ReconcileOutcome(str, Enum):
    APPLIED = "applied"
    IGNORED = "ignored"
    CONFLICT = "conflict"


class RefundOutcome(str, Enum):
    REFUNDED = "refunded"
    INVALID_STATE = "invalid_state"


class CheckoutOutcome(str, Enum):
    INITIATED = "initiated"
    INVALID_STATE = "invalid_state"


class RatingOutcome(str, Enum):
    RATED = "rated"
    INVALID_STATE = "invalid_state"


class PromoOutcome(str, Enum):
    DISCOUNT = "discount"
    REJECTED = "rejected"


class RejectionReason(str, Enum):
    NOT_FOUND = "not_found"
    INACTIVE = "inactive"
    NOT_YET_VALID = "not_yet_valid"
    EXPIRED = "expired"
    BELOW_MINIMUM = "below_minimum"
    RESTAURANT_NOT_ELIGIBLE = "restaurant_not_eligible"
    FIRST_ORDER_ONLY = "first_order_only"
    USAGE_LIMIT_REACHED = "usage_limit_reached"
    USER_LIMIT_REACHED = "user_limit_reached"


# Messages shown to the customer for each rejection
REJECTION_MESSAGES = {
    RejectionReason.NOT_FOUND: "Invalid promo code",
    RejectionReason.INACTIVE: "Promo code is no longer active",
    RejectionReason.NOT_YET_VALID: "Promo code is not yet valid",
    RejectionReason.EXPIRED: "Promo code has expired",
    RejectionReason.BELOW_MINIMUM: "Order amount is below the minimum for this promo code",
    RejectionReason.RESTAURANT_NOT_ELIGIBLE: "This promo code is not applicable to this restaurant",
    RejectionReason.FIRST_ORDER_ONLY: "This promo code is only for first-time orders",
    RejectionReason.USAGE_LIMIT_REACHED: "Promo code usage limit reached",
    RejectionReason.USER_LIMIT_REACHED: "You have already used this promo code",
}


class CommitOutcome(str, Enum):
    COMMITTED = "committed"
    ALREADY_COMMITTED = "already_committed"
    LIMIT_REACHED = "limit_reached"
    NOT_FOUND = "not_found"


@dataclass
class TransitionResult:
    outcome: TransitionOutcome
    order: Optional[Order] = None
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.outcome is TransitionOutcome.APPLIED


@dataclass
class CancelResult:
    outcome: CancelOutcome
    order: Optional[Order] = None
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.outcome is CancelOutcome.CANCELLED


@dataclass
class AcceptResult:
    outcome: AcceptOutcome
    order: Optional[Order] = None
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.outcome is AcceptOutcome.ASSIGNED


@dataclass
class ReleaseResult:
    outcome: ReleaseOutcome
    order: Optional[Order] = None
    released_rider_id: Optional[str] = None
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.outcome is ReleaseOutcome.RELEASED


@dataclass
class ReconcileResult:
    outcome: ReconcileOutcome
    payment: Optional[PaymentRecord] = None
    order: Optional[Order] = None
    review_item: Optional[ReviewItem] = None
    reason: Optional[str] = None
    promo_commit: Optional[CommitOutcome] = None


@dataclass
class RefundResult:
    outcome: RefundOutcome
    payment: Optional[PaymentRecord] = None
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.outcome is RefundOutcome.REFUNDED


@dataclass
class CheckoutResult:
    outcome: CheckoutOutcome
    payment: Optional[PaymentRecord] = None
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.outcome is CheckoutOutcome.INITIATED


@dataclass
class RatingResult:
    outcome: RatingOutcome
    order: Optional[Order] = None
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.outcome is RatingOutcome.RATED


@dataclass
class PromoValidation:
    outcome: PromoOutcome
    code: Optional[str] = None
    discount: int = 0
    reason: Optional[RejectionReason] = None

    @property
    def ok(self) -> bool:
        return self.outcome is PromoOutcome.DISCOUNT

    @property
    def message(self) -> Optional[str]:
        return REJECTION_MESSAGES.get(self.reason) if self.reason else None

    @classmethod
    def rejected(cls, code: Optional[str], reason: RejectionReason) -> "PromoValidation":
        return cls(outcome=PromoOutcome.REJECTED, code=code, reason=reason)


@dataclass
class CreateOrderResult:
    """``order`` is set when created; ``promo`` carries the rejection otherwise."""
    order: Optional[Order] = None
    payment: Optional[PaymentRecord] = None
    promo: Optional[PromoValidation] = None

    @property
    def ok(self) -> bool:
        return self.order is not None
