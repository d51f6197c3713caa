"""Promo code model."""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Set

from order_coordinator.models.base import StoredModel, StrictEnum, as_utc, utcnow


class DiscountType(StrictEnum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class PromoScope(StrictEnum):
    """Which orders a code applies to."""
    ALL = "all"
    FIRST_ORDER = "first_order"
    SPECIFIC_RESTAURANTS = "specific_restaurants"


@dataclass
class UsageLimit:
    total: Optional[int] = None
    per_user: int = 1


@dataclass
class PromoCode(StoredModel):
    """Promo code with its running usage counters."""
    table_name = "promo_codes"

    code: str
    discount_type: DiscountType
    value: int
    valid_from: datetime
    valid_until: datetime
    min_order_amount: int = 0
    max_discount: Optional[int] = None
    usage_limit: UsageLimit = field(default_factory=UsageLimit)
    usage_count: int = 0
    applicable_to: PromoScope = PromoScope.ALL
    restaurants: List[str] = field(default_factory=list)
    description: Optional[str] = None
    is_active: bool = True
    # user_id -> committed redemptions
    redemptions: Dict[str, int] = field(default_factory=dict)
    # orders whose redemption has been committed, for exactly-once accounting
    committed_orders: Set[str] = field(default_factory=set)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def __post_init__(self):
        self.code = self.code.strip().upper()
        self.valid_from = as_utc(self.valid_from)
        self.valid_until = as_utc(self.valid_until)

    @property
    def remaining(self) -> Optional[int]:
        if self.usage_limit.total is None:
            return None
        return max(0, self.usage_limit.total - self.usage_count)

    def user_redemptions(self, user_id: str) -> int:
        return self.redemptions.get(user_id, 0)
