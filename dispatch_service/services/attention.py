from __future__ import annotations

import enum
from datetime import datetime, timedelta
from typing import Iterable, Optional

from dispatch_service.core.dto import Order
from dispatch_service.db.models import OrderStatus
from dispatch_service.services.time_service import UTC, ensure_aware

__all__ = [
    "PLACED_STUCK_AFTER",
    "CLAIMED_STUCK_AFTER",
    "AttentionCategory",
    "AttentionFilter",
    "classify",
    "needs_attention",
    "filter_attention",
    "attention_counts",
]

PLACED_STUCK_AFTER = timedelta(minutes=15)
CLAIMED_STUCK_AFTER = timedelta(minutes=30)

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


class AttentionCategory(str, enum.Enum):
    STUCK = "Stuck"
    DISPUTED = "Disputed"
    PAYMENT = "Payment"
    CANCELED = "Canceled"


class AttentionFilter(str, enum.Enum):
    ALL = "All"
    STUCK = "Stuck"
    DISPUTED = "Disputed"
    PAYMENT = "Payment"
    CANCELED = "Canceled"


def _older_than(stamp: Optional[datetime], now: datetime, limit: timedelta) -> bool:
    if stamp is None:
        return False
    return ensure_aware(now) - ensure_aware(stamp) > limit


def classify(order: Order, now: datetime) -> Optional[AttentionCategory]:
    """Attention bucket of *order* at *now*, or None when it is fine."""
    status = order.status
    if status is OrderStatus.CANCELED_BY_CLIENT:
        return None
    if order.is_disputed:
        return AttentionCategory.DISPUTED
    if status is OrderStatus.COMPLETED:
        return AttentionCategory.PAYMENT
    if status is OrderStatus.CANCELED_BY_MASTER:
        return AttentionCategory.CANCELED
    if status is OrderStatus.PLACED and _older_than(order.created_at, now, PLACED_STUCK_AFTER):
        return AttentionCategory.STUCK
    if status is OrderStatus.CLAIMED and _older_than(order.updated_at, now, CLAIMED_STUCK_AFTER):
        return AttentionCategory.STUCK
    return None


def _created_key(order: Order) -> datetime:
    return ensure_aware(order.created_at) if order.created_at else _EPOCH


def needs_attention(orders: Iterable[Order], now: datetime) -> list[Order]:
    """Orders needing a dispatcher, newest first."""
    flagged = [order for order in orders if classify(order, now) is not None]
    flagged.sort(key=_created_key, reverse=True)
    return flagged


def filter_attention(
    orders: Iterable[Order],
    now: datetime,
    attention_filter: AttentionFilter = AttentionFilter.ALL,
) -> list[Order]:
    flagged = needs_attention(orders, now)
    if attention_filter is AttentionFilter.ALL:
        return flagged
    wanted = AttentionCategory(attention_filter.value)
    return [order for order in flagged if classify(order, now) is wanted]


def attention_counts(orders: Iterable[Order], now: datetime) -> dict[AttentionFilter, int]:
    counts = {item: 0 for item in AttentionFilter}
    for order in orders:
        category = classify(order, now)
        if category is None:
            continue
        counts[AttentionFilter.ALL] += 1
        counts[AttentionFilter(category.value)] += 1
    return counts
