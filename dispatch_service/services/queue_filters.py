"""
Фильтры, сортировка и пагинация очереди диспетчера.

Порядок применения: поиск -> вкладка статуса -> срочность -> тип услуги ->
устойчивая сортировка по created_at. Пагинация идёт после фильтрации.
"""
from __future__ import annotations

import enum
import math
import re
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Iterable, Mapping, Optional, Sequence

from dispatch_service.core.dto import Order
from dispatch_service.db.models import OrderStatus, OrderUrgency
from dispatch_service.services.order_status import ACTIVE_STATUSES
from dispatch_service.services.time_service import UTC, ensure_aware

__all__ = [
    "StatusTab",
    "SortOrder",
    "ViewMode",
    "PAGE_SIZES",
    "QueueFilters",
    "Page",
    "matches_search",
    "matches_tab",
    "apply_filters",
    "paginate",
    "status_counts",
]

_NON_DIGITS_RE = re.compile(r"\D")
_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)
ID_SUFFIX_MAX_LEN = 6


class StatusTab(str, enum.Enum):
    ACTIVE = "Active"
    PAYMENT = "Payment"
    CONFIRMED = "Confirmed"
    CANCELED = "Canceled"


class SortOrder(str, enum.Enum):
    NEWEST = "newest"
    OLDEST = "oldest"


class ViewMode(str, enum.Enum):
    CARDS = "cards"
    COMPACT = "compact"


PAGE_SIZES: dict[ViewMode, int] = {ViewMode.CARDS: 20, ViewMode.COMPACT: 10}


@dataclass(frozen=True, slots=True)
class QueueFilters:
    """Состояние фильтров очереди (сериализуется в состояние сессии)."""

    search: str = ""
    status: StatusTab = StatusTab.ACTIVE
    # None -> все
    urgency: Optional[OrderUrgency] = None
    service_type: Optional[str] = None
    sort: SortOrder = SortOrder.NEWEST
    # Только заказы этого диспетчера (assigned_dispatcher_id или dispatcher_id)
    owner_id: Optional[str] = None

    def to_dict(self) -> dict[str, Optional[str]]:
        return {
            "search": self.search,
            "status": self.status.value,
            "urgency": self.urgency.value if self.urgency else None,
            "service_type": self.service_type,
            "sort": self.sort.value,
            "owner_id": self.owner_id,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> QueueFilters:
        status = StatusTab.ACTIVE
        status_value = data.get("status")
        if status_value:
            try:
                status = StatusTab(status_value)
            except ValueError:
                pass

        urgency = None
        urgency_value = data.get("urgency")
        if urgency_value and urgency_value != "all":
            try:
                urgency = OrderUrgency(urgency_value)
            except ValueError:
                pass

        service_type = data.get("service_type") or None
        if service_type == "all":
            service_type = None

        sort = SortOrder.OLDEST if data.get("sort") == SortOrder.OLDEST.value else SortOrder.NEWEST
        return cls(
            search=str(data.get("search") or ""),
            status=status,
            urgency=urgency,
            service_type=service_type,
            sort=sort,
            owner_id=data.get("owner_id") or None,
        )

    def with_changes(self, **changes: Any) -> QueueFilters:
        return replace(self, **changes)


@dataclass(frozen=True, slots=True)
class Page:
    items: list[Order]
    page: int
    page_size: int
    total: int
    total_pages: int = field(default=1)

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages

    @property
    def has_prev(self) -> bool:
        return self.page > 1


def matches_search(order: Order, query: str) -> bool:
    """Case-insensitive search over id, names, address, description and phone."""
    q = (query or "").strip().lower()
    if not q:
        return True
    if q.startswith("#"):
        q = q[1:]
    q_digits = _NON_DIGITS_RE.sub("", q)

    order_id = order.id.lower()
    id_match = order_id.endswith(q) if len(q) <= ID_SUFFIX_MAX_LEN else q in order_id
    if id_match:
        return True

    haystack = (
        order.client_display_name,
        order.master_name,
        order.full_address,
        order.problem_description,
    )
    if any(q in (value or "").lower() for value in haystack):
        return True

    phone = order.client_display_phone or ""
    if q_digits:
        return q_digits in _NON_DIGITS_RE.sub("", phone)
    return q in phone.lower()


def matches_tab(order: Order, tab: StatusTab) -> bool:
    status = order.status
    if tab is StatusTab.ACTIVE:
        return status in ACTIVE_STATUSES
    if tab is StatusTab.PAYMENT:
        return status is OrderStatus.COMPLETED
    if tab is StatusTab.CONFIRMED:
        return status is OrderStatus.CONFIRMED
    return "canceled" in status.value


def _is_owned_by(order: Order, owner_id: str) -> bool:
    return owner_id in (order.assigned_dispatcher_id, order.dispatcher_id)


def _created_key(order: Order) -> datetime:
    return ensure_aware(order.created_at) if order.created_at else _EPOCH


def apply_filters(orders: Iterable[Order], filters: QueueFilters) -> list[Order]:
    result = list(orders)
    if filters.owner_id:
        result = [order for order in result if _is_owned_by(order, filters.owner_id)]
    if filters.search.strip():
        result = [order for order in result if matches_search(order, filters.search)]
    result = [order for order in result if matches_tab(order, filters.status)]
    if filters.urgency is not None:
        result = [order for order in result if order.urgency is filters.urgency]
    if filters.service_type:
        result = [order for order in result if order.service_type == filters.service_type]
    # sorted() is stable, ties keep their input order
    result = sorted(result, key=_created_key, reverse=filters.sort is SortOrder.NEWEST)
    return result


def paginate(orders: Sequence[Order], page: int, page_size: int) -> Page:
    """Slice *orders*; a page past the end is clamped to the last page."""
    size = max(1, int(page_size))
    total = len(orders)
    total_pages = max(1, math.ceil(total / size))
    current = min(max(1, int(page)), total_pages)
    start = (current - 1) * size
    return Page(
        items=list(orders[start:start + size]),
        page=current,
        page_size=size,
        total=total,
        total_pages=total_pages,
    )


def status_counts(orders: Iterable[Order], owner_id: Optional[str] = None) -> dict[StatusTab, int]:
    counts = {tab: 0 for tab in StatusTab}
    for order in orders:
        if owner_id and not _is_owned_by(order, owner_id):
            continue
        for tab in StatusTab:
            if matches_tab(order, tab):
                counts[tab] += 1
                break
    return counts
