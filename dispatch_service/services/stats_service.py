"""Статистика диспетчера за окно 7/30 дней и сравнение с предыдущим окном."""
from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, Optional, Sequence

from dispatch_service.core.dto import Order
from dispatch_service.services.order_status import SETTLED_STATUSES
from dispatch_service.services.time_service import (
    TzLike,
    ensure_aware,
    local_date,
    local_midnight,
    now_utc,
    resolve_timezone,
)

__all__ = [
    "StatsBlock",
    "StatsDelta",
    "SeriesMeta",
    "StatsSummary",
    "round_half_up",
    "get_delta",
    "series_meta",
    "build_dispatcher_stats",
]


def round_half_up(value: float) -> int:
    """Rounding used by the dashboards (0.5 goes up, -0.5 goes to 0)."""
    return int(math.floor(value + 0.5))


def _rate(part: int, whole: int) -> int:
    if not whole:
        return 0
    return round_half_up(part / whole * 100)


def get_delta(current: int, previous: int) -> int:
    """Percent change; 100 when there was nothing before."""
    if not previous and not current:
        return 0
    if not previous:
        return 100
    return round_half_up((current - previous) / previous * 100)


@dataclass(frozen=True, slots=True)
class StatsBlock:
    created: int = 0
    handled: int = 0
    completed: int = 0
    canceled: int = 0
    completion_rate: int = 0
    cancel_rate: int = 0


@dataclass(frozen=True, slots=True)
class StatsDelta:
    created: int = 0
    handled: int = 0
    completed: int = 0
    canceled: int = 0


@dataclass(frozen=True, slots=True)
class SeriesMeta:
    total: int
    max: int
    avg: float
    last: int


@dataclass(frozen=True, slots=True)
class StatsSummary:
    days: int
    start: datetime
    end: datetime
    current: StatsBlock
    previous: StatsBlock
    delta: StatsDelta
    created_series: list[int] = field(default_factory=list)
    handled_series: list[int] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "days": self.days,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "current": asdict(self.current),
            "previous": asdict(self.previous),
            "delta": asdict(self.delta),
            "series": {"created": list(self.created_series), "handled": list(self.handled_series)},
        }


def series_meta(series: Sequence[int]) -> SeriesMeta:
    if not series:
        return SeriesMeta(total=0, max=0, avg=0.0, last=0)
    total = sum(series)
    return SeriesMeta(total=total, max=max(series), avg=total / len(series), last=series[-1])


def _handler_id(order: Order) -> Optional[str]:
    return order.assigned_dispatcher_id or order.dispatcher_id


def _count_block(dispatcher_id: str, orders: Sequence[Order]) -> StatsBlock:
    created = sum(1 for order in orders if order.dispatcher_id == dispatcher_id)
    handled = sum(1 for order in orders if _handler_id(order) == dispatcher_id)
    completed = sum(1 for order in orders if order.status in SETTLED_STATUSES)
    canceled = sum(1 for order in orders if "canceled" in order.status.value)
    return StatsBlock(
        created=created,
        handled=handled,
        completed=completed,
        canceled=canceled,
        completion_rate=_rate(completed, created),
        cancel_rate=_rate(canceled, created),
    )


def build_dispatcher_stats(
    dispatcher_id: str,
    orders: Iterable[Order],
    days: int = 7,
    *,
    now: Optional[datetime] = None,
    tz: TzLike = None,
) -> StatsSummary:
    """Aggregate counters for the window ending at *now*.

    The window starts at local midnight ``days - 1`` days ago; the previous
    window has the same length and ends where the current one starts.
    Orders without ``created_at`` are ignored.
    """
    safe_days = max(1, int(days) if days else 7)
    zone = resolve_timezone(tz)
    end = ensure_aware(now) if now else now_utc()
    start = local_midnight(end, zone, days_back=safe_days - 1)
    prev_start = start - timedelta(days=safe_days)
    start_day = start.date()

    in_current: list[Order] = []
    in_previous: list[Order] = []
    for order in orders:
        if order.created_at is None:
            continue
        created_at = ensure_aware(order.created_at)
        if start <= created_at <= end:
            in_current.append(order)
        elif prev_start <= created_at < start:
            in_previous.append(order)

    created_series = [0] * safe_days
    handled_series = [0] * safe_days
    for order in in_current:
        if order.dispatcher_id == dispatcher_id:
            idx = (local_date(order.created_at, zone) - start_day).days
            if 0 <= idx < safe_days:
                created_series[idx] += 1
        if _handler_id(order) == dispatcher_id:
            stamp = order.updated_at or order.created_at
            idx = (local_date(stamp, zone) - start_day).days
            if 0 <= idx < safe_days:
                handled_series[idx] += 1

    current = _count_block(dispatcher_id, in_current)
    previous = _count_block(dispatcher_id, in_previous)
    return StatsSummary(
        days=safe_days,
        start=start,
        end=end,
        current=current,
        previous=previous,
        delta=StatsDelta(
            created=get_delta(current.created, previous.created),
            handled=get_delta(current.handled, previous.handled),
            completed=get_delta(current.completed, previous.completed),
            canceled=get_delta(current.canceled, previous.canceled),
        ),
        created_series=created_series,
        handled_series=handled_series,
    )
