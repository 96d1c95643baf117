from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dispatch_service.config import settings

__all__ = [
    "UTC",
    "resolve_timezone",
    "now_utc",
    "ensure_aware",
    "local_midnight",
    "local_date",
    "parse_iso_datetime",
    "to_iso",
    "parse_form_date",
]

logger = logging.getLogger(__name__)
UTC = timezone.utc

TzLike = Union[ZoneInfo, timezone, str, None]


def resolve_timezone(value: TzLike = None) -> Union[ZoneInfo, timezone]:
    """Zone object for *value*, falling back to the configured one, then UTC."""
    if isinstance(value, (ZoneInfo, timezone)):
        return value
    name = value or settings.timezone or "UTC"
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r, falling back to UTC", name)
        return UTC


def now_utc() -> datetime:
    return datetime.now(UTC)


def ensure_aware(value: datetime) -> datetime:
    """Naive timestamps coming from the API are UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def local_date(value: datetime, tz: TzLike = None) -> date:
    return ensure_aware(value).astimezone(resolve_timezone(tz)).date()


def local_midnight(now: datetime, tz: TzLike = None, *, days_back: int = 0) -> datetime:
    """Start of the local calendar day *days_back* days before *now*."""
    zone = resolve_timezone(tz)
    day = ensure_aware(now).astimezone(zone).date() - timedelta(days=days_back)
    return datetime.combine(day, time(0, 0), tzinfo=zone)


def parse_iso_datetime(value: Union[str, datetime, None]) -> Optional[datetime]:
    """Parse an API timestamp; ``Z`` suffix and naive values are read as UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_aware(value)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        logger.warning("Unparsable timestamp %r", value)
        return None
    return ensure_aware(parsed)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return ensure_aware(value).astimezone(UTC).isoformat().replace("+00:00", "Z")


def parse_form_date(value: Optional[str]) -> Optional[date]:
    """``DD.MM.YYYY`` as typed in the creation form."""
    if not value:
        return None
    try:
        return datetime.strptime(value.strip(), "%d.%m.%Y").date()
    except ValueError:
        return None
