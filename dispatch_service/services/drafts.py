"""
Черновик формы создания заказа и недавние адреса.

Оба хранилища локальные: любые ошибки чтения/записи логируются и
глотаются, чтобы не мешать работе диспетчера.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from dispatch_service.config import settings
from dispatch_service.services.local_storage import LocalStorage
from dispatch_service.services.order_creation import OrderForm
from dispatch_service.services.time_service import now_utc

__all__ = [
    "DRAFT_KEY",
    "RECENT_ADDRESSES_KEY",
    "RecentAddress",
    "DraftStore",
    "RecentAddresses",
]

_log = logging.getLogger(__name__)

DRAFT_KEY = "dispatcher_draft_order"
RECENT_ADDRESSES_KEY = "dispatcher_recent_addresses"

Clock = Callable[[], datetime]


class DraftStore:
    def __init__(
        self,
        storage: LocalStorage,
        *,
        ttl: Optional[timedelta] = None,
        clock: Clock = now_utc,
    ) -> None:
        self._storage = storage
        self._ttl = ttl if ttl is not None else timedelta(hours=settings.draft_ttl_hours)
        self._clock = clock

    async def save(self, form: OrderForm) -> bool:
        """Persist *form* with a timestamp; empty forms are not stored."""
        if not form.worth_saving:
            return False
        envelope = {
            "timestamp": int(self._clock().timestamp() * 1000),
            "data": form.to_dict(),
        }
        try:
            await self._storage.set_json(DRAFT_KEY, envelope)
        except Exception:
            _log.warning("draft save failed", exc_info=True)
            return False
        return True

    async def load(self) -> Optional[OrderForm]:
        """Draft younger than the TTL, else None (an expired draft is dropped)."""
        try:
            envelope = await self._storage.get_json(DRAFT_KEY)
        except Exception:
            _log.warning("draft load failed", exc_info=True)
            return None
        if not isinstance(envelope, dict) or not isinstance(envelope.get("data"), dict):
            return None
        try:
            saved_ms = int(envelope.get("timestamp") or 0)
        except (TypeError, ValueError):
            saved_ms = 0
        age = self._clock().timestamp() * 1000 - saved_ms
        if age >= self._ttl.total_seconds() * 1000:
            _log.info("draft expired (age=%.0fs), discarding", age / 1000)
            await self.clear()
            return None
        return OrderForm.from_dict(envelope["data"])

    async def clear(self) -> None:
        try:
            await self._storage.remove(DRAFT_KEY)
        except Exception:
            _log.warning("draft clear failed", exc_info=True)


@dataclass(frozen=True, slots=True)
class RecentAddress:
    area: str
    full_address: str

    def to_dict(self) -> dict[str, str]:
        return {"area": self.area, "fullAddress": self.full_address}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Optional[RecentAddress]:
        full_address = str(data.get("fullAddress") or data.get("full_address") or "")
        if not full_address:
            return None
        return cls(area=str(data.get("area") or ""), full_address=full_address)


class RecentAddresses:
    """Most recent first, deduplicated by full address."""

    def __init__(self, storage: LocalStorage, *, limit: Optional[int] = None) -> None:
        self._storage = storage
        self._limit = limit if limit is not None else settings.recent_addresses_limit

    async def load(self) -> list[RecentAddress]:
        try:
            rows = await self._storage.get_json(RECENT_ADDRESSES_KEY)
        except Exception:
            _log.warning("recent addresses load failed", exc_info=True)
            return []
        if not isinstance(rows, list):
            return []
        items = [RecentAddress.from_dict(row) for row in rows if isinstance(row, dict)]
        return [item for item in items if item is not None][: self._limit]

    async def remember(self, area: str, full_address: str) -> list[RecentAddress]:
        current = await self.load()
        if not full_address or not full_address.strip():
            return current
        entry = RecentAddress(area=(area or "").strip(), full_address=full_address.strip())
        updated = [entry] + [item for item in current if item.full_address != entry.full_address]
        updated = updated[: self._limit]
        try:
            await self._storage.set_json(RECENT_ADDRESSES_KEY, [item.to_dict() for item in updated])
        except Exception:
            _log.warning("recent addresses save failed", exc_info=True)
        return updated
