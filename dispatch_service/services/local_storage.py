from __future__ import annotations

import json
import logging
from typing import Any, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dispatch_service.db import models as m

__all__ = ["LocalStorage"]

_log = logging.getLogger(__name__)


class LocalStorage:
    """Ключ-значение (JSON) в локальной таблице ``local_storage``."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_json(self, key: str) -> Optional[Any]:
        async with self._session_factory() as session:
            raw = await session.scalar(select(m.local_storage.value).where(m.local_storage.key == key))
        if raw is None:
            return None
        return json.loads(raw)

    async def set_json(self, key: str, value: Any) -> None:
        payload = json.dumps(value, ensure_ascii=False, default=str)
        async with self._session_factory() as session:
            async with session.begin():
                row = await session.get(m.local_storage, key)
                if row is None:
                    session.add(m.local_storage(key=key, value=payload))
                else:
                    row.value = payload
        _log.debug("local_storage: saved key=%s (%s bytes)", key, len(payload))

    async def remove(self, key: str) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                await session.execute(delete(m.local_storage).where(m.local_storage.key == key))
