"""
Сборка рабочего места диспетчера из настроек.

``open_dispatcher_session`` поднимает локальное хранилище, HTTP-клиент
Orders Service и ops-бота, стартует ``DispatcherSession`` и закрывает
всё это на выходе.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from aiogram import Bot
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from dispatch_service.config import settings
from dispatch_service.core.dto import Actor
from dispatch_service.db.session import SessionLocal, init_local_storage
from dispatch_service.infra.logging_utils import configure_logging
from dispatch_service.infra.notify import create_ops_bot, send_log
from dispatch_service.services.dispatcher_session import DispatcherSession
from dispatch_service.services.drafts import DraftStore, RecentAddresses
from dispatch_service.services.local_storage import LocalStorage
from dispatch_service.services.orders_api import HttpOrdersGateway, OrdersGateway

__all__ = ["open_dispatcher_session"]

logger = logging.getLogger(__name__)


@asynccontextmanager
async def open_dispatcher_session(
    actor: Actor,
    *,
    gateway: Optional[OrdersGateway] = None,
    ops_bot: Optional[Bot] = None,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    bind: Optional[AsyncEngine] = None,
    **session_kwargs: Any,
) -> AsyncIterator[DispatcherSession]:
    configure_logging()
    await init_local_storage(bind)
    storage = LocalStorage(session_factory or SessionLocal)

    own_gateway = gateway is None
    if gateway is None:
        gateway = HttpOrdersGateway()
    own_bot = ops_bot is None
    if ops_bot is None:
        ops_bot = create_ops_bot()

    session = DispatcherSession(
        gateway,
        actor,
        drafts=DraftStore(storage),
        recent_addresses=RecentAddresses(storage),
        ops_bot=ops_bot,
        tz=settings.timezone,
        **session_kwargs,
    )
    try:
        await session.start()
        logger.info("dispatcher session started actor=%s role=%s", actor.id, actor.role.value)
        await send_log(ops_bot, f"[dispatch] session started: {actor.id} ({actor.role.value})")
        yield session
    finally:
        await session.close()
        if own_gateway and isinstance(gateway, HttpOrdersGateway):
            await gateway.close()
        if own_bot and ops_bot is not None:
            await ops_bot.session.close()
