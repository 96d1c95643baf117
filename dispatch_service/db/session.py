from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from dispatch_service.config import settings

from .base import metadata

__all__ = ["engine", "SessionLocal", "init_local_storage"]

engine: AsyncEngine = create_async_engine(settings.local_storage_url, echo=False)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False)


async def init_local_storage(bind: AsyncEngine | None = None) -> None:
    """Create local tables if they do not exist yet."""
    target = bind or engine
    # models must be imported so that tables are registered on metadata
    from . import models  # noqa: F401

    async with target.begin() as conn:
        await conn.run_sync(metadata.create_all)
