from __future__ import annotations

from decimal import Decimal
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="DISPATCH_",
        env_file=".env",
        extra="ignore",
    )

    # Orders Service (remote REST API)
    orders_api_url: str = Field("http://localhost:8000/api")
    orders_api_token: Optional[str] = Field(None)
    # None -> rely on the transport defaults
    orders_api_timeout_seconds: Optional[float] = Field(None)

    # Local durable storage for drafts and recent addresses
    local_storage_url: str = Field("sqlite+aiosqlite:///dispatch_local.db")

    timezone: str = Field("Asia/Bishkek")

    draft_ttl_hours: int = Field(24)
    draft_debounce_seconds: float = Field(0.8)
    search_debounce_seconds: float = Field(0.3)
    recent_addresses_limit: int = Field(10)
    default_callout_fee: Optional[Decimal] = Field(None)

    log_level: str = Field("INFO")

    # Ops channel (Telegram) for logs and alerts
    ops_bot_token: Optional[str] = Field(None)
    logs_channel_id: Optional[int] = Field(None)
    alerts_channel_id: Optional[int] = Field(None)


settings = Settings()
