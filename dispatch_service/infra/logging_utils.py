from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from dispatch_service.config import settings

__all__ = ["utcnow_iso", "configure_logging"]

UTC = timezone.utc
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def utcnow_iso() -> str:
    """Return current UTC timestamp in ISO 8601 format with Z suffix."""
    return datetime.now(UTC).isoformat().replace("+00:00", "Z")


def configure_logging(level: Optional[str] = None) -> None:
    """Root logger setup for the dispatcher process."""
    name = (level or settings.log_level or "INFO").upper()
    logging.basicConfig(level=getattr(logging, name, logging.INFO), format=LOG_FORMAT)
    # aiosqlite/sqlalchemy are noisy at INFO
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
