from __future__ import annotations
import enum
from datetime import datetime

from sqlalchemy import DateTime, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, metadata

__all__ = [
    "Base",
    "metadata",
    "OrderStatus",
    "OrderUrgency",
    "PricingType",
    "PaymentMethod",
    "ActorRole",
    "local_storage",
]

# ===== Enums =====


class OrderStatus(str, enum.Enum):
    """Order lifecycle statuses as stored by the Orders Service."""

    PLACED = "placed"
    REOPENED = "reopened"
    CLAIMED = "claimed"
    STARTED = "started"
    COMPLETED = "completed"
    CONFIRMED = "confirmed"
    CANCELED_BY_CLIENT = "canceled_by_client"
    CANCELED_BY_MASTER = "canceled_by_master"
    # Server-side timeout only
    EXPIRED = "expired"


class OrderUrgency(str, enum.Enum):
    PLANNED = "planned"
    URGENT = "urgent"
    EMERGENCY = "emergency"


class PricingType(str, enum.Enum):
    FIXED = "fixed"
    UNKNOWN = "unknown"


class PaymentMethod(str, enum.Enum):
    CASH = "cash"
    TRANSFER = "transfer"
    CARD = "card"


class ActorRole(str, enum.Enum):
    DISPATCHER = "dispatcher"
    ADMIN = "admin"
    MASTER = "master"
    CLIENT = "client"


# ===== Local storage =====


class local_storage(Base):
    """Durable key/value slots of the dispatcher workstation (draft, recent addresses)."""

    key: Mapped[str] = mapped_column(String(80), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)  # JSON
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
