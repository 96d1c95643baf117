"""
Объекты передачи данных между Orders Service и движком диспетчера.

Все DTO неизменяемые: изменения оформляются через ``replace`` /
``with_changes`` и дают новый объект.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from typing import Any, Mapping, Optional

from dispatch_service.db.models import (
    ActorRole,
    OrderStatus,
    OrderUrgency,
    PaymentMethod,
    PricingType,
)
from dispatch_service.services.time_service import parse_iso_datetime, to_iso
from dispatch_service.utils.numbers import parse_money

__all__ = [
    "ClientRef",
    "MasterRef",
    "Master",
    "Dispatcher",
    "Actor",
    "PaymentData",
    "Order",
]


def _str_or_none(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def _money_str(value: Optional[Decimal]) -> Optional[str]:
    return None if value is None else str(value)


def _int_or_none(value: Any) -> Optional[int]:
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _enum_or_none(enum_cls, value: Any):
    if value is None or value == "":
        return None
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value))
    except ValueError:
        return None


@dataclass(frozen=True, slots=True)
class ClientRef:
    id: Optional[str] = None
    full_name: Optional[str] = None
    phone: Optional[str] = None

    @classmethod
    def from_api(cls, data: Optional[Mapping[str, Any]]) -> Optional[ClientRef]:
        if not data:
            return None
        return cls(
            id=_str_or_none(data.get("id")),
            full_name=_str_or_none(data.get("full_name")),
            phone=_str_or_none(data.get("phone")),
        )

    def to_dict(self) -> dict[str, Optional[str]]:
        return {"id": self.id, "full_name": self.full_name, "phone": self.phone}


@dataclass(frozen=True, slots=True)
class MasterRef:
    id: str
    full_name: Optional[str] = None
    phone: Optional[str] = None

    @classmethod
    def from_api(cls, data: Optional[Mapping[str, Any]]) -> Optional[MasterRef]:
        if not data or data.get("id") is None:
            return None
        return cls(
            id=str(data["id"]),
            full_name=_str_or_none(data.get("full_name")),
            phone=_str_or_none(data.get("phone")),
        )

    def to_dict(self) -> dict[str, Optional[str]]:
        return {"id": self.id, "full_name": self.full_name, "phone": self.phone}


@dataclass(frozen=True, slots=True)
class Master:
    """Мастер из списка доступных для назначения."""

    id: str
    full_name: str
    phone: Optional[str] = None
    active_jobs: int = 0
    # None -> без ограничения
    max_active_jobs: Optional[int] = None

    @classmethod
    def from_api(cls, data: Mapping[str, Any]) -> Master:
        return cls(
            id=str(data["id"]),
            full_name=str(data.get("full_name") or ""),
            phone=_str_or_none(data.get("phone")),
            active_jobs=_int_or_none(data.get("active_jobs")) or 0,
            max_active_jobs=_int_or_none(data.get("max_active_jobs")),
        )

    def as_ref(self) -> MasterRef:
        return MasterRef(id=self.id, full_name=self.full_name, phone=self.phone)


@dataclass(frozen=True, slots=True)
class Dispatcher:
    id: str
    full_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None

    @classmethod
    def from_api(cls, data: Mapping[str, Any]) -> Dispatcher:
        return cls(
            id=str(data["id"]),
            full_name=_str_or_none(data.get("full_name")),
            email=_str_or_none(data.get("email")),
            phone=_str_or_none(data.get("phone")),
        )


@dataclass(frozen=True, slots=True)
class Actor:
    """Текущий пользователь рабочего места (диспетчер или админ)."""

    id: str
    role: ActorRole = ActorRole.DISPATCHER
    full_name: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role is ActorRole.ADMIN


@dataclass(frozen=True, slots=True)
class PaymentData:
    method: Optional[PaymentMethod] = PaymentMethod.CASH
    proof_url: Optional[str] = None


@dataclass(frozen=True, slots=True)
class Order:
    id: str
    status: OrderStatus
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    is_disputed: bool = False

    client: Optional[ClientRef] = None
    client_name: Optional[str] = None
    client_phone: Optional[str] = None

    master: Optional[MasterRef] = None
    master_id: Optional[str] = None

    dispatcher_id: Optional[str] = None
    assigned_dispatcher_id: Optional[str] = None

    urgency: OrderUrgency = OrderUrgency.PLANNED
    service_type: Optional[str] = None
    area: Optional[str] = None
    full_address: Optional[str] = None
    orientir: Optional[str] = None
    problem_description: Optional[str] = None
    dispatcher_note: Optional[str] = None

    pricing_type: PricingType = PricingType.UNKNOWN
    callout_fee: Optional[Decimal] = None
    initial_price: Optional[Decimal] = None
    final_price: Optional[Decimal] = None

    preferred_date: Optional[str] = None
    preferred_time: Optional[str] = None

    payment_method: Optional[PaymentMethod] = None
    payment_proof_url: Optional[str] = None
    confirmed_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None

    idempotency_key: Optional[str] = None

    # Локальная метка оптимистичного патча, снимается авторитетной загрузкой
    unconfirmed: bool = field(default=False, compare=False)

    # ---- display helpers ----

    @property
    def client_display_name(self) -> Optional[str]:
        if self.client and self.client.full_name:
            return self.client.full_name
        return self.client_name

    @property
    def client_display_phone(self) -> Optional[str]:
        if self.client and self.client.phone:
            return self.client.phone
        return self.client_phone

    @property
    def master_name(self) -> Optional[str]:
        return self.master.full_name if self.master else None

    @property
    def has_master(self) -> bool:
        return bool(self.master_id or self.master)

    @property
    def handling_dispatcher_id(self) -> Optional[str]:
        return self.assigned_dispatcher_id or self.dispatcher_id

    # ---- (de)serialization ----

    @classmethod
    def from_api(cls, data: Mapping[str, Any]) -> Order:
        """Build an order from the Orders Service JSON shape."""
        master = MasterRef.from_api(data.get("master"))
        master_id = _str_or_none(data.get("master_id"))
        if master_id is None and master is not None:
            master_id = master.id
        return cls(
            id=str(data["id"]),
            status=OrderStatus(str(data["status"])),
            created_at=parse_iso_datetime(data.get("created_at")),
            updated_at=parse_iso_datetime(data.get("updated_at")),
            is_disputed=bool(data.get("is_disputed") or False),
            client=ClientRef.from_api(data.get("client")),
            client_name=_str_or_none(data.get("client_name")),
            client_phone=_str_or_none(data.get("client_phone")),
            master=master,
            master_id=master_id,
            dispatcher_id=_str_or_none(data.get("dispatcher_id")),
            assigned_dispatcher_id=_str_or_none(data.get("assigned_dispatcher_id")),
            urgency=_enum_or_none(OrderUrgency, data.get("urgency")) or OrderUrgency.PLANNED,
            service_type=_str_or_none(data.get("service_type")),
            area=_str_or_none(data.get("area")),
            full_address=_str_or_none(data.get("full_address")),
            orientir=_str_or_none(data.get("orientir")),
            problem_description=_str_or_none(data.get("problem_description")),
            dispatcher_note=_str_or_none(data.get("dispatcher_note")),
            pricing_type=_enum_or_none(PricingType, data.get("pricing_type")) or PricingType.UNKNOWN,
            callout_fee=parse_money(data.get("callout_fee")),
            initial_price=parse_money(data.get("initial_price")),
            final_price=parse_money(data.get("final_price")),
            preferred_date=_str_or_none(data.get("preferred_date")),
            preferred_time=_str_or_none(data.get("preferred_time")),
            payment_method=_enum_or_none(PaymentMethod, data.get("payment_method")),
            payment_proof_url=_str_or_none(data.get("payment_proof_url")),
            confirmed_at=parse_iso_datetime(data.get("confirmed_at")),
            cancellation_reason=_str_or_none(data.get("cancellation_reason")),
            idempotency_key=_str_or_none(data.get("idempotency_key")),
            unconfirmed=bool(data.get("_unconfirmed") or False),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status.value,
            "created_at": to_iso(self.created_at),
            "updated_at": to_iso(self.updated_at),
            "is_disputed": self.is_disputed,
            "client": self.client.to_dict() if self.client else None,
            "client_name": self.client_name,
            "client_phone": self.client_phone,
            "master": self.master.to_dict() if self.master else None,
            "master_id": self.master_id,
            "dispatcher_id": self.dispatcher_id,
            "assigned_dispatcher_id": self.assigned_dispatcher_id,
            "urgency": self.urgency.value,
            "service_type": self.service_type,
            "area": self.area,
            "full_address": self.full_address,
            "orientir": self.orientir,
            "problem_description": self.problem_description,
            "dispatcher_note": self.dispatcher_note,
            "pricing_type": self.pricing_type.value,
            "callout_fee": _money_str(self.callout_fee),
            "initial_price": _money_str(self.initial_price),
            "final_price": _money_str(self.final_price),
            "preferred_date": self.preferred_date,
            "preferred_time": self.preferred_time,
            "payment_method": self.payment_method.value if self.payment_method else None,
            "payment_proof_url": self.payment_proof_url,
            "confirmed_at": to_iso(self.confirmed_at),
            "cancellation_reason": self.cancellation_reason,
            "idempotency_key": self.idempotency_key,
            "_unconfirmed": self.unconfirmed,
        }

    def with_changes(self, changes: Mapping[str, Any]) -> Order:
        """Apply a partial API-shaped patch (``{"status": "claimed", ...}``)."""
        if not changes:
            return self
        merged = self.to_dict()
        merged.update({key: _jsonable(value) for key, value in changes.items()})
        merged["id"] = self.id
        return Order.from_api(merged)

    def mark_unconfirmed(self, flag: bool = True) -> Order:
        if self.unconfirmed == flag:
            return self
        return replace(self, unconfirmed=flag)


def _jsonable(value: Any) -> Any:
    if isinstance(value, (ClientRef, MasterRef)):
        return value.to_dict()
    if isinstance(value, Master):
        return value.as_ref().to_dict()
    if isinstance(value, datetime):
        return to_iso(value)
    if isinstance(value, Decimal):
        return str(value)
    if hasattr(value, "value") and isinstance(getattr(value, "value"), str):
        return value.value
    return value
