"""
Конечный автомат статусов заказа.

Таблица переходов задана один раз (``TRANSITIONS``); все проверки статуса
в остальном коде идут через предикаты этого модуля. ``apply_transition``
чистая: возвращает новый заказ или бросает исключение, вход не меняется.
Подтверждение от Orders Service всегда авторитетно.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional, Union

from dispatch_service.core.dto import Master, Order, PaymentData
from dispatch_service.db.models import ActorRole, OrderStatus, PaymentMethod
from dispatch_service.services.errors import (
    AuthorizationError,
    CannotUnassignSettled,
    InvalidTransition,
    MasterAtCapacity,
    PaymentMethodRequired,
    PaymentProofRequired,
    PriceRequired,
    ValidationError,
)
from dispatch_service.services.time_service import now_utc

__all__ = [
    "ACTIVE_STATUSES",
    "SETTLED_STATUSES",
    "CANCELED_STATUSES",
    "TERMINAL_STATUSES",
    "MASTER_STATUSES",
    "STATUS_COLORS",
    "DEFAULT_STATUS_COLOR",
    "SERVICE_TYPES",
    "CANCEL_REASONS",
    "Transition",
    "TransitionRule",
    "TRANSITIONS",
    "is_active",
    "is_terminal",
    "is_settleable",
    "is_payable",
    "is_settled",
    "is_canceled",
    "is_disputed",
    "has_master_status",
    "can_transition",
    "check_capacity",
    "apply_transition",
    "status_label",
    "status_color",
    "service_label",
]

StatusLike = Union[OrderStatus, Order, str]

ACTIVE_STATUSES = frozenset(
    {OrderStatus.PLACED, OrderStatus.REOPENED, OrderStatus.CLAIMED, OrderStatus.STARTED}
)
SETTLED_STATUSES = frozenset({OrderStatus.COMPLETED, OrderStatus.CONFIRMED})
CANCELED_STATUSES = frozenset({OrderStatus.CANCELED_BY_CLIENT, OrderStatus.CANCELED_BY_MASTER})
# expired ведёт себя как отмена, но выставляется только сервером
TERMINAL_STATUSES = frozenset({OrderStatus.CONFIRMED, OrderStatus.EXPIRED} | CANCELED_STATUSES)
MASTER_STATUSES = frozenset(
    {OrderStatus.CLAIMED, OrderStatus.STARTED, OrderStatus.COMPLETED, OrderStatus.CONFIRMED}
)

STATUS_COLORS: dict[OrderStatus, str] = {
    OrderStatus.PLACED: "#3b82f6",
    OrderStatus.CLAIMED: "#f59e0b",
    OrderStatus.STARTED: "#8b5cf6",
    OrderStatus.COMPLETED: "#f97316",
    OrderStatus.CONFIRMED: "#22c55e",
    OrderStatus.CANCELED_BY_MASTER: "#ef4444",
    OrderStatus.CANCELED_BY_CLIENT: "#ef4444",
    OrderStatus.REOPENED: "#06b6d4",
    OrderStatus.EXPIRED: "#6b7280",
}
DEFAULT_STATUS_COLOR = "#64748b"

SERVICE_TYPES: tuple[str, ...] = (
    "plumbing",
    "electrician",
    "cleaning",
    "carpenter",
    "repair",
    "installation",
    "maintenance",
    "other",
)

CANCEL_REASONS: tuple[str, ...] = (
    "client_request",
    "scope_mismatch",
    "client_unavailable",
    "safety_risk",
    "tools_missing",
    "materials_unavailable",
    "address_unreachable",
    "other",
)


def _status(value: StatusLike) -> OrderStatus:
    if isinstance(value, Order):
        return value.status
    if isinstance(value, OrderStatus):
        return value
    return OrderStatus(str(value))


# ---- predicates ----


def is_active(value: StatusLike) -> bool:
    return _status(value) in ACTIVE_STATUSES


def is_terminal(value: StatusLike) -> bool:
    return _status(value) in TERMINAL_STATUSES


def is_settleable(value: StatusLike) -> bool:
    """Заказ ждёт подтверждения оплаты."""
    return _status(value) is OrderStatus.COMPLETED


is_payable = is_settleable


def is_settled(value: StatusLike) -> bool:
    return _status(value) in SETTLED_STATUSES


def is_canceled(value: StatusLike) -> bool:
    return _status(value) in CANCELED_STATUSES


def is_disputed(order: Order) -> bool:
    return bool(order.is_disputed)


def has_master_status(value: StatusLike) -> bool:
    return _status(value) in MASTER_STATUSES


# ---- transitions ----


class Transition(str, enum.Enum):
    ASSIGN = "assign"
    START = "start"
    COMPLETE = "complete"
    CONFIRM_PAYMENT = "confirm_payment"
    UNASSIGN = "unassign"
    CANCEL_BY_CLIENT = "cancel_by_client"
    CANCEL_BY_MASTER = "cancel_by_master"
    REOPEN = "reopen"
    EXPIRE = "expire"
    TRANSFER = "transfer"


@dataclass(frozen=True, slots=True)
class TransitionRule:
    sources: frozenset[OrderStatus]
    # None -> статус не меняется
    target: Optional[OrderStatus]
    # пустое множество -> только сервер
    actors: frozenset[ActorRole]


_STAFF = frozenset({ActorRole.DISPATCHER, ActorRole.ADMIN})
_CANCELABLE = frozenset(
    {OrderStatus.PLACED, OrderStatus.REOPENED, OrderStatus.CLAIMED, OrderStatus.STARTED}
)

TRANSITIONS: dict[Transition, TransitionRule] = {
    Transition.ASSIGN: TransitionRule(
        frozenset({OrderStatus.PLACED, OrderStatus.REOPENED}), OrderStatus.CLAIMED, _STAFF
    ),
    Transition.START: TransitionRule(
        frozenset({OrderStatus.CLAIMED}), OrderStatus.STARTED, frozenset({ActorRole.MASTER})
    ),
    Transition.COMPLETE: TransitionRule(
        frozenset({OrderStatus.STARTED}), OrderStatus.COMPLETED, frozenset({ActorRole.MASTER})
    ),
    Transition.CONFIRM_PAYMENT: TransitionRule(
        frozenset({OrderStatus.COMPLETED}), OrderStatus.CONFIRMED, _STAFF
    ),
    Transition.UNASSIGN: TransitionRule(
        frozenset({OrderStatus.CLAIMED, OrderStatus.STARTED}), OrderStatus.REOPENED, _STAFF
    ),
    Transition.CANCEL_BY_CLIENT: TransitionRule(
        _CANCELABLE, OrderStatus.CANCELED_BY_CLIENT, _STAFF | {ActorRole.CLIENT}
    ),
    Transition.CANCEL_BY_MASTER: TransitionRule(
        _CANCELABLE, OrderStatus.CANCELED_BY_MASTER, _STAFF | {ActorRole.MASTER}
    ),
    Transition.REOPEN: TransitionRule(
        frozenset({OrderStatus.CANCELED_BY_MASTER, OrderStatus.EXPIRED}), OrderStatus.REOPENED, _STAFF
    ),
    Transition.EXPIRE: TransitionRule(
        frozenset({OrderStatus.PLACED, OrderStatus.REOPENED}), OrderStatus.EXPIRED, frozenset()
    ),
    Transition.TRANSFER: TransitionRule(
        frozenset(OrderStatus) - TERMINAL_STATUSES, None, _STAFF
    ),
}


def can_transition(value: StatusLike, transition: Transition) -> bool:
    return _status(value) in TRANSITIONS[transition].sources


def check_capacity(master: Master) -> bool:
    """True when the master may take one more active job."""
    if master.max_active_jobs is None:
        return True
    return master.active_jobs < master.max_active_jobs


def apply_transition(
    order: Order,
    transition: Transition,
    *,
    now: Optional[datetime] = None,
    actor_role: Optional[ActorRole] = None,
    master: Optional[Master] = None,
    final_price: Optional[Decimal] = None,
    payment: Optional[PaymentData] = None,
    reason: Optional[str] = None,
    target_dispatcher_id: Optional[str] = None,
) -> Order:
    """Return *order* moved through *transition*.

    ``actor_role=None`` means the change comes from the server (e.g. expire);
    a client-side actor must be listed for the transition.
    """
    rule = TRANSITIONS[transition]
    if actor_role is not None and actor_role not in rule.actors:
        raise AuthorizationError(code="UNAUTHORIZED")

    if transition is Transition.UNASSIGN and is_settled(order):
        raise CannotUnassignSettled()
    if order.status not in rule.sources:
        raise InvalidTransition(
            f"Cannot {transition.value} order in status {order.status.value}",
        )

    stamp = now or now_utc()
    changes: dict = {"updated_at": stamp}
    if rule.target is not None:
        changes["status"] = rule.target

    if transition is Transition.ASSIGN:
        if master is None:
            raise ValidationError("Select a master", code="MASTER_REQUIRED")
        if not check_capacity(master):
            raise MasterAtCapacity()
        changes["master"] = master.as_ref()
        changes["master_id"] = master.id
    elif transition is Transition.COMPLETE:
        price = final_price if final_price is not None else order.final_price
        if price is None:
            price = order.initial_price
        if price is None:
            raise PriceRequired()
        changes["final_price"] = price
    elif transition is Transition.CONFIRM_PAYMENT:
        method = payment.method if payment else None
        if method is None:
            raise PaymentMethodRequired()
        method = PaymentMethod(method)
        proof = (payment.proof_url or "").strip() or None
        if method is PaymentMethod.TRANSFER and not proof:
            raise PaymentProofRequired()
        changes["payment_method"] = method
        changes["payment_proof_url"] = proof
        changes["confirmed_at"] = stamp
    elif transition in (Transition.UNASSIGN, Transition.REOPEN):
        changes["master"] = None
        changes["master_id"] = None
        changes["cancellation_reason"] = None
    elif transition in (Transition.CANCEL_BY_CLIENT, Transition.CANCEL_BY_MASTER):
        if not reason:
            raise ValidationError("Cancellation reason is required", code="REASON_REQUIRED")
        changes["cancellation_reason"] = reason
    elif transition is Transition.TRANSFER:
        if not target_dispatcher_id:
            raise ValidationError("Select a dispatcher", code="TARGET_REQUIRED")
        changes["assigned_dispatcher_id"] = target_dispatcher_id

    return replace(order, **changes)


# ---- presentation ----


def status_label(status: StatusLike, translate: Optional[Callable[[str], Optional[str]]] = None) -> str:
    """Upper-cased label; *translate* receives keys like ``statusCanceledByClient``."""
    value = _status(status).value
    if translate is not None:
        key = "status" + "".join(part.capitalize() for part in value.split("_"))
        translated = translate(key)
        if translated and translated != key:
            return translated.upper()
    return value.replace("_", " ").upper()


def service_label(code: Optional[str], translate: Optional[Callable[[str], Optional[str]]] = None) -> str:
    if not code:
        return ""
    if translate is not None:
        key = "service" + "".join(part.capitalize() for part in code.lower().split("_"))
        translated = translate(key)
        if translated and translated != key:
            return translated
    return code[:1].upper() + code[1:].replace("_", " ")


def status_color(status: StatusLike) -> str:
    try:
        return STATUS_COLORS.get(_status(status), DEFAULT_STATUS_COLOR)
    except ValueError:
        return DEFAULT_STATUS_COLOR
