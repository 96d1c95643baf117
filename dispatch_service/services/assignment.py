"""
Назначение, снятие и передача заказов.

Каждая операция сначала проверяет переход локально (без сетевого вызова
при отказе), затем вызывает Orders Service и возвращает заказ в том виде,
в котором его нужно показать до следующей авторитетной загрузки.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from dispatch_service.core.dto import Actor, Dispatcher, Master, Order
from dispatch_service.db.models import OrderStatus
from dispatch_service.services.errors import (
    AssignmentAborted,
    AuthorizationError,
    CannotUnassignSettled,
    InvalidTransition,
    MasterAtCapacity,
    ValidationError,
    error_from_code,
)
from dispatch_service.services.order_status import (
    Transition,
    apply_transition,
    can_transition,
    check_capacity,
    is_settled,
    is_terminal,
)
from dispatch_service.services.orders_api import GatewayResult, OrdersGateway
from dispatch_service.services.time_service import now_utc

__all__ = [
    "ASSIGN_NOTE",
    "REASSIGN_REASON",
    "UNASSIGN_REASON",
    "TransferTarget",
    "assign_master",
    "unassign_master",
    "transfer_order",
    "transfer_targets",
    "can_transfer",
]

_log = logging.getLogger(__name__)

ASSIGN_NOTE = "Dispatcher assignment"
REASSIGN_REASON = "dispatcher_reassign"
UNASSIGN_REASON = "dispatcher_unassign"


def _raise_for(result: GatewayResult, *, assign: bool = False) -> None:
    if result.success:
        return
    if assign:
        raise error_from_code(result.error, result.message)
    raise error_from_code(result.error, result.message, messages={})


async def assign_master(
    gateway: OrdersGateway,
    order: Order,
    master: Master,
    actor: Actor,
    *,
    note: str = ASSIGN_NOTE,
) -> Order:
    """Force-assign *master*; an existing master is unassigned first.

    Raises ``MasterAtCapacity`` before any call, ``AssignmentAborted`` when
    the preliminary unassign fails (nothing else is attempted).
    """
    if not check_capacity(master):
        raise MasterAtCapacity()

    needs_reassign = order.has_master
    if needs_reassign:
        if is_settled(order):
            raise CannotUnassignSettled()
        if not can_transition(order, Transition.UNASSIGN):
            raise InvalidTransition()
    elif not can_transition(order, Transition.ASSIGN):
        raise InvalidTransition(f"Cannot assign master to order in status {order.status.value}")

    if needs_reassign:
        _log.info("assign_master: order=%s reassign from master=%s", order.id, order.master_id)
        unassigned = await gateway.unassign_master(order.id, actor.id, REASSIGN_REASON, actor.role)
        if not unassigned.success:
            _log.warning(
                "assign_master: order=%s unassign failed error=%s", order.id, unassigned.error
            )
            if (unassigned.error or "").upper() == "UNAUTHORIZED":
                raise AuthorizationError(unassigned.message)
            raise AssignmentAborted(code=unassigned.error or AssignmentAborted.default_code)

    result = await gateway.force_assign_master(order.id, master.id, note)
    if not result.success:
        _log.warning(
            "assign_master: order=%s master=%s failed error=%s", order.id, master.id, result.error
        )
    _raise_for(result, assign=True)

    _log.info("assign_master: order=%s master=%s OK", order.id, master.id)
    if result.order is not None:
        return result.order
    return order.with_changes(
        {
            "status": OrderStatus.CLAIMED,
            "master_id": master.id,
            "master": master.as_ref(),
            "updated_at": now_utc(),
        }
    )


async def unassign_master(
    gateway: OrdersGateway,
    order: Order,
    actor: Actor,
    *,
    reason: str = UNASSIGN_REASON,
) -> Order:
    """Remove the master and return the order to the pool (``reopened``)."""
    # local check gives the dedicated error for settled orders
    expected = apply_transition(order, Transition.UNASSIGN, actor_role=actor.role)

    result = await gateway.unassign_master(order.id, actor.id, reason, actor.role)
    _raise_for(result)
    _log.info("unassign_master: order=%s reason=%s OK", order.id, reason)
    return result.order if result.order is not None else expected


def can_transfer(order: Order, actor: Actor) -> bool:
    if is_terminal(order):
        return False
    return actor.is_admin or order.handling_dispatcher_id == actor.id


async def transfer_order(
    gateway: OrdersGateway,
    order: Order,
    actor: Actor,
    target_dispatcher_id: str,
) -> Order:
    """Hand the order over to another dispatcher; master and status stay."""
    if not target_dispatcher_id:
        raise ValidationError("Select a dispatcher", code="TARGET_REQUIRED")
    if target_dispatcher_id == actor.id:
        raise ValidationError("Order is already yours", code="SAME_DISPATCHER")
    if not actor.is_admin and order.handling_dispatcher_id != actor.id:
        raise AuthorizationError("Only the handling dispatcher can transfer this order")
    expected = apply_transition(
        order,
        Transition.TRANSFER,
        actor_role=actor.role,
        target_dispatcher_id=target_dispatcher_id,
    )

    result = await gateway.transfer_order(order.id, actor.id, target_dispatcher_id, actor.role)
    _raise_for(result)
    _log.info("transfer_order: order=%s %s -> %s", order.id, actor.id, target_dispatcher_id)
    return result.order if result.order is not None else expected


@dataclass(frozen=True, slots=True)
class TransferTarget:
    id: str
    label: str


def transfer_targets(dispatchers: Iterable[Dispatcher], current_user_id: Optional[str]) -> list[TransferTarget]:
    targets: list[TransferTarget] = []
    for dispatcher in dispatchers:
        if not dispatcher.id or dispatcher.id == current_user_id:
            continue
        label = (
            dispatcher.full_name
            or dispatcher.email
            or dispatcher.phone
            or f"Dispatcher {dispatcher.id[:6]}"
        )
        targets.append(TransferTarget(id=dispatcher.id, label=label))
    return targets
