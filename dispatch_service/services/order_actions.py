from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from dispatch_service.core.dto import Actor, ClientRef, Order, PaymentData
from dispatch_service.services.errors import ValidationError, error_from_code
from dispatch_service.services.order_status import CANCEL_REASONS, Transition, apply_transition
from dispatch_service.services.orders_api import GatewayResult, OrdersGateway
from dispatch_service.services.time_service import now_utc
from dispatch_service.utils.numbers import parse_money
from dispatch_service.utils.phone import PHONE_FORMAT_ERROR, normalize_phone

__all__ = [
    "CLIENT_CANCEL_REASON",
    "INITIAL_BELOW_CALLOUT",
    "EDITABLE_FIELDS",
    "check_price_not_below_fee",
    "confirm_payment",
    "cancel_order",
    "reopen_order",
    "build_edit_payload",
    "update_order_fields",
]

_log = logging.getLogger(__name__)

CLIENT_CANCEL_REASON = "client_request"
INITIAL_BELOW_CALLOUT = "Initial price cannot be lower than call-out fee"

EDITABLE_FIELDS = (
    "problem_description",
    "dispatcher_note",
    "full_address",
    "area",
    "orientir",
    "callout_fee",
    "initial_price",
    "client_name",
    "client_phone",
)


def _raise_for(result: GatewayResult) -> None:
    if not result.success:
        raise error_from_code(result.error, result.message, messages={})


def check_price_not_below_fee(initial_price: Any, callout_fee: Any) -> None:
    initial = parse_money(initial_price)
    fee = parse_money(callout_fee)
    if initial is not None and fee is not None and initial < fee:
        raise ValidationError(INITIAL_BELOW_CALLOUT, code="INITIAL_BELOW_CALLOUT")


async def confirm_payment(
    gateway: OrdersGateway,
    order: Order,
    actor: Actor,
    payment: PaymentData,
) -> Order:
    """Confirm payment of a completed order; transfers need a proof link."""
    expected = apply_transition(
        order,
        Transition.CONFIRM_PAYMENT,
        now=now_utc(),
        actor_role=actor.role,
        payment=payment,
    )
    result = await gateway.confirm_payment(
        order.id, actor.id, expected.payment_method, expected.payment_proof_url
    )
    _raise_for(result)
    _log.info("confirm_payment: order=%s method=%s", order.id, expected.payment_method.value)
    return result.order if result.order is not None else expected


async def cancel_order(
    gateway: OrdersGateway,
    order: Order,
    actor: Actor,
    *,
    reason: str = CLIENT_CANCEL_REASON,
    by_master: bool = False,
) -> Order:
    """Cancel on behalf of the client (default) or the master."""
    if reason not in CANCEL_REASONS:
        raise ValidationError("Select a cancellation reason", code="REASON_REQUIRED")
    transition = Transition.CANCEL_BY_MASTER if by_master else Transition.CANCEL_BY_CLIENT
    expected = apply_transition(order, transition, actor_role=actor.role, reason=reason)
    result = await gateway.cancel_order(order.id, actor.id, reason, actor.role)
    _raise_for(result)
    _log.info("cancel_order: order=%s -> %s reason=%s", order.id, expected.status.value, reason)
    return result.order if result.order is not None else expected


async def reopen_order(gateway: OrdersGateway, order: Order, actor: Actor) -> Order:
    expected = apply_transition(order, Transition.REOPEN, actor_role=actor.role)
    result = await gateway.reopen_order(order.id, actor.id, actor.role)
    _raise_for(result)
    _log.info("reopen_order: order=%s", order.id)
    return result.order if result.order is not None else expected


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def build_edit_payload(order: Order, edits: Mapping[str, Any]) -> dict[str, Any]:
    """Validate inline edits and build the update payload.

    Fields missing from *edits* keep their current values.
    """
    current = order.to_dict()
    current["client_name"] = order.client_display_name
    current["client_phone"] = order.client_display_phone
    merged = {name: edits.get(name, current.get(name)) for name in EDITABLE_FIELDS}

    phone = _clean(merged["client_phone"])
    if phone:
        normalized = normalize_phone(phone)
        if normalized is None:
            raise ValidationError(PHONE_FORMAT_ERROR, code="INVALID_PHONE")
        phone = normalized

    check_price_not_below_fee(merged["initial_price"], merged["callout_fee"])

    return {
        "problem_description": _clean(merged["problem_description"]),
        "dispatcher_note": _clean(merged["dispatcher_note"]),
        "full_address": _clean(merged["full_address"]),
        "area": _clean(merged["area"]),
        "orientir": _clean(merged["orientir"]),
        "callout_fee": parse_money(merged["callout_fee"]),
        "initial_price": parse_money(merged["initial_price"]),
        "client_name": _clean(merged["client_name"]),
        "client_phone": phone,
    }


async def update_order_fields(
    gateway: OrdersGateway,
    order: Order,
    edits: Mapping[str, Any],
) -> Order:
    """Inline edit of descriptive fields, address, prices and client contact."""
    updates = build_edit_payload(order, edits)
    result = await gateway.update_order_fields(order.id, updates)
    _raise_for(result)
    _log.info("update_order_fields: order=%s", order.id)
    if result.order is not None:
        return result.order
    client = order.client or ClientRef()
    patched = dict(updates)
    patched["client"] = ClientRef(
        id=client.id,
        full_name=updates["client_name"],
        phone=updates["client_phone"],
    )
    patched["updated_at"] = now_utc()
    return order.with_changes(patched)
