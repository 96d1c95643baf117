from __future__ import annotations

from decimal import Decimal

import pytest

from conftest import NOW, make_master, make_order
from dispatch_service.core.dto import MasterRef, PaymentData
from dispatch_service.db.models import ActorRole, OrderStatus, PaymentMethod
from dispatch_service.services.errors import (
    AuthorizationError,
    CannotUnassignSettled,
    ErrorKind,
    InvalidTransition,
    MasterAtCapacity,
    PaymentMethodRequired,
    PaymentProofRequired,
    PriceRequired,
    ValidationError,
)
from dispatch_service.services.order_status import (
    STATUS_COLORS,
    Transition,
    apply_transition,
    can_transition,
    has_master_status,
    is_active,
    is_canceled,
    is_settleable,
    is_settled,
    is_terminal,
    service_label,
    status_color,
    status_label,
)


def _with_master(status: OrderStatus, **kwargs):
    return make_order(status=status, master_id="m-1", master=MasterRef("m-1", "Bakyt"), **kwargs)


def test_predicates_cover_every_status():
    assert is_active(OrderStatus.PLACED) and is_active("claimed")
    assert not is_active(OrderStatus.COMPLETED)
    assert is_settleable(OrderStatus.COMPLETED)
    assert is_settled(OrderStatus.CONFIRMED) and is_settled(OrderStatus.COMPLETED)
    assert is_canceled(OrderStatus.CANCELED_BY_MASTER)
    assert not is_canceled(OrderStatus.EXPIRED)
    assert is_terminal(OrderStatus.EXPIRED)
    assert not is_terminal(OrderStatus.COMPLETED)
    assert has_master_status(OrderStatus.STARTED)
    assert set(STATUS_COLORS) == set(OrderStatus)


def test_assign_moves_placed_order_to_claimed():
    order = make_order(status=OrderStatus.REOPENED)
    master = make_master("m-7", full_name="Bakyt")

    result = apply_transition(order, Transition.ASSIGN, now=NOW, master=master)

    assert result.status is OrderStatus.CLAIMED
    assert result.master_id == "m-7"
    assert result.master.full_name == "Bakyt"
    # input untouched
    assert order.status is OrderStatus.REOPENED
    assert order.master is None


def test_assign_rejects_master_at_capacity():
    master = make_master(active_jobs=3, max_active_jobs=3)
    with pytest.raises(MasterAtCapacity):
        apply_transition(make_order(), Transition.ASSIGN, master=master)


def test_unlimited_master_has_no_capacity_limit():
    master = make_master(active_jobs=40, max_active_jobs=None)
    result = apply_transition(make_order(), Transition.ASSIGN, master=master)
    assert result.status is OrderStatus.CLAIMED


def test_complete_requires_a_price():
    started = _with_master(OrderStatus.STARTED)
    with pytest.raises(PriceRequired):
        apply_transition(started, Transition.COMPLETE)

    result = apply_transition(started, Transition.COMPLETE, final_price=Decimal("1500"))
    assert result.status is OrderStatus.COMPLETED
    assert result.final_price == Decimal("1500")

    priced = _with_master(OrderStatus.STARTED, initial_price=Decimal("900"))
    assert apply_transition(priced, Transition.COMPLETE).final_price == Decimal("900")


def test_confirm_payment_rules():
    completed = _with_master(OrderStatus.COMPLETED, final_price=Decimal("1200"))

    with pytest.raises(PaymentMethodRequired):
        apply_transition(completed, Transition.CONFIRM_PAYMENT, payment=PaymentData(method=None))
    with pytest.raises(PaymentProofRequired):
        apply_transition(
            completed,
            Transition.CONFIRM_PAYMENT,
            payment=PaymentData(method=PaymentMethod.TRANSFER, proof_url="  "),
        )

    confirmed = apply_transition(
        completed,
        Transition.CONFIRM_PAYMENT,
        now=NOW,
        payment=PaymentData(method=PaymentMethod.TRANSFER, proof_url="https://proof/1.jpg"),
    )
    assert confirmed.status is OrderStatus.CONFIRMED
    assert confirmed.payment_method is PaymentMethod.TRANSFER
    assert confirmed.confirmed_at == NOW


def test_unassign_returns_order_to_pool():
    result = apply_transition(_with_master(OrderStatus.STARTED), Transition.UNASSIGN)
    assert result.status is OrderStatus.REOPENED
    assert result.master is None and result.master_id is None


@pytest.mark.parametrize("status", [OrderStatus.COMPLETED, OrderStatus.CONFIRMED])
def test_unassign_is_forbidden_on_settled_orders(status):
    with pytest.raises(CannotUnassignSettled) as exc_info:
        apply_transition(_with_master(status), Transition.UNASSIGN)
    assert exc_info.value.kind is ErrorKind.VALIDATION


def test_cancel_needs_reason_and_keeps_master():
    claimed = _with_master(OrderStatus.CLAIMED)
    with pytest.raises(ValidationError):
        apply_transition(claimed, Transition.CANCEL_BY_CLIENT)

    canceled = apply_transition(claimed, Transition.CANCEL_BY_CLIENT, reason="client_request")
    assert canceled.status is OrderStatus.CANCELED_BY_CLIENT
    assert canceled.cancellation_reason == "client_request"
    assert canceled.master_id == "m-1"


@pytest.mark.parametrize("status", [OrderStatus.CANCELED_BY_MASTER, OrderStatus.EXPIRED])
def test_reopen_from_master_cancel_or_expiry(status):
    result = apply_transition(make_order(status=status), Transition.REOPEN)
    assert result.status is OrderStatus.REOPENED


def test_transitions_outside_the_table_are_invalid():
    with pytest.raises(InvalidTransition) as exc_info:
        apply_transition(make_order(status=OrderStatus.CONFIRMED), Transition.REOPEN)
    assert exc_info.value.kind is ErrorKind.CONFLICT

    with pytest.raises(InvalidTransition):
        apply_transition(make_order(status=OrderStatus.CANCELED_BY_CLIENT), Transition.CANCEL_BY_CLIENT, reason="x")

    assert not can_transition(OrderStatus.COMPLETED, Transition.START)
    assert can_transition(OrderStatus.CLAIMED, Transition.START)


def test_expire_is_server_only():
    placed = make_order()
    with pytest.raises(AuthorizationError):
        apply_transition(placed, Transition.EXPIRE, actor_role=ActorRole.DISPATCHER)
    assert apply_transition(placed, Transition.EXPIRE).status is OrderStatus.EXPIRED


def test_transfer_changes_only_handling_dispatcher():
    claimed = _with_master(OrderStatus.CLAIMED)
    moved = apply_transition(claimed, Transition.TRANSFER, target_dispatcher_id="disp-2")
    assert moved.assigned_dispatcher_id == "disp-2"
    assert moved.status is OrderStatus.CLAIMED
    assert moved.master_id == "m-1"

    with pytest.raises(InvalidTransition):
        apply_transition(make_order(status=OrderStatus.CONFIRMED), Transition.TRANSFER, target_dispatcher_id="disp-2")


def test_labels():
    assert status_label(OrderStatus.CANCELED_BY_CLIENT) == "CANCELED BY CLIENT"
    translations = {"statusClaimed": "Принят"}
    assert status_label("claimed", translations.get) == "ПРИНЯТ"
    assert status_label("placed", translations.get) == "PLACED"
    assert service_label("appliance_repair") == "Appliance repair"
    assert service_label(None) == ""


def test_status_color_falls_back_for_unknown_status():
    assert status_color(OrderStatus.CONFIRMED) == "#22c55e"
    assert status_color("archived") == "#64748b"
