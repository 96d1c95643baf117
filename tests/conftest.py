from __future__ import annotations

import itertools
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Mapping, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from dispatch_service.core.dto import Actor, Dispatcher, Master, MasterRef, Order
from dispatch_service.db.models import ActorRole, OrderStatus, PaymentMethod
from dispatch_service.db.session import init_local_storage
from dispatch_service.services.local_storage import LocalStorage
from dispatch_service.services.orders_api import GatewayResult

UTC = timezone.utc
NOW = datetime(2025, 3, 10, 12, 0, tzinfo=UTC)

_ids = itertools.count(1)


def make_order(**overrides: Any) -> Order:
    """Order factory with sensible defaults for queue tests."""
    number = next(_ids)
    values: dict[str, Any] = {
        "id": f"order-{number:04d}-abcdef{number:02d}",
        "status": OrderStatus.PLACED,
        "created_at": NOW - timedelta(minutes=5),
        "updated_at": NOW - timedelta(minutes=5),
        "client_name": "Client",
        "client_phone": "+996555000111",
        "dispatcher_id": "disp-1",
        "assigned_dispatcher_id": None,
        "service_type": "plumbing",
        "area": "Center",
        "full_address": "Chui 1",
        "problem_description": "Leaking tap",
    }
    values.update(overrides)
    return Order(**values)


def make_master(master_id: str = "m-1", **overrides: Any) -> Master:
    values: dict[str, Any] = {
        "id": master_id,
        "full_name": f"Master {master_id}",
        "phone": "+996700000001",
        "active_jobs": 0,
        "max_active_jobs": 3,
    }
    values.update(overrides)
    return Master(**values)


class FakeOrdersGateway:
    """In-memory Orders Service with a minimal server-side state machine."""

    def __init__(
        self,
        orders: Optional[list[Order]] = None,
        masters: Optional[list[Master]] = None,
        dispatchers: Optional[list[Dispatcher]] = None,
    ) -> None:
        self.orders: dict[str, Order] = {order.id: order for order in orders or []}
        self.masters = {master.id: master for master in masters or []}
        self.dispatchers = list(dispatchers or [])
        self.calls: list[tuple[str, tuple]] = []
        self._failures: dict[str, list[Any]] = {}
        self.return_orders = False
        self._created = itertools.count(1)
        self.idempotency_keys: list[str] = []

    # ---- test helpers ----

    def fail_next(self, method: str, error: Any) -> None:
        """Next call of *method* fails: a code string or an exception to raise."""
        self._failures.setdefault(method, []).append(error)

    def count(self, method: str) -> int:
        return sum(1 for name, _ in self.calls if name == method)

    def _record(self, method: str, *args: Any) -> Optional[GatewayResult]:
        self.calls.append((method, args))
        queue = self._failures.get(method)
        if queue:
            error = queue.pop(0)
            if isinstance(error, BaseException):
                raise error
            return GatewayResult.fail(error, f"{method} failed: {error}")
        return None

    def _ok(self, order: Order) -> GatewayResult:
        self.orders[order.id] = order
        return GatewayResult.ok(order=order if self.return_orders else None, order_id=order.id)

    def _status_error(self, order_id: str, allowed: set[OrderStatus]) -> Optional[GatewayResult]:
        order = self.orders.get(order_id)
        if order is None:
            return GatewayResult.fail("ORDER_NOT_FOUND")
        if order.status not in allowed:
            return GatewayResult.fail("INVALID_STATUS")
        return None

    # ---- reads ----

    async def get_orders_for_dispatcher(self, dispatcher_id: str) -> GatewayResult:
        failure = self._record("get_orders_for_dispatcher", dispatcher_id)
        if failure:
            return failure
        items = [
            order
            for order in self.orders.values()
            if order.handling_dispatcher_id == dispatcher_id
        ]
        return GatewayResult.ok(items=items)

    async def list_available_masters(self) -> GatewayResult:
        failure = self._record("list_available_masters")
        return failure or GatewayResult.ok(items=list(self.masters.values()))

    async def list_dispatchers(self) -> GatewayResult:
        failure = self._record("list_dispatchers")
        return failure or GatewayResult.ok(items=list(self.dispatchers))

    # ---- mutations ----

    async def create_order(self, fields: Mapping[str, Any], idempotency_key: str, creating_user_id: str) -> GatewayResult:
        failure = self._record("create_order", dict(fields), idempotency_key, creating_user_id)
        if failure:
            return failure
        self.idempotency_keys.append(idempotency_key)
        order_id = f"new-{next(self._created):03d}"
        order = Order.from_api(
            {
                **{k: (str(v) if isinstance(v, Decimal) else v) for k, v in fields.items()},
                "id": order_id,
                "status": "placed",
                "dispatcher_id": creating_user_id,
                "assigned_dispatcher_id": creating_user_id,
                "created_at": NOW.isoformat(),
                "updated_at": NOW.isoformat(),
            }
        )
        self.orders[order_id] = order
        return GatewayResult.ok(order=order, order_id=order_id)

    async def force_assign_master(self, order_id: str, master_id: str, note: str) -> GatewayResult:
        failure = self._record("force_assign_master", order_id, master_id, note)
        if failure:
            return failure
        error = self._status_error(order_id, {OrderStatus.PLACED, OrderStatus.REOPENED})
        if error:
            return error
        master = self.masters.get(master_id)
        if master is None:
            return GatewayResult.fail("MASTER_NOT_FOUND")
        order = self.orders[order_id].with_changes(
            {"status": "claimed", "master_id": master.id, "master": MasterRef(master.id, master.full_name, master.phone)}
        )
        return self._ok(order)

    async def unassign_master(self, order_id: str, actor_id: str, reason_code: str, actor_role: ActorRole) -> GatewayResult:
        failure = self._record("unassign_master", order_id, actor_id, reason_code, actor_role)
        if failure:
            return failure
        error = self._status_error(order_id, {OrderStatus.CLAIMED, OrderStatus.STARTED})
        if error:
            return error
        return self._ok(self.orders[order_id].with_changes({"status": "reopened", "master_id": None, "master": None}))

    async def transfer_order(self, order_id: str, actor_id: str, target_dispatcher_id: str, actor_role: ActorRole) -> GatewayResult:
        failure = self._record("transfer_order", order_id, actor_id, target_dispatcher_id, actor_role)
        if failure:
            return failure
        order = self.orders[order_id].with_changes({"assigned_dispatcher_id": target_dispatcher_id})
        return self._ok(order)

    async def confirm_payment(self, order_id: str, actor_id: str, method: PaymentMethod, proof_url: Optional[str]) -> GatewayResult:
        failure = self._record("confirm_payment", order_id, actor_id, method, proof_url)
        if failure:
            return failure
        error = self._status_error(order_id, {OrderStatus.COMPLETED})
        if error:
            return error
        order = self.orders[order_id].with_changes(
            {"status": "confirmed", "payment_method": method, "payment_proof_url": proof_url, "confirmed_at": NOW}
        )
        return self._ok(order)

    async def cancel_order(self, order_id: str, actor_id: str, reason_code: str, actor_role: ActorRole) -> GatewayResult:
        failure = self._record("cancel_order", order_id, actor_id, reason_code, actor_role)
        if failure:
            return failure
        order = self.orders[order_id].with_changes({"status": "canceled_by_client", "cancellation_reason": reason_code})
        return self._ok(order)

    async def reopen_order(self, order_id: str, actor_id: str, actor_role: ActorRole) -> GatewayResult:
        failure = self._record("reopen_order", order_id, actor_id, actor_role)
        if failure:
            return failure
        order = self.orders[order_id].with_changes({"status": "reopened", "master_id": None, "master": None})
        return self._ok(order)

    async def update_order_fields(self, order_id: str, fields: Mapping[str, Any]) -> GatewayResult:
        failure = self._record("update_order_fields", order_id, dict(fields))
        if failure:
            return failure
        return self._ok(self.orders[order_id].with_changes(fields))


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def dispatcher() -> Actor:
    return Actor(id="disp-1", role=ActorRole.DISPATCHER, full_name="Aibek")


@pytest.fixture
def admin() -> Actor:
    return Actor(id="admin-1", role=ActorRole.ADMIN, full_name="Admin")


@pytest_asyncio.fixture
async def storage(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'local.db'}")
    await init_local_storage(engine)
    try:
        yield LocalStorage(async_sessionmaker(engine, expire_on_commit=False))
    finally:
        await engine.dispose()
