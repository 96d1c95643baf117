from __future__ import annotations

from decimal import Decimal

import pytest
import pytest_asyncio
from aiohttp import test_utils, web

from dispatch_service.db.models import ActorRole, OrderStatus, PaymentMethod
from dispatch_service.services.errors import TransportError
from dispatch_service.services.orders_api import HttpOrdersGateway

ORDER = {
    "id": "order-1",
    "status": "placed",
    "created_at": "2025-03-10T06:00:00Z",
    "client": {"id": "c-1", "full_name": "Aigul", "phone": "+996555123456"},
    "callout_fee": "500",
}


class _Recorder:
    def __init__(self):
        self.requests: list[tuple[str, str, dict, object]] = []


def _app(recorder: _Recorder) -> web.Application:
    async def remember(request: web.Request):
        body = await request.json() if request.can_read_body else None
        recorder.requests.append((request.method, request.path_qs, dict(request.headers), body))
        return body

    async def dispatcher_orders(request):
        await remember(request)
        return web.json_response({"orders": [ORDER, {"no": "id"}]})

    async def masters(request):
        await remember(request)
        return web.json_response([{"id": "m-1", "full_name": "Bakyt", "active_jobs": 2, "max_active_jobs": 3}])

    async def dispatchers(request):
        await remember(request)
        return web.json_response({"dispatchers": [{"id": "disp-2", "email": "ops@example.kg"}]})

    async def create(request):
        await remember(request)
        return web.json_response({"success": True, "order": {**ORDER, "id": "order-9"}}, status=201)

    async def force_assign(request):
        body = await remember(request)
        if body["master_id"] == "m-busy":
            return web.json_response({"success": False, "error": "MASTER_INACTIVE"})
        return web.json_response({"success": True, "order_id": request.match_info["order_id"]})

    async def unassign(request):
        await remember(request)
        return web.json_response({"message": "nope"}, status=409)

    async def confirm(request):
        await remember(request)
        return web.json_response({}, status=403)

    async def cancel(request):
        await remember(request)
        return web.json_response({"success": True})

    async def reopen(request):
        await remember(request)
        return web.Response(status=503, text="maintenance")

    async def patch(request):
        await remember(request)
        return web.Response(status=404)

    app = web.Application()
    app.router.add_get("/dispatcher/orders", dispatcher_orders)
    app.router.add_get("/masters/available", masters)
    app.router.add_get("/dispatchers", dispatchers)
    app.router.add_post("/orders", create)
    app.router.add_post("/orders/{order_id}/force-assign", force_assign)
    app.router.add_post("/orders/{order_id}/unassign", unassign)
    app.router.add_post("/orders/{order_id}/confirm-payment", confirm)
    app.router.add_post("/orders/{order_id}/cancel", cancel)
    app.router.add_post("/orders/{order_id}/reopen", reopen)
    app.router.add_patch("/orders/{order_id}", patch)
    return app


@pytest_asyncio.fixture
async def api():
    recorder = _Recorder()
    async with test_utils.TestServer(_app(recorder)) as server:
        gateway = HttpOrdersGateway(str(server.make_url("/")), token="secret", timeout_seconds=5)
        try:
            yield gateway, recorder
        finally:
            await gateway.close()


@pytest.mark.asyncio
async def test_reads_parse_lists(api):
    gateway, recorder = api

    orders = await gateway.get_orders_for_dispatcher("disp-1")
    masters = await gateway.list_available_masters()
    dispatchers = await gateway.list_dispatchers()

    assert [o.id for o in orders.items] == ["order-1"]
    assert orders.items[0].status is OrderStatus.PLACED
    assert orders.items[0].client_display_name == "Aigul"
    assert masters.items[0].max_active_jobs == 3
    assert dispatchers.items[0].email == "ops@example.kg"

    method, path, headers, _ = recorder.requests[0]
    assert (method, path) == ("GET", "/dispatcher/orders?dispatcher_id=disp-1")
    assert headers["Authorization"] == "Bearer secret"


@pytest.mark.asyncio
async def test_create_sends_idempotency_key(api):
    gateway, recorder = api

    result = await gateway.create_order({"client_name": "Aigul", "callout_fee": Decimal("500")}, "key-1", "disp-1")

    assert result.success
    assert result.order_id == "order-9"
    assert result.order.callout_fee == Decimal("500")
    _, _, headers, body = recorder.requests[0]
    assert headers["Idempotency-Key"] == "key-1"
    assert body == {
        "client_name": "Aigul",
        "callout_fee": "500",
        "creating_user_id": "disp-1",
        "idempotency_key": "key-1",
    }


@pytest.mark.asyncio
async def test_business_failures_are_results(api):
    gateway, recorder = api

    ok = await gateway.force_assign_master("order-1", "m-1", "Dispatcher assignment")
    refused = await gateway.force_assign_master("order-1", "m-busy", "Dispatcher assignment")
    conflict = await gateway.unassign_master("order-1", "disp-1", "dispatcher_reassign", ActorRole.DISPATCHER)
    forbidden = await gateway.confirm_payment("order-1", "disp-1", PaymentMethod.CASH, None)
    missing = await gateway.update_order_fields("order-1", {"area": "South"})

    assert ok.success and ok.order_id == "order-1" and ok.order is None
    assert (refused.success, refused.error) == (False, "MASTER_INACTIVE")
    assert (conflict.error, conflict.message) == ("INVALID_STATUS", "nope")
    assert forbidden.error == "UNAUTHORIZED"
    assert missing.error == "ORDER_NOT_FOUND"

    assert recorder.requests[2][3]["actor_role"] == "dispatcher"
    assert recorder.requests[3][3]["method"] == "cash"


@pytest.mark.asyncio
async def test_server_errors_raise_transport_error(api):
    gateway, _ = api
    assert (await gateway.cancel_order("order-1", "disp-1", "client_request", ActorRole.DISPATCHER)).success

    with pytest.raises(TransportError) as exc_info:
        await gateway.reopen_order("order-1", "disp-1", ActorRole.DISPATCHER)
    assert exc_info.value.code == "HTTP_503"


@pytest.mark.asyncio
async def test_unreachable_service_is_a_transport_error():
    gateway = HttpOrdersGateway("http://127.0.0.1:9", timeout_seconds=1)
    try:
        with pytest.raises(TransportError) as exc_info:
            await gateway.list_dispatchers()
    finally:
        await gateway.close()
    assert exc_info.value.code == "NETWORK"
    assert exc_info.value.message == "Something went wrong. Please try again"
