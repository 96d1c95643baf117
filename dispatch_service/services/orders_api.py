"""
Шлюз к Orders Service.

``OrdersGateway`` описывает операции удалённого сервиса; движок диспетчера
зависит только от протокола. ``HttpOrdersGateway`` реализует его поверх
JSON REST API через aiohttp.

Бизнес-отказы (неверный статус, мастер не найден и т.п.) возвращаются как
``GatewayResult(success=False, error=CODE)``. Сетевые ошибки и 5xx
поднимаются как ``TransportError``.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Mapping, Optional, Protocol, Sequence

import aiohttp

from dispatch_service.config import settings
from dispatch_service.core.dto import Dispatcher, Master, Order
from dispatch_service.db.models import ActorRole, PaymentMethod
from dispatch_service.services.errors import TransportError

__all__ = ["GatewayResult", "OrdersGateway", "HttpOrdersGateway"]

_log = logging.getLogger(__name__)


@dataclass(slots=True)
class GatewayResult:
    success: bool
    error: Optional[str] = None
    message: Optional[str] = None
    order: Optional[Order] = None
    order_id: Optional[str] = None
    # Список для операций чтения (заказы, мастера, диспетчеры)
    items: list[Any] = field(default_factory=list)

    @classmethod
    def ok(cls, **kwargs: Any) -> GatewayResult:
        return cls(success=True, **kwargs)

    @classmethod
    def fail(cls, error: str, message: Optional[str] = None) -> GatewayResult:
        return cls(success=False, error=error, message=message)


class OrdersGateway(Protocol):
    async def get_orders_for_dispatcher(self, dispatcher_id: str) -> GatewayResult: ...

    async def create_order(
        self,
        fields: Mapping[str, Any],
        idempotency_key: str,
        creating_user_id: str,
    ) -> GatewayResult: ...

    async def force_assign_master(self, order_id: str, master_id: str, note: str) -> GatewayResult: ...

    async def unassign_master(
        self,
        order_id: str,
        actor_id: str,
        reason_code: str,
        actor_role: ActorRole,
    ) -> GatewayResult: ...

    async def transfer_order(
        self,
        order_id: str,
        actor_id: str,
        target_dispatcher_id: str,
        actor_role: ActorRole,
    ) -> GatewayResult: ...

    async def confirm_payment(
        self,
        order_id: str,
        actor_id: str,
        method: PaymentMethod,
        proof_url: Optional[str],
    ) -> GatewayResult: ...

    async def cancel_order(
        self,
        order_id: str,
        actor_id: str,
        reason_code: str,
        actor_role: ActorRole,
    ) -> GatewayResult: ...

    async def reopen_order(self, order_id: str, actor_id: str, actor_role: ActorRole) -> GatewayResult: ...

    async def update_order_fields(self, order_id: str, fields: Mapping[str, Any]) -> GatewayResult: ...

    async def list_available_masters(self) -> GatewayResult: ...

    async def list_dispatchers(self) -> GatewayResult: ...


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if hasattr(value, "value") and isinstance(getattr(value, "value"), str):
        return value.value
    return value


_STATUS_DEFAULT_CODES = {
    401: "UNAUTHORIZED",
    403: "UNAUTHORIZED",
    404: "ORDER_NOT_FOUND",
    409: "INVALID_STATUS",
}


class HttpOrdersGateway:
    """aiohttp-клиент JSON API Orders Service."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        token: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self._base_url = (base_url or settings.orders_api_url).rstrip("/")
        self._token = token if token is not None else settings.orders_api_token
        timeout = timeout_seconds if timeout_seconds is not None else settings.orders_api_timeout_seconds
        self._timeout = aiohttp.ClientTimeout(total=timeout) if timeout else None
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> HttpOrdersGateway:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            kwargs: dict[str, Any] = {}
            if self._timeout is not None:
                kwargs["timeout"] = self._timeout
            self._session = aiohttp.ClientSession(**kwargs)
            self._owns_session = True
        return self._session

    def _headers(self, extra: Optional[Mapping[str, str]] = None) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        if extra:
            headers.update(extra)
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Mapping[str, Any]] = None,
        params: Optional[Mapping[str, str]] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> tuple[int, Any]:
        url = f"{self._base_url}{path}"
        payload = {key: _jsonable(value) for key, value in json.items()} if json is not None else None
        try:
            async with self._get_session().request(
                method,
                url,
                json=payload,
                params=params,
                headers=self._headers(headers),
            ) as response:
                status = response.status
                try:
                    body = await response.json(content_type=None)
                except (aiohttp.ContentTypeError, ValueError):
                    body = None
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            _log.warning("orders api %s %s failed: %s", method, path, exc)
            raise TransportError(code="NETWORK") from exc

        if status >= 500:
            _log.warning("orders api %s %s -> HTTP %s", method, path, status)
            raise TransportError(code=f"HTTP_{status}")
        return status, body

    @staticmethod
    def _result(status: int, body: Any) -> GatewayResult:
        data = body if isinstance(body, Mapping) else {}
        success = 200 <= status < 300 and data.get("success", True) is not False
        if not success:
            code = data.get("error") or _STATUS_DEFAULT_CODES.get(status) or "UNKNOWN"
            if status in (401, 403):
                code = "UNAUTHORIZED"
            return GatewayResult.fail(str(code), data.get("message"))

        order_payload = data.get("order")
        order = Order.from_api(order_payload) if isinstance(order_payload, Mapping) and order_payload.get("id") else None
        order_id = data.get("order_id") or (order.id if order else None)
        return GatewayResult.ok(
            message=data.get("message"),
            order=order,
            order_id=str(order_id) if order_id is not None else None,
        )

    async def _post(self, path: str, payload: Mapping[str, Any], **kwargs: Any) -> GatewayResult:
        status, body = await self._request("POST", path, json=payload, **kwargs)
        return self._result(status, body)

    async def _list(self, path: str, key: str, params: Optional[Mapping[str, str]] = None) -> tuple[GatewayResult, list]:
        status, body = await self._request("GET", path, params=params)
        if not 200 <= status < 300:
            return self._result(status, body), []
        if isinstance(body, Mapping):
            rows = body.get(key) or []
        elif isinstance(body, Sequence):
            rows = list(body)
        else:
            rows = []
        return GatewayResult.ok(), [row for row in rows if isinstance(row, Mapping)]

    # ---- reads ----

    async def get_orders_for_dispatcher(self, dispatcher_id: str) -> GatewayResult:
        result, rows = await self._list("/dispatcher/orders", "orders", {"dispatcher_id": dispatcher_id})
        if result.success:
            result.items = [Order.from_api(row) for row in rows]
        return result

    async def list_available_masters(self) -> GatewayResult:
        result, rows = await self._list("/masters/available", "masters")
        if result.success:
            result.items = [Master.from_api(row) for row in rows]
        return result

    async def list_dispatchers(self) -> GatewayResult:
        result, rows = await self._list("/dispatchers", "dispatchers")
        if result.success:
            result.items = [Dispatcher.from_api(row) for row in rows]
        return result

    # ---- mutations ----

    async def create_order(
        self,
        fields: Mapping[str, Any],
        idempotency_key: str,
        creating_user_id: str,
    ) -> GatewayResult:
        payload = dict(fields)
        payload["creating_user_id"] = creating_user_id
        payload["idempotency_key"] = idempotency_key
        return await self._post("/orders", payload, headers={"Idempotency-Key": idempotency_key})

    async def force_assign_master(self, order_id: str, master_id: str, note: str) -> GatewayResult:
        return await self._post(f"/orders/{order_id}/force-assign", {"master_id": master_id, "note": note})

    async def unassign_master(
        self,
        order_id: str,
        actor_id: str,
        reason_code: str,
        actor_role: ActorRole,
    ) -> GatewayResult:
        return await self._post(
            f"/orders/{order_id}/unassign",
            {"actor_id": actor_id, "reason_code": reason_code, "actor_role": actor_role},
        )

    async def transfer_order(
        self,
        order_id: str,
        actor_id: str,
        target_dispatcher_id: str,
        actor_role: ActorRole,
    ) -> GatewayResult:
        return await self._post(
            f"/orders/{order_id}/transfer",
            {"actor_id": actor_id, "target_dispatcher_id": target_dispatcher_id, "actor_role": actor_role},
        )

    async def confirm_payment(
        self,
        order_id: str,
        actor_id: str,
        method: PaymentMethod,
        proof_url: Optional[str],
    ) -> GatewayResult:
        return await self._post(
            f"/orders/{order_id}/confirm-payment",
            {"actor_id": actor_id, "method": method, "proof_url": proof_url},
        )

    async def cancel_order(
        self,
        order_id: str,
        actor_id: str,
        reason_code: str,
        actor_role: ActorRole,
    ) -> GatewayResult:
        return await self._post(
            f"/orders/{order_id}/cancel",
            {"actor_id": actor_id, "reason_code": reason_code, "actor_role": actor_role},
        )

    async def reopen_order(self, order_id: str, actor_id: str, actor_role: ActorRole) -> GatewayResult:
        return await self._post(
            f"/orders/{order_id}/reopen",
            {"actor_id": actor_id, "actor_role": actor_role},
        )

    async def update_order_fields(self, order_id: str, fields: Mapping[str, Any]) -> GatewayResult:
        status, body = await self._request("PATCH", f"/orders/{order_id}", json=fields)
        return self._result(status, body)
