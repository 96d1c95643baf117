"""
Сессия рабочего места диспетчера.

Состояние сессии (``DispatcherSessionState``) неизменяемое и сериализуемое;
все изменения идут через чистые редьюсеры ниже. ``DispatcherSession``
владеет состоянием, выполняет удалённые действия под флагом
``action_loading``, применяет оптимистичные патчи (заказ помечается
``unconfirmed``) и сверяется с Orders Service фоновой перезагрузкой.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from typing import Any, Awaitable, Callable, Iterable, Mapping, Optional, Union

from aiogram import Bot

from dispatch_service.config import settings
from dispatch_service.core.dto import Actor, Dispatcher, Master, Order, PaymentData
from dispatch_service.infra.notify import send_alert
from dispatch_service.infra.structured_logging import DispatchEvent, log_dispatch_event
from dispatch_service.services import assignment, order_actions
from dispatch_service.services.attention import AttentionFilter, attention_counts, filter_attention
from dispatch_service.services.debounce import Debouncer
from dispatch_service.services.drafts import DraftStore, RecentAddress, RecentAddresses
from dispatch_service.services.errors import (
    DispatchError,
    ErrorKind,
    TransportError,
    ValidationError,
    error_from_code,
)
from dispatch_service.services.masters_search import search_masters
from dispatch_service.services.notices import NoticeFeed
from dispatch_service.services.order_creation import (
    OrderForm,
    cleared_form,
    initial_form,
    keep_location_form,
    validate_order_form,
)
from dispatch_service.services.orders_api import OrdersGateway
from dispatch_service.services.queue_filters import (
    PAGE_SIZES,
    Page,
    QueueFilters,
    StatusTab,
    ViewMode,
    apply_filters,
    paginate,
    status_counts,
)
from dispatch_service.services.stats_service import StatsSummary, build_dispatcher_stats
from dispatch_service.services.time_service import now_utc
from dispatch_service.utils.idempotency import generate_idempotency_key

__all__ = [
    "DispatcherSessionState",
    "ActionOutcome",
    "DispatcherSession",
    "replace_orders",
    "patch_order",
    "remove_order",
    "add_order",
    "set_filters",
    "set_page",
    "set_view_mode",
    "edit_form",
    "reset_form",
    "find_order",
]

logger = logging.getLogger(__name__)

GENERIC_ERROR = "Something went wrong. Please try again"
BUSY_MESSAGE = "Another action is in progress"
ORDER_NOT_FOUND = "Order not found"

OrderPatch = Union[Order, Mapping[str, Any]]


# ===== State =====


@dataclass(frozen=True, slots=True)
class DispatcherSessionState:
    orders: tuple[Order, ...] = ()
    filters: QueueFilters = field(default_factory=QueueFilters)
    page: int = 1
    view_mode: ViewMode = ViewMode.CARDS
    attention_filter: AttentionFilter = AttentionFilter.ALL
    stats_days: int = 7

    form: OrderForm = field(default_factory=OrderForm)
    confirm_checked: bool = False
    idempotency_key: str = ""
    last_created_order_id: Optional[str] = None

    masters: tuple[Master, ...] = ()
    dispatchers: tuple[Dispatcher, ...] = ()
    recent_addresses: tuple[RecentAddress, ...] = ()

    action_loading: bool = False
    loaded_at: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "orders": [order.to_dict() for order in self.orders],
            "filters": self.filters.to_dict(),
            "page": self.page,
            "view_mode": self.view_mode.value,
            "attention_filter": self.attention_filter.value,
            "stats_days": self.stats_days,
            "form": self.form.to_dict(),
            "confirm_checked": self.confirm_checked,
            "idempotency_key": self.idempotency_key,
            "last_created_order_id": self.last_created_order_id,
            "recent_addresses": [item.to_dict() for item in self.recent_addresses],
            "action_loading": self.action_loading,
            "loaded_at": self.loaded_at.isoformat() if self.loaded_at else None,
        }


# ===== Reducers =====


def find_order(state: DispatcherSessionState, order_id: str) -> Optional[Order]:
    for order in state.orders:
        if order.id == order_id:
            return order
    return None


def replace_orders(
    state: DispatcherSessionState,
    orders: Iterable[Order],
    *,
    loaded_at: Optional[datetime] = None,
) -> DispatcherSessionState:
    """Authoritative snapshot: clears every "unconfirmed" marker."""
    fresh = tuple(order.mark_unconfirmed(False) for order in orders)
    return replace(state, orders=fresh, loaded_at=loaded_at or state.loaded_at)


def patch_order(state: DispatcherSessionState, order_id: str, patch: OrderPatch) -> DispatcherSessionState:
    """Optimistic update of one cached order; unknown ids are ignored."""
    updated: list[Order] = []
    found = False
    for order in state.orders:
        if order.id == order_id:
            found = True
            new_order = patch if isinstance(patch, Order) else order.with_changes(patch)
            updated.append(new_order.mark_unconfirmed(True))
        else:
            updated.append(order)
    if not found:
        return state
    return replace(state, orders=tuple(updated))


def remove_order(state: DispatcherSessionState, order_id: str) -> DispatcherSessionState:
    return replace(state, orders=tuple(order for order in state.orders if order.id != order_id))


def add_order(state: DispatcherSessionState, order: Order) -> DispatcherSessionState:
    rest = tuple(item for item in state.orders if item.id != order.id)
    return replace(state, orders=(order.mark_unconfirmed(True),) + rest)


def set_filters(state: DispatcherSessionState, **changes: Any) -> DispatcherSessionState:
    """Any filter change returns the queue to page 1."""
    return replace(state, filters=state.filters.with_changes(**changes), page=1)


def set_page(state: DispatcherSessionState, page: int) -> DispatcherSessionState:
    filtered = apply_filters(state.orders, state.filters)
    clamped = paginate(filtered, page, PAGE_SIZES[state.view_mode]).page
    return replace(state, page=clamped)


def set_view_mode(state: DispatcherSessionState, mode: ViewMode) -> DispatcherSessionState:
    return replace(state, view_mode=mode, page=1)


def edit_form(state: DispatcherSessionState, **changes: Any) -> DispatcherSessionState:
    """Form edits never touch the idempotency key."""
    return replace(state, form=state.form.with_changes(**changes))


def reset_form(state: DispatcherSessionState, form: OrderForm, idempotency_key: str) -> DispatcherSessionState:
    """Start a new creation cycle."""
    return replace(
        state,
        form=form,
        idempotency_key=idempotency_key,
        confirm_checked=False,
        last_created_order_id=None,
    )


# ===== Controller =====


@dataclass(slots=True)
class ActionOutcome:
    ok: bool
    order: Optional[Order] = None
    error: Optional[DispatchError] = None

    @property
    def error_kind(self) -> Optional[ErrorKind]:
        return self.error.kind if self.error else None


class DispatcherSession:
    def __init__(
        self,
        gateway: OrdersGateway,
        actor: Actor,
        *,
        drafts: Optional[DraftStore] = None,
        recent_addresses: Optional[RecentAddresses] = None,
        notices: Optional[NoticeFeed] = None,
        ops_bot: Optional[Bot] = None,
        clock: Callable[[], datetime] = now_utc,
        tz: Optional[str] = None,
        default_callout_fee: Optional[Decimal] = None,
        search_delay: Optional[float] = None,
        draft_delay: Optional[float] = None,
        refresh_delay: float = 0.0,
        key_factory: Callable[[], str] = generate_idempotency_key,
    ) -> None:
        self.gateway = gateway
        self.actor = actor
        self.notices = notices or NoticeFeed()
        self._drafts = drafts
        self._recent = recent_addresses
        self._ops_bot = ops_bot
        self._clock = clock
        self._tz = tz
        self._default_fee = default_callout_fee if default_callout_fee is not None else settings.default_callout_fee
        self._key_factory = key_factory
        self._refresh_delay = refresh_delay
        self._refresh_task: Optional[asyncio.Task] = None
        self._refresh_requested = False
        self._closed = False
        self.search_input = ""

        self._search_debouncer = Debouncer(
            self._apply_search,
            settings.search_debounce_seconds if search_delay is None else search_delay,
            name="dispatcher_search",
        )
        self._draft_debouncer = Debouncer(
            self._save_draft,
            settings.draft_debounce_seconds if draft_delay is None else draft_delay,
            name="dispatcher_draft",
        )
        self.state = DispatcherSessionState(
            filters=QueueFilters(owner_id=None if actor.is_admin else actor.id),
            form=initial_form(self._default_fee),
            idempotency_key=key_factory(),
        )

    @property
    def closed(self) -> bool:
        return self._closed

    # ---- lifecycle ----

    async def start(self) -> None:
        """Restore the draft and recent addresses, then load the queue."""
        if self._drafts is not None:
            draft = await self._drafts.load()
            if draft is not None:
                self.state = replace(self.state, form=draft)
        if self._recent is not None:
            addresses = await self._recent.load()
            self.state = replace(self.state, recent_addresses=tuple(addresses))
        await self.reload(reason="start")
        await self.load_masters()
        await self.load_dispatchers()

    async def close(self) -> None:
        """Cancel debounces and the background refresh; nothing is written afterwards."""
        self._closed = True
        await self._search_debouncer.close()
        await self._draft_debouncer.close()
        task = self._refresh_task
        self._refresh_task = None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    # ---- loading ----

    async def reload(self, *, reason: str = "manual") -> bool:
        """Authoritative fetch of the dispatcher's orders."""
        if self._closed:
            return False
        try:
            result = await self.gateway.get_orders_for_dispatcher(self.actor.id)
        except TransportError as exc:
            logger.warning("reload(%s) failed: %s", reason, exc.code)
            self.notices.error(exc.message, code=exc.code)
            return False
        if self._closed:
            return False
        if not result.success:
            logger.warning("reload(%s) rejected: %s", reason, result.error)
            self.notices.error(result.message or GENERIC_ERROR, code=result.error)
            return False
        self.state = replace_orders(self.state, result.items, loaded_at=self._clock())
        self.state = set_page(self.state, self.state.page)
        log_dispatch_event(
            DispatchEvent.QUEUE_LOADED,
            actor_id=self.actor.id,
            reason=reason,
            details={"count": len(self.state.orders)},
            level="DEBUG",
        )
        return True

    async def load_masters(self) -> list[Master]:
        try:
            result = await self.gateway.list_available_masters()
        except TransportError as exc:
            logger.warning("load_masters failed: %s", exc.code)
            return list(self.state.masters)
        if result.success and not self._closed:
            self.state = replace(self.state, masters=tuple(result.items))
        return list(self.state.masters)

    async def load_dispatchers(self) -> list[Dispatcher]:
        try:
            result = await self.gateway.list_dispatchers()
        except TransportError as exc:
            logger.warning("load_dispatchers failed: %s", exc.code)
            return list(self.state.dispatchers)
        if result.success and not self._closed:
            self.state = replace(self.state, dispatchers=tuple(result.items))
        return list(self.state.dispatchers)

    def schedule_background_refresh(self, reason: str = "background") -> None:
        """Coalesced reload; repeated requests while one is pending run it once more at most."""
        if self._closed:
            return
        if self._refresh_task is not None and not self._refresh_task.done():
            self._refresh_requested = True
            return
        self._refresh_task = asyncio.create_task(
            self._refresh_loop(reason), name="dispatcher_background_refresh"
        )

    async def _refresh_loop(self, reason: str) -> None:
        try:
            while not self._closed:
                self._refresh_requested = False
                await asyncio.sleep(self._refresh_delay)
                await self.reload(reason=reason)
                if not self._refresh_requested:
                    break
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("background refresh failed")

    async def wait_for_refresh(self) -> None:
        task = self._refresh_task
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    # ---- queue view ----

    def filtered_orders(self) -> list[Order]:
        return apply_filters(self.state.orders, self.state.filters)

    def visible_page(self) -> Page:
        return paginate(self.filtered_orders(), self.state.page, PAGE_SIZES[self.state.view_mode])

    def status_counts(self) -> dict[StatusTab, int]:
        return status_counts(self.state.orders, self.state.filters.owner_id)

    def set_search(self, query: str) -> None:
        """Debounced search input."""
        self.search_input = query or ""
        self._search_debouncer.trigger(self.search_input)

    async def flush_search(self) -> None:
        await self._search_debouncer.flush()

    async def _apply_search(self, query: str) -> None:
        if self._closed:
            return
        self.state = set_filters(self.state, search=query)

    def set_filters(self, **changes: Any) -> None:
        self.state = set_filters(self.state, **changes)

    def set_page(self, page: int) -> None:
        self.state = set_page(self.state, page)

    def set_view_mode(self, mode: ViewMode) -> None:
        self.state = set_view_mode(self.state, mode)

    def set_attention_filter(self, value: AttentionFilter) -> None:
        self.state = replace(self.state, attention_filter=value)

    def attention(self, now: Optional[datetime] = None) -> list[Order]:
        return filter_attention(self.state.orders, now or self._clock(), self.state.attention_filter)

    def attention_counts(self, now: Optional[datetime] = None) -> dict[AttentionFilter, int]:
        return attention_counts(self.state.orders, now or self._clock())

    def stats(self, days: Optional[int] = None) -> StatsSummary:
        window = days or self.state.stats_days
        if days:
            self.state = replace(self.state, stats_days=days)
        return build_dispatcher_stats(
            self.actor.id, self.state.orders, window, now=self._clock(), tz=self._tz
        )

    def transfer_targets(self) -> list[assignment.TransferTarget]:
        return assignment.transfer_targets(self.state.dispatchers, self.actor.id)

    def search_masters(self, query: str, *, limit: int = 20) -> list[Master]:
        return search_masters(self.state.masters, query, limit=limit)

    # ---- action guard ----

    async def _run_action(
        self,
        event: DispatchEvent,
        order_id: Optional[str],
        operation: Callable[[], Awaitable[Optional[Order]]],
    ) -> ActionOutcome:
        if self._closed:
            return ActionOutcome(ok=False, error=ValidationError("Session is closed", code="CLOSED"))
        if self.state.action_loading:
            error = ValidationError(BUSY_MESSAGE, code="BUSY")
            self.notices.error(error.message, code=error.code)
            return ActionOutcome(ok=False, error=error)

        self.state = replace(self.state, action_loading=True)
        try:
            order = await operation()
        except DispatchError as exc:
            await self._handle_error(event, order_id, exc)
            return ActionOutcome(ok=False, error=exc)
        except Exception as exc:
            logger.exception("%s failed for order=%s", event.value, order_id)
            self.notices.error(GENERIC_ERROR)
            await send_alert(
                self._ops_bot,
                f"[dispatch] {event.value} failed for order={order_id}",
                exc=exc,
            )
            return ActionOutcome(ok=False, error=TransportError(GENERIC_ERROR, code="UNEXPECTED"))
        finally:
            self.state = replace(self.state, action_loading=False)

        log_dispatch_event(
            event,
            order_id=order_id or (order.id if order else None),
            actor_id=self.actor.id,
            master_id=order.master_id if order else None,
            status=order.status.value if order else None,
        )
        return ActionOutcome(ok=True, order=order)

    async def _handle_error(self, event: DispatchEvent, order_id: Optional[str], exc: DispatchError) -> None:
        log_dispatch_event(
            DispatchEvent.ACTION_FAILED if exc.kind is ErrorKind.TRANSPORT else DispatchEvent.ACTION_REJECTED,
            order_id=order_id,
            actor_id=self.actor.id,
            error_kind=exc.kind.value,
            error_code=exc.code,
            reason=event.value,
            level="WARNING",
        )
        if exc.kind is ErrorKind.TRANSPORT:
            logger.exception("%s failed for order=%s", event.value, order_id)
            self.notices.error(GENERIC_ERROR, code=exc.code)
            await send_alert(
                self._ops_bot,
                f"[dispatch] {event.value} transport failure for order={order_id}",
                exc=exc,
            )
            return
        self.notices.error(exc.message, code=exc.code)
        if exc.kind is ErrorKind.CONFLICT:
            await self.reload(reason=f"conflict:{event.value}")

    def _require_order(self, order_id: str) -> Order:
        order = find_order(self.state, order_id)
        if order is None:
            raise ValidationError(ORDER_NOT_FOUND, code="ORDER_NOT_FOUND")
        return order

    def _after_mutation(self, order_id: str, order: Order, message: str, reason: str) -> Order:
        self.state = patch_order(self.state, order_id, order)
        self.notices.success(message)
        self.schedule_background_refresh(reason)
        return order

    # ---- actions ----

    async def assign_master(self, order_id: str, master: Union[Master, str]) -> ActionOutcome:
        async def operation() -> Order:
            order = self._require_order(order_id)
            target = master if isinstance(master, Master) else self._find_master(master)
            updated = await assignment.assign_master(self.gateway, order, target, self.actor)
            return self._after_mutation(order_id, updated, "Master assigned!", "assign_master")

        return await self._run_action(DispatchEvent.MASTER_ASSIGNED, order_id, operation)

    def _find_master(self, master_id: str) -> Master:
        for item in self.state.masters:
            if item.id == master_id:
                return item
        raise ValidationError("Master not found", code="MASTER_NOT_FOUND")

    async def unassign_master(self, order_id: str) -> ActionOutcome:
        async def operation() -> Order:
            order = self._require_order(order_id)
            updated = await assignment.unassign_master(self.gateway, order, self.actor)
            return self._after_mutation(order_id, updated, "Master removed", "remove_master")

        return await self._run_action(DispatchEvent.MASTER_UNASSIGNED, order_id, operation)

    async def transfer_order(self, order_id: str, target_dispatcher_id: str) -> ActionOutcome:
        async def operation() -> Order:
            order = self._require_order(order_id)
            updated = await assignment.transfer_order(
                self.gateway, order, self.actor, target_dispatcher_id
            )
            if self.actor.is_admin:
                self.state = patch_order(self.state, order_id, updated)
            else:
                # not ours anymore
                self.state = remove_order(self.state, order_id)
                self.state = set_page(self.state, self.state.page)
            self.notices.success("Order transferred")
            self.schedule_background_refresh("transfer_dispatcher")
            return updated

        return await self._run_action(DispatchEvent.ORDER_TRANSFERRED, order_id, operation)

    async def confirm_payment(self, order_id: str, payment: PaymentData) -> ActionOutcome:
        async def operation() -> Order:
            order = self._require_order(order_id)
            updated = await order_actions.confirm_payment(self.gateway, order, self.actor, payment)
            return self._after_mutation(order_id, updated, "Payment confirmed", "confirm_payment")

        return await self._run_action(DispatchEvent.PAYMENT_CONFIRMED, order_id, operation)

    async def cancel_order(self, order_id: str, reason: str = order_actions.CLIENT_CANCEL_REASON) -> ActionOutcome:
        async def operation() -> Order:
            order = self._require_order(order_id)
            updated = await order_actions.cancel_order(self.gateway, order, self.actor, reason=reason)
            return self._after_mutation(order_id, updated, "Order canceled", "cancel_order")

        return await self._run_action(DispatchEvent.ORDER_CANCELED, order_id, operation)

    async def reopen_order(self, order_id: str) -> ActionOutcome:
        async def operation() -> Order:
            order = self._require_order(order_id)
            updated = await order_actions.reopen_order(self.gateway, order, self.actor)
            return self._after_mutation(order_id, updated, "Order reopened", "reopen_order")

        return await self._run_action(DispatchEvent.ORDER_REOPENED, order_id, operation)

    async def save_edit(self, order_id: str, edits: Mapping[str, Any]) -> ActionOutcome:
        async def operation() -> Order:
            order = self._require_order(order_id)
            updated = await order_actions.update_order_fields(self.gateway, order, edits)
            return self._after_mutation(order_id, updated, "Order updated", "save_edit")

        return await self._run_action(DispatchEvent.ORDER_UPDATED, order_id, operation)

    # ---- creation ----

    def edit_form(self, **changes: Any) -> None:
        self.state = edit_form(self.state, **changes)
        if self._drafts is not None:
            self._draft_debouncer.trigger(self.state.form)

    def set_confirm_checked(self, value: bool) -> None:
        self.state = replace(self.state, confirm_checked=bool(value))

    async def flush_draft(self) -> None:
        await self._draft_debouncer.flush()

    async def _save_draft(self, form: OrderForm) -> None:
        if self._closed or self._drafts is None:
            return
        await self._drafts.save(form)

    async def create_order(self) -> ActionOutcome:
        """Validate the form and create the order under the cycle's idempotency key."""

        async def operation() -> Optional[Order]:
            payload = validate_order_form(self.state.form, confirmed=self.state.confirm_checked)
            key = self.state.idempotency_key
            result = await self.gateway.create_order(payload, key, self.actor.id)
            if not result.success:
                raise error_from_code(result.error, result.message, messages={})

            form = self.state.form
            self._draft_debouncer.cancel()
            if result.order is not None:
                self.state = add_order(self.state, result.order)
            self.state = replace(
                self.state,
                idempotency_key=self._key_factory(),
                confirm_checked=False,
                last_created_order_id=result.order_id,
            )
            if self._drafts is not None and not self._closed:
                await self._drafts.clear()
            if self._recent is not None and not self._closed:
                addresses = await self._recent.remember(form.area, form.full_address)
                self.state = replace(self.state, recent_addresses=tuple(addresses))
            self.notices.success("Order created!")
            self.schedule_background_refresh("create_order")
            return result.order

        return await self._run_action(DispatchEvent.ORDER_CREATED, None, operation)

    async def clear_form(self) -> None:
        self._draft_debouncer.cancel()
        self.state = reset_form(self.state, cleared_form(self._default_fee), self._key_factory())
        if self._drafts is not None and not self._closed:
            await self._drafts.clear()
        self.notices.success("Form cleared")

    def keep_location_and_reset(self) -> None:
        self._draft_debouncer.cancel()
        self.state = reset_form(
            self.state,
            keep_location_form(self.state.form, self._default_fee),
            self._key_factory(),
        )

    def use_recent_address(self, address: RecentAddress) -> None:
        self.edit_form(area=address.area, full_address=address.full_address)
