"""Форма создания заказа: значения по умолчанию, сброс и проверка перед отправкой."""
from __future__ import annotations

from dataclasses import asdict, dataclass, fields, replace
from decimal import Decimal
from typing import Any, Mapping, Optional

from dispatch_service.db.models import OrderUrgency, PricingType
from dispatch_service.services.errors import ValidationError
from dispatch_service.services.order_actions import INITIAL_BELOW_CALLOUT
from dispatch_service.services.order_status import SERVICE_TYPES
from dispatch_service.services.time_service import parse_form_date
from dispatch_service.utils.numbers import parse_money
from dispatch_service.utils.phone import PHONE_FORMAT_ERROR, normalize_phone

__all__ = [
    "DEFAULT_SERVICE_TYPE",
    "OrderForm",
    "initial_form",
    "cleared_form",
    "keep_location_form",
    "validate_order_form",
]

DEFAULT_SERVICE_TYPE = "repair"


@dataclass(frozen=True, slots=True)
class OrderForm:
    client_name: str = ""
    client_phone: str = ""
    pricing_type: str = PricingType.UNKNOWN.value
    initial_price: str = ""
    callout_fee: str = ""
    service_type: str = DEFAULT_SERVICE_TYPE
    urgency: str = OrderUrgency.PLANNED.value
    problem_description: str = ""
    area: str = ""
    full_address: str = ""
    orientir: str = ""
    # DD.MM.YYYY
    preferred_date: str = ""
    preferred_time: str = ""
    dispatcher_note: str = ""

    def to_dict(self) -> dict[str, str]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> OrderForm:
        known = {f.name for f in fields(cls)}
        values = {
            key: "" if value is None else str(value)
            for key, value in data.items()
            if key in known
        }
        return cls(**values)

    def with_changes(self, **changes: Any) -> OrderForm:
        return replace(self, **{key: "" if value is None else str(value) for key, value in changes.items()})

    @property
    def worth_saving(self) -> bool:
        """Draft is kept only once a phone or a description was typed."""
        return bool(self.client_phone.strip() or self.problem_description.strip())


def _fee_text(default_fee: Optional[Decimal]) -> str:
    return str(default_fee) if default_fee else ""


def initial_form(default_fee: Optional[Decimal] = None) -> OrderForm:
    return OrderForm(callout_fee=_fee_text(default_fee))


def cleared_form(default_fee: Optional[Decimal] = None) -> OrderForm:
    return initial_form(default_fee)


def keep_location_form(form: OrderForm, default_fee: Optional[Decimal] = None) -> OrderForm:
    """New blank form that keeps area and address of *form*."""
    return replace(initial_form(default_fee), area=form.area, full_address=form.full_address)


def _required(value: str) -> bool:
    return bool(value and value.strip())


def validate_order_form(form: OrderForm, *, confirmed: bool) -> dict[str, Any]:
    """Check the form and build the create payload.

    Raises ``ValidationError`` on the first problem found; nothing is sent.
    """
    if not confirmed:
        raise ValidationError("Please confirm the order details", code="CONFIRM_REQUIRED")
    if not _required(form.client_name):
        raise ValidationError("Client name is required", code="CLIENT_NAME_REQUIRED")
    if not all(
        _required(value)
        for value in (form.client_phone, form.problem_description, form.area, form.full_address)
    ):
        raise ValidationError("Please fill in all required fields", code="REQUIRED_FIELDS")

    phone = normalize_phone(form.client_phone)
    if phone is None:
        raise ValidationError(PHONE_FORMAT_ERROR, code="INVALID_PHONE")

    try:
        urgency = OrderUrgency(form.urgency or OrderUrgency.PLANNED.value)
    except ValueError:
        raise ValidationError("Unknown urgency", code="INVALID_URGENCY") from None
    service_type = form.service_type or "other"
    if service_type not in SERVICE_TYPES:
        raise ValidationError("Unknown service type", code="INVALID_SERVICE")

    preferred_date = parse_form_date(form.preferred_date)
    if form.preferred_date.strip() and preferred_date is None:
        raise ValidationError("Use DD.MM.YYYY for the preferred date", code="INVALID_DATE")
    if urgency is OrderUrgency.PLANNED and preferred_date is None:
        raise ValidationError("Preferred date is required for planned orders", code="DATE_REQUIRED")

    pricing = PricingType.FIXED if form.pricing_type == PricingType.FIXED.value else PricingType.UNKNOWN
    callout_fee = parse_money(form.callout_fee)
    initial_price = parse_money(form.initial_price) if pricing is PricingType.FIXED else None
    if callout_fee is not None and initial_price is not None and initial_price < callout_fee:
        raise ValidationError(INITIAL_BELOW_CALLOUT, code="INITIAL_BELOW_CALLOUT")

    return {
        "client_name": form.client_name.strip(),
        "client_phone": phone,
        "pricing_type": pricing.value,
        "initial_price": initial_price,
        "callout_fee": callout_fee,
        "service_type": service_type,
        "urgency": urgency.value,
        "problem_description": form.problem_description.strip(),
        "area": form.area.strip(),
        "full_address": form.full_address.strip(),
        "orientir": form.orientir.strip() or None,
        "preferred_date": preferred_date.isoformat() if preferred_date else None,
        "preferred_time": form.preferred_time.strip() or None,
        "dispatcher_note": form.dispatcher_note.strip() or None,
    }
