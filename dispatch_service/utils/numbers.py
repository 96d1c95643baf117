from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

__all__ = ["sanitize_number_input", "parse_money"]

_NOT_NUMERIC_RE = re.compile(r"[^0-9.]")


def sanitize_number_input(value: Any) -> str:
    """Keep digits and the first decimal point of a free-form money input."""
    if value is None:
        return ""
    cleaned = _NOT_NUMERIC_RE.sub("", str(value))
    head, sep, tail = cleaned.partition(".")
    if not sep:
        return cleaned
    return f"{head}.{tail.replace('.', '')}"


def parse_money(value: Any) -> Optional[Decimal]:
    """Decimal for a money field, None when the field is empty or unparsable."""
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    cleaned = sanitize_number_input(value)
    if not cleaned or cleaned == ".":
        return None
    try:
        return Decimal(cleaned)
    except InvalidOperation:
        return None
