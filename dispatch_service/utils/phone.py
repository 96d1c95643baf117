"""Kyrgyz phone numbers: canonical form is +996 followed by 9 national digits."""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

__all__ = [
    "COUNTRY_CODE",
    "PHONE_FORMAT_ERROR",
    "PhoneValidation",
    "normalize_phone",
    "is_valid_phone",
    "validate_phone",
]

COUNTRY_CODE = "996"
NATIONAL_DIGITS = 9
PHONE_FORMAT_ERROR = "Invalid format. Use +996XXXXXXXXX, 0XXXXXXXXX, or XXXXXXXXX"

_NON_DIGITS_RE = re.compile(r"\D")


@dataclass(frozen=True, slots=True)
class PhoneValidation:
    valid: bool
    normalized: Optional[str]
    error: Optional[str]


def normalize_phone(value: Optional[str]) -> Optional[str]:
    """Return ``+996XXXXXXXXX`` for a recognised input, otherwise None.

    Accepted shapes after dropping separators: ``+996XXXXXXXXX``,
    ``996XXXXXXXXX``, ``0XXXXXXXXX`` and a bare 9-digit subscriber number.
    """
    if not value:
        return None
    stripped = value.strip()
    has_plus = stripped.startswith("+")
    digits = _NON_DIGITS_RE.sub("", stripped)

    if has_plus or digits.startswith(COUNTRY_CODE):
        # "+" is only meaningful in front of the country code
        if not digits.startswith(COUNTRY_CODE):
            return None
        national = digits[len(COUNTRY_CODE):]
    elif digits.startswith("0"):
        national = digits[1:]
    else:
        national = digits
    if len(national) != NATIONAL_DIGITS:
        return None
    return f"+{COUNTRY_CODE}{national}"


def is_valid_phone(value: Optional[str]) -> bool:
    return normalize_phone(value) is not None


def validate_phone(value: Optional[str]) -> PhoneValidation:
    normalized = normalize_phone(value)
    if normalized:
        return PhoneValidation(valid=True, normalized=normalized, error=None)
    return PhoneValidation(valid=False, normalized=None, error=PHONE_FORMAT_ERROR)
