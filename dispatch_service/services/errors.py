from __future__ import annotations

import enum
from typing import Optional

__all__ = [
    "ErrorKind",
    "DispatchError",
    "ValidationError",
    "MasterAtCapacity",
    "PriceRequired",
    "PaymentMethodRequired",
    "PaymentProofRequired",
    "CannotUnassignSettled",
    "InvalidTransition",
    "ConflictError",
    "AuthorizationError",
    "TransportError",
    "AssignmentAborted",
    "ASSIGN_ERROR_MESSAGES",
    "error_from_code",
]


class ErrorKind(str, enum.Enum):
    # Rejected locally, no remote call was made
    VALIDATION = "validation"
    # Server state moved on (INVALID_STATUS etc.); followed by a full reload
    CONFLICT = "conflict"
    TRANSPORT = "transport"
    AUTHORIZATION = "authorization"


class DispatchError(Exception):
    kind: ErrorKind = ErrorKind.VALIDATION
    default_code: str = "ERROR"
    default_message: str = "Operation failed"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        code: Optional[str] = None,
        kind: Optional[ErrorKind] = None,
    ) -> None:
        self.message = message or self.default_message
        self.code = code or self.default_code
        if kind is not None:
            self.kind = kind
        super().__init__(self.message)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind.value}, code={self.code!r}, message={self.message!r})"


class ValidationError(DispatchError):
    kind = ErrorKind.VALIDATION
    default_code = "VALIDATION"
    default_message = "Please check the form"


class MasterAtCapacity(ValidationError):
    default_code = "MASTER_AT_CAPACITY"
    default_message = "Master has reached the active jobs limit"


class PriceRequired(ValidationError):
    default_code = "PRICE_REQUIRED"
    default_message = "Final price is required to complete the order"


class PaymentMethodRequired(ValidationError):
    default_code = "PAYMENT_METHOD_REQUIRED"
    default_message = "Select a payment method"


class PaymentProofRequired(ValidationError):
    default_code = "PAYMENT_PROOF_REQUIRED"
    default_message = "Payment proof is required for transfers"


class CannotUnassignSettled(ValidationError):
    default_code = "CANNOT_UNASSIGN"
    default_message = "Cannot remove master from completed/confirmed order"


class InvalidTransition(DispatchError):
    kind = ErrorKind.CONFLICT
    default_code = "INVALID_STATUS"
    default_message = "Order status does not allow this action"


class ConflictError(DispatchError):
    kind = ErrorKind.CONFLICT
    default_code = "INVALID_STATUS"
    default_message = "Order was changed by someone else"


class AuthorizationError(DispatchError):
    kind = ErrorKind.AUTHORIZATION
    default_code = "UNAUTHORIZED"
    default_message = "You are not allowed to do this"


class TransportError(DispatchError):
    kind = ErrorKind.TRANSPORT
    default_code = "TRANSPORT"
    default_message = "Something went wrong. Please try again"


class AssignmentAborted(ConflictError):
    """Снятие текущего мастера не удалось, назначение не выполнялось."""

    default_code = "UNASSIGN_FAILED"
    default_message = "Failed to assign master"


ASSIGN_ERROR_MESSAGES: dict[str, str] = {
    "INVALID_STATUS": "Order status does not allow assignment",
    "MASTER_NOT_VERIFIED": "Master is not verified",
    "MASTER_INACTIVE": "Master is inactive",
    "MASTER_NOT_FOUND": "Master not found",
    "ORDER_NOT_FOUND": "Order not found",
    "UNAUTHORIZED": "You are not allowed to assign masters",
}


def error_from_code(
    code: Optional[str],
    message: Optional[str] = None,
    *,
    messages: Optional[dict[str, str]] = None,
) -> DispatchError:
    """Map a server error code to the local taxonomy.

    Unknown codes are conflicts: the server refused, our view is stale.
    """
    table = messages if messages is not None else ASSIGN_ERROR_MESSAGES
    normalized = (code or "UNKNOWN").upper()
    text = table.get(normalized) or message
    if normalized == "UNAUTHORIZED":
        return AuthorizationError(text, code=normalized)
    return ConflictError(text, code=normalized)
