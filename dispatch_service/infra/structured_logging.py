"""
Structured logging for dispatcher actions.

Each remote action of the dispatcher session is written as a one-line JSON
record, so that assignment and payment history can be grepped later.
"""
from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Optional

from dispatch_service.infra.logging_utils import utcnow_iso

__all__ = [
    "DispatchEvent",
    "DispatchLogEntry",
    "DispatchLogger",
    "log_dispatch_event",
]


class DispatchEvent(str, Enum):
    """Types of dispatcher events."""
    QUEUE_LOADED = "queue_loaded"
    ORDER_CREATED = "order_created"
    MASTER_ASSIGNED = "master_assigned"
    MASTER_UNASSIGNED = "master_unassigned"
    ORDER_TRANSFERRED = "order_transferred"
    PAYMENT_CONFIRMED = "payment_confirmed"
    ORDER_CANCELED = "order_canceled"
    ORDER_REOPENED = "order_reopened"
    ORDER_UPDATED = "order_updated"
    ACTION_REJECTED = "action_rejected"
    ACTION_FAILED = "action_failed"


@dataclass
class DispatchLogEntry:
    timestamp: str
    event: str
    order_id: Optional[str] = None
    actor_id: Optional[str] = None
    master_id: Optional[str] = None
    target_dispatcher_id: Optional[str] = None
    status: Optional[str] = None
    error_kind: Optional[str] = None
    error_code: Optional[str] = None
    reason: Optional[str] = None
    details: dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> str:
        data = {k: v for k, v in asdict(self).items() if v is not None and v != {}}
        return json.dumps(data, ensure_ascii=False, separators=(",", ":"), default=str)


class DispatchLogger:
    def __init__(self, logger_name: str = "dispatch.structured"):
        self.logger = logging.getLogger(logger_name)

    def log_event(
        self,
        event: DispatchEvent,
        *,
        order_id: Optional[str] = None,
        actor_id: Optional[str] = None,
        master_id: Optional[str] = None,
        target_dispatcher_id: Optional[str] = None,
        status: Optional[str] = None,
        error_kind: Optional[str] = None,
        error_code: Optional[str] = None,
        reason: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        level: str = "INFO",
    ) -> str:
        entry = DispatchLogEntry(
            timestamp=utcnow_iso(),
            event=event.value,
            order_id=order_id,
            actor_id=actor_id,
            master_id=master_id,
            target_dispatcher_id=target_dispatcher_id,
            status=status,
            error_kind=error_kind,
            error_code=error_code,
            reason=reason,
            details=details or {},
        )
        json_msg = entry.to_json()
        log_method = getattr(self.logger, level.lower(), self.logger.info)
        log_method(json_msg)
        return json_msg


_dispatch_logger = DispatchLogger()


def log_dispatch_event(event: DispatchEvent, **kwargs: Any) -> str:
    """Log a dispatcher event through the module-level logger."""
    return _dispatch_logger.log_event(event, **kwargs)
