from __future__ import annotations

import enum
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional

from dispatch_service.services.time_service import now_utc

__all__ = ["NoticeLevel", "Notice", "NoticeFeed"]


class NoticeLevel(str, enum.Enum):
    SUCCESS = "success"
    INFO = "info"
    ERROR = "error"


@dataclass(slots=True)
class Notice:
    timestamp: datetime
    level: NoticeLevel
    message: str
    code: Optional[str] = None


NoticeListener = Callable[[Notice], None]


class NoticeFeed:
    """Short-lived user-facing messages (toasts) produced by the session."""

    def __init__(self, maxlen: int = 50, listener: Optional[NoticeListener] = None) -> None:
        self._buffer: deque[Notice] = deque(maxlen=maxlen)
        self._listener = listener

    def push(self, message: str, *, level: NoticeLevel = NoticeLevel.INFO, code: Optional[str] = None) -> Notice:
        notice = Notice(timestamp=now_utc(), level=level, message=message, code=code)
        self._buffer.append(notice)
        if self._listener is not None:
            self._listener(notice)
        return notice

    def success(self, message: str) -> Notice:
        return self.push(message, level=NoticeLevel.SUCCESS)

    def error(self, message: str, *, code: Optional[str] = None) -> Notice:
        return self.push(message, level=NoticeLevel.ERROR, code=code)

    def snapshot(self, limit: int = 20) -> List[Notice]:
        """Return up to *limit* recent notices (most recent last)."""
        if limit <= 0:
            return []
        return list(self._buffer)[-limit:]

    @property
    def last(self) -> Optional[Notice]:
        return self._buffer[-1] if self._buffer else None

    def clear(self) -> None:
        self._buffer.clear()

    def __len__(self) -> int:
        return len(self._buffer)
