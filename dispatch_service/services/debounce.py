from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

__all__ = ["Debouncer"]

logger = logging.getLogger(__name__)

Callback = Callable[..., Awaitable[Any]]


class Debouncer:
    """Run *callback* once the calls to :meth:`trigger` have calmed down.

    Each trigger replaces the pending arguments and restarts the delay.
    After :meth:`close` triggers are ignored and nothing runs.
    """

    def __init__(self, callback: Callback, delay: float, *, name: str = "debounce") -> None:
        self._callback = callback
        self._delay = max(0.0, float(delay))
        self._name = name
        self._task: Optional[asyncio.Task] = None
        self._pending: Optional[tuple[tuple[Any, ...], dict[str, Any]]] = None
        self._closed = False

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def closed(self) -> bool:
        return self._closed

    def trigger(self, *args: Any, **kwargs: Any) -> None:
        if self._closed:
            return
        self._pending = (args, kwargs)
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = asyncio.create_task(self._run_later(), name=self._name)

    async def _run_later(self) -> None:
        try:
            await asyncio.sleep(self._delay)
            await self._fire()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("%s callback failed", self._name)

    async def _fire(self) -> None:
        if self._closed or self._pending is None:
            return
        args, kwargs = self._pending
        self._pending = None
        await self._callback(*args, **kwargs)

    async def flush(self) -> None:
        """Run the pending call now instead of waiting for the delay."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        try:
            await self._fire()
        except Exception:
            logger.exception("%s callback failed", self._name)

    def cancel(self) -> None:
        """Drop the pending call."""
        self._pending = None
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def close(self) -> None:
        self._closed = True
        task = self._task
        self.cancel()
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
