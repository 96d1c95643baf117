from __future__ import annotations

import html
import logging
import traceback
from typing import Any, Optional

from aiogram import Bot
from aiogram.exceptions import TelegramBadRequest

from dispatch_service.config import settings

__all__ = ["create_ops_bot", "send_log", "send_alert"]

_MAX_MESSAGE_LEN = 4096
_logger = logging.getLogger(__name__)


def create_ops_bot(token: Optional[str] = None) -> Bot | None:
    """Bot for the ops channel, None when no token is configured."""
    value = token or settings.ops_bot_token
    if not value:
        return None
    return Bot(token=value)


def _trim_message(text: str) -> str:
    text = (text or "").strip()
    if len(text) <= _MAX_MESSAGE_LEN:
        return text
    return text[: _MAX_MESSAGE_LEN - 3] + "..."


def _compose_alert(text: str, exc: BaseException | None) -> str:
    parts: list[str] = []
    if text:
        parts.append(text.strip())
    if exc is not None:
        parts.append(f"{type(exc).__name__}: {exc}")
        tb_lines = traceback.format_exception(exc.__class__, exc, exc.__traceback__)
        cleaned = [line.strip() for line in tb_lines if line.strip()]
        if cleaned:
            parts.append("Traceback:")
            parts.extend(cleaned[-3:])
    return _trim_message("\n".join(parts))


async def _safe_send(
    bot: Bot | None,
    chat_id: int | None,
    text: str,
    **kwargs: Any,
) -> bool:
    if bot is None or chat_id is None:
        return False
    payload = html.escape(_trim_message(text), quote=False)
    if not payload:
        return False
    try:
        await bot.send_message(chat_id, payload, **kwargs)
    except TelegramBadRequest as exc:
        _logger.warning("Failed to deliver message to chat_id=%s: %s", chat_id, exc)
        return False
    except Exception:
        _logger.warning("Failed to deliver message to chat_id=%s", chat_id, exc_info=True)
        return False
    return True


async def send_log(
    bot: Bot | None,
    text: str,
    *,
    chat_id: int | None = None,
    **kwargs: Any,
) -> bool:
    """Send *text* to the logs channel, if configured."""
    target = chat_id if chat_id is not None else settings.logs_channel_id
    return await _safe_send(bot, target, text, **kwargs)


async def send_alert(
    bot: Bot | None,
    text: str,
    *,
    chat_id: int | None = None,
    exc: BaseException | None = None,
    **kwargs: Any,
) -> bool:
    """Send an ops alert (optionally with the exception tail); never raises."""
    target = chat_id if chat_id is not None else settings.alerts_channel_id
    payload = _compose_alert(text, exc)
    return await _safe_send(bot, target, payload, **kwargs)
