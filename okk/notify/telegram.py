"""Telegram notifications - best effort, at most once."""

import asyncio
import html
import logging
from typing import Protocol

import requests

from okk.config import settings
from okk.schemas.audit import Violation
from okk.schemas.rule import RuleDefinition

logger = logging.getLogger(__name__)

TELEGRAM_API = "https://api.telegram.org"


class Notifier(Protocol):
    def send(self, message: str) -> None: ...


class TelegramNotifier:
    """Posts HTML messages to one chat through the Bot API."""

    def __init__(self, bot_token: str | None = None, chat_id: str | None = None, timeout: float = 12):
        self._token = bot_token if bot_token is not None else settings.telegram_bot_token
        self._chat_id = chat_id if chat_id is not None else settings.telegram_chat_id
        self._timeout = timeout

    def send(self, message: str) -> None:
        if not self._token or not self._chat_id:
            logger.warning("Telegram credentials not configured, skipping notification")
            return
        r = requests.post(
            f"{TELEGRAM_API}/bot{self._token}/sendMessage",
            json={
                "chat_id": self._chat_id,
                "text": message,
                "parse_mode": "HTML",
                "disable_web_page_preview": True,
            },
            timeout=self._timeout,
        )
        r.raise_for_status()
        data = r.json()
        if not data.get("ok"):
            raise RuntimeError(f"Telegram sendMessage failed: {data}")


class NotificationDispatcher:
    """Hands messages to a notifier on worker threads without awaiting them.

    Delivery is never retried and failures are only logged.
    """

    def __init__(self, notifier: Notifier):
        self._notifier = notifier
        self._pending: set[asyncio.Task] = set()

    def dispatch(self, message: str) -> None:
        task = asyncio.create_task(self._deliver(message))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, message: str) -> None:
        try:
            await asyncio.to_thread(self._notifier.send, message)
        except Exception:
            logger.exception("Notification delivery failed")

    async def drain(self) -> None:
        """Wait for in-flight deliveries (shutdown and tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


def format_violation(rule: RuleDefinition, violation: Violation) -> str:
    lines = [
        f"🚨 <b>{html.escape(rule.name or rule.code)}</b>",
        f"Заказ: {violation.order_id if violation.order_id is not None else '—'}",
        f"Менеджер: {violation.manager_id if violation.manager_id is not None else '—'}",
        f"Важность: {html.escape(violation.severity)}, баллы: {violation.points}",
    ]
    if violation.details:
        lines.append(html.escape(violation.details))
    if violation.evidence_text:
        lines.append(f"<i>{html.escape(violation.evidence_text[:500])}</i>")
    return "\n".join(lines)
