"""Proactive notifications — Telegram and Slack.

Fires on the events produced by the alert policy:
- first alert once a failing streak reaches the threshold
- re-report while the service keeps failing
- recovery when a failing service succeeds again

Transports log their own failures and never raise, so a runner awaiting
``send`` is only held up for as long as the HTTP call takes.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol

import httpx

from ..config import settings
from ..health.state import EventKind, NotificationEvent
from .telegram import TelegramNotifier

logger = logging.getLogger(__name__)


class NotificationSink(Protocol):
    async def send(self, event: NotificationEvent) -> None: ...

    async def close(self) -> None: ...


class NotificationManager:
    """Central dispatcher for Telegram / Slack notifications."""

    def __init__(
        self,
        telegram_token: str = "",
        telegram_chat_id: int | str = "",
        slack_webhook: str | None = None,
    ) -> None:
        self.telegram = TelegramNotifier(telegram_token, telegram_chat_id)
        self.slack_webhook = settings.slack_webhook_url if slack_webhook is None else slack_webhook
        self._enabled = bool(self.slack_webhook or self.telegram.enabled)

    @classmethod
    def from_config(cls, config: Any) -> NotificationManager:
        return cls(config.telegram_token, config.telegram_chat_id)

    async def send(self, event: NotificationEvent) -> None:
        """Dispatch an alert/recovery event to all configured channels."""
        if event.kind is EventKind.RECOVERED:
            text = TelegramNotifier.format_recovery(
                event.service_name, event.detail, event.service_description,
            )
        else:
            text = TelegramNotifier.format_alert(
                event.service_name, event.detail, event.service_description,
            )
        logger.info(
            "Notifying %s for '%s' (failures=%d)",
            event.kind.value, event.service_name, event.failure_count,
        )
        await self._send(text)

    async def send_custom(self, title: str, message: str, success: bool = True) -> None:
        """Send a free-form alert or recovery message (used by the CLI)."""
        if success:
            text = TelegramNotifier.format_recovery(title, message)
        else:
            text = TelegramNotifier.format_alert(title, message)
        await self._send(text)

    async def close(self) -> None:
        await self.telegram.close()

    # -- Low-level dispatch -------------------------------------------------

    async def _send(self, text: str) -> None:
        if not self._enabled:
            logger.debug("Notifications disabled, dropping message")
            return
        tasks = []
        if self.slack_webhook:
            tasks.append(self._send_slack(text))
        if self.telegram.enabled:
            tasks.append(self.telegram.send_message(text))
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _send_slack(self, text: str) -> None:
        """POST to Slack incoming webhook."""
        try:
            async with httpx.AsyncClient(timeout=10) as client:
                resp = await client.post(
                    self.slack_webhook,
                    json={"text": text, "mrkdwn": True},
                )
                if resp.status_code != 200:
                    logger.warning("Slack webhook returned %d: %s", resp.status_code, resp.text[:200])
        except Exception as exc:
            logger.warning("Slack notification failed: %s", exc)
