"""Telegram transport for service alerts.

Uses the Telegram Bot API directly via httpx (no heavy deps).
"""

from __future__ import annotations

import logging

import httpx

logger = logging.getLogger(__name__)

# Telegram API base
TELEGRAM_API = "https://api.telegram.org/bot{token}"


class TelegramNotifier:
    """Sends alert and recovery messages to one Telegram chat."""

    def __init__(self, bot_token: str, chat_id: int | str, timeout: float = 10) -> None:
        self.bot_token = bot_token
        self.chat_id = str(chat_id)
        self._client = httpx.AsyncClient(timeout=timeout)
        self._enabled = bool(self.bot_token and self.chat_id)

        if self._enabled:
            logger.info("Telegram notifier enabled (chat_id=%s)", self.chat_id)
        else:
            logger.info("Telegram notifier disabled (no bot_token/chat_id)")

    @property
    def enabled(self) -> bool:
        return self._enabled

    async def send_message(self, text: str, parse_mode: str = "Markdown") -> bool:
        """Send a text message to the configured chat."""
        if not self._enabled:
            logger.debug("Telegram: skipping send (not configured)")
            return False

        url = f"{TELEGRAM_API.format(token=self.bot_token)}/sendMessage"
        payload = {
            "chat_id": self.chat_id,
            "text": text,
            "parse_mode": parse_mode,
        }

        try:
            resp = await self._client.post(url, json=payload)
            if resp.status_code == 200:
                logger.debug("Telegram: message sent")
                return True
            logger.warning("Telegram send failed: %d %s", resp.status_code, resp.text[:200])
            return False
        except Exception as exc:
            logger.warning("Telegram notification failed: %s", exc)
            return False

    # -- Formatted messages ----------------------------------------------------

    @classmethod
    def format_alert(cls, service_name: str, message: str, description: str = "") -> str:
        return cls._format("🚨", "Alert", service_name, message, description)

    @classmethod
    def format_recovery(cls, service_name: str, message: str, description: str = "") -> str:
        return cls._format("✅", "Recovery", service_name, message, description)

    @classmethod
    def _format(cls, icon: str, title: str, service_name: str, message: str, description: str) -> str:
        text = f"{icon} *{title}: {cls._escape(service_name)}*\n\n"
        if description:
            text += f"_{cls._escape(description)}_\n\n"
        return text + cls._escape(message)

    async def close(self) -> None:
        await self._client.aclose()

    @staticmethod
    def _escape(text: str) -> str:
        """Escape Markdown special chars for Telegram."""
        for char in ("_", "*", "`", "["):
            text = text.replace(char, f"\\{char}")
        return text
