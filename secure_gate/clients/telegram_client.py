"""
secure_gate/clients/telegram_client.py - Telegram Bot API client
Single sendMessage call per accepted submission. No retries: a retried
sendMessage can post the same submission twice.
"""
from __future__ import annotations

from typing import Any, Optional

import httpx
from loguru import logger

from secure_gate.core.errors import NotificationError


class TelegramClient:
    def __init__(
        self,
        bot_token: str,
        chat_id: str,
        api_base: str = "https://api.telegram.org",
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.chat_id = chat_id
        self._url = f"{api_base.rstrip('/')}/bot{bot_token}/sendMessage"
        self._timeout = timeout
        self._transport = transport

    def send_message(self, text: str, parse_mode: str = "Markdown") -> dict[str, Any]:
        """
        Send `text` to the configured chat.
        Raises NotificationError on transport failure or when Telegram
        answers ok=false.
        """
        payload = {"chat_id": self.chat_id, "text": text, "parse_mode": parse_mode}
        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                response = client.post(self._url, json=payload)
            result = response.json()
        except httpx.HTTPError as exc:
            logger.error(f"Telegram request failed: {exc}")
            raise NotificationError(f"Telegram API unreachable: {exc}") from exc
        except ValueError as exc:
            logger.error(f"Telegram returned non-JSON response ({response.status_code})")
            raise NotificationError("Telegram API error: invalid response") from exc

        if not result.get("ok"):
            description = result.get("description") or "Unknown error"
            logger.error(f"Telegram API error: {description}")
            raise NotificationError(f"Telegram API error: {description}")

        logger.info("Message delivered to Telegram.")
        return result
