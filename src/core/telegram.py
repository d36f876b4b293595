"""Telegram Bot API transport for order notifications."""

import logging

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.core.config import get_settings

logger = logging.getLogger(__name__)


class TelegramError(Exception):
    """Telegram rejected or could not receive the message."""


class TelegramTransport:
    """Sends HTML-formatted messages to a single chat."""

    def __init__(
        self,
        bot_token: str | None = None,
        chat_id: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self.bot_token = bot_token if bot_token is not None else settings.telegram_bot_token
        self.chat_id = chat_id if chat_id is not None else settings.telegram_chat_id
        self.api_url = settings.telegram_api_url.rstrip("/")
        self.timeout = settings.notification_timeout_seconds
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self.bot_token and self.chat_id)

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(2),
        wait=wait_exponential(multiplier=1, min=1, max=3),
        reraise=True,
    )
    async def send(self, message: str) -> None:
        """Send a message to the configured chat.

        Args:
            message: HTML-formatted message text.

        Raises:
            TelegramError: If the Bot API answers with ok=false.
            httpx.HTTPError: On transport failure after retries.
        """
        if not self.is_configured:
            logger.info("Telegram bot token or chat ID not configured, skipping notification")
            return

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.post(
                f"{self.api_url}/bot{self.bot_token}/sendMessage",
                json={"chat_id": self.chat_id, "text": message, "parse_mode": "HTML"},
            )

        result = response.json()
        if not result.get("ok"):
            raise TelegramError(result.get("description") or f"HTTP {response.status_code}")

        logger.debug("Telegram notification sent")
