"""
Telegram Bot API client.

Only the outbound `sendMessage` call is needed: inbound updates are handled
by the external bot process, which talks to the bot gateway endpoint.
"""

import logging
from typing import Any

import httpx

from ...core.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()


class TelegramAPIError(Exception):
    """The Bot API rejected a request or could not be reached."""

    def __init__(self, message: str, error_code: int | None = None):
        super().__init__(message)
        self.error_code = error_code


class TelegramClient:
    """Thin async wrapper around the Telegram Bot API."""

    def __init__(
        self,
        bot_token: str,
        http_client: httpx.AsyncClient | None = None,
        api_base: str | None = None,
    ):
        self.bot_token = bot_token
        self.api_base = (api_base or settings.telegram_api_base).rstrip("/")
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(timeout=30.0)

    @classmethod
    def from_settings(cls, http_client: httpx.AsyncClient | None = None) -> "TelegramClient | None":
        """Client for the configured bot, or None when no token is set."""
        if not settings.telegram_push_enabled:
            return None
        return cls(settings.telegram_bot_token, http_client=http_client)

    async def close(self):
        """Close the HTTP client if we created it."""
        if self._owns_client:
            await self.http_client.aclose()

    async def __aenter__(self) -> "TelegramClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def _method_url(self, method: str) -> str:
        return f"{self.api_base}/bot{self.bot_token}/{method}"

    async def send_message(
        self,
        chat_id: str | int,
        text: str,
        parse_mode: str | None = "Markdown",
    ) -> dict[str, Any]:
        """Send a text message to a chat and return the Bot API result."""
        payload: dict[str, Any] = {
            "chat_id": chat_id,
            "text": text,
        }
        if parse_mode:
            payload["parse_mode"] = parse_mode

        try:
            response = await self.http_client.post(self._method_url("sendMessage"), json=payload)
        except httpx.HTTPError as e:
            raise TelegramAPIError(f"Telegram request failed: {e}") from e

        try:
            data = response.json()
        except ValueError as e:
            raise TelegramAPIError(
                f"Telegram returned non-JSON response ({response.status_code})"
            ) from e

        if not isinstance(data, dict):
            raise TelegramAPIError(
                f"Telegram returned unexpected response ({response.status_code})"
            )

        if not data.get("ok"):
            raise TelegramAPIError(
                data.get("description", "Unknown Telegram error"),
                error_code=data.get("error_code"),
            )

        logger.info(f"Telegram message sent to chat {chat_id}")
        return data.get("result", {})
