"""
Telegram Bot API transport over httpx.

Only the calls the push source needs: identity check, long polling,
webhook management and sending messages. Bot API failures are mapped
onto the ingestion error taxonomy; connection failures become
TransportError.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

import httpx

from ..config import TelegramConfig
from ..sources.base import (
    RateLimitError,
    TransportError,
    error_for_status,
)

logger = logging.getLogger("pulsewire.telegram.transport")

API_BASE_URL = "https://api.telegram.org"


class TelegramTransport:
    """Minimal async Bot API client."""

    def __init__(
        self,
        config: TelegramConfig,
        http_client: Optional[httpx.AsyncClient] = None,
        base_url: str = API_BASE_URL,
    ):
        self.config = config
        self.base_url = base_url.rstrip("/")
        self._http = http_client
        self._owns_http = http_client is None

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self.config.request_timeout_s)
        return self._http

    async def call(self, method: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """Invoke a Bot API method and return its ``result``."""
        # Never log this URL, it embeds the token
        url = f"{self.base_url}/bot{self.config.bot_token}/{method}"
        context = f"Telegram {method}"

        try:
            response = await self._client().post(url, json=params or {})
        except httpx.HTTPError as e:
            raise TransportError(
                f"Telegram request failed: {e.__class__.__name__}", context=context
            ) from e

        try:
            payload = response.json()
        except ValueError as e:
            raise TransportError(
                f"Telegram returned a non-JSON body (HTTP {response.status_code})",
                response.status_code,
                context,
            ) from e

        if not isinstance(payload, dict):
            raise TransportError("Telegram returned an unexpected body", response.status_code, context)

        if not payload.get("ok"):
            status = payload.get("error_code") or response.status_code
            description = payload.get("description") or "Unknown Telegram API error"
            error = error_for_status(status, description, context)
            if isinstance(error, RateLimitError):
                retry_after = (payload.get("parameters") or {}).get("retry_after")
                if retry_after is not None:
                    error.retry_after = float(retry_after)
            raise error

        return payload.get("result")

    # =========================================================================
    # Bot API methods
    # =========================================================================

    async def get_me(self) -> Dict[str, Any]:
        return await self.call("getMe")

    async def get_updates(
        self,
        offset: int,
        timeout: int,
        limit: int,
        allowed_updates: Sequence[str],
    ) -> List[Dict[str, Any]]:
        result = await self.call(
            "getUpdates",
            {
                "offset": offset,
                "timeout": timeout,
                "limit": limit,
                "allowed_updates": list(allowed_updates),
            },
        )
        return result if isinstance(result, list) else []

    async def set_webhook(self, url: str, secret_token: Optional[str] = None) -> bool:
        params: Dict[str, Any] = {"url": url}
        if secret_token:
            params["secret_token"] = secret_token
        return bool(await self.call("setWebhook", params))

    async def delete_webhook(self, drop_pending_updates: bool = False) -> bool:
        return bool(
            await self.call("deleteWebhook", {"drop_pending_updates": drop_pending_updates})
        )

    async def send_message(
        self,
        chat_id: str,
        text: str,
        reply_to_message_id: Optional[int] = None,
        parse_mode: Optional[str] = None,
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {"chat_id": chat_id, "text": text}
        if reply_to_message_id is not None:
            params["reply_parameters"] = {"message_id": reply_to_message_id}
        if parse_mode:
            params["parse_mode"] = parse_mode
        return await self.call("sendMessage", params)

    async def close(self) -> None:
        if self._http is not None and self._owns_http:
            await self._http.aclose()
        self._http = None

