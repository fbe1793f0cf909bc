"""
Telegram Push Source

Pipeline-facing side of the Telegram integration:

- start(): verify the bot token, then register the webhook (domain
  configured) or clear it and prepare manual polling
- handle_update(): the single capture path used by webhook deliveries
  and the polling loop alike; malformed payloads are logged and dropped
- listen(): filtered, pull-based stream of Items from the queue
- send_action(): outbound messages; failures are reported, never raised
"""

from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, Literal, Optional, Union

from pydantic import BaseModel, Field, ValidationError

from ..config import TelegramConfig
from ..queue.filters import FilterChain, ListenFilter
from ..queue.ingestor import OverflowPolicy, QueueIngestor
from ..queue.models import MalformedUpdateError, QueueEntry, entry_from_update
from ..sources.base import (
    Author,
    IngestError,
    Item,
    Platform,
    UnauthorizedError,
    is_permanent,
)
from ..sources.retry import RetryPolicy
from .poller import UpdatePoller
from .transport import TelegramTransport

logger = logging.getLogger("pulsewire.telegram")

WEBHOOK_PATH = "/telegram/webhook"
NON_TEXT_CONTENT = "[Non-text message]"


class SendAction(BaseModel):
    """Payload of an outbound message."""
    text: str = Field(min_length=1, max_length=4096)
    reply_to_message_id: Optional[int] = None
    parse_mode: Optional[Literal["HTML", "Markdown", "MarkdownV2"]] = None


@dataclass
class ActionResult:
    """Outcome of send_action."""
    success: bool
    chat_id: str
    message_id: Optional[int] = None
    error: Optional[str] = None


class TelegramSource:
    """
    Telegram bot as a push source.

    Example:
        source = TelegramSource(TelegramConfig.from_env())
        await source.start()
        async for item in source.listen(ListenFilter(chat_types=["group"])):
            ...
    """

    def __init__(
        self,
        config: TelegramConfig,
        transport: Optional[TelegramTransport] = None,
        ingestor: Optional[QueueIngestor] = None,
        poll_policy: Optional[RetryPolicy] = None,
    ):
        self.config = config
        self.transport = transport or TelegramTransport(config)
        self.ingestor = ingestor or QueueIngestor(
            capacity=config.queue_size,
            policy=OverflowPolicy(config.overflow_policy),
        )
        self.poll_policy = poll_policy

        self.bot_info: Optional[Dict[str, Any]] = None
        self.poller: Optional[UpdatePoller] = None
        self._started = False

        self.stats = {
            "received": 0,
            "malformed": 0,
            "ignored": 0,
            "actions_sent": 0,
            "actions_failed": 0,
        }

    @property
    def webhook_url(self) -> Optional[str]:
        if not self.config.use_webhook:
            return None
        return f"{self.config.webhook_domain.rstrip('/')}{WEBHOOK_PATH}"

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """
        Verify the bot and set up the delivery mode.

        Raises:
            UnauthorizedError: The bot token was rejected.
            IngestError: Webhook registration or transport failure.
        """
        if self._started:
            return
        if not self.config.is_configured():
            raise UnauthorizedError("Telegram bot token is required", context="Telegram start")

        try:
            self.bot_info = await self.transport.get_me()
        except IngestError as e:
            if is_permanent(e):
                raise UnauthorizedError(
                    f"Bot token validation failed: {e}", context="Telegram getMe"
                ) from e
            raise
        logger.info(f"Telegram bot @{self.bot_info.get('username')} verified")

        if self.config.use_webhook:
            await self.transport.set_webhook(self.webhook_url, self.config.webhook_token or None)
            logger.info(f"Webhook registered: {self.webhook_url}")
        else:
            await self._clear_webhook()
            self.poller = UpdatePoller(
                self.transport,
                self.handle_update,
                self.config,
                policy=self.poll_policy,
            )
            logger.info("Manual polling mode configured")

        self._started = True

    async def _clear_webhook(self) -> None:
        try:
            await self.transport.delete_webhook(drop_pending_updates=False)
        except IngestError as e:
            logger.warning(f"Failed to clear webhook: {e}")

    async def stop(self) -> None:
        """Stop polling, clear the webhook and release consumers."""
        if self.poller is not None:
            self.poller.stop()
        if self._started and self.config.use_webhook:
            await self._clear_webhook()
        self.ingestor.close()
        await self.transport.close()
        self._started = False
        logger.info(f"Telegram source stopped: {self.stats} queue={self.ingestor.stats}")

    # =========================================================================
    # Capture
    # =========================================================================

    def verify_secret(self, token: Optional[str]) -> bool:
        """Check a webhook request's secret token."""
        expected = self.config.webhook_token
        if not expected:
            return True
        return hmac.compare_digest(token or "", expected)

    def handle_update(self, payload: Any) -> bool:
        """
        Capture one update. Never raises for bad payloads.

        Returns:
            True if an entry was queued.
        """
        self.stats["received"] += 1
        try:
            entry = entry_from_update(payload)
        except MalformedUpdateError as e:
            self.stats["malformed"] += 1
            logger.warning(f"Discarding malformed update: {e}")
            return False

        if entry is None:
            self.stats["ignored"] += 1
            return False

        logger.debug(
            f"Update {entry.update_id}: {entry.kind} {entry.message_type} in chat {entry.chat_id}"
        )
        return self.ingestor.capture(entry)

    # =========================================================================
    # Listen
    # =========================================================================

    def is_mentioned(self, entry: QueueEntry) -> bool:
        if not self.bot_info:
            return False

        message = entry.message
        reply = message.reply_to_message
        if reply is not None and reply.from_user is not None:
            if reply.from_user.id == self.bot_info.get("id"):
                return True

        username = self.bot_info.get("username")
        if username:
            handle = f"@{username}"
            text = message.text or message.caption or ""
            if handle in text:
                return True
        return False

    @staticmethod
    def _url_for(entry: QueueEntry) -> Optional[str]:
        chat = entry.message.chat
        if chat.type == "private":
            return None
        if chat.username:
            return f"https://t.me/{chat.username}/{entry.message.message_id}"
        return f"https://t.me/c/{abs(chat.id)}/{entry.message.message_id}"

    def to_item(self, entry: QueueEntry) -> Item:
        message = entry.message
        content = message.text or message.caption or NON_TEXT_CONTENT

        authors = []
        sender = message.from_user
        if sender is not None:
            display = sender.first_name
            if sender.last_name:
                display = f"{display} {sender.last_name}"
            authors.append(Author(
                id=str(sender.id),
                username=sender.username,
                display_name=display or sender.username,
            ))

        return Item(
            external_id=entry.entry_id,
            platform=Platform.TELEGRAM,
            content=content,
            content_type="message",
            source_timestamp=datetime.fromtimestamp(message.date, tz=timezone.utc),
            url=self._url_for(entry),
            authors=authors,
            is_mentioned=self.is_mentioned(entry),
            extra={
                "update_id": entry.update_id,
                "update_kind": entry.kind,
                "chat_id": entry.chat_id,
                "chat_type": entry.chat_type,
                "chat_title": message.chat.title,
                "message_type": entry.message_type,
                "is_command": entry.is_command,
            },
            raw=entry.raw,
        )

    async def listen(
        self,
        listen_filter: Optional[Union[ListenFilter, Dict[str, Any]]] = None,
    ) -> AsyncIterator[Item]:
        """
        Stream captured items that pass the filter.

        Ends when the queue is closed or ``max_results`` is reached.
        """
        if isinstance(listen_filter, dict):
            listen_filter = ListenFilter.model_validate(listen_filter)
        chain = FilterChain(listen_filter)

        async for entry in chain.apply(self.ingestor.entries()):
            yield self.to_item(entry)

    # =========================================================================
    # Outbound
    # =========================================================================

    async def send_action(
        self,
        target: str,
        payload: Union[SendAction, Dict[str, Any]],
    ) -> ActionResult:
        """Send a message. Failures come back in the result."""
        chat_id = str(target)
        try:
            action = payload if isinstance(payload, SendAction) else SendAction.model_validate(payload)
        except ValidationError as e:
            self.stats["actions_failed"] += 1
            logger.warning(f"Invalid action for chat {chat_id}: {e.error_count()} errors")
            return ActionResult(success=False, chat_id=chat_id, error="Invalid action payload")

        try:
            result = await self.transport.send_message(
                chat_id,
                action.text,
                reply_to_message_id=action.reply_to_message_id,
                parse_mode=action.parse_mode,
            )
        except IngestError as e:
            self.stats["actions_failed"] += 1
            logger.warning(f"Send to chat {chat_id} failed: {e}")
            return ActionResult(success=False, chat_id=chat_id, error=str(e))

        self.stats["actions_sent"] += 1
        message_id = result.get("message_id") if isinstance(result, dict) else None
        return ActionResult(success=True, chat_id=chat_id, message_id=message_id)
