"""
Queue Entry Models

Push deliveries arrive as Telegram Bot API ``Update`` objects. They are
validated with pydantic at the capture boundary and denormalized into a
QueueEntry carrying the fields filters need, so filters never have to
dig through raw payloads.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger("pulsewire.queue.models")

# Update kinds that carry a message
UPDATE_KINDS = ("message", "edited_message", "channel_post", "edited_channel_post")

# Detection order matters: animations also carry a document
MESSAGE_TYPES = (
    "text",
    "photo",
    "animation",
    "document",
    "video",
    "voice",
    "audio",
    "sticker",
    "location",
    "contact",
    "video_note",
)

CHAT_TYPES = ("private", "group", "supergroup", "channel")


class MalformedUpdateError(ValueError):
    """Raised when a push payload is not a usable update."""


# =============================================================================
# Bot API payload models
# =============================================================================

class TelegramUser(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: int
    is_bot: bool = False
    first_name: str = ""
    last_name: Optional[str] = None
    username: Optional[str] = None


class TelegramChat(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: int
    type: str
    title: Optional[str] = None
    username: Optional[str] = None


class MessageEntity(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: str
    offset: int
    length: int


class TelegramMessage(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    message_id: int
    date: int
    chat: TelegramChat
    from_user: Optional[TelegramUser] = Field(default=None, alias="from")
    text: Optional[str] = None
    caption: Optional[str] = None
    entities: List[MessageEntity] = Field(default_factory=list)
    reply_to_message: Optional["TelegramMessage"] = None

    def content_keys(self) -> FrozenSet[str]:
        """Message types present on this message."""
        present = set()
        if self.text is not None:
            present.add("text")
        for key in MESSAGE_TYPES[1:]:
            if (self.model_extra or {}).get(key) is not None:
                present.add(key)
        return frozenset(present)


class TelegramUpdate(BaseModel):
    model_config = ConfigDict(extra="allow")

    update_id: int
    message: Optional[TelegramMessage] = None
    edited_message: Optional[TelegramMessage] = None
    channel_post: Optional[TelegramMessage] = None
    edited_channel_post: Optional[TelegramMessage] = None

    @property
    def kind(self) -> Optional[str]:
        for kind in UPDATE_KINDS:
            if getattr(self, kind) is not None:
                return kind
        return None

    @property
    def effective_message(self) -> Optional[TelegramMessage]:
        kind = self.kind
        return getattr(self, kind) if kind else None


# =============================================================================
# Queue entry
# =============================================================================

@dataclass
class QueueEntry:
    """A captured push event with denormalized filter fields."""
    update_id: int
    kind: str
    message: TelegramMessage

    chat_id: str
    chat_type: str
    message_type: str
    content_keys: FrozenSet[str] = frozenset()
    text: str = ""
    is_command: bool = False

    raw: Dict[str, Any] = field(default_factory=dict)
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def entry_id(self) -> str:
        return f"{self.chat_id}-{self.message.message_id}"


def entry_from_update(payload: Any) -> Optional[QueueEntry]:
    """
    Validate a raw update and build its QueueEntry.

    Returns:
        None for well-formed updates that carry no message (callback
        queries, polls, ...).

    Raises:
        MalformedUpdateError: The payload is not a valid update.
    """
    if isinstance(payload, TelegramUpdate):
        update = payload
        raw = payload.model_dump(by_alias=True, exclude_none=True)
    else:
        if not isinstance(payload, dict):
            raise MalformedUpdateError(f"Update must be an object, got {type(payload).__name__}")
        try:
            update = TelegramUpdate.model_validate(payload)
        except ValidationError as e:
            raise MalformedUpdateError(f"Invalid update: {e.error_count()} validation errors") from e
        raw = payload

    message = update.effective_message
    if message is None:
        logger.debug(f"Update {update.update_id} carries no message, skipping")
        return None

    keys = message.content_keys()
    message_type = next((t for t in MESSAGE_TYPES if t in keys), "other")
    text = message.text or ""

    return QueueEntry(
        update_id=update.update_id,
        kind=update.kind,
        message=message,
        chat_id=str(message.chat.id),
        chat_type=message.chat.type,
        message_type=message_type,
        content_keys=keys,
        text=text,
        is_command=text.startswith("/"),
        raw=raw,
    )
