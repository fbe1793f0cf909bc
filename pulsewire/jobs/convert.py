"""
Provider result -> Item conversion.

Fixed fields go onto the Item; every other provider field rides along in
``Item.extra`` so nothing the provider sends is lost.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from ..sources.base import Author, Item, Platform
from ..sources.cursor import TWITTER_EPOCH_MS, snowflake_to_datetime
from .client import SearchResult

logger = logging.getLogger("pulsewire.jobs.convert")

_TWITTER_EPOCH = datetime.fromtimestamp(TWITTER_EPOCH_MS / 1000, tz=timezone.utc)

_FIXED_METADATA = {"author", "username", "user_id", "created_at", "tweet_id"}


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value or value.startswith("0001-01-01"):
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    # Pre-epoch dates are provider placeholders
    if parsed < _TWITTER_EPOCH:
        return None
    return parsed


def _platform_for(source: str) -> Platform:
    try:
        return Platform(source.lower())
    except ValueError:
        return Platform.TWITTER


def item_from_result(result: SearchResult) -> Item:
    """Build an Item from one provider search result."""
    metadata = result.metadata
    meta: Dict[str, Any] = metadata.model_dump(exclude_none=True) if metadata else {}

    external_id = result.id

    timestamp = _parse_timestamp(metadata.created_at if metadata else None)
    if timestamp is None:
        timestamp = snowflake_to_datetime(external_id)

    authors = []
    username = meta.get("username")
    if username or meta.get("user_id") or meta.get("author"):
        authors.append(Author(
            id=meta.get("user_id"),
            username=username,
            display_name=meta.get("author") or username,
            url=f"https://twitter.com/{username}" if username else None,
        ))

    url = None
    if metadata and metadata.tweet_id:
        handle = username or "i"
        url = f"https://twitter.com/{handle}/status/{metadata.tweet_id}"

    extra = {k: v for k, v in meta.items() if k not in _FIXED_METADATA}
    if result.updated_at:
        extra["updated_at"] = result.updated_at
    if result.model_extra:
        extra.update(result.model_extra)

    return Item(
        external_id=external_id,
        platform=_platform_for(result.source or "twitter"),
        content=result.content,
        content_type="post",
        source_timestamp=timestamp,
        url=url,
        authors=authors,
        extra=extra,
        raw=result.model_dump(exclude_none=True),
    )
