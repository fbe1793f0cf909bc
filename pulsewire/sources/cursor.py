"""
Cursor arithmetic for snowflake-id sources.

Ids are carried as strings so 64-bit values never lose precision, and
are compared as integers, never lexically ("99" < "100").
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

logger = logging.getLogger("pulsewire.sources.cursor")

TWITTER_EPOCH_MS = 1288834974657


def to_int(value: Optional[str]) -> Optional[int]:
    """Parse an id string as a big integer; None when not numeric."""
    if value is None:
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        return None


def id_greater(a: str, b: Optional[str]) -> bool:
    """True if ``a`` is numerically greater than ``b`` (or ``b`` is unset)."""
    left = to_int(a)
    if left is None:
        return False
    right = to_int(b)
    return right is None or left > right


def id_less(a: str, b: Optional[str]) -> bool:
    """True if ``a`` is numerically smaller than ``b`` (or ``b`` is unset)."""
    left = to_int(a)
    if left is None:
        return False
    right = to_int(b)
    return right is None or left < right


def decrement_snowflake_id(value: str) -> str:
    """
    Return ``value - 1`` as a string.

    Boundary queries are inclusive, so the page after an already-seen
    item must be anchored one below it. Zero and non-numeric ids are
    returned unchanged.
    """
    number = to_int(value)
    if number is None or number <= 0:
        return value
    return str(number - 1)


def build_backfill_query(base_query: str, oldest_seen_id: Optional[str] = None) -> str:
    """Anchor a query below the oldest id already seen."""
    if not oldest_seen_id:
        return base_query
    return f"{base_query} max_id:{decrement_snowflake_id(oldest_seen_id)}"


def build_live_query(base_query: str, most_recent_id: Optional[str] = None) -> str:
    """Anchor a query after the newest id already seen."""
    if not most_recent_id:
        return base_query
    return f"{base_query} since_id:{most_recent_id}"


def snowflake_to_datetime(value: str) -> Optional[datetime]:
    """Creation time encoded in a Twitter snowflake id."""
    number = to_int(value)
    if number is None or number < 0:
        return None
    millis = (number >> 22) + TWITTER_EPOCH_MS
    return datetime.fromtimestamp(millis / 1000, tz=timezone.utc)


@dataclass
class Cursor:
    """
    The pair of boundary ids of a stream.

    ``most_recent_id`` bounds the live frontier and only moves up;
    ``oldest_seen_id`` bounds the backfill frontier and only moves down.
    """
    most_recent_id: Optional[str] = None
    oldest_seen_id: Optional[str] = None

    def observe(self, external_id: str) -> bool:
        """
        Fold one item id into the cursor.

        Returns:
            True if either frontier moved.
        """
        if to_int(external_id) is None:
            logger.debug(f"Ignoring non-numeric id {external_id!r} for cursor")
            return False

        moved = False
        if id_greater(external_id, self.most_recent_id):
            self.most_recent_id = str(to_int(external_id))
            moved = True
        if id_less(external_id, self.oldest_seen_id):
            self.oldest_seen_id = str(to_int(external_id))
            moved = True
        return moved

    def copy(self) -> "Cursor":
        return Cursor(self.most_recent_id, self.oldest_seen_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "most_recent_id": self.most_recent_id,
            "oldest_seen_id": self.oldest_seen_id,
        }
