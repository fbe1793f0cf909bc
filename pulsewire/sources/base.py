"""
Shared Source Types for Pulsewire

Provides:
- Error taxonomy shared by job-poll and push sources
- Platform enum
- Item: the uniform ingested record

Every error carries a provider status (HTTP-like) and an operation
context. Permanent errors are never retried; everything else consumes
retry budget.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

logger = logging.getLogger("pulsewire.sources")


# =============================================================================
# Exceptions
# =============================================================================

class IngestError(Exception):
    """Base exception for ingestion errors."""

    permanent = False
    default_status: Optional[int] = None

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        context: Optional[str] = None,
    ):
        super().__init__(message)
        self.status = status if status is not None else self.default_status
        self.context = context

    def __str__(self) -> str:
        message = super().__str__()
        if self.context:
            return f"{message} ({self.context})"
        return message


class InvalidRequestError(IngestError):
    """Raised when the provider rejects query parameters."""
    permanent = True
    default_status = 400


class UnauthorizedError(IngestError):
    """Raised when credentials are missing or invalid."""
    permanent = True
    default_status = 401


class ForbiddenError(IngestError):
    """Raised when credentials lack the needed permission."""
    permanent = True
    default_status = 403


class NotFoundError(IngestError):
    """Raised when a specific lookup has no result."""
    permanent = True
    default_status = 404


class RateLimitError(IngestError):
    """Raised when rate limit is hit."""
    default_status = 429

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        context: Optional[str] = None,
        retry_after: Optional[float] = None,
    ):
        super().__init__(message, status, context)
        self.retry_after = retry_after


class ProviderUnavailableError(IngestError):
    """Raised when the provider is down or returned an unusable answer."""
    default_status = 503


class JobTimeoutError(IngestError):
    """Raised when a job did not finish within the retry budget."""
    default_status = 504


class TransportError(IngestError):
    """Raised when the push channel connection fails."""
    default_status = 503


PERMANENT_STATUSES = frozenset({400, 401, 403, 404})


def is_permanent(error: BaseException) -> bool:
    """Return True for faults that must abort without retry."""
    if isinstance(error, IngestError):
        return error.permanent or error.status in PERMANENT_STATUSES
    return False


def error_for_status(
    status: Optional[int],
    message: str,
    context: Optional[str] = None,
) -> IngestError:
    """Map a provider status code onto the error taxonomy."""
    if status == 400 or status == 422:
        return InvalidRequestError(message, status, context)
    if status == 401:
        return UnauthorizedError(message, status, context)
    if status == 403:
        return ForbiddenError(message, status, context)
    if status == 404:
        return NotFoundError(message, status, context)
    if status == 429:
        return RateLimitError(message, status, context)
    return ProviderUnavailableError(message, status, context)


# Bare numbers only count next to a status word, so ids, ports and
# durations in free text never look like an HTTP status.
_CODE = r"(?:^|\b(?:status|code|http|error)\b\W{{0,3}}){code}\b"

_MESSAGE_PATTERNS = (
    (re.compile(r"\bunauthori[sz]ed\b|\binvalid (?:api key|token)\b|" + _CODE.format(code="401")), 401),
    (re.compile(r"\bforbidden\b|\bpermission denied\b|" + _CODE.format(code="403")), 403),
    (re.compile(r"\bbad request\b|\binvalid request\b|\bmalformed\b|" + _CODE.format(code="400")), 400),
    (re.compile(r"\bnot found\b|" + _CODE.format(code="404")), 404),
    (re.compile(r"\btoo many requests\b|\brate limit|\bflood\b|" + _CODE.format(code="429")), 429),
)


def error_for_message(message: str, context: Optional[str] = None) -> IngestError:
    """
    Classify a provider fault that only comes as text.

    Used where providers report failures inside a 200 response. Text
    that matches no known fault is treated as transient.
    """
    lowered = (message or "").lower().strip()
    for pattern, status in _MESSAGE_PATTERNS:
        if pattern.search(lowered):
            return error_for_status(status, message, context)
    return ProviderUnavailableError(message or "Unknown provider error", None, context)


# =============================================================================
# Data Classes
# =============================================================================

class Platform(str, Enum):
    """Supported platforms."""
    TWITTER = "twitter"
    TELEGRAM = "telegram"


@dataclass
class Author:
    """Author reference attached to an item."""
    id: Optional[str] = None
    username: Optional[str] = None
    display_name: Optional[str] = None
    url: Optional[str] = None


@dataclass
class Item:
    """
    Single ingested record.

    The fixed fields are what every source provides. Provider-specific
    fields travel in ``extra`` untouched so downstream consumers keep
    access to them without widening this schema.
    """
    # Identifiers
    external_id: str
    platform: Platform

    # Content
    content: str
    content_type: str = "post"

    source_timestamp: Optional[datetime] = None
    url: Optional[str] = None
    authors: List[Author] = field(default_factory=list)

    # Bot was replied to or tagged (push sources only)
    is_mentioned: bool = False

    extra: Dict[str, Any] = field(default_factory=dict)
    raw: Optional[Dict[str, Any]] = None

    @property
    def numeric_id(self) -> Optional[int]:
        """The id as a big integer, or None if it is not numeric."""
        try:
            return int(self.external_id)
        except (TypeError, ValueError):
            return None

    def to_dict(self) -> Dict[str, Any]:
        """Plain representation for JSON consumers."""
        return {
            "external_id": self.external_id,
            "platform": self.platform.value,
            "content": self.content,
            "content_type": self.content_type,
            "source_timestamp": (
                self.source_timestamp.isoformat() if self.source_timestamp else None
            ),
            "url": self.url,
            "authors": [
                {
                    "id": a.id,
                    "username": a.username,
                    "display_name": a.display_name,
                    "url": a.url,
                }
                for a in self.authors
            ],
            "is_mentioned": self.is_mentioned,
            "extra": dict(self.extra),
        }
