# Sources package for Pulsewire
"""
Types shared by every source.

- base: error taxonomy, Platform, Item
- retry: RetryPolicy
- cursor: Cursor and snowflake-id arithmetic
"""

from .base import (
    IngestError,
    InvalidRequestError,
    UnauthorizedError,
    ForbiddenError,
    NotFoundError,
    RateLimitError,
    ProviderUnavailableError,
    JobTimeoutError,
    TransportError,
    Platform,
    Author,
    Item,
    error_for_status,
    is_permanent,
)
from .retry import RetryPolicy
from .cursor import Cursor

__all__ = [
    "IngestError",
    "InvalidRequestError",
    "UnauthorizedError",
    "ForbiddenError",
    "NotFoundError",
    "RateLimitError",
    "ProviderUnavailableError",
    "JobTimeoutError",
    "TransportError",
    "Platform",
    "Author",
    "Item",
    "error_for_status",
    "is_permanent",
    "RetryPolicy",
    "Cursor",
]
