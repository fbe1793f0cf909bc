# Queue package for Pulsewire
"""
Push capture: bounded buffer, entry models and listen filters.
"""

from .models import (
    CHAT_TYPES,
    MESSAGE_TYPES,
    MalformedUpdateError,
    QueueEntry,
    TelegramUpdate,
    entry_from_update,
)
from .ingestor import OverflowPolicy, QueueClosedError, QueueIngestor
from .filters import FilterChain, ListenFilter

__all__ = [
    "CHAT_TYPES",
    "MESSAGE_TYPES",
    "MalformedUpdateError",
    "QueueEntry",
    "TelegramUpdate",
    "entry_from_update",
    "OverflowPolicy",
    "QueueClosedError",
    "QueueIngestor",
    "FilterChain",
    "ListenFilter",
]
