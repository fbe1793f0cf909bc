"""
Listen filters over queued entries.

Each predicate is a pure function of a QueueEntry. Categories combine
with AND; values within a category combine with OR. A text filter drops
commands unless a commands list is given, in which case commands pass
the text filter and are then checked against the list.
"""

from __future__ import annotations

import logging
from typing import AsyncIterator, Callable, List, Optional, Sequence

from pydantic import BaseModel, Field, field_validator

from .models import CHAT_TYPES, MESSAGE_TYPES, QueueEntry

logger = logging.getLogger("pulsewire.queue.filters")

Predicate = Callable[[QueueEntry], bool]


class ListenFilter(BaseModel):
    """Caller-supplied listen parameters."""
    chat_id: Optional[str] = None
    chat_types: List[str] = Field(default_factory=list)
    message_types: List[str] = Field(default_factory=list)
    commands: List[str] = Field(default_factory=list)
    max_results: Optional[int] = Field(default=None, gt=0)

    @field_validator("chat_id", mode="before")
    @classmethod
    def _chat_id_str(cls, value):
        return None if value is None or value == "" else str(value)

    @field_validator("chat_types")
    @classmethod
    def _known_chat_types(cls, value: List[str]) -> List[str]:
        unknown = [v for v in value if v not in CHAT_TYPES]
        if unknown:
            raise ValueError(f"unknown chat types: {unknown}")
        return value

    @field_validator("message_types")
    @classmethod
    def _known_message_types(cls, value: List[str]) -> List[str]:
        unknown = [v for v in value if v not in MESSAGE_TYPES]
        if unknown:
            raise ValueError(f"unknown message types: {unknown}")
        return value


def chat_id_predicate(chat_id: str) -> Predicate:
    return lambda entry: entry.chat_id == chat_id


def chat_type_predicate(chat_types: Sequence[str]) -> Predicate:
    allowed = frozenset(chat_types)
    return lambda entry: entry.chat_type in allowed


def message_type_predicate(message_types: Sequence[str], commands_requested: bool) -> Predicate:
    wanted = frozenset(message_types)

    def matches(entry: QueueEntry) -> bool:
        for message_type in wanted:
            if message_type == "text":
                if "text" not in entry.content_keys:
                    continue
                if commands_requested or not entry.is_command:
                    return True
            elif message_type in entry.content_keys:
                return True
        return False

    return matches


def command_predicate(commands: Sequence[str]) -> Predicate:
    prefixes = tuple(commands)
    return lambda entry: bool(entry.text) and entry.text.startswith(prefixes)


class FilterChain:
    """
    Ordered AND of predicates built from a ListenFilter.

    Example:
        chain = FilterChain(ListenFilter(message_types=["text"], commands=["/start"]))
        async for entry in chain.apply(ingestor.entries()):
            ...
    """

    def __init__(self, listen_filter: Optional[ListenFilter] = None):
        self.filter = listen_filter or ListenFilter()
        self.predicates: List[Predicate] = []

        f = self.filter
        if f.chat_id:
            self.predicates.append(chat_id_predicate(f.chat_id))
        if f.chat_types:
            self.predicates.append(chat_type_predicate(f.chat_types))
        if f.message_types:
            self.predicates.append(message_type_predicate(f.message_types, bool(f.commands)))
        if f.commands:
            self.predicates.append(command_predicate(f.commands))

    def matches(self, entry: QueueEntry) -> bool:
        return all(predicate(entry) for predicate in self.predicates)

    async def apply(self, entries: AsyncIterator[QueueEntry]) -> AsyncIterator[QueueEntry]:
        """Yield matching entries; stop after ``max_results`` matches."""
        limit = self.filter.max_results
        yielded = 0
        if limit is not None and limit <= 0:
            return

        async for entry in entries:
            if not self.matches(entry):
                logger.debug(f"Filtered out update {entry.update_id}")
                continue
            yield entry
            yielded += 1
            if limit is not None and yielded >= limit:
                return
