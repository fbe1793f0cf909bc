"""
Queue Ingestor

Bounded FIFO buffer between push capture and stream consumption.

capture() never waits. When the buffer is full the OverflowPolicy
decides what is lost:

- DROP_OLDEST (default): evict the oldest unread entry, keep the new one.
- REJECT: keep the buffer as is, discard the new entry.

Both losses are counted in ``stats`` and logged. take() suspends until an
entry is available; close() wakes every waiting consumer with
QueueClosedError.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from enum import Enum
from typing import AsyncIterator, Deque, Dict, Optional

from .models import QueueEntry

logger = logging.getLogger("pulsewire.queue")


class OverflowPolicy(str, Enum):
    DROP_OLDEST = "drop_oldest"
    REJECT = "reject"


class QueueClosedError(Exception):
    """Raised to consumers once the ingestor is closed and drained."""


class QueueIngestor:
    """
    Bounded capture buffer.

    Safe for any number of producers and consumers on one event loop.
    """

    def __init__(
        self,
        capacity: int = 1000,
        policy: OverflowPolicy = OverflowPolicy.DROP_OLDEST,
    ):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self.policy = OverflowPolicy(policy)

        self._buffer: Deque[QueueEntry] = deque()
        self._available = asyncio.Event()
        self._closed = False

        self._stats = {
            "captured": 0,
            "delivered": 0,
            "dropped": 0,
            "rejected": 0,
        }

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def stats(self) -> Dict[str, int]:
        return {**self._stats, "size": len(self._buffer)}

    def __len__(self) -> int:
        return len(self._buffer)

    def capture(self, entry: QueueEntry) -> bool:
        """
        Enqueue without waiting.

        Returns:
            True if ``entry`` was accepted.
        """
        if self._closed:
            logger.debug(f"Queue closed, discarding update {entry.update_id}")
            return False

        if len(self._buffer) >= self.capacity:
            if self.policy is OverflowPolicy.REJECT:
                self._stats["rejected"] += 1
                logger.warning(
                    f"Queue full ({self.capacity}), rejected update {entry.update_id}"
                )
                return False

            evicted = self._buffer.popleft()
            self._stats["dropped"] += 1
            logger.warning(
                f"Queue full ({self.capacity}), dropped oldest update {evicted.update_id}"
            )

        self._buffer.append(entry)
        self._stats["captured"] += 1
        self._available.set()
        logger.debug(f"Captured update {entry.update_id}, queue size {len(self._buffer)}")
        return True

    def take_nowait(self) -> Optional[QueueEntry]:
        if not self._buffer:
            return None
        entry = self._buffer.popleft()
        if not self._buffer:
            self._available.clear()
        self._stats["delivered"] += 1
        return entry

    async def take(self) -> QueueEntry:
        """
        Remove and return the oldest entry, waiting if empty.

        Raises:
            QueueClosedError: The queue was closed and nothing is left.
        """
        while True:
            entry = self.take_nowait()
            if entry is not None:
                return entry
            if self._closed:
                raise QueueClosedError("Queue closed")
            await self._available.wait()

    async def entries(self) -> AsyncIterator[QueueEntry]:
        """Yield entries until the queue is closed."""
        while True:
            try:
                yield await self.take()
            except QueueClosedError:
                return

    def close(self) -> None:
        """Stop accepting entries and release waiting consumers."""
        if self._closed:
            return
        self._closed = True
        # Wake waiters so they observe the closed flag
        self._available.set()
        logger.info(f"Queue closed: {self.stats}")
