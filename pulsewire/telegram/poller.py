"""
Manual update polling.

Stands in for a push channel when no webhook domain is configured: long
polls getUpdates with its own offset and hands every update to the same
capture callback a webhook delivery would use.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, Optional

from ..config import TelegramConfig
from ..queue.models import UPDATE_KINDS
from ..sources.base import IngestError, RateLimitError, is_permanent
from ..sources.retry import RetryPolicy
from .transport import TelegramTransport

logger = logging.getLogger("pulsewire.telegram.poller")

EMPTY_POLL_DELAY_S = 1.0


class UpdatePoller:
    """
    getUpdates loop feeding a capture callback.

    The offset is the update-level cursor (last update_id + 1); it is
    independent of any item-level cursor.
    """

    def __init__(
        self,
        transport: TelegramTransport,
        on_update: Callable[[Dict[str, Any]], Any],
        config: Optional[TelegramConfig] = None,
        policy: Optional[RetryPolicy] = None,
        empty_delay: float = EMPTY_POLL_DELAY_S,
    ):
        self.transport = transport
        self.on_update = on_update
        self.config = config or transport.config
        self.policy = policy or RetryPolicy(max_attempts=1_000_000, base_delay=5.0, max_delay=60.0)
        self.empty_delay = empty_delay

        self.offset = 0
        self.consecutive_failures = 0
        self._running = False

        self.stats = {
            "polls": 0,
            "updates": 0,
            "errors": 0,
        }

    @property
    def is_running(self) -> bool:
        return self._running

    def _error_delay(self, error: IngestError) -> float:
        delay = self.policy.get_delay(self.consecutive_failures - 1)
        if isinstance(error, RateLimitError) and error.retry_after:
            delay = max(delay, error.retry_after)
        return delay

    async def poll_once(self) -> int:
        """One getUpdates round. Returns the number of updates handled."""
        updates = await self.transport.get_updates(
            offset=self.offset,
            timeout=self.config.poll_timeout_s,
            limit=self.config.max_updates_per_poll,
            allowed_updates=UPDATE_KINDS,
        )
        self.stats["polls"] += 1

        for update in updates:
            update_id = update.get("update_id") if isinstance(update, dict) else None
            self.on_update(update)
            if isinstance(update_id, int) and update_id >= self.offset:
                self.offset = update_id + 1

        self.stats["updates"] += len(updates)
        return len(updates)

    async def run(self) -> None:
        """
        Poll until stopped or cancelled.

        Raises:
            IngestError: A permanent failure such as a revoked token.
        """
        self._running = True
        logger.info("Starting manual polling loop")

        try:
            while self._running:
                try:
                    handled = await self.poll_once()
                except IngestError as e:
                    if is_permanent(e):
                        logger.error(f"Polling stopped: {e}")
                        raise
                    self.consecutive_failures += 1
                    self.stats["errors"] += 1
                    delay = self._error_delay(e)
                    logger.warning(
                        f"Polling error ({self.consecutive_failures} in a row), "
                        f"backing off {delay:.1f}s: {e}"
                    )
                    await asyncio.sleep(delay)
                    continue

                self.consecutive_failures = 0
                if handled == 0:
                    await asyncio.sleep(self.empty_delay)
        finally:
            self._running = False
            logger.info(f"Manual polling stopped at offset {self.offset}")

    def stop(self) -> None:
        self._running = False
