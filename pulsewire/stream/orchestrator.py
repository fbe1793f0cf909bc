"""
Cursor Stream Orchestrator

Composes one continuous, resumable item stream per query:

1. Gap detection (only when a most-recent id is already known): a single
   bounded query for items newer than the frontier.
2. Backfill: pages backward from the oldest seen id until a stop
   condition or a short page.
3. Live: polls forward from the most recent id forever, sleeping between
   polls.

Every yielded item is folded into the cursor the same way regardless of
phase. Items are yielded in provider order; nothing is reordered or
deduplicated here.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import AsyncIterator, Callable, List, Optional

from ..jobs.poller import JobPoller
from ..sources.base import IngestError, Item, NotFoundError, is_permanent
from ..sources.cursor import build_backfill_query, build_live_query, to_int
from ..state import StreamPhase, StreamState
from .query import StreamQuery

logger = logging.getLogger("pulsewire.stream")


@dataclass
class StreamBatch:
    """One fetched page plus the state snapshot after it."""
    items: List[Item]
    state: StreamState
    phase: StreamPhase


class CursorStreamOrchestrator:
    """
    Drives gap detection, backfill and live polling for one query.

    The orchestrator is the only writer of its StreamState; consumers
    receive copies with each batch.

    Example:
        orchestrator = CursorStreamOrchestrator(poller, StreamQuery(query="near"))
        async for batch in orchestrator.batches():
            store(batch.items)
            await checkpointer.record(batch.state, len(batch.items))
    """

    def __init__(
        self,
        poller: JobPoller,
        query: StreamQuery,
        state: Optional[StreamState] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.poller = poller
        self.query = query
        self.clock = clock

        self._state = state.copy() if state else StreamState()
        self._resumed = state is not None

        cursor = self._state.cursor
        if cursor.most_recent_id is None and query.since_id:
            cursor.most_recent_id = query.since_id
        if cursor.oldest_seen_id is None and query.max_id:
            cursor.oldest_seen_id = query.max_id

    @property
    def state(self) -> StreamState:
        """Snapshot of the current state."""
        return self._state.copy()

    def _observe(self, item: Item) -> None:
        self._state.cursor.observe(item.external_id)
        self._state.total_processed += 1

    def _batch(self, items: List[Item], phase: StreamPhase) -> StreamBatch:
        return StreamBatch(items=items, state=self.state, phase=phase)

    def _should_backfill(self) -> bool:
        if self._state.backfill_done:
            return False
        if self._state.cursor.most_recent_id is None:
            return True
        if self.query.max_backfill_results > 0:
            return True
        # An interrupted backfill resumes where it stopped
        return self._resumed and self._state.phase is StreamPhase.BACKFILL

    # =========================================================================
    # Phases
    # =========================================================================

    async def _gap_detection(self) -> AsyncIterator[StreamBatch]:
        self._state.phase = StreamPhase.GAP_DETECTION
        frontier = self._state.cursor.most_recent_id
        logger.info(f"Gap detection for {self.query.query!r} after {frontier}")

        items = await self.poller.run(
            self.query.source_type,
            self.query.search_method,
            build_live_query(self.query.query, frontier),
            self.query.gap_page_size,
        )
        for item in items:
            self._observe(item)

        logger.info(
            f"Gap detection found {len(items)} items, "
            f"frontier now {self._state.cursor.most_recent_id}"
        )
        if items:
            yield self._batch(items, StreamPhase.GAP_DETECTION)

    async def _backfill(self) -> AsyncIterator[StreamBatch]:
        self._state.phase = StreamPhase.BACKFILL
        query = self.query
        page_size = query.backfill_page_size
        max_results = query.max_backfill_results
        oldest_allowed = to_int(query.oldest_allowed_id)

        cutoff = None
        if query.max_backfill_age_ms:
            cutoff = self.clock() - query.max_backfill_age_ms / 1000

        logger.info(
            f"Backfill for {query.query!r} from {self._state.cursor.oldest_seen_id or 'newest'}"
        )

        finished = False
        while not finished:
            if max_results and self._state.backfill_count >= max_results:
                break

            anchor = self._state.cursor.oldest_seen_id
            items = await self.poller.run(
                query.source_type,
                query.backfill_method,
                build_backfill_query(query.query, anchor),
                page_size,
            )

            accepted: List[Item] = []
            for item in items:
                if max_results and self._state.backfill_count >= max_results:
                    finished = True
                    break

                if cutoff is not None:
                    # An undated item cannot be placed inside the window
                    stamp = item.source_timestamp
                    if stamp is None or stamp.timestamp() < cutoff:
                        logger.debug(f"Backfill reached age cutoff at {item.external_id}")
                        finished = True
                        break

                item_id = item.numeric_id
                if oldest_allowed is not None and item_id is not None and item_id < oldest_allowed:
                    logger.debug(f"Backfill crossed oldest allowed id at {item.external_id}")
                    finished = True
                    break

                accepted.append(item)
                self._observe(item)
                self._state.backfill_count += 1

            if len(items) < page_size:
                finished = True
            elif self._state.cursor.oldest_seen_id == anchor:
                # Full page without progress; the provider is repeating itself
                logger.warning(f"Backfill made no progress below {anchor}, stopping")
                finished = True

            if accepted:
                yield self._batch(accepted, StreamPhase.BACKFILL)

        self._state.backfill_done = True
        logger.info(
            f"Backfill complete for {query.query!r}: {self._state.backfill_count} items, "
            f"cursor {self._state.cursor.to_dict()}"
        )

    async def _live(self) -> AsyncIterator[StreamBatch]:
        self._state.phase = StreamPhase.LIVE
        query = self.query
        logger.info(f"Live polling {query.query!r} every {query.live_poll_interval_s}s")

        while True:
            frontier = self._state.cursor.most_recent_id
            items: List[Item] = []
            try:
                items = await self.poller.run(
                    query.source_type,
                    query.search_method,
                    build_live_query(query.query, frontier),
                    query.live_page_size,
                )
            except IngestError as e:
                # Nothing found is a lookup fault, not a reason to end a recurring query
                if is_permanent(e) and not isinstance(e, NotFoundError):
                    logger.error(f"Live polling for {query.query!r} failed: {e}")
                    raise
                logger.warning(f"Live poll after {frontier} failed, retrying next cycle: {e}")

            for item in items:
                self._observe(item)

            if items:
                logger.debug(f"Live poll found {len(items)} items after {frontier}")
                yield self._batch(items, StreamPhase.LIVE)

            await asyncio.sleep(query.live_poll_interval_s)

    # =========================================================================
    # Public API
    # =========================================================================

    async def batches(self) -> AsyncIterator[StreamBatch]:
        """Yield non-empty batches across all phases."""
        backfill = self._should_backfill()

        if self._state.cursor.most_recent_id is not None:
            async for batch in self._gap_detection():
                yield batch

        if backfill:
            async for batch in self._backfill():
                yield batch

        if not self.query.enable_live:
            self._state.phase = StreamPhase.DONE
            return

        async for batch in self._live():
            yield batch

    async def stream(self) -> AsyncIterator[Item]:
        """Yield items one at a time."""
        async for batch in self.batches():
            for item in batch.items:
                yield item
