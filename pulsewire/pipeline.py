"""
Ingestion Pipeline

One explicitly owned, cancellable scope for everything that runs:

- the Telegram polling task (when no webhook domain is configured)
- one task per active job-poll query
- the capture queue

stop() cancels every task (interrupting any backoff or poll sleep),
writes a final checkpoint for each query stream, and closes the queue
so blocked listeners end instead of hanging.

Usage:
    async with IngestionPipeline.from_env(sink=store_item) as pipeline:
        pipeline.add_query(StreamQuery(query="near protocol"))
        async for item in pipeline.listen(ListenFilter(message_types=["text"])):
            ...
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional, Union

from .config import PulsewireConfig
from .db.database import Database, DatabaseConfig, SqlCheckpointStore
from .jobs.client import JobClient
from .jobs.poller import JobPoller
from .queue.filters import ListenFilter
from .sources.base import Item
from .sources.retry import RetryPolicy
from .state import CheckpointStore, Checkpointer, MemoryCheckpointStore, StreamState
from .stream.orchestrator import CursorStreamOrchestrator
from .stream.query import StreamQuery
from .telegram.source import ActionResult, SendAction, TelegramSource

logger = logging.getLogger("pulsewire.pipeline")

ItemSink = Callable[[Item], Awaitable[None]]


class IngestionPipeline:
    """
    Owns the tasks, queue and clients of one ingestion run.
    """

    def __init__(
        self,
        config: Optional[PulsewireConfig] = None,
        poller: Optional[JobPoller] = None,
        telegram: Optional[TelegramSource] = None,
        store: Optional[CheckpointStore] = None,
        sink: Optional[ItemSink] = None,
        db: Optional[Database] = None,
    ):
        self.config = config or PulsewireConfig()
        self.poller = poller
        self.telegram = telegram
        self.store: CheckpointStore = store or MemoryCheckpointStore()
        self.sink = sink
        self._db = db

        self._tasks: Dict[str, asyncio.Task] = {}
        self._orchestrators: Dict[str, CursorStreamOrchestrator] = {}
        self._running = False
        self._stats = {
            "items": 0,
            "batches": 0,
            "stream_failures": 0,
        }

    @classmethod
    def from_env(cls, sink: Optional[ItemSink] = None) -> "IngestionPipeline":
        """Wire every collaborator from environment configuration."""
        config = PulsewireConfig.from_env()

        poller = None
        if config.job_api.is_configured():
            poller = JobPoller(
                JobClient(config.job_api),
                RetryPolicy.from_defaults(config.stream),
            )

        telegram = TelegramSource(config.telegram) if config.telegram.is_configured() else None

        db = None
        store: CheckpointStore = MemoryCheckpointStore()
        if config.database_url:
            db = Database(DatabaseConfig.from_env())
            store = SqlCheckpointStore(db)

        return cls(config, poller=poller, telegram=telegram, store=store, sink=sink, db=db)

    @property
    def is_running(self) -> bool:
        return self._running

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def __aenter__(self) -> "IngestionPipeline":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()

    async def start(self) -> None:
        """Connect storage and start the push source."""
        if self._running:
            return
        logger.info("Starting ingestion pipeline...")

        if self._db is not None:
            await self._db.connect()

        if self.telegram is not None:
            await self.telegram.start()
            if self.telegram.poller is not None:
                self._spawn("telegram_polling", self.telegram.poller.run())

        self._running = True
        logger.info(f"Ingestion pipeline started with {len(self._tasks)} tasks")

    async def stop(self) -> None:
        """Cancel all tasks and release every resource."""
        if not self._running and not self._tasks:
            return
        self._running = False
        logger.info("Stopping ingestion pipeline...")

        for task in self._tasks.values():
            if not task.done():
                task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks.values(), return_exceptions=True)
        self._tasks.clear()
        self._orchestrators.clear()

        if self.telegram is not None:
            await self.telegram.stop()
        if self.poller is not None:
            await self.poller.client.close()
        if self._db is not None:
            await self._db.disconnect()

        logger.info(f"Ingestion pipeline stopped: {self.get_stats()}")

    async def wait(self) -> None:
        """Wait until every task has finished."""
        if self._tasks:
            await asyncio.gather(*self._tasks.values(), return_exceptions=True)

    def _spawn(self, name: str, coro: Awaitable[Any]) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        task.add_done_callback(self._on_task_done)
        self._tasks[name] = task
        return task

    def _on_task_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self._stats["stream_failures"] += 1
            logger.error(f"Task {task.get_name()} failed: {error}")

    # =========================================================================
    # Job-poll streams
    # =========================================================================

    def add_query(self, query: StreamQuery, sink: Optional[ItemSink] = None) -> asyncio.Task:
        """Start a resumable stream for ``query`` as a pipeline task."""
        if self.poller is None:
            raise RuntimeError("No job API configured")
        sink = sink or self.sink
        if sink is None:
            raise ValueError("A sink is required to run a query stream")

        name = f"stream:{query.stream_key}"
        if name in self._tasks and not self._tasks[name].done():
            raise ValueError(f"Stream already running: {query.stream_key}")

        return self._spawn(name, self._run_stream(query, sink))

    async def _run_stream(self, query: StreamQuery, sink: ItemSink) -> None:
        checkpointer = Checkpointer(
            self.store, query.stream_key, every=self.config.stream.checkpoint_every
        )
        state: Optional[StreamState] = await checkpointer.load()
        orchestrator = CursorStreamOrchestrator(self.poller, query, state)
        self._orchestrators[query.stream_key] = orchestrator

        try:
            async for batch in orchestrator.batches():
                for item in batch.items:
                    await sink(item)
                self._stats["items"] += len(batch.items)
                self._stats["batches"] += 1
                await checkpointer.record(batch.state, len(batch.items))
        finally:
            await checkpointer.flush(orchestrator.state)
            logger.info(f"Stream {query.stream_key} ended at {orchestrator.state.cursor.to_dict()}")

    def stream_state(self, stream_key: str) -> Optional[StreamState]:
        orchestrator = self._orchestrators.get(stream_key)
        return orchestrator.state if orchestrator else None

    # =========================================================================
    # Push source
    # =========================================================================

    async def listen(
        self,
        listen_filter: Optional[Union[ListenFilter, Dict[str, Any]]] = None,
    ) -> AsyncIterator[Item]:
        if self.telegram is None:
            raise RuntimeError("No Telegram source configured")
        async for item in self.telegram.listen(listen_filter):
            yield item

    async def send_action(
        self,
        target: str,
        payload: Union[SendAction, Dict[str, Any]],
    ) -> ActionResult:
        if self.telegram is None:
            return ActionResult(success=False, chat_id=str(target), error="No Telegram source configured")
        return await self.telegram.send_action(target, payload)

    def get_stats(self) -> Dict[str, Any]:
        stats: Dict[str, Any] = dict(self._stats)
        if self.poller is not None:
            stats["jobs"] = dict(self.poller.stats)
        if self.telegram is not None:
            stats["telegram"] = dict(self.telegram.stats)
            stats["queue"] = self.telegram.ingestor.stats
        return stats
