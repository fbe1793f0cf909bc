"""
Stream State and Checkpointing

StreamState is the resumable checkpoint of one job-poll stream: the
cursor pair, counters, and the phase the stream was in. A Checkpointer
writes it through any CheckpointStore every N processed items and once
more on shutdown, never per item.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Protocol, runtime_checkable

from .sources.cursor import Cursor

logger = logging.getLogger("pulsewire.state")


class StreamPhase(str, Enum):
    """Where a stream currently is."""
    GAP_DETECTION = "gap_detection"
    BACKFILL = "backfill"
    LIVE = "live"
    DONE = "done"


@dataclass
class StreamState:
    """Persisted checkpoint of one stream."""
    cursor: Cursor = field(default_factory=Cursor)
    total_processed: int = 0
    phase: Optional[StreamPhase] = None
    backfill_done: bool = False
    backfill_count: int = 0
    updated_at: Optional[datetime] = None

    def copy(self) -> "StreamState":
        return StreamState(
            cursor=self.cursor.copy(),
            total_processed=self.total_processed,
            phase=self.phase,
            backfill_done=self.backfill_done,
            backfill_count=self.backfill_count,
            updated_at=self.updated_at,
        )

    def touch(self) -> None:
        self.updated_at = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "most_recent_id": self.cursor.most_recent_id,
            "oldest_seen_id": self.cursor.oldest_seen_id,
            "total_processed": self.total_processed,
            "phase": self.phase.value if self.phase else None,
            "backfill_done": self.backfill_done,
            "backfill_count": self.backfill_count,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StreamState":
        phase = data.get("phase")
        updated_at = data.get("updated_at")
        return cls(
            cursor=Cursor(
                most_recent_id=data.get("most_recent_id"),
                oldest_seen_id=data.get("oldest_seen_id"),
            ),
            total_processed=int(data.get("total_processed") or 0),
            phase=StreamPhase(phase) if phase else None,
            backfill_done=bool(data.get("backfill_done", False)),
            backfill_count=int(data.get("backfill_count") or 0),
            updated_at=datetime.fromisoformat(updated_at) if updated_at else None,
        )


@runtime_checkable
class CheckpointStore(Protocol):
    """Durable storage for stream checkpoints."""

    async def load_state(self, stream_key: str) -> Optional[StreamState]:
        ...

    async def save_state(self, stream_key: str, state: StreamState) -> None:
        ...


class MemoryCheckpointStore:
    """In-process store. Useful for tests and one-shot runs."""

    def __init__(self):
        self._states: Dict[str, StreamState] = {}
        self.saves = 0

    async def load_state(self, stream_key: str) -> Optional[StreamState]:
        state = self._states.get(stream_key)
        return state.copy() if state else None

    async def save_state(self, stream_key: str, state: StreamState) -> None:
        self._states[stream_key] = state.copy()
        self.saves += 1


class Checkpointer:
    """
    Saves stream state at a bounded cadence.

    Usage:
        checkpointer = Checkpointer(store, query.stream_key, every=50)
        async for batch in orchestrator.batches():
            ...
            await checkpointer.record(batch.state, len(batch.items))
        await checkpointer.flush()
    """

    def __init__(self, store: CheckpointStore, stream_key: str, every: int = 50):
        if every < 1:
            raise ValueError("every must be at least 1")
        self.store = store
        self.stream_key = stream_key
        self.every = every
        self._pending = 0
        self._latest: Optional[StreamState] = None

    async def load(self) -> Optional[StreamState]:
        state = await self.store.load_state(self.stream_key)
        if state:
            logger.info(
                f"Resuming {self.stream_key} at {state.cursor.to_dict()} "
                f"({state.total_processed} processed)"
            )
        return state

    async def record(self, state: StreamState, processed: int) -> bool:
        """
        Note ``processed`` new items. Returns True if a save happened.
        """
        self._latest = state.copy()
        self._pending += processed
        if self._pending < self.every:
            return False
        await self._save()
        return True

    async def flush(self, state: Optional[StreamState] = None) -> None:
        """Save the latest state regardless of cadence."""
        if state is not None:
            self._latest = state.copy()
        if self._latest is None:
            return
        await self._save()

    async def _save(self) -> None:
        self._latest.touch()
        await self.store.save_state(self.stream_key, self._latest)
        logger.debug(
            f"Checkpoint {self.stream_key}: {self._latest.cursor.to_dict()} "
            f"total={self._latest.total_processed}"
        )
        self._pending = 0
