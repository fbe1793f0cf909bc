# Stream package for Pulsewire
"""
Resumable job-poll streams.

- query: StreamQuery
- orchestrator: CursorStreamOrchestrator (gap detection, backfill, live)
"""

from .query import StreamQuery
from .orchestrator import CursorStreamOrchestrator, StreamBatch

__all__ = [
    "StreamQuery",
    "CursorStreamOrchestrator",
    "StreamBatch",
]
