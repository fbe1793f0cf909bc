# Pulsewire package
"""
Pulsewire: resumable ingestion from job-poll search APIs and push sources.

Modules:
- sources: shared types, error taxonomy, RetryPolicy, Cursor
- jobs: JobClient and JobPoller for the asynchronous search API
- stream: CursorStreamOrchestrator (gap detection, backfill, live)
- queue: QueueIngestor and FilterChain for push capture
- telegram: Telegram Bot API push source
- state / db: StreamState checkpoints and their SQL store
- pipeline: IngestionPipeline, the owned lifecycle scope
"""

from .config import PulsewireConfig, load_env_file
from .sources.base import Item, Platform
from .state import StreamState
from .stream.query import StreamQuery
from .pipeline import IngestionPipeline

__version__ = "0.1.0"

__all__ = [
    "PulsewireConfig",
    "load_env_file",
    "Item",
    "Platform",
    "StreamState",
    "StreamQuery",
    "IngestionPipeline",
]
