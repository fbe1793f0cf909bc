# Database package for Pulsewire
"""Durable checkpoint storage on SQLAlchemy 2.0 (async)."""

from .models import Base, StreamCheckpoint
from .database import Database, DatabaseConfig, SqlCheckpointStore

__all__ = [
    "Base",
    "StreamCheckpoint",
    "Database",
    "DatabaseConfig",
    "SqlCheckpointStore",
]
