"""
Database Connection Layer for Pulsewire

Provides:
- Async connections with SQLAlchemy 2.0
- SQLite (aiosqlite) by default, PostgreSQL ready
- SqlCheckpointStore: the durable CheckpointStore

Usage:
    db = Database(DatabaseConfig("sqlite+aiosqlite:///pulsewire.db"))
    await db.connect()

    store = SqlCheckpointStore(db)
    await store.save_state("twitter:searchbyquery:near", state)
"""

from __future__ import annotations

import os
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import (
    AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
)
from sqlalchemy.pool import StaticPool

from ..sources.cursor import Cursor
from ..state import StreamPhase, StreamState
from .models import Base, StreamCheckpoint

logger = logging.getLogger("pulsewire.db")


# =============================================================================
# Configuration
# =============================================================================

class DatabaseConfig:
    """Database configuration."""

    def __init__(
        self,
        url: Optional[str] = None,
        echo: bool = False,
        pool_size: int = 5,
        max_overflow: int = 10,
    ):
        """
        Args:
            url: Database URL. If None, uses SQLite under ./data.
            echo: Echo SQL statements (for debugging).
            pool_size: Connection pool size (non-SQLite only).
            max_overflow: Max overflow connections (non-SQLite only).
        """
        if url is None:
            db_path = Path.cwd() / "data" / "pulsewire.db"
            db_path.parent.mkdir(parents=True, exist_ok=True)
            url = f"sqlite+aiosqlite:///{db_path}"

        self.url = url
        self.echo = echo
        self.pool_size = pool_size
        self.max_overflow = max_overflow

    @classmethod
    def from_env(cls) -> "DatabaseConfig":
        """Load configuration from environment variables."""
        return cls(
            url=os.getenv("DATABASE_URL"),
            echo=os.getenv("DATABASE_ECHO", "false").lower() == "true",
            pool_size=int(os.getenv("DATABASE_POOL_SIZE", "5")),
            max_overflow=int(os.getenv("DATABASE_MAX_OVERFLOW", "10")),
        )

    @property
    def is_sqlite(self) -> bool:
        return "sqlite" in self.url.lower()


# =============================================================================
# Async Database Class
# =============================================================================

class Database:
    """Async database connection manager."""

    def __init__(self, config: Optional[DatabaseConfig] = None):
        self.config = config or DatabaseConfig()
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker[AsyncSession]] = None
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        """Create the engine and session factory, and ensure tables exist."""
        if self._connected:
            return

        logger.info(f"Connecting to database: {self._safe_url()}")

        engine_kwargs = {"echo": self.config.echo}
        if self.config.is_sqlite:
            engine_kwargs["poolclass"] = StaticPool
            engine_kwargs["connect_args"] = {"check_same_thread": False}
        else:
            engine_kwargs["pool_size"] = self.config.pool_size
            engine_kwargs["max_overflow"] = self.config.max_overflow

        self._engine = create_async_engine(self.config.url, **engine_kwargs)
        self._session_factory = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        self._connected = True
        logger.info("Database connection established, tables created")

    async def disconnect(self) -> None:
        """Close database connection."""
        if self._engine:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
            self._connected = False
            logger.info("Database connection closed")

    def _safe_url(self) -> str:
        """Get URL safe for logging (no passwords)."""
        url = self.config.url
        if "@" in url:
            pre_at, post_at = url.rsplit("@", 1)
            if pre_at.count(":") > 1:
                scheme_user = pre_at.rsplit(":", 1)[0]
                return f"{scheme_user}:***@{post_at}"
        return url

    @asynccontextmanager
    async def session(self):
        """
        Get an async session context manager.

        Usage:
            async with db.session() as session:
                session.add(row)
                await session.commit()
        """
        if not self._session_factory:
            raise RuntimeError("Database not connected. Call connect() first.")

        async with self._session_factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    async def __aenter__(self) -> "Database":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.disconnect()


# =============================================================================
# Checkpoint Store
# =============================================================================

class SqlCheckpointStore:
    """CheckpointStore backed by the stream_checkpoints table."""

    def __init__(self, db: Database):
        self.db = db

    async def load_state(self, stream_key: str) -> Optional[StreamState]:
        async with self.db.session() as session:
            row = await session.scalar(
                select(StreamCheckpoint).where(StreamCheckpoint.stream_key == stream_key)
            )
            if row is None:
                return None
            return StreamState(
                cursor=Cursor(row.most_recent_id, row.oldest_seen_id),
                total_processed=row.total_processed or 0,
                phase=StreamPhase(row.phase) if row.phase else None,
                backfill_done=bool(row.backfill_done),
                backfill_count=row.backfill_count or 0,
                updated_at=row.updated_at,
            )

    async def save_state(self, stream_key: str, state: StreamState) -> None:
        async with self.db.session() as session:
            row = await session.scalar(
                select(StreamCheckpoint).where(StreamCheckpoint.stream_key == stream_key)
            )
            if row is None:
                row = StreamCheckpoint(stream_key=stream_key)
                session.add(row)

            row.most_recent_id = state.cursor.most_recent_id
            row.oldest_seen_id = state.cursor.oldest_seen_id
            row.total_processed = state.total_processed
            row.backfill_count = state.backfill_count
            row.backfill_done = state.backfill_done
            row.phase = state.phase.value if state.phase else None
            if state.updated_at is not None:
                row.updated_at = state.updated_at

            await session.commit()
