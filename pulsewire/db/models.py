"""
Database Models for Pulsewire

SQLAlchemy 2.0 models for persisted stream checkpoints.

- UUID primary keys
- Snowflake ids stored as strings so 64-bit values keep full precision
- Timestamps stored in UTC
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Boolean, DateTime, Index, Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class StreamCheckpoint(Base):
    """
    Last saved state of one job-poll stream.

    One row per stream key, overwritten in place on each save.
    """
    __tablename__ = "stream_checkpoints"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    stream_key: Mapped[str] = mapped_column(String(512), nullable=False, unique=True)

    # Cursor
    most_recent_id: Mapped[Optional[str]] = mapped_column(String(32))
    oldest_seen_id: Mapped[Optional[str]] = mapped_column(String(32))

    # Counters and phase
    total_processed: Mapped[int] = mapped_column(Integer, default=0)
    backfill_count: Mapped[int] = mapped_column(Integer, default=0)
    backfill_done: Mapped[bool] = mapped_column(Boolean, default=False)
    phase: Mapped[Optional[str]] = mapped_column(String(32))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        Index("ix_stream_checkpoints_updated", "updated_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<StreamCheckpoint {self.stream_key} "
            f"recent={self.most_recent_id} oldest={self.oldest_seen_id}>"
        )
