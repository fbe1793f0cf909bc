"""Validated query parameters for a cursor stream."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class StreamQuery(BaseModel):
    """
    Caller-supplied parameters for one job-poll stream.

    Ids are strings so 64-bit snowflakes survive JSON round trips.
    """
    model_config = ConfigDict(frozen=True)

    source_type: str = "twitter"
    query: str = Field(min_length=1)

    # Live and gap detection use the query method, backfill the archive method
    search_method: str = "searchbyquery"
    backfill_method: str = "searchbyfullarchive"

    max_backfill_results: int = Field(default=0, ge=0)
    backfill_page_size: int = Field(default=100, gt=0)
    live_page_size: int = Field(default=50, gt=0)
    gap_page_size: int = Field(default=20, gt=0)

    # Cursor seeds
    since_id: Optional[str] = None
    max_id: Optional[str] = None

    # Backfill constraints
    oldest_allowed_id: Optional[str] = None
    max_backfill_age_ms: Optional[int] = Field(default=None, gt=0)

    enable_live: bool = True
    live_poll_interval_s: float = Field(default=60.0, ge=0)

    @field_validator("since_id", "max_id", "oldest_allowed_id")
    @classmethod
    def _numeric_id(cls, value: Optional[str]) -> Optional[str]:
        if value is None or value == "":
            return None
        value = str(value).strip()
        if not value.isdigit():
            raise ValueError(f"id must be a non-negative integer string, got {value!r}")
        return str(int(value))

    @field_validator("query")
    @classmethod
    def _strip_query(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("query must not be blank")
        return value

    @model_validator(mode="after")
    def _check_seeds(self) -> "StreamQuery":
        if self.since_id and self.max_id and int(self.max_id) < int(self.since_id):
            raise ValueError("max_id must not be below since_id")
        return self

    @property
    def stream_key(self) -> str:
        """Checkpoint key for this stream."""
        return f"{self.source_type}:{self.search_method}:{self.query}"
