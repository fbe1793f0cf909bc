"""
Asynchronous Search API Client

Thin wrapper over the provider's job primitives:
- submit a search job
- check its status
- fetch its results

plus the two instant (job-less) search endpoints. Provider status
strings are normalized into JobStatus; HTTP failures are mapped onto
the ingestion error taxonomy.

Usage:
    async with JobClient(JobApiConfig.from_env()) as client:
        job_id = await client.submit_job("twitter", "searchbyquery", "near protocol", 50)
        job = await client.job_status(job_id)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..config import JobApiConfig
from ..sources.base import (
    IngestError,
    InvalidRequestError,
    ProviderUnavailableError,
    RateLimitError,
    error_for_status,
)

logger = logging.getLogger("pulsewire.jobs.client")


# =============================================================================
# Job Status
# =============================================================================

class JobStatus(str, Enum):
    """Normalized job lifecycle states."""
    SUBMITTED = "submitted"
    IN_PROGRESS = "in-progress"
    DONE = "done"
    EMPTY = "empty"
    ERROR = "error"


_STATUS_ALIASES = {
    "submitted": JobStatus.SUBMITTED,
    "pending": JobStatus.SUBMITTED,
    "queued": JobStatus.SUBMITTED,
    "in progress": JobStatus.IN_PROGRESS,
    "in-progress": JobStatus.IN_PROGRESS,
    "in_progress": JobStatus.IN_PROGRESS,
    "processing": JobStatus.IN_PROGRESS,
    "running": JobStatus.IN_PROGRESS,
    "done": JobStatus.DONE,
    "done(saved)": JobStatus.DONE,
    "completed": JobStatus.DONE,
    "empty": JobStatus.EMPTY,
    "error": JobStatus.ERROR,
    "failed": JobStatus.ERROR,
}

# Providers report "nothing matched" as an error-shaped response
_NO_RESULTS_MARKERS = ("no new results", "no results", "no tweets found", "empty result")


def is_no_results_message(message: Optional[str]) -> bool:
    lowered = (message or "").lower()
    return any(marker in lowered for marker in _NO_RESULTS_MARKERS)


def normalize_status(raw_status: Optional[str], error: Optional[str] = None) -> JobStatus:
    """
    Map a provider status string onto JobStatus.

    Unknown strings are treated as still running.
    """
    if is_no_results_message(error) or is_no_results_message(raw_status):
        return JobStatus.EMPTY

    key = (raw_status or "").strip().lower()
    if not key:
        return JobStatus.ERROR if error else JobStatus.IN_PROGRESS

    status = _STATUS_ALIASES.get(key)
    if status is None:
        logger.debug(f"Unknown provider status {raw_status!r}, treating as in-progress")
        return JobStatus.IN_PROGRESS
    return status


@dataclass
class JobDescriptor:
    """A provider-side job. Mutated only by the poller."""
    id: str
    status: JobStatus = JobStatus.SUBMITTED
    error: Optional[str] = None
    raw_status: Optional[str] = None


# =============================================================================
# Response Models
# =============================================================================

class JobSubmitResponse(BaseModel):
    uuid: Optional[str] = None
    error: Optional[str] = None


class JobStatusResponse(BaseModel):
    status: Optional[str] = None
    error: Optional[str] = None


class PublicMetrics(BaseModel):
    model_config = ConfigDict(extra="allow")

    bookmark_count: Optional[int] = None
    impression_count: Optional[int] = None
    like_count: Optional[int] = None
    quote_count: Optional[int] = None
    reply_count: Optional[int] = None
    retweet_count: Optional[int] = None


class ResultMetadata(BaseModel):
    model_config = ConfigDict(extra="allow")

    author: Optional[str] = None
    conversation_id: Optional[str] = None
    created_at: Optional[str] = None
    lang: Optional[str] = None
    likes: Optional[int] = None
    newest_id: Optional[str] = None
    oldest_id: Optional[str] = None
    possibly_sensitive: Optional[bool] = None
    public_metrics: Optional[PublicMetrics] = None
    tweet_id: Optional[int] = None
    user_id: Optional[str] = None
    username: Optional[str] = None


class SearchResult(BaseModel):
    """One provider result. Unknown fields are preserved."""
    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)

    id: str
    source: str = ""
    content: str = ""
    metadata: Optional[ResultMetadata] = None
    updated_at: Optional[str] = None


class SearchQuery(BaseModel):
    query: str
    weight: float = Field(ge=0, le=1)


# =============================================================================
# Client
# =============================================================================

class JobClient:
    """
    Asynchronous search API client.

    All methods raise IngestError subclasses; httpx exceptions never
    leak to callers.
    """

    def __init__(
        self,
        config: Optional[JobApiConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config or JobApiConfig.from_env()
        self._http = http_client
        self._owns_http = http_client is None

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(
                base_url=self.config.base_url,
                timeout=self.config.timeout_s if self.config.timeout_s > 0 else 30.0,
            )
        return self._http

    async def _request(
        self,
        method: str,
        endpoint: str,
        context: str,
        body: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Make an authenticated request and return decoded JSON."""
        headers = {
            "Authorization": f"Bearer {self.config.api_key}",
            "Content-Type": "application/json",
        }

        try:
            response = await self._client().request(
                method, endpoint, json=body, headers=headers
            )
        except httpx.HTTPError as e:
            raise ProviderUnavailableError(
                f"Request failed: {e.__class__.__name__}", None, context
            ) from e

        if response.status_code >= 400:
            message = self._error_message(response)
            error = error_for_status(response.status_code, message, context)
            if isinstance(error, RateLimitError):
                retry_after = response.headers.get("Retry-After")
                if retry_after and retry_after.isdigit():
                    error.retry_after = float(retry_after)
            raise error

        try:
            return response.json()
        except ValueError as e:
            raise ProviderUnavailableError(
                "Provider returned a non-JSON body", response.status_code, context
            ) from e

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            payload = response.json()
        except ValueError:
            return response.text[:200] or response.reason_phrase
        if isinstance(payload, dict):
            return str(payload.get("error") or payload.get("message") or payload)
        return str(payload)

    @staticmethod
    def _parse_results(data: Any, context: str) -> List[SearchResult]:
        if not isinstance(data, list):
            return []

        results = []
        for entry in data:
            try:
                results.append(SearchResult.model_validate(entry))
            except ValidationError as e:
                logger.warning(f"Skipping malformed result in {context}: {e.error_count()} errors")
        return results

    # =========================================================================
    # Job primitives
    # =========================================================================

    async def submit_job(
        self,
        source_type: str,
        method: str,
        query: str,
        max_results: int,
        next_cursor: Optional[str] = None,
    ) -> str:
        """
        Submit a search job.

        Raises:
            InvalidRequestError: The provider rejected the parameters.
            ProviderUnavailableError: No job id came back.
        """
        context = "Submit search job"
        arguments: Dict[str, Any] = {
            "type": method,
            "query": query,
            "max_results": max_results,
        }
        if next_cursor:
            arguments["next_cursor"] = next_cursor

        data = await self._request(
            "POST", "/search/live", context,
            body={"type": source_type, "arguments": arguments},
        )
        try:
            parsed = JobSubmitResponse.model_validate(data)
        except ValidationError as e:
            raise ProviderUnavailableError("Malformed submit response", 503, context) from e

        if parsed.error:
            raise InvalidRequestError(f"Invalid request: {parsed.error}", 400, context)
        if not parsed.uuid:
            raise ProviderUnavailableError("API did not return a job UUID", 503, context)

        logger.debug(f"Submitted {method} job {parsed.uuid} for {query!r} (max {max_results})")
        return parsed.uuid

    async def job_status(self, job_id: str) -> JobDescriptor:
        """Check a job and return its normalized descriptor."""
        context = f"Check job status for {job_id}"
        data = await self._request("GET", f"/search/live/status/{job_id}", context)
        try:
            parsed = JobStatusResponse.model_validate(data)
        except ValidationError as e:
            raise ProviderUnavailableError("Malformed status response", 503, context) from e

        if not parsed.status and not parsed.error:
            raise ProviderUnavailableError("API did not return job status", 503, context)

        status = normalize_status(parsed.status, parsed.error)
        if parsed.error and status is not JobStatus.EMPTY:
            status = JobStatus.ERROR

        logger.debug(f"{job_id} - status {status.value} (raw {parsed.status!r})")
        return JobDescriptor(
            id=job_id,
            status=status,
            error=parsed.error,
            raw_status=parsed.status,
        )

    async def job_results(self, job_id: str) -> List[SearchResult]:
        """Fetch the results of a finished job."""
        context = f"Get job results for {job_id}"
        data = await self._request("GET", f"/search/live/result/{job_id}", context)
        return self._parse_results(data, context)

    # =========================================================================
    # Instant searches
    # =========================================================================

    async def similarity_search(
        self,
        query: str,
        sources: Optional[List[str]] = None,
        keywords: Optional[List[str]] = None,
        keyword_operator: str = "and",
        max_results: int = 10,
    ) -> List[SearchResult]:
        """Vector similarity search over indexed content."""
        body: Dict[str, Any] = {
            "query": query,
            "keyword_operator": keyword_operator,
            "max_results": max_results,
        }
        if sources:
            body["sources"] = sources
        if keywords:
            body["keywords"] = keywords

        data = await self._request("POST", "/search/similarity", "Similarity search", body=body)
        return self._parse_results(data, "Similarity search")

    async def hybrid_search(
        self,
        similarity_query: SearchQuery,
        text_query: SearchQuery,
        sources: Optional[List[str]] = None,
        keywords: Optional[List[str]] = None,
        keyword_operator: str = "and",
        max_results: int = 10,
    ) -> List[SearchResult]:
        """Weighted semantic plus keyword search."""
        body: Dict[str, Any] = {
            "similarity_query": similarity_query.model_dump(),
            "text_query": text_query.model_dump(),
            "keyword_operator": keyword_operator,
            "max_results": max_results,
        }
        if sources:
            body["sources"] = sources
        if keywords:
            body["keywords"] = keywords

        data = await self._request("POST", "/search/hybrid", "Hybrid search", body=body)
        return self._parse_results(data, "Hybrid search")

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def close(self) -> None:
        if self._http is not None and self._owns_http:
            await self._http.aclose()
        self._http = None

    async def __aenter__(self) -> "JobClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


__all__ = [
    "IngestError",
    "JobClient",
    "JobDescriptor",
    "JobStatus",
    "SearchQuery",
    "SearchResult",
    "normalize_status",
]
