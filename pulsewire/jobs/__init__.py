# Jobs package for Pulsewire
"""
Job-poll retrieval against the asynchronous search API.

- client: JobClient, JobStatus, response models
- poller: JobPoller (submit -> poll -> results)
- convert: provider result -> Item
"""

from .client import (
    JobClient,
    JobDescriptor,
    JobStatus,
    SearchQuery,
    SearchResult,
    normalize_status,
)
from .convert import item_from_result
from .poller import JobPoller

__all__ = [
    "JobClient",
    "JobDescriptor",
    "JobStatus",
    "SearchQuery",
    "SearchResult",
    "normalize_status",
    "item_from_result",
    "JobPoller",
]
