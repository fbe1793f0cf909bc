"""
Job Poller

Drives one provider job from submit to results:

    submitted -> (in-progress)* -> done   -> fetch results
                                -> empty  -> []
                                -> error  -> classify, retry or abort

Permanent faults (bad request, credentials, not found) abort on the
spot. Everything else, including a job that is simply still running,
spends one attempt of the retry budget. Running out of budget raises
JobTimeoutError.
"""

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional

from ..sources.base import (
    IngestError,
    Item,
    JobTimeoutError,
    NotFoundError,
    error_for_message,
    is_permanent,
)
from ..sources.retry import RetryPolicy
from .client import JobClient, JobDescriptor, JobStatus, SearchResult
from .convert import item_from_result

logger = logging.getLogger("pulsewire.jobs.poller")


class JobPoller:
    """
    Runs search jobs to completion under a RetryPolicy.

    Example:
        poller = JobPoller(client, RetryPolicy(max_attempts=30, base_delay=3))
        items = await poller.run("twitter", "searchbyquery", "near protocol", 50)
    """

    def __init__(self, client: JobClient, policy: Optional[RetryPolicy] = None):
        self.client = client
        self.policy = policy or RetryPolicy()

        self.stats = {
            "jobs_submitted": 0,
            "status_checks": 0,
            "jobs_done": 0,
            "jobs_empty": 0,
            "jobs_failed": 0,
        }

    async def wait_for(self, job: JobDescriptor) -> JobDescriptor:
        """
        Poll ``job`` until it reaches done or empty.

        Raises:
            IngestError: A permanent fault, or JobTimeoutError once the
                retry budget is spent.
        """
        attempts = 0

        while True:
            attempts += 1
            fault: Optional[IngestError] = None

            try:
                checked = await self.client.job_status(job.id)
                self.stats["status_checks"] += 1
            except IngestError as e:
                self.stats["status_checks"] += 1
                fault = e
            else:
                job.status = checked.status
                job.error = checked.error
                job.raw_status = checked.raw_status

                if job.status in (JobStatus.DONE, JobStatus.EMPTY):
                    return job
                if job.status is JobStatus.ERROR:
                    fault = error_for_message(
                        job.error or "Job failed", f"Job {job.id}"
                    )

            delay = self.policy.decide(attempts, fault)
            if delay is None:
                self.stats["jobs_failed"] += 1
                if fault is not None and is_permanent(fault):
                    logger.error(f"{job.id} - permanent failure: {fault}")
                    raise fault
                raise JobTimeoutError(
                    f"Job did not finish after {attempts} status checks",
                    context=f"Job workflow {job.id}",
                ) from fault

            if fault is not None:
                logger.warning(f"{job.id} - transient failure, retrying in {delay:.1f}s: {fault}")
            else:
                logger.debug(f"{job.id} - {job.status.value}, next check in {delay:.1f}s")

            await asyncio.sleep(delay)

    async def run_raw(
        self,
        source_type: str,
        method: str,
        query: str,
        max_results: int,
        next_cursor: Optional[str] = None,
    ) -> List[SearchResult]:
        """Submit, wait, and return the provider results unconverted."""
        job_id = await self.client.submit_job(
            source_type, method, query, max_results, next_cursor
        )
        self.stats["jobs_submitted"] += 1

        job = await self.wait_for(JobDescriptor(id=job_id))

        if job.status is JobStatus.EMPTY:
            self.stats["jobs_empty"] += 1
            logger.debug(f"{job_id} - no results for {query!r}")
            return []

        results = await self.client.job_results(job_id)
        self.stats["jobs_done"] += 1
        logger.debug(f"{job_id} - fetched {len(results)} results")
        return results

    async def run(
        self,
        source_type: str,
        method: str,
        query: str,
        max_results: int,
        next_cursor: Optional[str] = None,
    ) -> List[Item]:
        """Submit a job and return its results as Items, in provider order."""
        results = await self.run_raw(source_type, method, query, max_results, next_cursor)
        return [item_from_result(result) for result in results]

    # =========================================================================
    # Lookups
    # =========================================================================

    async def get_by_id(self, source_type: str, item_id: str) -> Item:
        """
        Fetch a single item by its provider id.

        Raises:
            NotFoundError: The provider returned nothing for ``item_id``.
        """
        items = await self.run(source_type, "getbyid", item_id, 1)
        if not items:
            raise NotFoundError(
                f"No results found for ID {item_id}",
                context=f"Get by ID {item_id}",
            )
        return items[0]

    async def get_bulk(self, source_type: str, item_ids: List[str]) -> List[Item]:
        """Fetch several items; ids that fail are logged and skipped."""
        items = []
        for item_id in item_ids:
            try:
                items.append(await self.get_by_id(source_type, item_id))
            except IngestError as e:
                logger.warning(f"Failed to fetch ID {item_id}: {e}")
        return items
