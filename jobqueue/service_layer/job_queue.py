"""
Queue facade over the job repository.

JobQueue assigns ids and timestamps to new work and wraps repository
failures so callers see a single exception type. Execution of jobs is
not handled here.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Union

from jobqueue.domain import (
    HistoryEntry,
    JobPriority,
    JobResult,
    JobStatus,
    JobType,
    NormalizedJob,
)
from jobqueue.domain.job import job_type_value
from jobqueue.repository import JobRepository, StatusUpdate
from jobqueue.utils import generateJobId, nowMillis

LOG = logging.getLogger(__name__)


class JobQueueError(Exception):
    pass


class JobQueue:
    """
    Durable job tracking for schedulers and executors.

    This class contains the caller-facing operations:
    - Enqueuing new jobs
    - Reporting status transitions
    - Listing active jobs and a job's history
    """

    def __init__(self, repo: JobRepository):
        """
        Initialize queue.

        Args:
            repo: Job repository for persistence
        """
        self.repo = repo

    # pylint: disable-next=too-many-arguments
    async def enqueue(
        self,
        job_type: Union[JobType, str],
        name: Optional[str] = None,
        priority: JobPriority = JobPriority.MEDIUM,
        payload: Optional[Dict[str, Any]] = None,
        job_id: Optional[str] = None,
        tool: Optional[Dict[str, Any]] = None,
        endpoint: Optional[str] = None,
        status: JobStatus = JobStatus.PENDING,
        created_at: Optional[int] = None,
        retry_count: int = 0,
        started_at: Optional[int] = None,
        completed_at: Optional[int] = None,
        result: Optional[JobResult] = None,
    ) -> NormalizedJob:
        """
        Persist a new job.

        Args:
            job_type: Kind of work
            name: Display name (defaults to the type)
            priority: Scheduling priority
            payload: Opaque job data, stored verbatim
            job_id: External id (generated if not provided)
            tool: Optional tool metadata
            endpoint: Optional endpoint the job targets
            status: Initial status
            created_at: Creation time in epoch ms (defaults to now)
            retry_count: Attempts already made, for re-enqueued work
            started_at: Start time in epoch ms, if already started
            completed_at: Completion time in epoch ms, if already settled
            result: Outcome, if already settled

        Returns:
            The job as persisted

        Raises:
            JobQueueError: If the repository write fails
        """
        type_value = job_type_value(job_type)
        now = nowMillis()
        job = NormalizedJob(
            id=job_id or generateJobId(type_value.replace("_", "-")),
            type=job_type,
            name=name or type_value,
            priority=priority,
            status=status,
            created_at=created_at if created_at is not None else now,
            updated_at=now,
            started_at=started_at,
            completed_at=completed_at,
            payload=payload or {},
            retry_count=retry_count,
            result=result,
            tool=tool,
            endpoint=endpoint,
        )

        try:
            await self.repo.insert(job)
        except Exception as exc:
            LOG.error("failed to enqueue %s job %r", type_value, job.id,
                      exc_info=True)
            raise JobQueueError("Failed to enqueue job {!r}".format(job.id)) from exc

        LOG.info("enqueued job %r type=%s name=%r", job.id, type_value, job.name)
        return job

    async def get_active_jobs(self) -> List[NormalizedJob]:
        try:
            return await self.repo.load_active_jobs()
        except Exception as exc:
            LOG.error("failed to load active jobs", exc_info=True)
            raise JobQueueError("Failed to load active jobs") from exc

    # pylint: disable-next=too-many-arguments
    async def update_status(
        self,
        job_id: str,
        status: JobStatus,
        started_at: Optional[int] = None,
        completed_at: Optional[int] = None,
        result: Optional[JobResult] = None,
        updated_at: Optional[int] = None,
    ) -> None:
        """
        Record a status transition.

        Args:
            job_id: External job id
            status: New status
            started_at: Start time in epoch ms, if known
            completed_at: Completion time in epoch ms, if known
            result: Outcome for terminal states
            updated_at: Transition time in epoch ms (defaults to now)

        Raises:
            JobQueueError: If the repository write fails
        """
        update = StatusUpdate(
            status=status,
            updated_at=updated_at if updated_at is not None else nowMillis(),
            started_at=started_at,
            completed_at=completed_at,
            result=result,
        )
        try:
            await self.repo.update_status(job_id, update)
        except Exception as exc:
            LOG.error("failed to update job %r to %s", job_id, status.value,
                      exc_info=True)
            raise JobQueueError(
                "Failed to update job status for {!r}".format(job_id)) from exc

        LOG.debug("job %r status %s", job_id, status.value)

    async def mark_running(self, job_id: str) -> None:
        now = nowMillis()
        await self.update_status(
            job_id, JobStatus.RUNNING, started_at=now, updated_at=now)

    async def mark_completed(self, job_id: str) -> None:
        now = nowMillis()
        await self.update_status(
            job_id, JobStatus.COMPLETED, completed_at=now,
            result=JobResult(success=True), updated_at=now)

    async def mark_failed(self, job_id: str, message: str,
                          error_name: Optional[str] = None) -> None:
        await self.update_status(
            job_id, JobStatus.FAILED,
            result=JobResult.failure(message, name=error_name))

    async def history(self, job_id: str) -> List[HistoryEntry]:
        return await self.repo.load_history(job_id)
