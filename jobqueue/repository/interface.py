"""
Repository interface for job persistence.

This module defines the abstract interface that all repository
implementations must follow.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional

from jobqueue.domain import HistoryEntry, JobResult, JobStatus, NormalizedJob


@dataclass
class StatusUpdate:
    """Patch applied by update_status()."""

    status: JobStatus
    updated_at: int
    started_at: Optional[int] = None
    completed_at: Optional[int] = None
    result: Optional[JobResult] = None


class JobRepository(ABC):
    """
    Abstract repository for job persistence.

    Jobs are addressed only by their external id. Implementations keep
    the current state of each job in a job table and append every
    transition to a history table.
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Create the schema if needed and verify the backend is usable."""

    @abstractmethod
    async def insert(self, job: NormalizedJob) -> None:
        """
        Persist a new job and its identifying history row.

        Args:
            job: The job to insert
        """

    @abstractmethod
    async def exists(self, external_id: str) -> bool:
        """
        Check if a job with this external id was ever inserted.

        Args:
            external_id: The caller-supplied job id

        Returns:
            True if a history row carries the id, False otherwise
        """

    @abstractmethod
    async def load_active_jobs(self) -> List[NormalizedJob]:
        """
        Load every PENDING, RUNNING or FAILED job.

        Returns:
            Reconstructed jobs, in no particular order
        """

    @abstractmethod
    async def update_status(self, external_id: str, update: StatusUpdate) -> None:
        """
        Patch the job's current state and append a history row.

        Does nothing if no job carries the external id.

        Args:
            external_id: The caller-supplied job id
            update: The new status and timestamps
        """

    @abstractmethod
    async def cleanup_completed_before(self, cutoff_time: int) -> int:
        """
        Delete COMPLETED jobs finished before the cutoff, with their history.

        Args:
            cutoff_time: Epoch milliseconds; completed_at must be strictly less

        Returns:
            Number of job rows removed
        """

    @abstractmethod
    async def load_history(self, external_id: str) -> List[HistoryEntry]:
        """
        Get the audit trail for a job, oldest first.

        Args:
            external_id: The caller-supplied job id

        Returns:
            History entries, empty if the job is unknown
        """

    @abstractmethod
    async def close(self) -> None:
        """Close repository and release resources."""
