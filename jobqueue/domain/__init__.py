"""
Domain models for jobqueue.

This package contains pure domain logic with no database coupling.
"""

from .job import (
    ACTIVE_STATUSES,
    HistoryEntry,
    JobError,
    JobPriority,
    JobResult,
    JobStatus,
    JobType,
    NormalizedJob,
)

__all__ = [
    "ACTIVE_STATUSES",
    "HistoryEntry",
    "JobError",
    "JobPriority",
    "JobResult",
    "JobStatus",
    "JobType",
    "NormalizedJob",
]
