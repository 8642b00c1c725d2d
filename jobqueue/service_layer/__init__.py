"""
Service layer for job tracking.

This package contains the queue facade used by schedulers and executors,
plus the recovery and retention routines run by the host process.
"""

from .job_queue import JobQueue, JobQueueError
from .maintenance import RetentionSweeper, recover_active_jobs

__all__ = ["JobQueue", "JobQueueError", "RetentionSweeper", "recover_active_jobs"]
