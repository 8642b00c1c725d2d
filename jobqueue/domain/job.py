"""
Pure domain model for queued jobs.

This module contains the NormalizedJob dataclass and its enumerations. It
has no knowledge of how jobs are persisted; the repository layer maps it
to and from storage rows.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional, Union

from .. import utils


class JobStatus(Enum):
    """Job lifecycle states."""

    PENDING = "pending"  # Queued, waiting for an executor
    RUNNING = "running"  # Picked up by an executor
    FAILED = "failed"  # Failed, may be retried
    COMPLETED = "completed"  # Terminal


ACTIVE_STATUSES = (JobStatus.PENDING, JobStatus.RUNNING, JobStatus.FAILED)


class JobPriority(IntEnum):
    """Scheduling priority; higher values run first."""

    LOW = 1
    MEDIUM = 2
    HIGH = 3


class JobType(Enum):
    """Kinds of deferred work."""

    TOOL_EXECUTION = "tool_execution"
    CACHE_WARM = "cache_warm"
    DATA_REFRESH = "data_refresh"
    CACHE_INVALIDATION = "cache_invalidation"
    RATE_LIMIT_UPDATE = "rate_limit_update"
    MAINTENANCE = "maintenance"
    USER_OPERATION = "user_operation"


def job_type_value(job_type: Union[JobType, str]) -> str:
    if isinstance(job_type, JobType):
        return job_type.value
    return str(job_type)


def parse_job_type(value: str) -> Union[JobType, str]:
    """Return the matching JobType, or the raw string for unknown kinds."""
    try:
        return JobType(value)
    except ValueError:
        return value


@dataclass
class JobError:
    """Error details attached to a failed result."""

    name: Optional[str] = None
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {"name": self.name, "message": self.message}


@dataclass
class JobResult:
    """Outcome of a job, set on terminal states."""

    success: bool
    error: Optional[JobError] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "error": self.error.to_dict() if self.error else None,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional[JobResult]:
        if not data:
            return None
        error = data.get("error")
        return cls(
            success=bool(data.get("success", False)),
            error=JobError(
                name=error.get("name"),
                message=error.get("message"),
            ) if error else None,
        )

    @classmethod
    def failure(cls, message: str, name: Optional[str] = None) -> JobResult:
        return cls(success=False, error=JobError(name=name, message=message))


@dataclass
class NormalizedJob:  # pylint: disable=too-many-instance-attributes
    """
    Canonical representation of a job as seen by callers.

    All timestamps are epoch milliseconds. `id` is the caller-supplied
    external id; storage keys never appear here.
    """

    # Identity
    id: str
    type: Union[JobType, str]
    name: str

    # Scheduling
    priority: JobPriority = JobPriority.MEDIUM
    status: JobStatus = JobStatus.PENDING

    # Timing
    created_at: Optional[int] = None
    updated_at: Optional[int] = None
    started_at: Optional[int] = None
    completed_at: Optional[int] = None

    # Work
    payload: Dict[str, Any] = field(default_factory=dict)
    retry_count: int = 0
    result: Optional[JobResult] = None

    # Context
    tool: Optional[Dict[str, Any]] = None
    endpoint: Optional[str] = None

    # Never persisted; rebuilt from history on demand
    execution_history: List[Dict[str, Any]] = field(default_factory=list)

    def __post_init__(self):
        """Post-initialization to set defaults."""
        if self.created_at is None:
            self.created_at = utils.nowMillis()
        if self.updated_at is None:
            self.updated_at = self.created_at

    def is_active(self) -> bool:
        """Return True if the job has not reached COMPLETED."""
        return self.status in ACTIVE_STATUSES

    def last_error(self) -> Optional[str]:
        if self.result and self.result.error:
            return self.result.error.message
        return None


@dataclass(frozen=True)
class HistoryEntry:
    """One audit row: the status a job moved to and its context."""

    status: JobStatus
    details: Dict[str, Any]
    created_at: int
