"""
Storage primitives shared by every engine.

A JobStore hands out StoreSession objects, one per transaction. Sessions
expose the handful of table operations the repository needs, taking the
conditions produced by the engine's QueryAdapter. All timestamps crossing
this boundary are epoch milliseconds; engines convert as their column
types require.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, AsyncContextManager, Dict, List, Optional

# Columns update_jobs() may patch
PATCHABLE_COLUMNS = frozenset(
    ["status", "updated_at", "started_at", "completed_at", "last_error"])


@dataclass(frozen=True)
class JobRow:
    """Values written to the jobs table on insert."""

    type: str
    payload: Dict[str, Any]
    status: str
    scheduled_at: int
    started_at: Optional[int]
    completed_at: Optional[int]
    attempts: int
    last_error: Optional[str]
    created_at: int
    updated_at: int


@dataclass(frozen=True)
class HistoryRow:
    """A job_history row."""

    job_id: int
    status: str
    details: Optional[Dict[str, Any]]
    created_at: int


@dataclass(frozen=True)
class ActiveJobRow:  # pylint: disable=too-many-instance-attributes
    """A jobs row left-joined to at most one job_history row."""

    job_pk: Optional[int]
    type: Optional[str]
    payload: Optional[Dict[str, Any]]
    status: Optional[str]
    scheduled_at: Optional[int]
    started_at: Optional[int]
    completed_at: Optional[int]
    attempts: Optional[int]
    last_error: Optional[str]
    created_at: Optional[int]
    updated_at: Optional[int]
    history_details: Optional[Dict[str, Any]]


class StoreSession(ABC):
    """Table operations bound to a single transaction."""

    @abstractmethod
    async def insert_job(self, row: JobRow) -> Optional[int]:
        """Insert a job row and return its generated key, if any."""

    @abstractmethod
    async def insert_history(self, row: HistoryRow) -> None:
        """Append a history row."""

    @abstractmethod
    async def select_history_job_ids(
        self, where: Any, limit: Optional[int] = None) -> List[int]:
        """Job keys of matching history rows, most recent row first."""

    @abstractmethod
    async def select_history(self, where: Any) -> List[HistoryRow]:
        """Matching history rows, oldest first."""

    @abstractmethod
    async def select_jobs_with_history(
        self, join_on: Any, where: Any) -> List[ActiveJobRow]:
        """
        Left join jobs to history on job key plus `join_on`.

        Rows are ordered by job key, then by history row id.
        """

    @abstractmethod
    async def update_jobs(self, values: Dict[str, Any], where: Any) -> int:
        """Patch matching job rows; keys must be in PATCHABLE_COLUMNS."""

    @abstractmethod
    async def delete_jobs(self, where: Any) -> int:
        """Delete matching job rows and their history; return the count."""


class JobStore(ABC):
    """A physical store holding the jobs and job_history tables."""

    @abstractmethod
    def session(self) -> AsyncContextManager[StoreSession]:
        """
        Open a transaction.

        The transaction commits when the block exits normally and rolls
        back if it raises.
        """

    @abstractmethod
    async def initialize(self) -> None:
        """Create the tables if they do not exist."""

    @abstractmethod
    async def close(self) -> None:
        """Release connections."""


def check_patch(values: Dict[str, Any]) -> None:
    unknown = set(values) - PATCHABLE_COLUMNS
    if unknown:
        raise ValueError(
            "Cannot patch job columns: {}".format(", ".join(sorted(unknown))))
