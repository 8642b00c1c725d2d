"""
Query adapter interface.

A query adapter builds the filter and join conditions a storage engine
understands. The shared repository code only passes the returned values
through to the engine's session methods and never looks inside them.
"""

from abc import ABC, abstractmethod
from typing import Any


class QueryAdapter(ABC):
    """Produces opaque, backend-specific conditions."""

    @abstractmethod
    def external_id_equals(self, external_id: str) -> Any:
        """History rows whose details.externalId equals `external_id`."""

    @abstractmethod
    def has_external_id(self) -> Any:
        """History rows whose details carry an externalId at all."""

    @abstractmethod
    def active_statuses(self) -> Any:
        """Job rows whose status is PENDING, RUNNING or FAILED."""

    @abstractmethod
    def job_id_equals(self, job_pk: int) -> Any:
        """The job row with internal key `job_pk`."""

    @abstractmethod
    def completed_before(self, cutoff_time: int) -> Any:
        """COMPLETED job rows with completed_at < `cutoff_time` (epoch ms)."""

    @abstractmethod
    def history_job_id_equals(self, job_pk: int) -> Any:
        """History rows belonging to the job with internal key `job_pk`."""
