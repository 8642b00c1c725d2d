"""
Repository control flow shared by all storage engines.

The job table holds current state only. The caller's external id lives in
the history table, so every operation that addresses a job by id first
resolves it to the internal key through history. Engines plug in a
JobStore and a QueryAdapter; nothing here depends on which backend is in
use.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from jobqueue.domain import (
    HistoryEntry,
    JobPriority,
    JobResult,
    JobStatus,
    NormalizedJob,
)
from jobqueue.domain.job import job_type_value, parse_job_type

from .interface import JobRepository, StatusUpdate
from .query import QueryAdapter
from .store import ActiveJobRow, HistoryRow, JobRow, JobStore, StoreSession

LOG = logging.getLogger(__name__)

_TERMINAL_RESULT_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED)


class _NoGeneratedKey(Exception):
    """Aborts an insert transaction whose job row got no key."""


class AuditedJobRepository(JobRepository):
    """JobRepository backed by a job table plus an append-only history table."""

    def __init__(self, store: JobStore, adapter: QueryAdapter):
        self.store = store
        self.adapter = adapter

    async def initialize(self) -> None:
        await self.store.initialize()

    async def close(self) -> None:
        await self.store.close()

    async def insert(self, job: NormalizedJob) -> None:
        try:
            async with self.store.session() as session:
                job_pk = await session.insert_job(self._job_to_row(job))
                if not job_pk:
                    raise _NoGeneratedKey()

                await session.insert_history(HistoryRow(
                    job_id=job_pk,
                    status=job.status.value,
                    details={
                        "externalId": job.id,
                        "name": job.name,
                        "priority": int(job.priority),
                        "tool": job.tool,
                        "endpoint": job.endpoint,
                    },
                    created_at=job.created_at,
                ))
        except _NoGeneratedKey:
            LOG.error("insert: no generated key for job %r, rolled back",
                      job.id)
            return
        LOG.debug("inserted job %r as key %s", job.id, job_pk)

    async def exists(self, external_id: str) -> bool:
        async with self.store.session() as session:
            job_pks = await session.select_history_job_ids(
                self.adapter.external_id_equals(external_id), limit=1)
        return bool(job_pks)

    async def load_active_jobs(self) -> List[NormalizedJob]:
        async with self.store.session() as session:
            rows = await session.select_jobs_with_history(
                self.adapter.has_external_id(),
                self.adapter.active_statuses())

        jobs = []
        seen = set()
        for row in rows:
            # Keep the earliest identifying history row per job
            if row.job_pk in seen:
                continue
            seen.add(row.job_pk)

            if not row.job_pk or not row.type:
                LOG.warning("skipping job row with missing required fields: "
                            "key=%r type=%r", row.job_pk, row.type)
                continue
            try:
                jobs.append(self._row_to_job(row))
            except (TypeError, ValueError, AttributeError):
                LOG.error("failed to rebuild job from row key=%r",
                          row.job_pk, exc_info=True)
        return jobs

    async def update_status(self, external_id: str, update: StatusUpdate) -> None:
        patch: Dict[str, Any] = {
            "status": update.status.value,
            "updated_at": update.updated_at,
        }
        if update.started_at is not None:
            patch["started_at"] = update.started_at
        if update.completed_at is not None:
            patch["completed_at"] = update.completed_at
        if update.result is not None and update.status in _TERMINAL_RESULT_STATUSES:
            patch["last_error"] = (
                update.result.error.message if update.result.error else None)

        async with self.store.session() as session:
            job_pk = await self._resolve(session, external_id)
            if job_pk is None:
                LOG.warning("update_status: no job with external id %r",
                            external_id)
                return

            await session.update_jobs(patch, self.adapter.job_id_equals(job_pk))
            await session.insert_history(HistoryRow(
                job_id=job_pk,
                status=update.status.value,
                details={
                    "externalId": external_id,
                    "result": update.result.to_dict() if update.result else None,
                },
                created_at=update.updated_at,
            ))
        LOG.debug("job %r -> %s", external_id, update.status.value)

    async def cleanup_completed_before(self, cutoff_time: int) -> int:
        async with self.store.session() as session:
            removed = await session.delete_jobs(
                self.adapter.completed_before(cutoff_time))
        LOG.info("removed %d completed jobs older than %d", removed, cutoff_time)
        return removed

    async def load_history(self, external_id: str) -> List[HistoryEntry]:
        async with self.store.session() as session:
            job_pk = await self._resolve(session, external_id)
            if job_pk is None:
                return []
            rows = await session.select_history(
                self.adapter.history_job_id_equals(job_pk))

        return [
            HistoryEntry(
                status=JobStatus(row.status),
                details=row.details or {},
                created_at=row.created_at,
            )
            for row in rows
        ]

    async def _resolve(self, session: StoreSession,
                       external_id: str) -> Optional[int]:
        """Map an external id to the internal job key."""
        job_pks = await session.select_history_job_ids(
            self.adapter.external_id_equals(external_id), limit=1)
        return job_pks[0] if job_pks else None

    @staticmethod
    def _job_to_row(job: NormalizedJob) -> JobRow:
        return JobRow(
            type=job_type_value(job.type),
            payload=job.payload or {},
            status=job.status.value,
            scheduled_at=job.created_at,
            started_at=job.started_at,
            completed_at=job.completed_at,
            attempts=job.retry_count,
            last_error=job.last_error(),
            created_at=job.created_at,
            updated_at=job.updated_at,
        )

    @staticmethod
    def _row_to_job(row: ActiveJobRow) -> NormalizedJob:
        details = row.history_details or {}

        try:
            priority = JobPriority(details.get("priority"))
        except ValueError:
            priority = JobPriority.MEDIUM

        return NormalizedJob(
            id=details.get("externalId") or str(row.job_pk),
            type=parse_job_type(row.type),
            name=details.get("name") or row.type,
            priority=priority,
            status=JobStatus(row.status),
            created_at=row.created_at,
            updated_at=row.updated_at,
            started_at=row.started_at,
            completed_at=row.completed_at,
            payload=row.payload or {},
            retry_count=row.attempts if isinstance(row.attempts, int) else 0,
            result=JobResult.failure(row.last_error) if row.last_error else None,
            tool=details.get("tool"),
            endpoint=details.get("endpoint"),
        )
