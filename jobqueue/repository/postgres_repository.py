"""
PostgreSQL implementation of the job repository.

This module provides the durable engine. Tables are declared with
SQLAlchemy Core and accessed through an async engine (asyncpg driver).
Conditions are SQLAlchemy boolean clauses built by PostgresQueryAdapter.

Schema:
- jobs: current state of every job, keyed by a bigint identity
- job_history: append-only audit rows; job_id cascades on delete
"""

from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

import simplejson as json
from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    and_,
    delete,
    func,
    insert,
    select,
    text,
    update,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from jobqueue.domain import ACTIVE_STATUSES, JobStatus
from jobqueue.utils import dateTimeToMillis, millisToDateTime

from .audited import AuditedJobRepository
from .query import QueryAdapter
from .store import (
    ActiveJobRow,
    HistoryRow,
    JobRow,
    JobStore,
    StoreSession,
    check_patch,
)

LOG = logging.getLogger(__name__)

metadata = MetaData()

jobs = Table(
    "jobs",
    metadata,
    Column("id", BigInteger, primary_key=True, autoincrement=True),
    Column("type", String(100), nullable=False),
    Column("payload", JSONB, nullable=False),
    Column("status", String(50), nullable=False),
    Column("scheduled_at", DateTime(timezone=True), nullable=False,
           server_default=func.now()),
    Column("started_at", DateTime(timezone=True)),
    Column("completed_at", DateTime(timezone=True)),
    Column("attempts", Integer, nullable=False, server_default=text("0")),
    Column("last_error", Text),
    Column("created_at", DateTime(timezone=True), nullable=False,
           server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), nullable=False,
           server_default=func.now()),
    Index("jobs_status_idx", "status"),
    Index("jobs_scheduled_at_idx", "scheduled_at"),
    Index("jobs_status_completed_idx", "status", "completed_at"),
)

job_history = Table(
    "job_history",
    metadata,
    Column("id", BigInteger, primary_key=True, autoincrement=True),
    Column("job_id", BigInteger,
           ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False),
    Column("status", String(50), nullable=False),
    Column("details", JSONB),
    Column("created_at", DateTime(timezone=True), nullable=False,
           server_default=func.now()),
    Index("job_history_job_id_idx", "job_id"),
)

Index("job_history_external_id_idx", job_history.c.details["externalId"].astext)

_TIMESTAMP_COLUMNS = frozenset(
    ["scheduled_at", "started_at", "completed_at", "created_at", "updated_at"])


class PostgresQueryAdapter(QueryAdapter):
    """Builds SQLAlchemy clauses over the jobs/job_history tables."""

    def external_id_equals(self, external_id: str):
        return job_history.c.details["externalId"].astext == external_id

    def has_external_id(self):
        return job_history.c.details.has_key("externalId")

    def active_statuses(self):
        return jobs.c.status.in_([status.value for status in ACTIVE_STATUSES])

    def job_id_equals(self, job_pk: int):
        return jobs.c.id == job_pk

    def completed_before(self, cutoff_time: int):
        return and_(
            jobs.c.status == JobStatus.COMPLETED.value,
            jobs.c.completed_at < millisToDateTime(cutoff_time),
        )

    def history_job_id_equals(self, job_pk: int):
        return job_history.c.job_id == job_pk


def _to_db(values: Dict[str, Any]) -> Dict[str, Any]:
    """Convert epoch-ms values of timestamp columns to datetimes."""
    return {
        key: millisToDateTime(value) if key in _TIMESTAMP_COLUMNS else value
        for key, value in values.items()
    }


class PostgresStoreSession(StoreSession):
    """Runs table operations on one transactional connection."""

    def __init__(self, conn: AsyncConnection):
        self._conn = conn

    async def insert_job(self, row: JobRow) -> Optional[int]:
        result = await self._conn.execute(
            insert(jobs).values(**_to_db({
                "type": row.type,
                "payload": row.payload,
                "status": row.status,
                "scheduled_at": row.scheduled_at,
                "started_at": row.started_at,
                "completed_at": row.completed_at,
                "attempts": row.attempts,
                "last_error": row.last_error,
                "created_at": row.created_at,
                "updated_at": row.updated_at,
            })).returning(jobs.c.id))
        return result.scalar_one_or_none()

    async def insert_history(self, row: HistoryRow) -> None:
        await self._conn.execute(
            insert(job_history).values(
                job_id=row.job_id,
                status=row.status,
                details=row.details,
                created_at=millisToDateTime(row.created_at),
            ))

    async def select_history_job_ids(
        self, where, limit: Optional[int] = None) -> List[int]:
        stmt = (
            select(job_history.c.job_id)
            .where(where)
            .order_by(job_history.c.id.desc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self._conn.execute(stmt)
        return list(result.scalars().all())

    async def select_history(self, where) -> List[HistoryRow]:
        result = await self._conn.execute(
            select(
                job_history.c.job_id,
                job_history.c.status,
                job_history.c.details,
                job_history.c.created_at,
            )
            .where(where)
            .order_by(job_history.c.id))
        return [
            HistoryRow(
                job_id=row.job_id,
                status=row.status,
                details=row.details,
                created_at=dateTimeToMillis(row.created_at),
            )
            for row in result
        ]

    async def select_jobs_with_history(self, join_on, where) -> List[ActiveJobRow]:
        stmt = (
            select(
                jobs.c.id.label("job_pk"),
                jobs.c.type,
                jobs.c.payload,
                jobs.c.status,
                jobs.c.scheduled_at,
                jobs.c.started_at,
                jobs.c.completed_at,
                jobs.c.attempts,
                jobs.c.last_error,
                jobs.c.created_at,
                jobs.c.updated_at,
                job_history.c.details.label("history_details"),
            )
            .select_from(
                jobs.outerjoin(
                    job_history,
                    and_(job_history.c.job_id == jobs.c.id, join_on),
                ))
            .where(where)
            .order_by(jobs.c.id, job_history.c.id)
        )
        result = await self._conn.execute(stmt)
        return [
            ActiveJobRow(
                job_pk=row.job_pk,
                type=row.type,
                payload=row.payload,
                status=row.status,
                scheduled_at=dateTimeToMillis(row.scheduled_at),
                started_at=dateTimeToMillis(row.started_at),
                completed_at=dateTimeToMillis(row.completed_at),
                attempts=row.attempts,
                last_error=row.last_error,
                created_at=dateTimeToMillis(row.created_at),
                updated_at=dateTimeToMillis(row.updated_at),
                history_details=(
                    row.history_details
                    if isinstance(row.history_details, dict) else None),
            )
            for row in result
        ]

    async def update_jobs(self, values: Dict[str, Any], where) -> int:
        check_patch(values)
        result = await self._conn.execute(
            update(jobs).where(where).values(**_to_db(values)))
        return result.rowcount

    async def delete_jobs(self, where) -> int:
        # job_history rows go with the ON DELETE CASCADE foreign key
        result = await self._conn.execute(delete(jobs).where(where))
        return result.rowcount or 0


class PostgresJobStore(JobStore):
    """Async SQLAlchemy engine bound to a PostgreSQL database."""

    def __init__(self, engine: AsyncEngine, create_schema: bool = True):
        self.engine = engine
        self.create_schema = create_schema

    @classmethod
    def from_url(cls, database_url: str, pool_size: int = 10,
                 echo: bool = False, create_schema: bool = True):
        engine = create_async_engine(
            database_url,
            pool_size=pool_size,
            pool_pre_ping=True,
            pool_recycle=3600,
            echo=echo,
            json_serializer=json.dumps,
            json_deserializer=json.loads,
        )
        return cls(engine, create_schema=create_schema)

    @asynccontextmanager
    async def session(self) -> AsyncIterator[PostgresStoreSession]:
        async with self.engine.begin() as conn:
            yield PostgresStoreSession(conn)

    async def initialize(self) -> None:
        async with self.engine.begin() as conn:
            if self.create_schema:
                await conn.run_sync(metadata.create_all)
            else:
                await conn.execute(select(1))
        LOG.info("connected to %s", self.engine.url.render_as_string())

    async def close(self) -> None:
        await self.engine.dispose()


class PostgresJobRepository(AuditedJobRepository):
    """
    PostgreSQL-backed job repository.

    Example:
        repo = PostgresJobRepository.from_url(
            "postgresql+asyncpg://jobs:secret@db/jobs")
        await repo.initialize()
    """

    def __init__(self, store: PostgresJobStore,
                 adapter: Optional[QueryAdapter] = None):
        super().__init__(store, adapter or PostgresQueryAdapter())

    @classmethod
    def from_url(cls, database_url: str, **kwargs) -> PostgresJobRepository:
        return cls(PostgresJobStore.from_url(database_url, **kwargs))
