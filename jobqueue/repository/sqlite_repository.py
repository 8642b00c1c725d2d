"""
SQLite implementation of the job repository.

This module provides the lightweight engine: a single local database file
accessed through aiosqlite, with the same jobs/job_history schema as the
durable engine. Intended for development and single-node deployments.
"""

from __future__ import annotations

import asyncio
from collections import namedtuple
from contextlib import asynccontextmanager
import logging
import os
from typing import Any, AsyncIterator, Dict, List, Optional

import aiosqlite
import simplejson as json

from jobqueue.domain import ACTIVE_STATUSES, JobStatus

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

# Schema version for this implementation
SCHEMA_VERSION = 1

SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS jobs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        type TEXT NOT NULL,
        payload TEXT NOT NULL,
        status TEXT NOT NULL,
        scheduled_at INTEGER NOT NULL,
        started_at INTEGER,
        completed_at INTEGER,
        attempts INTEGER NOT NULL DEFAULT 0,
        last_error TEXT,
        created_at INTEGER NOT NULL,
        updated_at INTEGER NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS job_history (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        job_id INTEGER NOT NULL REFERENCES jobs(id) ON DELETE CASCADE,
        status TEXT NOT NULL,
        details TEXT,
        created_at INTEGER NOT NULL
    )
    """,
    # Indices for fast queries
    "CREATE INDEX IF NOT EXISTS jobs_status_idx ON jobs(status)",
    "CREATE INDEX IF NOT EXISTS jobs_scheduled_at_idx ON jobs(scheduled_at)",
    "CREATE INDEX IF NOT EXISTS jobs_status_completed_idx "
    "ON jobs(status, completed_at)",
    "CREATE INDEX IF NOT EXISTS job_history_job_id_idx ON job_history(job_id)",
    "CREATE INDEX IF NOT EXISTS job_history_external_id_idx "
    "ON job_history(json_extract(details, '$.externalId'))",
]

SqlCondition = namedtuple("SqlCondition", ["sql", "params"])

_EXTERNAL_ID = "json_extract(job_history.details, '$.externalId')"


class SqliteQueryAdapter(QueryAdapter):
    """Builds WHERE/ON fragments with positional parameters."""

    def external_id_equals(self, external_id: str) -> SqlCondition:
        return SqlCondition(_EXTERNAL_ID + " = ?", (external_id,))

    def has_external_id(self) -> SqlCondition:
        return SqlCondition(_EXTERNAL_ID + " IS NOT NULL", ())

    def active_statuses(self) -> SqlCondition:
        marks = ", ".join("?" for _ in ACTIVE_STATUSES)
        return SqlCondition(
            "jobs.status IN ({})".format(marks),
            tuple(status.value for status in ACTIVE_STATUSES))

    def job_id_equals(self, job_pk: int) -> SqlCondition:
        return SqlCondition("jobs.id = ?", (job_pk,))

    def completed_before(self, cutoff_time: int) -> SqlCondition:
        return SqlCondition(
            "jobs.status = ? AND jobs.completed_at < ?",
            (JobStatus.COMPLETED.value, cutoff_time))

    def history_job_id_equals(self, job_pk: int) -> SqlCondition:
        return SqlCondition("job_history.job_id = ?", (job_pk,))


def _dumps(value: Any) -> Optional[str]:
    return None if value is None else json.dumps(value)


def _loads(value: Optional[str]) -> Any:
    return json.loads(value) if value else None


class SqliteStoreSession(StoreSession):
    """Runs table operations on the store's connection."""

    def __init__(self, conn: aiosqlite.Connection):
        self._conn = conn

    async def insert_job(self, row: JobRow) -> Optional[int]:
        async with self._conn.execute("""
            INSERT INTO jobs (
                type, payload, status, scheduled_at, started_at,
                completed_at, attempts, last_error, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            row.type,
            json.dumps(row.payload),
            row.status,
            row.scheduled_at,
            row.started_at,
            row.completed_at,
            row.attempts,
            row.last_error,
            row.created_at,
            row.updated_at,
        )) as cursor:
            return cursor.lastrowid

    async def insert_history(self, row: HistoryRow) -> None:
        await self._conn.execute(
            "INSERT INTO job_history (job_id, status, details, created_at) "
            "VALUES (?, ?, ?, ?)",
            (row.job_id, row.status, _dumps(row.details), row.created_at))

    async def select_history_job_ids(
        self, where: SqlCondition, limit: Optional[int] = None) -> List[int]:
        query = ("SELECT job_history.job_id FROM job_history WHERE "
                 + where.sql + " ORDER BY job_history.id DESC")
        params = list(where.params)
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        async with self._conn.execute(query, params) as cursor:
            return [row[0] for row in await cursor.fetchall()]

    async def select_history(self, where: SqlCondition) -> List[HistoryRow]:
        query = ("SELECT job_id, status, details, created_at FROM job_history "
                 "WHERE " + where.sql + " ORDER BY job_history.id")
        async with self._conn.execute(query, where.params) as cursor:
            return [
                HistoryRow(
                    job_id=row["job_id"],
                    status=row["status"],
                    details=_loads(row["details"]),
                    created_at=row["created_at"],
                )
                for row in await cursor.fetchall()
            ]

    async def select_jobs_with_history(
        self, join_on: SqlCondition, where: SqlCondition) -> List[ActiveJobRow]:
        query = """
            SELECT jobs.id AS job_pk, jobs.type, jobs.payload, jobs.status,
                   jobs.scheduled_at, jobs.started_at, jobs.completed_at,
                   jobs.attempts, jobs.last_error, jobs.created_at,
                   jobs.updated_at, job_history.details AS history_details
            FROM jobs
            LEFT JOIN job_history
                ON job_history.job_id = jobs.id AND {join_on}
            WHERE {where}
            ORDER BY jobs.id, job_history.id
        """.format(join_on=join_on.sql, where=where.sql)
        params = tuple(join_on.params) + tuple(where.params)

        async with self._conn.execute(query, params) as cursor:
            rows = await cursor.fetchall()
        return [self._row_to_active(row) for row in rows]

    async def update_jobs(self, values: Dict[str, Any],
                          where: SqlCondition) -> int:
        check_patch(values)
        columns = sorted(values)
        query = "UPDATE jobs SET {} WHERE {}".format(
            ", ".join("{} = ?".format(col) for col in columns), where.sql)
        params = [values[col] for col in columns] + list(where.params)

        async with self._conn.execute(query, params) as cursor:
            return cursor.rowcount

    async def delete_jobs(self, where: SqlCondition) -> int:
        # Explicit history delete; files created without the foreign key
        # pragma do not cascade.
        await self._conn.execute(
            "DELETE FROM job_history WHERE job_id IN "
            "(SELECT jobs.id FROM jobs WHERE " + where.sql + ")",
            where.params)
        async with self._conn.execute(
                "DELETE FROM jobs WHERE " + where.sql, where.params) as cursor:
            return cursor.rowcount

    @staticmethod
    def _row_to_active(row: aiosqlite.Row) -> ActiveJobRow:
        """Convert database row to ActiveJobRow."""
        details = None
        try:
            details = _loads(row["history_details"])
        except ValueError:
            LOG.warning("ignoring malformed history details for job %r",
                        row["job_pk"])
        if not isinstance(details, dict):
            details = None

        try:
            payload = _loads(row["payload"])
        except ValueError:
            LOG.warning("ignoring malformed payload for job %r", row["job_pk"])
            payload = None

        return ActiveJobRow(
            job_pk=row["job_pk"],
            type=row["type"],
            payload=payload,
            status=row["status"],
            scheduled_at=row["scheduled_at"],
            started_at=row["started_at"],
            completed_at=row["completed_at"],
            attempts=row["attempts"],
            last_error=row["last_error"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            history_details=details,
        )


class SqliteJobStore(JobStore):
    """
    One aiosqlite connection to a local database file.

    Transactions are serialized with an asyncio lock since they share
    the connection.
    """

    def __init__(self, db_path: str):
        """
        Initialize store.

        Args:
            db_path: Path to SQLite database file, or ":memory:"
        """
        self.db_path = db_path
        self._conn: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()
        self._schema_ok = False

    def _ensure_db_dir(self):
        """Create database directory if it doesn't exist."""
        if self.db_path == ":memory:":
            return
        db_dir = os.path.dirname(self.db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)

    async def _get_conn(self) -> aiosqlite.Connection:
        """Get database connection, creating if needed."""
        if self._conn is None:
            self._ensure_db_dir()
            conn = await aiosqlite.connect(self.db_path)
            conn.row_factory = aiosqlite.Row
            await conn.execute("PRAGMA foreign_keys = ON")
            if self.db_path != ":memory:":
                await conn.execute("PRAGMA journal_mode = WAL")
                await conn.execute("PRAGMA synchronous = NORMAL")
            self._conn = conn
            LOG.debug("opened %s", self.db_path)
        if not self._schema_ok:
            await self._init_schema(self._conn)
        return self._conn

    async def _init_schema(self, conn: aiosqlite.Connection):
        """Create database schema if it doesn't exist."""
        for statement in SCHEMA_STATEMENTS:
            await conn.execute(statement)
        await conn.execute("PRAGMA user_version = {:d}".format(SCHEMA_VERSION))
        await conn.commit()
        self._schema_ok = True

    @asynccontextmanager
    async def session(self) -> AsyncIterator[SqliteStoreSession]:
        async with self._lock:
            conn = await self._get_conn()
            try:
                yield SqliteStoreSession(conn)
            except BaseException:
                await conn.rollback()
                raise
            await conn.commit()

    async def initialize(self) -> None:
        async with self._lock:
            await self._get_conn()

    async def close(self) -> None:
        """Close database connection."""
        async with self._lock:
            if self._conn is not None:
                await self._conn.close()
                self._conn = None
                self._schema_ok = False


class SqliteJobRepository(AuditedJobRepository):
    """
    SQLite-based job repository.

    Example:
        repo = SqliteJobRepository("/var/lib/jobqueue/db/jobs.sqlite")
        await repo.initialize()
    """

    def __init__(self, db_path: str, adapter: Optional[QueryAdapter] = None):
        self.db_path = db_path
        super().__init__(SqliteJobStore(db_path),
                         adapter or SqliteQueryAdapter())
