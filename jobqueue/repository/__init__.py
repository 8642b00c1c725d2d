"""
Repository layer for job persistence.

This package contains the repository contract, the query adapter and
store abstractions it is built on, and the SQLite and PostgreSQL engines.
"""

from .audited import AuditedJobRepository
from .factory import (
    create_job_repository,
    get_job_repository,
    open_job_repository,
    select_engine,
)
from .interface import JobRepository, StatusUpdate
from .postgres_repository import PostgresJobRepository, PostgresQueryAdapter
from .query import QueryAdapter
from .sqlite_repository import SqliteJobRepository, SqliteQueryAdapter

__all__ = [
    "AuditedJobRepository",
    "JobRepository",
    "PostgresJobRepository",
    "PostgresQueryAdapter",
    "QueryAdapter",
    "SqliteJobRepository",
    "SqliteQueryAdapter",
    "StatusUpdate",
    "create_job_repository",
    "get_job_repository",
    "open_job_repository",
    "select_engine",
]
