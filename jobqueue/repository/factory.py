"""
Engine selection.

The engine is chosen once per process from configuration. An unknown
engine name falls back to SQLite with a warning; asking for PostgreSQL
without a database URL is a configuration error.
"""

from __future__ import annotations

import logging
from typing import Optional

from jobqueue.config import Config, ConfigError, defaultOptions

from .interface import JobRepository
from .postgres_repository import PostgresJobRepository
from .sqlite_repository import SqliteJobRepository

LOG = logging.getLogger(__name__)

ENGINE_SQLITE = "sqlite"
ENGINE_POSTGRES = "postgres"
DEFAULT_ENGINE = ENGINE_SQLITE

_ENGINE_ALIASES = {
    "sqlite": ENGINE_SQLITE,
    "sqlite3": ENGINE_SQLITE,
    "postgres": ENGINE_POSTGRES,
    "postgresql": ENGINE_POSTGRES,
    "pg": ENGINE_POSTGRES,
}

_REPOSITORY: Optional[JobRepository] = None


def select_engine(name: Optional[str]) -> str:
    """Return the canonical engine name, or the default for unknown names."""
    if not name:
        return DEFAULT_ENGINE
    engine = _ENGINE_ALIASES.get(name.strip().lower())
    if engine is None:
        LOG.warning("unknown database engine %r, using %s", name, DEFAULT_ENGINE)
        return DEFAULT_ENGINE
    return engine


def create_job_repository(config: Config) -> JobRepository:
    """Build a new repository for the configured engine."""
    engine = select_engine(config.dbEngine)
    if engine == ENGINE_POSTGRES:
        if not config.databaseUrl:
            raise ConfigError(
                "Database engine \"postgres\" requires a database URL: set "
                "\"database.url\" in the RC file or JOBQUEUE_DATABASE_URL")
        LOG.info("using postgres job repository")
        return PostgresJobRepository.from_url(
            config.databaseUrl,
            pool_size=config.poolSize,
            echo=config.dbEcho,
        )

    LOG.info("using sqlite job repository at %s", config.sqlitePath)
    return SqliteJobRepository(config.sqlitePath)


def get_job_repository(config: Optional[Config] = None) -> JobRepository:
    """Return the process-wide repository, creating it on first use."""
    global _REPOSITORY  # pylint: disable=global-statement
    if _REPOSITORY is None:
        if config is None:
            config = Config(defaultOptions())
        _REPOSITORY = create_job_repository(config)
    return _REPOSITORY


async def open_job_repository(config: Optional[Config] = None) -> JobRepository:
    """Return the process-wide repository with its schema in place."""
    repo = get_job_repository(config)
    await repo.initialize()
    return repo


def reset_job_repository(thisIsATest: bool = False) -> None:
    global _REPOSITORY  # pylint: disable=global-statement
    assert thisIsATest
    _REPOSITORY = None
