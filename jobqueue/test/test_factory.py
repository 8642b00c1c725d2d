import os
import tempfile
import unittest

from mock import MagicMock, patch

from jobqueue.config import ConfigError
from jobqueue.repository import (
    PostgresJobRepository,
    SqliteJobRepository,
    create_job_repository,
    get_job_repository,
    open_job_repository,
    select_engine,
)
from jobqueue.repository.factory import reset_job_repository


def makeConfig(engine=None, url=None, sqlitePath="/tmp/jobs.sqlite"):
    cfg = MagicMock()
    cfg.dbEngine = engine
    cfg.databaseUrl = url
    cfg.sqlitePath = sqlitePath
    cfg.poolSize = 5
    cfg.dbEcho = False
    return cfg


class TestSelectEngine(unittest.TestCase):
    def testAliases(self):
        self.assertEqual("sqlite", select_engine("sqlite"))
        self.assertEqual("sqlite", select_engine("SQLite3"))
        self.assertEqual("postgres", select_engine("postgres"))
        self.assertEqual("postgres", select_engine(" postgresql "))
        self.assertEqual("postgres", select_engine("pg"))

    def testDefault(self):
        self.assertEqual("sqlite", select_engine(None))
        self.assertEqual("sqlite", select_engine(""))

    def testUnknownFallsBack(self):
        with self.assertLogs("jobqueue.repository.factory", level="WARNING") as logs:
            self.assertEqual("sqlite", select_engine("mongodb"))
        self.assertIn("mongodb", logs.output[0])


class TestCreateJobRepository(unittest.TestCase):
    def testSqlite(self):
        repo = create_job_repository(makeConfig(sqlitePath="/tmp/x/jobs.db"))
        self.assertIsInstance(repo, SqliteJobRepository)
        self.assertEqual("/tmp/x/jobs.db", repo.db_path)

    def testUnknownEngineUsesSqlite(self):
        repo = create_job_repository(makeConfig(engine="oracle"))
        self.assertIsInstance(repo, SqliteJobRepository)

    def testPostgresRequiresUrl(self):
        with self.assertRaisesRegex(ConfigError, "requires a database URL"):
            create_job_repository(makeConfig(engine="postgres"))

    @patch.object(PostgresJobRepository, "from_url")
    def testPostgres(self, fromUrl):
        url = "postgresql+asyncpg://jobs@db/jobs"
        repo = create_job_repository(makeConfig(engine="postgresql", url=url))
        fromUrl.assert_called_once_with(url, pool_size=5, echo=False)
        self.assertIs(fromUrl.return_value, repo)


class TestProcessRepository(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        reset_job_repository(thisIsATest=True)
        self.tmpdir = tempfile.TemporaryDirectory()

    async def asyncTearDown(self):
        await get_job_repository(
            makeConfig(sqlitePath=self.sqlitePath())).close()
        reset_job_repository(thisIsATest=True)
        self.tmpdir.cleanup()

    def sqlitePath(self):
        return os.path.join(self.tmpdir.name, "jobs.sqlite")

    async def testSingleton(self):
        first = get_job_repository(makeConfig(sqlitePath=self.sqlitePath()))
        second = get_job_repository(makeConfig(engine="postgres"))
        self.assertIs(first, second)

    async def testOpenInitializes(self):
        repo = await open_job_repository(makeConfig(sqlitePath=self.sqlitePath()))
        self.assertTrue(os.path.exists(self.sqlitePath()))
        self.assertFalse(await repo.exists("anything"))

    def testResetRequiresFlag(self):
        with self.assertRaises(AssertionError):
            reset_job_repository()
