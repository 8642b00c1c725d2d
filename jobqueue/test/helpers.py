from contextlib import asynccontextmanager
import copy
import dataclasses
import os

from jobqueue.domain import ACTIVE_STATUSES, JobStatus, JobType, NormalizedJob
from jobqueue.repository.query import QueryAdapter
from jobqueue.repository.store import (
    ActiveJobRow,
    HistoryRow,
    JobStore,
    StoreSession,
    check_patch,
)

DAY_MS = 24 * 60 * 60 * 1000


def resetEnv():
    os.environ['JOBQUEUE_STATE_DIR'] = '/tmp/BADDIR'
    for var in ('JOBQUEUE_DB_ENGINE', 'JOBQUEUE_DATABASE_URL', 'JOBQUEUE_RC_FILE'):
        if var in os.environ:
            del os.environ[var]


def makeJob(jobId, status=JobStatus.PENDING, createdAt=1000, **kwargs):
    kwargs.setdefault("type", JobType.TOOL_EXECUTION)
    kwargs.setdefault("name", "job " + jobId)
    return NormalizedJob(
        id=jobId, status=status, created_at=createdAt, updated_at=createdAt,
        **kwargs)


class FakeQueryAdapter(QueryAdapter):
    """Returns tagged tuples understood by FakeJobStore."""

    def external_id_equals(self, external_id):
        return ("externalId", external_id)

    def has_external_id(self):
        return ("hasExternalId",)

    def active_statuses(self):
        return ("activeStatuses", tuple(s.value for s in ACTIVE_STATUSES))

    def job_id_equals(self, job_pk):
        return ("jobPk", job_pk)

    def completed_before(self, cutoff_time):
        return ("completedBefore", cutoff_time)

    def history_job_id_equals(self, job_pk):
        return ("historyJobPk", job_pk)


def _historyMatches(cond, hist):
    kind = cond[0]
    details = hist["details"] or {}
    if kind == "externalId":
        return details.get("externalId") == cond[1]
    if kind == "hasExternalId":
        return "externalId" in details
    if kind == "historyJobPk":
        return hist["job_id"] == cond[1]
    raise AssertionError("not a history condition: {!r}".format(cond))


def _jobMatches(cond, job):
    kind = cond[0]
    if kind == "activeStatuses":
        return job["status"] in cond[1]
    if kind == "jobPk":
        return job["id"] == cond[1]
    if kind == "completedBefore":
        return (job["status"] == JobStatus.COMPLETED.value
                and job["completed_at"] is not None
                and job["completed_at"] < cond[1])
    raise AssertionError("not a job condition: {!r}".format(cond))


class FakeStoreSession(StoreSession):
    def __init__(self, store):
        self.store = store

    async def insert_job(self, row):
        self.store.calls.append("insert_job")
        if self.store.failNext:
            self.store.failNext = False
            raise RuntimeError("backend down")
        self.store.nextJobPk += 1
        values = dataclasses.asdict(row)
        values["id"] = self.store.nextJobPk
        self.store.jobs.append(values)
        # Row written, but the driver reports no key
        if self.store.dropGeneratedKey:
            return None
        return values["id"]

    async def insert_history(self, row):
        self.store.calls.append("insert_history")
        self.store.nextHistoryPk += 1
        self.store.history.append({
            "id": self.store.nextHistoryPk,
            "job_id": row.job_id,
            "status": row.status,
            "details": copy.deepcopy(row.details),
            "created_at": row.created_at,
        })

    async def select_history_job_ids(self, where, limit=None):
        self.store.calls.append("select_history_job_ids")
        if self.store.failNext:
            self.store.failNext = False
            raise RuntimeError("backend down")
        rows = [h for h in reversed(self.store.history) if _historyMatches(where, h)]
        if limit is not None:
            rows = rows[:limit]
        return [h["job_id"] for h in rows]

    async def select_history(self, where):
        self.store.calls.append("select_history")
        return [
            HistoryRow(job_id=h["job_id"], status=h["status"],
                       details=h["details"], created_at=h["created_at"])
            for h in self.store.history if _historyMatches(where, h)
        ]

    async def select_jobs_with_history(self, join_on, where):
        self.store.calls.append("select_jobs_with_history")
        result = []
        for job in sorted(self.store.jobs, key=lambda j: j["id"]):
            if not _jobMatches(where, job):
                continue
            joined = [h for h in self.store.history
                      if h["job_id"] == job["id"] and _historyMatches(join_on, h)]
            for hist in joined or [None]:
                result.append(ActiveJobRow(
                    job_pk=job["id"],
                    type=job["type"],
                    payload=job["payload"],
                    status=job["status"],
                    scheduled_at=job["scheduled_at"],
                    started_at=job["started_at"],
                    completed_at=job["completed_at"],
                    attempts=job["attempts"],
                    last_error=job["last_error"],
                    created_at=job["created_at"],
                    updated_at=job["updated_at"],
                    history_details=hist["details"] if hist else None,
                ))
        return result

    async def update_jobs(self, values, where):
        self.store.calls.append("update_jobs")
        check_patch(values)
        count = 0
        for job in self.store.jobs:
            if _jobMatches(where, job):
                job.update(values)
                count += 1
        return count

    async def delete_jobs(self, where):
        self.store.calls.append("delete_jobs")
        doomed = {j["id"] for j in self.store.jobs if _jobMatches(where, j)}
        self.store.jobs = [j for j in self.store.jobs if j["id"] not in doomed]
        self.store.history = [
            h for h in self.store.history if h["job_id"] not in doomed]
        return len(doomed)


class FakeJobStore(JobStore):
    """In-memory jobs/job_history tables with rollback on error."""

    def __init__(self):
        self.jobs = []
        self.history = []
        self.nextJobPk = 0
        self.nextHistoryPk = 0
        self.calls = []
        self.failNext = False
        self.dropGeneratedKey = False
        self.initialized = False
        self.closed = False

    @asynccontextmanager
    async def session(self):
        saved = (copy.deepcopy(self.jobs), copy.deepcopy(self.history))
        try:
            yield FakeStoreSession(self)
        except BaseException:
            self.jobs, self.history = saved
            raise

    async def initialize(self):
        self.initialized = True

    async def close(self):
        self.closed = True

    def historyFor(self, jobPk):
        return [h for h in self.history if h["job_id"] == jobPk]


class MemoryRepository(object):
    """Minimal stand-in JobRepository for service tests."""

    def __init__(self):
        self.jobs = {}
        self.updates = []
        self.cutoffs = []
        self.error = None

    def _maybeFail(self):
        if self.error is not None:
            raise self.error

    async def insert(self, job):
        self._maybeFail()
        self.jobs[job.id] = job

    async def exists(self, external_id):
        self._maybeFail()
        return external_id in self.jobs

    async def load_active_jobs(self):
        self._maybeFail()
        return [job for job in self.jobs.values() if job.is_active()]

    async def update_status(self, external_id, update):
        self._maybeFail()
        self.updates.append((external_id, update))
        job = self.jobs.get(external_id)
        if job is not None:
            job.status = update.status

    async def cleanup_completed_before(self, cutoff_time):
        self._maybeFail()
        self.cutoffs.append(cutoff_time)
        return 3

    async def load_history(self, external_id):
        self._maybeFail()
        return []


