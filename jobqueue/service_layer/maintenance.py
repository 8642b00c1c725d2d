"""
Startup recovery and retention sweeping.
"""

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional

from jobqueue.config import Config
from jobqueue.domain import NormalizedJob
from jobqueue.repository import JobRepository
from jobqueue.utils import nowMillis

LOG = logging.getLogger(__name__)


async def recover_active_jobs(repo: JobRepository) -> List[NormalizedJob]:
    """
    Load unfinished jobs for resumption after a restart.

    Returns:
        Active jobs, highest priority first, then oldest first
    """
    active = await repo.load_active_jobs()
    active.sort(key=lambda job: (-int(job.priority), job.created_at))
    LOG.info("recovered %d active jobs", len(active))
    return active


class RetentionSweeper:
    """Periodically deletes completed jobs older than the retention window."""

    def __init__(self, repo: JobRepository, retention_ms: int,
                 interval_seconds: float):
        self.repo = repo
        self.retention_ms = retention_ms
        self.interval_seconds = interval_seconds

    @classmethod
    def from_config(cls, repo: JobRepository, config: Config) -> RetentionSweeper:
        return cls(repo, config.retentionMillis, config.sweepIntervalSeconds)

    async def sweep(self, now: Optional[int] = None) -> int:
        """
        Run one sweep.

        Failures are logged and reported as zero removals; the next sweep
        retries.
        """
        now = nowMillis() if now is None else now
        cutoff = now - self.retention_ms
        try:
            removed = await self.repo.cleanup_completed_before(cutoff)
        except Exception:  # pylint: disable=broad-except
            LOG.error("retention sweep failed (cutoff=%d)", cutoff, exc_info=True)
            return 0
        if removed:
            LOG.info("retention sweep removed %d jobs", removed)
        return removed

    async def run(self, stop_event: asyncio.Event) -> None:
        """Sweep every interval until `stop_event` is set."""
        while not stop_event.is_set():
            await self.sweep()
            try:
                await asyncio.wait_for(stop_event.wait(), self.interval_seconds)
            except asyncio.TimeoutError:
                pass
        LOG.debug("retention sweeper stopped")
