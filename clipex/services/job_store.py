"""In-memory job store with age-based eviction."""

import asyncio
from datetime import datetime
from typing import Dict, Optional

from loguru import logger

from clipex.models.job import JobStatus, RenderJob


class JobStore:
    """Table of render jobs keyed by id.

    Only the task running a job mutates that job's record. Eviction is
    keyed purely on age, so a late update to an evicted id is a no-op.
    """

    def __init__(self, retention_seconds: float = 3600):
        self.retention_seconds = retention_seconds
        self.jobs: Dict[str, RenderJob] = {}

    def __len__(self) -> int:
        return len(self.jobs)

    def __contains__(self, job_id: str) -> bool:
        return job_id in self.jobs

    def create(self, record_id: Optional[str] = None) -> RenderJob:
        """Create and store a new pending job."""
        job = RenderJob(record_id=record_id)
        self.jobs[job.id] = job
        return job

    def get(self, job_id: str) -> Optional[RenderJob]:
        return self.jobs.get(job_id)

    def mark_processing(self, job_id: str) -> Optional[RenderJob]:
        return self._transition(job_id, JobStatus.PROCESSING)

    def report_progress(self, job_id: str, percent: float) -> None:
        job = self.jobs.get(job_id)
        if job is not None:
            job.report_progress(percent)

    def mark_completed(self, job_id: str, url: str, output_path: Optional[str] = None) -> Optional[RenderJob]:
        job = self.jobs.get(job_id)
        if job is None:
            logger.warning(f"Job {job_id} was evicted before completing")
            return None
        if not job.complete(url, output_path):
            logger.warning(f"Ignoring completion of job {job_id} in status {job.status.value}")
            return None
        return job

    def mark_failed(self, job_id: str, error: str) -> Optional[RenderJob]:
        job = self.jobs.get(job_id)
        if job is None:
            logger.warning(f"Job {job_id} was evicted before failing")
            return None
        if not job.fail(error):
            logger.warning(f"Ignoring failure of job {job_id} in status {job.status.value}")
            return None
        return job

    def _transition(self, job_id: str, status: JobStatus) -> Optional[RenderJob]:
        job = self.jobs.get(job_id)
        if job is None:
            return None
        if not job.update_status(status):
            logger.warning(
                f"Ignoring transition of job {job_id}: {job.status.value} -> {status.value}"
            )
            return None
        return job

    def evict(self, now: Optional[datetime] = None) -> int:
        """Remove jobs older than the retention window, regardless of status.

        Returns:
            Number of jobs removed
        """
        now = now or datetime.now()
        expired = [
            job for job in self.jobs.values()
            if job.age_seconds(now) > self.retention_seconds
        ]
        for job in expired:
            if not job.is_terminal:
                logger.warning(f"Evicting job {job.id} still in status {job.status.value}")
            self.jobs.pop(job.id, None)

        if expired:
            logger.info(f"Evicted {len(expired)} jobs older than {self.retention_seconds}s")
        return len(expired)

    def get_stats(self) -> Dict:
        """Get job statistics."""
        stats = {
            "total": len(self.jobs),
            "by_status": {},
        }

        for status in JobStatus:
            count = sum(1 for j in self.jobs.values() if j.status == status)
            if count > 0:
                stats["by_status"][status.value] = count

        return stats


def start_eviction_loop(store: JobStore, interval_seconds: float = 3600) -> asyncio.Task:
    """
    Start a background task that periodically evicts expired jobs.

    Args:
        store: Job store to sweep
        interval_seconds: Seconds between sweeps

    Returns the background task.
    """
    async def eviction_loop():
        while True:
            try:
                await asyncio.sleep(interval_seconds)  # Sleep first
                store.evict()
            except asyncio.CancelledError:
                logger.info("Job eviction task cancelled")
                break
            except Exception as e:
                logger.error(f"Job eviction failed: {e}")

    task = asyncio.create_task(eviction_loop())
    logger.info(f"Job eviction scheduled every {interval_seconds:.0f}s")
    return task
