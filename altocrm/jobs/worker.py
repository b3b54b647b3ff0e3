"""
Job Worker — APScheduler interval poll over the background_jobs table.

Every ``poll_seconds`` the worker claims at most one pending job, runs its
handler in a thread, and marks it done or failed. max_instances=1 keeps polls
from overlapping when a handler runs longer than the interval. No retries,
no backoff: a failed job stays failed until retried through the API.
"""

from __future__ import annotations

import asyncio
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from altocrm.audit.logger import log_event
from altocrm.config import get_config
from altocrm.jobs.queue import claim_next, mark_done, mark_failed, requeue_stale
from altocrm.jobs.registry import get_handler

logger = logging.getLogger(__name__)

POLL_JOB_ID = "altocrm:job-poll"

# A job still "processing" after this long is assumed orphaned by a dead worker
STALE_AFTER_SECONDS = 900


class JobWorker:
    """Polls the job table on a fixed interval inside the running event loop."""

    def __init__(self, poll_seconds: float | None = None) -> None:
        self.poll_seconds = poll_seconds or get_config().jobs.poll_seconds
        self.scheduler = AsyncIOScheduler()

    @property
    def running(self) -> bool:
        return self.scheduler.running

    def start(self) -> None:
        """Register the poll job and start the scheduler. Needs a running event loop."""
        try:
            requeue_stale(STALE_AFTER_SECONDS)
        except Exception as e:
            logger.warning("Could not re-queue stale jobs: %s", e)

        self.scheduler.add_job(
            self.run_once,
            trigger=IntervalTrigger(seconds=self.poll_seconds),
            id=POLL_JOB_ID,
            name="background job poll",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self.scheduler.start()
        logger.info("Job worker started (every %.1fs)", self.poll_seconds)

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Job worker stopped")

    async def run_once(self) -> dict | None:
        """Claim and run one job. Returns the job with its final status, or None if idle."""
        try:
            job = await asyncio.to_thread(claim_next)
        except Exception as e:
            logger.warning("Job poll failed: %s", e)
            return None
        if job is None:
            return None

        job_id, job_type = job["id"], job["jobType"]
        fn = get_handler(job_type)
        if fn is None:
            error = f"no handler registered for job type: {job_type}"
            logger.error("Job %d: %s", job_id, error)
            await asyncio.to_thread(mark_failed, job_id, error)
            return {**job, "status": "failed", "lastError": error}

        logger.info("Running job %d (%s, attempt %d)", job_id, job_type, job["attempts"])
        try:
            result = await asyncio.to_thread(fn, job["payload"])
        except Exception as e:
            logger.exception("Job %d (%s) failed", job_id, job_type)
            return await self._fail(job, f"{type(e).__name__}: {e}")

        try:
            await asyncio.to_thread(mark_done, job_id, result)
        except Exception as e:
            # The result column is JSONB; datetimes, sets and Decimals do not adapt
            logger.exception("Job %d (%s) result could not be stored", job_id, job_type)
            return await self._fail(job, f"result not serializable: {e}")
        logger.info("Job %d (%s) done", job_id, job_type)
        return {**job, "status": "done", "result": result}

    async def _fail(self, job: dict, error: str) -> dict:
        """Record a failed run on the job row and in the audit log."""
        job_id, job_type = job["id"], job["jobType"]
        await asyncio.to_thread(mark_failed, job_id, error)
        await asyncio.to_thread(
            log_event,
            "job.failed",
            f"{job_type} {job_id}",
            details={"error": error, "attempts": job["attempts"]},
            target=f"job:{job_id}",
            status="error",
        )
        return {**job, "status": "failed", "lastError": error}

    async def run_forever(self) -> None:
        """Standalone mode: start polling and block until cancelled."""
        self.start()
        try:
            while True:
                await asyncio.sleep(3600)
        finally:
            self.shutdown()
