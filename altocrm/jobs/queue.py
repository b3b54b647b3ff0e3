"""
Background job queue backed by the ``background_jobs`` table.

Status flow: pending -> processing -> done | failed. A worker claims one
pending row at a time with ``FOR UPDATE SKIP LOCKED``, so several pollers can
share the table without double-claiming. Delivery is at-least-once: a worker
that dies mid-job leaves the row in ``processing`` until ``requeue_stale``
puts it back.
"""

from __future__ import annotations

import logging
from typing import Any

from psycopg2.extras import Json

from altocrm.db.connection import get_cursor
from altocrm.jobs import handlers  # noqa: F401  (registers built-in handlers)
from altocrm.jobs.registry import UnknownJobTypeError, get_handler

logger = logging.getLogger(__name__)

JOB_STATUSES = ("pending", "processing", "done", "failed")


def job_to_dict(row: dict) -> dict:
    """Convert a background_jobs row to API response shape."""
    return {
        "id": row["id"],
        "jobType": row["job_type"],
        "payload": row.get("payload") or {},
        "status": row.get("status") or "pending",
        "attempts": row.get("attempts") or 0,
        "lastError": row.get("last_error"),
        "result": row.get("result"),
        "createdAt": row["created_at"].isoformat() if row.get("created_at") else None,
        "updatedAt": row["updated_at"].isoformat() if row.get("updated_at") else None,
        "startedAt": row["started_at"].isoformat() if row.get("started_at") else None,
        "finishedAt": row["finished_at"].isoformat() if row.get("finished_at") else None,
    }


def enqueue(job_type: str, payload: dict | None = None) -> int:
    """Add a pending job. Returns its id."""
    if get_handler(job_type) is None:
        raise UnknownJobTypeError(job_type)

    with get_cursor() as cur:
        cur.execute(
            "INSERT INTO background_jobs (job_type, payload) VALUES (%s, %s) RETURNING id",
            (job_type, Json(payload or {})),
        )
        job_id: int = cur.fetchone()["id"]

    logger.info("Enqueued job %d (%s)", job_id, job_type)
    return job_id


def claim_next() -> dict | None:
    """Claim the oldest pending job, or return None when the queue is empty."""
    with get_cursor() as cur:
        cur.execute(
            """
            SELECT id FROM background_jobs
            WHERE status = 'pending'
            ORDER BY id
            FOR UPDATE SKIP LOCKED
            LIMIT 1
        """
        )
        row = cur.fetchone()
        if row is None:
            return None
        cur.execute(
            """
            UPDATE background_jobs
            SET status = 'processing', attempts = attempts + 1,
                started_at = NOW(), updated_at = NOW()
            WHERE id = %s
            RETURNING *
        """,
            (row["id"],),
        )
        return job_to_dict(cur.fetchone())


def mark_done(job_id: int, result: Any = None) -> None:
    with get_cursor() as cur:
        cur.execute(
            """
            UPDATE background_jobs
            SET status = 'done', result = %s, last_error = NULL,
                finished_at = NOW(), updated_at = NOW()
            WHERE id = %s
        """,
            (Json(result) if result is not None else None, job_id),
        )


def mark_failed(job_id: int, error: str) -> None:
    with get_cursor() as cur:
        cur.execute(
            """
            UPDATE background_jobs
            SET status = 'failed', last_error = %s,
                finished_at = NOW(), updated_at = NOW()
            WHERE id = %s
        """,
            (error[:2000], job_id),
        )


def get_job(job_id: int) -> dict | None:
    with get_cursor() as cur:
        cur.execute("SELECT * FROM background_jobs WHERE id = %s", (job_id,))
        row = cur.fetchone()
    return job_to_dict(row) if row else None


def list_jobs(status: str | None = None, job_type: str | None = None, limit: int = 50) -> list[dict]:
    """List jobs, newest first."""
    query = "SELECT * FROM background_jobs WHERE 1=1"
    params: list[Any] = []
    if status:
        query += " AND status = %s"
        params.append(status)
    if job_type:
        query += " AND job_type = %s"
        params.append(job_type)
    query += " ORDER BY id DESC LIMIT %s"
    params.append(limit)

    with get_cursor() as cur:
        cur.execute(query, params)
        return [job_to_dict(r) for r in cur.fetchall()]


def job_counts() -> dict[str, int]:
    """Number of jobs per status, with zeros for empty statuses."""
    with get_cursor() as cur:
        cur.execute("SELECT status, COUNT(*) AS n FROM background_jobs GROUP BY status")
        counts = {r["status"]: r["n"] for r in cur.fetchall()}
    return {status: counts.get(status, 0) for status in JOB_STATUSES}


def retry_job(job_id: int) -> bool:
    """Put a failed job back in the queue. False if it is not failed."""
    with get_cursor() as cur:
        cur.execute(
            """
            UPDATE background_jobs
            SET status = 'pending', finished_at = NULL, updated_at = NOW()
            WHERE id = %s AND status = 'failed'
        """,
            (job_id,),
        )
        ok: bool = cur.rowcount > 0
    if ok:
        logger.info("Job %d re-queued", job_id)
    return ok


def requeue_stale(older_than_seconds: int) -> int:
    """Return jobs stuck in processing (crashed worker) to pending."""
    with get_cursor() as cur:
        cur.execute(
            """
            UPDATE background_jobs
            SET status = 'pending', started_at = NULL, updated_at = NOW()
            WHERE status = 'processing'
              AND started_at < NOW() - make_interval(secs => %s)
        """,
            (older_than_seconds,),
        )
        count: int = cur.rowcount
    if count:
        logger.warning("Re-queued %d stale processing jobs", count)
    return count
