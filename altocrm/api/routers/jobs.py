"""Background job queue routes."""

from __future__ import annotations

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse

from altocrm.api.models import EnqueueJobRequest
from altocrm.jobs.queue import JOB_STATUSES, enqueue, get_job, list_jobs, retry_job
from altocrm.jobs.registry import registered_types

router = APIRouter(prefix="/api/jobs", tags=["jobs"])


@router.get("")
async def api_list_jobs(
    status: str | None = Query(None),
    jobType: str | None = Query(None),
    limit: int = Query(50),
):
    if status and status not in JOB_STATUSES:
        return JSONResponse(
            {"error": f"status must be one of {', '.join(JOB_STATUSES)}"}, status_code=400
        )
    jobs = list_jobs(status=status, job_type=jobType, limit=limit)
    return {"jobs": jobs, "count": len(jobs)}


@router.get("/types")
async def api_job_types():
    return {"types": registered_types()}


@router.post("", status_code=201)
async def api_enqueue_job(body: EnqueueJobRequest):
    job_id = enqueue(body.jobType, body.payload)
    return {"id": job_id, "jobType": body.jobType, "status": "pending"}


@router.get("/{job_id}")
async def api_get_job(job_id: int):
    job = get_job(job_id)
    if not job:
        return JSONResponse({"error": "job not found"}, status_code=404)
    return job


@router.post("/{job_id}/retry")
async def api_retry_job(job_id: int):
    if retry_job(job_id):
        return {"success": True, "id": job_id, "status": "pending"}
    return JSONResponse({"error": "failed job not found"}, status_code=404)
