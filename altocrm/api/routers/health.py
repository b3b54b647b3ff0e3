"""Health and audit routes."""

from __future__ import annotations

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse

from altocrm import __version__
from altocrm.audit.logger import query_log
from altocrm.crm.dal import check_health
from altocrm.jobs.queue import job_counts

router = APIRouter(tags=["health", "audit"])


@router.get("/")
async def root():
    return {"name": "AltoCRM API", "version": __version__, "status": "running"}


@router.get("/health")
async def health():
    """Check the database and report queue depth."""
    crm = check_health()
    if crm["status"] != "ok":
        return JSONResponse(
            {"status": "degraded", "services": {"crm": f"error:{crm.get('error', 'unknown')}"}},
            status_code=503,
        )
    return {
        "status": "ok",
        "services": {"crm": "ok"},
        "leads": crm["leads"],
        "jobs": job_counts(),
    }


@router.get("/api/audit")
async def api_query_audit(
    event_type: str | None = Query(None),
    actor: str | None = Query(None),
    target: str | None = Query(None),
    since: str | None = Query(None),
    status: str | None = Query(None),
    limit: int = Query(50),
):
    results = query_log(
        limit=limit, event_type=event_type, actor=actor,
        target=target, since=since, status=status,
    )
    return {"events": results, "count": len(results)}
