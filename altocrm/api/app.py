"""
AltoCRM API — FastAPI app on $PORT (default 8080).

The job poller runs inside the same event loop unless ALTOCRM_JOBS_ENABLED
is false (for example when a separate ``altocrm worker`` process is used).
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from altocrm import __version__
from altocrm.api.middleware import ActorMiddleware, CorrelationMiddleware
from altocrm.api.routers import fields, health, jobs, leads, pipeline
from altocrm.config import get_config
from altocrm.crm.errors import (
    CrmError,
    DuplicateFieldError,
    FieldLockedError,
    FieldNotEditableError,
    LeadNotFoundError,
)
from altocrm.db.connection import close_pool
from altocrm.jobs.registry import UnknownJobTypeError
from altocrm.jobs.worker import JobWorker

logger = logging.getLogger(__name__)

_CONFLICT_ERRORS = (FieldLockedError, FieldNotEditableError, DuplicateFieldError)


@asynccontextmanager
async def lifespan(app: FastAPI):
    cfg = get_config()
    worker: JobWorker | None = None
    if cfg.jobs.enabled:
        worker = JobWorker(cfg.jobs.poll_seconds)
        worker.start()
    app.state.worker = worker
    logger.info("AltoCRM API %s ready on port %d", __version__, cfg.port)
    yield
    if worker is not None:
        worker.shutdown()
    close_pool()


async def _crm_error(request: Request, exc: CrmError) -> JSONResponse:
    if isinstance(exc, LeadNotFoundError):
        status_code = 404
    elif isinstance(exc, _CONFLICT_ERRORS):
        status_code = 409
    else:
        status_code = 400
    return JSONResponse({"error": str(exc)}, status_code=status_code)


async def _unknown_job_type(request: Request, exc: UnknownJobTypeError) -> JSONResponse:
    return JSONResponse({"error": str(exc)}, status_code=400)


def create_app() -> FastAPI:
    app = FastAPI(title="AltoCRM", version=__version__, lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(ActorMiddleware)
    app.add_middleware(CorrelationMiddleware)

    app.add_exception_handler(CrmError, _crm_error)
    app.add_exception_handler(UnknownJobTypeError, _unknown_job_type)

    app.include_router(health.router)
    app.include_router(leads.router)
    app.include_router(pipeline.router)
    app.include_router(fields.router)
    app.include_router(jobs.router)
    return app


app = create_app()
