"""
Job handler registry — maps a job type string to a callable.

Handlers take the job's payload dict and return a JSON-serializable result
(or None). They run in a worker thread, so plain blocking DAL calls are fine.

Usage:
    from altocrm.jobs.registry import handler

    @handler("leads.purge_deleted")
    def purge(payload: dict) -> dict:
        ...
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

JobHandler = Callable[[dict], Any]

_handlers: dict[str, JobHandler] = {}


class UnknownJobTypeError(LookupError):
    def __init__(self, job_type: str) -> None:
        super().__init__(f"no handler registered for job type: {job_type}")
        self.job_type = job_type


def handler(job_type: str) -> Callable[[JobHandler], JobHandler]:
    """Decorator registering ``fn`` as the handler for ``job_type``."""

    def register(fn: JobHandler) -> JobHandler:
        if job_type in _handlers and _handlers[job_type] is not fn:
            logger.warning("Replacing handler for job type %s", job_type)
        _handlers[job_type] = fn
        return fn

    return register


def get_handler(job_type: str) -> JobHandler | None:
    return _handlers.get(job_type)


def registered_types() -> list[str]:
    return sorted(_handlers)


def unregister(job_type: str) -> None:
    """Remove a handler. Only for testing."""
    _handlers.pop(job_type, None)
