"""API middleware — correlation IDs and actor attribution."""

from __future__ import annotations

import re
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from altocrm.api.deps import DEFAULT_ACTOR

_ACTOR_RE = re.compile(r"^[\w.@:+-]{1,100}$")


class ActorMiddleware(BaseHTTPMiddleware):
    """Read X-Actor and set request.state.actor for audit attribution.

    Missing or malformed header -> 'api'.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        actor = request.headers.get("x-actor", "").strip()
        request.state.actor = actor if _ACTOR_RE.match(actor) else DEFAULT_ACTOR
        return await call_next(request)


class CorrelationMiddleware(BaseHTTPMiddleware):
    """Attach a unique X-Correlation-Id to every request/response."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        correlation_id = request.headers.get("x-correlation-id") or uuid.uuid4().hex
        request.state.correlation_id = correlation_id
        response = await call_next(request)
        response.headers["X-Correlation-Id"] = correlation_id
        return response
