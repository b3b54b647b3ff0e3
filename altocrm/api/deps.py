"""API dependency injection — shared FastAPI dependencies."""

from __future__ import annotations

from fastapi import Request

DEFAULT_ACTOR = "api"


def get_actor(request: Request) -> str:
    """Who is making the change, for audit rows (set by ActorMiddleware).

    Falls back to 'api' if not set.
    """
    return getattr(request.state, "actor", DEFAULT_ACTOR)
