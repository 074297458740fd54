"""Populate ``request.state.actor`` from the bearer token."""

from __future__ import annotations

from typing import Awaitable, Callable

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from plantdesk.dependencies.auth import resolve_actor_from_token


class ActorMiddleware(BaseHTTPMiddleware):
    """Reject malformed or unknown credentials early; anonymous requests pass through.

    Routes that need an actor depend on ``get_current_actor``, which answers 401
    when nothing was resolved here.
    """

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        authorization = request.headers.get("Authorization")
        request.state.actor = None
        if authorization:
            scheme, _, credentials = authorization.partition(" ")
            if scheme.lower() != "bearer":
                return JSONResponse(status_code=401, content={"detail": "Invalid authentication credentials"})
            registry = getattr(request.app.state, "actor_registry", None)
            if registry is None:
                return JSONResponse(status_code=503, content={"detail": "Identity registry is not configured"})
            try:
                request.state.actor = resolve_actor_from_token(registry, credentials.strip() or None)
            except HTTPException as exc:
                return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

        return await call_next(request)
