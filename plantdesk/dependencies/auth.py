from collections.abc import Callable
from typing import Annotated

from fastapi import Depends, HTTPException, Request, Security, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from plantdesk.identity.actors import Actor, ActorRegistry, Permission, PermissionChecker, RolePermissionChecker

bearer_scheme = HTTPBearer(auto_error=False)


def resolve_actor_from_token(registry: ActorRegistry, token: str | None) -> Actor:
    """Return the actor behind a bearer token or raise 401."""

    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    actor = registry.resolve_token(token)
    if actor is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid authentication credentials"
        )
    return actor


def get_actor_registry(request: Request) -> ActorRegistry:
    registry = getattr(request.app.state, "actor_registry", None)
    if registry is None:
        raise HTTPException(status_code=503, detail="Identity registry is not configured")
    return registry


def get_permission_checker(request: Request) -> PermissionChecker:
    checker = getattr(request.app.state, "permission_checker", None)
    return checker if checker is not None else RolePermissionChecker()


async def get_current_actor(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Security(bearer_scheme)],
    request: Request,
) -> Actor:
    """Resolve the calling actor, reusing what the middleware already found."""

    cached = getattr(request.state, "actor", None)
    if isinstance(cached, Actor):
        return cached

    token = credentials.credentials if credentials is not None else None
    actor = resolve_actor_from_token(get_actor_registry(request), token)
    request.state.actor = actor
    return actor


CurrentActor = Annotated[Actor, Depends(get_current_actor)]


def permission_required(permission: Permission) -> Callable[..., Actor]:
    """Dependency factory ensuring the current actor holds ``permission``."""

    async def dependency(
        actor: CurrentActor,
        checker: Annotated[PermissionChecker, Depends(get_permission_checker)],
    ) -> Actor:
        if not checker.has_permission(actor, permission):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
        return actor

    return dependency


TicketReader = Annotated[Actor, Depends(permission_required(Permission.TICKETS_READ))]
TicketWriter = Annotated[Actor, Depends(permission_required(Permission.TICKETS_WRITE))]
