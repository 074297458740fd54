from .actors import (
    Actor,
    ActorDirectory,
    ActorRegistry,
    Permission,
    PermissionChecker,
    Role,
    RolePermissionChecker,
    StaticActorDirectory,
)

__all__ = [
    "Actor",
    "ActorDirectory",
    "ActorRegistry",
    "Permission",
    "PermissionChecker",
    "Role",
    "RolePermissionChecker",
    "StaticActorDirectory",
]
