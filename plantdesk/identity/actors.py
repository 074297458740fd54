"""Actors, roles and the identity collaborators consumed by the ticket engine.

Authentication itself lives outside this service; the registry below maps
opaque bearer tokens to known actors, optionally seeded from a YAML file.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Mapping, Protocol

import yaml

from plantdesk.tickets.models import TicketLevel


class Role(str, Enum):
    TECHNICIAN = "technician"
    PLANT_MANAGER = "plant_manager"
    COMPANY_ADMIN = "company_admin"
    SUPERADMIN = "superadmin"

    @property
    def tier(self) -> TicketLevel:
        return _ROLE_TIERS[self]


_ROLE_TIERS: dict[Role, TicketLevel] = {
    Role.TECHNICIAN: TicketLevel.PLANT,
    Role.PLANT_MANAGER: TicketLevel.PLANT,
    Role.COMPANY_ADMIN: TicketLevel.COMPANY,
    Role.SUPERADMIN: TicketLevel.SUPERADMIN,
}


class Permission(str, Enum):
    TICKETS_READ = "tickets:read"
    TICKETS_WRITE = "tickets:write"
    FORWARD_TO_COMPANY = "tickets:forward:company"
    FORWARD_TO_SUPERADMIN = "tickets:forward:superadmin"


@dataclass(frozen=True, slots=True)
class Actor:
    """An authenticated caller acting on tickets."""

    user_id: str
    role: Role
    tenant_id: str | None = None
    plant_ids: frozenset[str] = field(default_factory=frozenset)
    display_name: str | None = None

    @property
    def tier(self) -> TicketLevel:
        return self.role.tier


class PermissionChecker(Protocol):
    def has_permission(self, actor: Actor, permission: Permission) -> bool:
        ...


class ActorDirectory(Protocol):
    async def lookup(self, user_id: str) -> Actor | None:
        ...

    async def tier_members(self, level: TicketLevel, *, tenant_id: str, plant_id: str) -> list[str]:
        ...


class RolePermissionChecker:
    """Grant permissions from a static role table."""

    _DEFAULT_GRANTS: Mapping[Role, frozenset[Permission]] = {
        Role.TECHNICIAN: frozenset({Permission.TICKETS_READ, Permission.TICKETS_WRITE}),
        Role.PLANT_MANAGER: frozenset(
            {Permission.TICKETS_READ, Permission.TICKETS_WRITE, Permission.FORWARD_TO_COMPANY}
        ),
        Role.COMPANY_ADMIN: frozenset(
            {Permission.TICKETS_READ, Permission.TICKETS_WRITE, Permission.FORWARD_TO_SUPERADMIN}
        ),
        Role.SUPERADMIN: frozenset({Permission.TICKETS_READ, Permission.TICKETS_WRITE}),
    }

    def __init__(self, grants: Mapping[Role, Iterable[Permission]] | None = None) -> None:
        source = grants if grants is not None else self._DEFAULT_GRANTS
        self._grants = {role: frozenset(permissions) for role, permissions in source.items()}

    def has_permission(self, actor: Actor, permission: Permission) -> bool:
        return permission in self._grants.get(actor.role, frozenset())


class ActorRegistry:
    """In-memory token to actor map."""

    def __init__(self, entries: Iterable[tuple[str, Actor]] = ()) -> None:
        self._by_token: dict[str, Actor] = {}
        self._by_id: dict[str, Actor] = {}
        for token, actor in entries:
            self.register(token, actor)

    def register(self, token: str, actor: Actor) -> None:
        self._by_token[token] = actor
        self._by_id[actor.user_id] = actor

    def resolve_token(self, token: str) -> Actor | None:
        return self._by_token.get(token)

    def get(self, user_id: str) -> Actor | None:
        return self._by_id.get(user_id)

    def actors(self) -> list[Actor]:
        return list(self._by_id.values())

    @classmethod
    def from_yaml(cls, path: Path) -> ActorRegistry:
        """Load ``actors: [{token, user_id, role, tenant_id, plant_ids, display_name}]``."""

        with path.open("r", encoding="utf-8") as handle:
            document = yaml.safe_load(handle) or {}
        entries = [_parse_actor_entry(raw) for raw in document.get("actors", [])]
        return cls(entries)

    @classmethod
    def demo(cls) -> ActorRegistry:
        """Seed actors for local development."""

        return cls(
            [
                ("tech-token", Actor("tech-1", Role.TECHNICIAN, "acme", frozenset({"plant-1"}), "Tess Tech")),
                (
                    "manager-token",
                    Actor("manager-1", Role.PLANT_MANAGER, "acme", frozenset({"plant-1"}), "Mo Manager"),
                ),
                ("company-token", Actor("company-1", Role.COMPANY_ADMIN, "acme", frozenset(), "Cy Company")),
                ("superadmin-token", Actor("root-1", Role.SUPERADMIN, None, frozenset(), "Sam Superadmin")),
            ]
        )


def _parse_actor_entry(raw: Mapping[str, Any]) -> tuple[str, Actor]:
    try:
        token = str(raw["token"])
        actor = Actor(
            user_id=str(raw["user_id"]),
            role=Role(raw["role"]),
            tenant_id=raw.get("tenant_id"),
            plant_ids=frozenset(str(plant) for plant in raw.get("plant_ids") or ()),
            display_name=raw.get("display_name"),
        )
    except (KeyError, ValueError) as exc:
        raise ValueError(f"Invalid actor entry {dict(raw)!r}: {exc}") from exc
    return token, actor


class StaticActorDirectory:
    """Answer identity lookups from an :class:`ActorRegistry`."""

    def __init__(self, registry: ActorRegistry) -> None:
        self._registry = registry

    async def lookup(self, user_id: str) -> Actor | None:
        return self._registry.get(user_id)

    async def tier_members(self, level: TicketLevel, *, tenant_id: str, plant_id: str) -> list[str]:
        members: list[str] = []
        for actor in self._registry.actors():
            if level is TicketLevel.SUPERADMIN:
                matches = actor.role is Role.SUPERADMIN
            elif level is TicketLevel.COMPANY:
                matches = actor.role is Role.COMPANY_ADMIN and actor.tenant_id == tenant_id
            else:
                matches = (
                    actor.role is Role.PLANT_MANAGER
                    and actor.tenant_id == tenant_id
                    and plant_id in actor.plant_ids
                )
            if matches:
                members.append(actor.user_id)
        return sorted(members)
