from __future__ import annotations

import pytest

from plantdesk.identity.actors import (
    ActorRegistry,
    Permission,
    Role,
    RolePermissionChecker,
    StaticActorDirectory,
)
from plantdesk.tickets.models import TicketLevel


def test_role_permissions(actors):
    checker = RolePermissionChecker()

    assert checker.has_permission(actors["manager"], Permission.FORWARD_TO_COMPANY)
    assert not checker.has_permission(actors["manager"], Permission.FORWARD_TO_SUPERADMIN)
    assert checker.has_permission(actors["company"], Permission.FORWARD_TO_SUPERADMIN)
    assert not checker.has_permission(actors["tech"], Permission.FORWARD_TO_COMPANY)
    assert checker.has_permission(actors["tech"], Permission.TICKETS_WRITE)


def test_custom_grants_override_defaults(actors):
    checker = RolePermissionChecker({Role.TECHNICIAN: [Permission.TICKETS_READ]})

    assert checker.has_permission(actors["tech"], Permission.TICKETS_READ)
    assert not checker.has_permission(actors["tech"], Permission.TICKETS_WRITE)
    assert not checker.has_permission(actors["manager"], Permission.TICKETS_READ)


def test_registry_loads_yaml(tmp_path):
    path = tmp_path / "actors.yaml"
    path.write_text(
        "actors:\n"
        "  - token: abc\n"
        "    user_id: u-1\n"
        "    role: plant_manager\n"
        "    tenant_id: acme\n"
        "    plant_ids: [p-1, p-2]\n",
        encoding="utf-8",
    )

    registry = ActorRegistry.from_yaml(path)
    actor = registry.resolve_token("abc")

    assert actor is not None
    assert actor.role is Role.PLANT_MANAGER
    assert actor.plant_ids == frozenset({"p-1", "p-2"})
    assert actor.tier is TicketLevel.PLANT
    assert registry.resolve_token("nope") is None


def test_registry_rejects_unknown_role(tmp_path):
    path = tmp_path / "actors.yaml"
    path.write_text("actors:\n  - token: abc\n    user_id: u-1\n    role: janitor\n", encoding="utf-8")

    with pytest.raises(ValueError, match="Invalid actor entry"):
        ActorRegistry.from_yaml(path)


@pytest.mark.asyncio
async def test_directory_tier_members(actor_registry):
    directory = StaticActorDirectory(actor_registry)

    plant = await directory.tier_members(TicketLevel.PLANT, tenant_id="acme", plant_id="plant-1")
    company = await directory.tier_members(TicketLevel.COMPANY, tenant_id="acme", plant_id="plant-1")
    top = await directory.tier_members(TicketLevel.SUPERADMIN, tenant_id="acme", plant_id="plant-1")

    assert plant == ["manager-1"]
    assert company == ["company-1"]
    assert top == ["root-1"]
    assert (await directory.lookup("tech-1")).role is Role.TECHNICIAN
    assert await directory.lookup("ghost") is None
