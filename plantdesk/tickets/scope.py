"""Tier-scoped visibility of tickets."""

from __future__ import annotations

from dataclasses import dataclass

from plantdesk.identity.actors import Actor, Role

from .models import Ticket, TicketLevel


@dataclass(frozen=True, slots=True)
class TicketScope:
    """What a single actor may see and touch.

    * superadmins see every ticket;
    * company admins see their tenant's tickets at ``company`` level or below;
    * plant managers see ``plant``-level tickets of their plants;
    * anyone inside the tenant keeps seeing tickets they participate in
      (created, forwarded or commented on).
    """

    user_id: str
    tier: TicketLevel
    tenant_id: str | None
    plant_ids: frozenset[str]
    sees_plant_queue: bool

    @classmethod
    def for_actor(cls, actor: Actor) -> TicketScope:
        return cls(
            user_id=actor.user_id,
            tier=actor.tier,
            tenant_id=actor.tenant_id,
            plant_ids=actor.plant_ids,
            sees_plant_queue=actor.role is Role.PLANT_MANAGER,
        )

    @property
    def unrestricted(self) -> bool:
        return self.tier is TicketLevel.SUPERADMIN

    @property
    def sees_internal_comments(self) -> bool:
        return self.tier.rank >= TicketLevel.COMPANY.rank

    def covers_queue(self, ticket: Ticket) -> bool:
        """True when the ticket sits in a queue this tier watches, participation aside."""

        if self.unrestricted:
            return True
        if ticket.tenant_id != self.tenant_id:
            return False
        if self.tier is TicketLevel.COMPANY:
            return ticket.level.rank <= TicketLevel.COMPANY.rank
        return self.sees_plant_queue and ticket.level is TicketLevel.PLANT and ticket.plant_id in self.plant_ids

    def can_view(self, ticket: Ticket, *, participant: bool) -> bool:
        if self.covers_queue(ticket):
            return True
        return participant and ticket.tenant_id == self.tenant_id

    def can_act_at_level(self, ticket: Ticket) -> bool:
        """Status and field changes belong to the tier holding the ticket or above."""

        return self.tier.rank >= ticket.level.rank
