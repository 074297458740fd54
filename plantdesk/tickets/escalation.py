from __future__ import annotations

from dataclasses import replace
from datetime import datetime

from plantdesk.core.errors import InvalidTransitionError, TicketForbiddenError
from plantdesk.identity.actors import Actor, Permission, PermissionChecker

from .models import Ticket, TicketLevel, TimelineEvent, TimelineEventType
from .timeline import TimelineLog

# Capability required to move a ticket out of the keyed level.
FORWARD_PERMISSIONS: dict[TicketLevel, Permission] = {
    TicketLevel.PLANT: Permission.FORWARD_TO_COMPANY,
    TicketLevel.COMPANY: Permission.FORWARD_TO_SUPERADMIN,
}


class EscalationEngine:
    """Move tickets one tier up: plant -> company -> superadmin, never back."""

    def __init__(self, permissions: PermissionChecker, timeline: TimelineLog | None = None) -> None:
        self._permissions = permissions
        self._timeline = timeline or TimelineLog()

    @staticmethod
    def initial_level(is_general: bool) -> TicketLevel:
        return TicketLevel.SUPERADMIN if is_general else TicketLevel.PLANT

    @staticmethod
    def target_level(ticket: Ticket) -> TicketLevel:
        if ticket.is_general:
            raise InvalidTransitionError("General tickets are already at the top tier")
        target = ticket.level.next()
        if target is None:
            raise InvalidTransitionError(f"Ticket cannot be forwarded beyond {ticket.level.value}")
        return target

    def authorize(self, actor: Actor, ticket: Ticket) -> TicketLevel:
        target = self.target_level(ticket)
        permission = FORWARD_PERMISSIONS[ticket.level]
        if not self._permissions.has_permission(actor, permission):
            raise TicketForbiddenError(f"Forwarding from {ticket.level.value} requires {permission.value}")
        return target

    def forward(
        self,
        ticket: Ticket,
        actor: Actor,
        *,
        at: datetime,
        note: str | None = None,
    ) -> tuple[Ticket, TimelineEvent]:
        target = self.authorize(actor, ticket)
        escalated = replace(
            ticket,
            level=target,
            forwarded_by=actor.user_id,
            forwarded_at=at,
            forward_note=note,
        )
        return self._timeline.append_event(
            escalated,
            TimelineEventType.forwarded_to(target),
            actor.user_id,
            at=at,
            message=note,
            metadata={"from_level": ticket.level.value, "to_level": target.value},
        )
