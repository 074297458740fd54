from __future__ import annotations

from datetime import datetime
from dataclasses import replace
from enum import Enum
from typing import TYPE_CHECKING

from plantdesk.core.errors import InvalidTransitionError, TicketAlreadyInStateError

if TYPE_CHECKING:
    from .models import Ticket


class TicketStatus(str, Enum):
    """Supported states for a ticket's lifecycle."""

    OPEN = "open"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CLOSED = "closed"


class TicketStateMachine:
    """Validate status transitions and stamp their set-once timestamps."""

    _TRANSITIONS: dict[TicketStatus, set[TicketStatus]] = {
        TicketStatus.OPEN: {TicketStatus.IN_PROGRESS},
        TicketStatus.IN_PROGRESS: {TicketStatus.RESOLVED},
        TicketStatus.RESOLVED: {TicketStatus.CLOSED, TicketStatus.IN_PROGRESS},
        TicketStatus.CLOSED: set(),
    }

    @classmethod
    def initial_state(cls) -> TicketStatus:
        return TicketStatus.OPEN

    @classmethod
    def can_transition(cls, current: TicketStatus, new: TicketStatus) -> bool:
        return new in cls._TRANSITIONS.get(current, set())

    @classmethod
    def assert_transition(cls, current: TicketStatus, new: TicketStatus) -> None:
        if current == new:
            raise TicketAlreadyInStateError(f"Ticket is already {current.value}")
        if not cls.can_transition(current, new):
            raise InvalidTransitionError(f"Invalid ticket status transition: {current.value} -> {new.value}")

    @classmethod
    def apply(cls, ticket: Ticket, new: TicketStatus, at: datetime) -> Ticket:
        """Return a copy of ``ticket`` moved to ``new``; the input is left untouched."""

        cls.assert_transition(ticket.status, new)
        changes: dict[str, object] = {"status": new}
        if new is TicketStatus.RESOLVED and ticket.resolved_at is None:
            changes["resolved_at"] = at
        if new is TicketStatus.CLOSED and ticket.closed_at is None:
            changes["closed_at"] = at
        return replace(ticket, **changes)
