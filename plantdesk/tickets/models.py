from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Sequence

from .state import TicketStatus


class TicketLevel(str, Enum):
    """Organisational tier currently owning a ticket, lowest first."""

    PLANT = "plant"
    COMPANY = "company"
    SUPERADMIN = "superadmin"

    @property
    def rank(self) -> int:
        return _LEVEL_ORDER.index(self)

    def next(self) -> TicketLevel | None:
        index = self.rank + 1
        if index >= len(_LEVEL_ORDER):
            return None
        return _LEVEL_ORDER[index]


_LEVEL_ORDER: tuple[TicketLevel, ...] = (TicketLevel.PLANT, TicketLevel.COMPANY, TicketLevel.SUPERADMIN)


class TicketPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class TimelineEventType(str, Enum):
    CREATED = "created"
    COMMENTED = "commented"
    STATUS_CHANGED = "status_changed"
    FORWARDED_TO_COMPANY = "forwarded_to_company"
    FORWARDED_TO_SUPERADMIN = "forwarded_to_superadmin"
    UPDATED = "updated"
    ATTACHMENT_ADDED = "attachment_added"

    @classmethod
    def forwarded_to(cls, level: TicketLevel) -> TimelineEventType:
        if level is TicketLevel.COMPANY:
            return cls.FORWARDED_TO_COMPANY
        if level is TicketLevel.SUPERADMIN:
            return cls.FORWARDED_TO_SUPERADMIN
        raise ValueError(f"No forwarding event targets level {level.value!r}")


@dataclass(slots=True)
class Ticket:
    """Current projection of a ticket; the timeline records how it got here."""

    id: str
    tenant_id: str
    plant_id: str
    title: str
    description: str
    is_general: bool
    level: TicketLevel
    status: TicketStatus
    priority: TicketPriority
    tags: list[str]
    created_by: str
    creator_tier: TicketLevel
    created_at: datetime
    last_activity_at: datetime
    sla_response_deadline: datetime
    sla_resolution_deadline: datetime
    first_response_at: datetime | None = None
    resolved_at: datetime | None = None
    closed_at: datetime | None = None
    forwarded_by: str | None = None
    forwarded_at: datetime | None = None
    forward_note: str | None = None
    version: int = 1


@dataclass(slots=True)
class TimelineEvent:
    id: str
    ticket_id: str
    sequence: int
    event_type: TimelineEventType
    actor_id: str
    message: str | None
    created_at: datetime
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class Comment:
    id: str
    ticket_id: str
    author_id: str
    body: str
    is_internal: bool
    created_at: datetime


@dataclass(slots=True)
class Attachment:
    id: str
    ticket_id: str
    uploaded_by: str
    file_name: str
    url: str
    size_bytes: int
    content_type: str | None
    created_at: datetime


@dataclass(slots=True)
class TicketAggregate:
    """Ticket bundled with the timeline entries visible to the caller."""

    ticket: Ticket
    comments: Sequence[Comment]
    events: Sequence[TimelineEvent]


def normalize_tags(tags: Sequence[str] | None) -> list[str]:
    """Collapse tags into a sorted set of trimmed, non-empty strings."""

    return sorted({tag.strip() for tag in tags or () if tag and tag.strip()})
