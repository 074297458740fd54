from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Sequence

# Fixed namespace so the same event/recipient pair always yields the same entry id.
_NOTIFICATION_NAMESPACE = uuid.UUID("6f1d3c52-5a7e-4f0b-9a51-2f8c1e4b7d90")


class NotificationLevel(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class NotificationEvent:
    """Descriptor handed to the fanout for one timeline event."""

    event_id: str
    ticket_id: str
    event_type: str
    title: str
    message: str
    level: NotificationLevel
    created_at: datetime


@dataclass(slots=True)
class InboxEntry:
    id: str
    recipient_id: str
    ticket_id: str
    event_id: str
    event_type: str
    title: str
    message: str
    level: NotificationLevel
    read: bool
    created_at: datetime
    read_at: datetime | None = None

    def to_payload(self) -> dict[str, Any]:
        """Realtime message body; mirrors the inbox representation."""

        return {
            "type": "notification",
            "id": self.id,
            "ticket_id": self.ticket_id,
            "event_id": self.event_id,
            "event_type": self.event_type,
            "title": self.title,
            "message": self.message,
            "level": self.level.value,
            "read": self.read,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(slots=True)
class InboxPage:
    items: Sequence[InboxEntry]
    unread_count: int


def notification_id(event_id: str, recipient_id: str) -> str:
    return str(uuid.uuid5(_NOTIFICATION_NAMESPACE, f"{event_id}:{recipient_id}"))


def build_entries(event: NotificationEvent, recipients: Sequence[str]) -> list[InboxEntry]:
    """One unread entry per distinct recipient, in first-seen order."""

    entries: list[InboxEntry] = []
    seen: set[str] = set()
    for recipient in recipients:
        if recipient in seen:
            continue
        seen.add(recipient)
        entries.append(
            InboxEntry(
                id=notification_id(event.event_id, recipient),
                recipient_id=recipient,
                ticket_id=event.ticket_id,
                event_id=event.event_id,
                event_type=event.event_type,
                title=event.title,
                message=event.message,
                level=event.level,
                read=False,
                created_at=event.created_at,
            )
        )
    return entries
