"""Append-only ticket timeline.

Each builder returns the next ticket projection together with the records to
persist; nothing is written until the repository commits the whole mutation.
"""

from __future__ import annotations

import uuid
from dataclasses import replace
from datetime import datetime
from typing import Any, Mapping

from plantdesk.identity.actors import Actor

from .models import Attachment, Comment, Ticket, TimelineEvent, TimelineEventType

MAX_COMMENT_LENGTH = 10_000


def creation_event(ticket: Ticket, message: str | None = None) -> TimelineEvent:
    return TimelineEvent(
        id=str(uuid.uuid4()),
        ticket_id=ticket.id,
        sequence=ticket.version,
        event_type=TimelineEventType.CREATED,
        actor_id=ticket.created_by,
        message=message,
        created_at=ticket.created_at,
        metadata={"level": ticket.level.value, "priority": ticket.priority.value},
    )


class TimelineLog:
    """Build timeline entries that advance a ticket by exactly one version."""

    def append_event(
        self,
        ticket: Ticket,
        event_type: TimelineEventType,
        actor_id: str,
        *,
        at: datetime,
        message: str | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> tuple[Ticket, TimelineEvent]:
        advanced = replace(ticket, version=ticket.version + 1, last_activity_at=at)
        event = TimelineEvent(
            id=str(uuid.uuid4()),
            ticket_id=ticket.id,
            sequence=advanced.version,
            event_type=event_type,
            actor_id=actor_id,
            message=message,
            created_at=at,
            metadata=dict(metadata or {}),
        )
        return advanced, event

    def add_comment(
        self,
        ticket: Ticket,
        actor: Actor,
        body: str,
        *,
        at: datetime,
        is_internal: bool = False,
    ) -> tuple[Ticket, Comment, TimelineEvent]:
        """Record a comment; the first one from a tier above the creator stops the response clock."""

        comment = Comment(
            id=str(uuid.uuid4()),
            ticket_id=ticket.id,
            author_id=actor.user_id,
            body=body,
            is_internal=is_internal,
            created_at=at,
        )
        if (
            ticket.first_response_at is None
            and ticket.resolved_at is None
            and actor.tier.rank > ticket.creator_tier.rank
        ):
            ticket = replace(ticket, first_response_at=at)
        advanced, event = self.append_event(
            ticket,
            TimelineEventType.COMMENTED,
            actor.user_id,
            at=at,
            metadata={"comment_id": comment.id, "is_internal": is_internal},
        )
        return advanced, comment, event

    def add_attachment(
        self,
        ticket: Ticket,
        actor_id: str,
        *,
        url: str,
        file_name: str,
        size_bytes: int,
        content_type: str | None,
        at: datetime,
    ) -> tuple[Ticket, Attachment, TimelineEvent]:
        attachment = Attachment(
            id=str(uuid.uuid4()),
            ticket_id=ticket.id,
            uploaded_by=actor_id,
            file_name=file_name,
            url=url,
            size_bytes=size_bytes,
            content_type=content_type,
            created_at=at,
        )
        advanced, event = self.append_event(
            ticket,
            TimelineEventType.ATTACHMENT_ADDED,
            actor_id,
            at=at,
            message=file_name,
            metadata={"attachment_id": attachment.id, "size_bytes": size_bytes},
        )
        return advanced, attachment, event
