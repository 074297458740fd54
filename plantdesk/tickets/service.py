"""Ticket engine: creation, comments, attachments, status changes and escalation."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Sequence

from plantdesk.core.errors import (
    InvalidTransitionError,
    TicketEngineError,
    TicketForbiddenError,
    TicketNotFoundError,
    TicketValidationError,
)
from plantdesk.core.logging import get_tracer
from plantdesk.identity.actors import Actor, ActorDirectory, Permission, PermissionChecker
from plantdesk.metrics import MetricsRegistry, metrics_registry
from plantdesk.metrics.definitions import (
    TICKET_MUTATIONS,
    TICKET_OPERATION_SECONDS,
    TICKET_REJECTIONS,
    TICKETS_CREATED,
)
from plantdesk.notifications.fanout import NotificationFanout
from plantdesk.notifications.models import InboxEntry, NotificationEvent, NotificationLevel, build_entries
from plantdesk.storage.blob import BlobStore

from .escalation import EscalationEngine
from .locks import TicketLockRegistry
from .models import (
    Attachment,
    Comment,
    Ticket,
    TicketAggregate,
    TicketLevel,
    TicketPriority,
    TimelineEvent,
    TimelineEventType,
    normalize_tags,
)
from .repository import TicketRepository
from .scope import TicketScope
from .sla import PriorityChangePolicy, SLAPolicy, TicketSLAStatus, evaluate_ticket
from .state import TicketStateMachine, TicketStatus
from .timeline import MAX_COMMENT_LENGTH, TimelineLog, creation_event

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 255
MAX_FORWARD_NOTE_LENGTH = 2_000
MAX_SCOPE_ID_LENGTH = 64
MAX_FILE_NAME_LENGTH = 255
MAX_CONTENT_TYPE_LENGTH = 255
MAX_URL_LENGTH = 1024
MAX_NOTIFICATION_TITLE_LENGTH = 255
_PREVIEW_LENGTH = 200


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _preview(text: str, limit: int = _PREVIEW_LENGTH) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 3].rstrip() + "..."


class TicketService:
    """High level orchestration of the ticket lifecycle.

    Mutations on one ticket run under its lock, are checked against the
    caller's scope and the relevant state machine, and commit the ticket row,
    exactly one timeline event and the inbox entries of the notify-set
    together. Realtime pushes are scheduled after the commit.
    """

    def __init__(
        self,
        repository: TicketRepository,
        *,
        fanout: NotificationFanout,
        directory: ActorDirectory,
        permissions: PermissionChecker,
        blob_store: BlobStore | None = None,
        sla_policy: SLAPolicy | None = None,
        priority_change_policy: PriorityChangePolicy = PriorityChangePolicy.PRESERVE,
        sla_warning_threshold_percent: float = 15.0,
        locks: TicketLockRegistry | None = None,
        state_machine: TicketStateMachine | None = None,
        timeline: TimelineLog | None = None,
        page_limit_default: int = 50,
        page_limit_max: int = 200,
        max_attachment_bytes: int = 25 * 1024 * 1024,
        clock: Callable[[], datetime] = _utcnow,
        metrics: MetricsRegistry | None = None,
    ) -> None:
        self._repository = repository
        self._fanout = fanout
        self._directory = directory
        self._permissions = permissions
        self._blob_store = blob_store
        self._sla_policy = sla_policy or SLAPolicy()
        self._priority_change_policy = priority_change_policy
        self._sla_warning_threshold = sla_warning_threshold_percent
        self._locks = locks or TicketLockRegistry()
        self._state_machine = state_machine or TicketStateMachine()
        self._timeline = timeline or TimelineLog()
        self._escalation = EscalationEngine(permissions, self._timeline)
        self._page_limit_default = page_limit_default
        self._page_limit_max = page_limit_max
        self._max_attachment_bytes = max_attachment_bytes
        self._clock = clock
        self._metrics = metrics or metrics_registry
        self._tracer = get_tracer(__name__)

    async def create_ticket(
        self,
        actor: Actor,
        *,
        plant_id: str,
        title: str,
        description: str = "",
        is_general: bool = False,
        priority: TicketPriority = TicketPriority.MEDIUM,
        tags: Sequence[str] | None = None,
        tenant_id: str | None = None,
    ) -> Ticket:
        with self._operation("create"):
            self._require(actor, Permission.TICKETS_WRITE)
            title = self._clean_title(title)
            plant_id = (plant_id or "").strip()
            if not plant_id:
                raise TicketValidationError("plant_id is required")
            if len(plant_id) > MAX_SCOPE_ID_LENGTH:
                raise TicketValidationError(f"plant_id exceeds {MAX_SCOPE_ID_LENGTH} characters")
            tenant = self._resolve_tenant(actor, tenant_id)
            if actor.tier is TicketLevel.PLANT and plant_id not in actor.plant_ids:
                raise TicketForbiddenError(f"Actor cannot open tickets for plant '{plant_id}'")

            now = self._clock()
            deadlines = self._sla_policy.compute_deadlines(priority, now)
            ticket = Ticket(
                id=str(uuid.uuid4()),
                tenant_id=tenant,
                plant_id=plant_id,
                title=title,
                description=(description or "").strip(),
                is_general=is_general,
                level=self._escalation.initial_level(is_general),
                status=self._state_machine.initial_state(),
                priority=priority,
                tags=normalize_tags(tags),
                created_by=actor.user_id,
                creator_tier=actor.tier,
                created_at=now,
                last_activity_at=now,
                sla_response_deadline=deadlines.response_deadline,
                sla_resolution_deadline=deadlines.resolution_deadline,
            )
            event = creation_event(
                ticket, "General ticket sent directly to superadmin" if is_general else "Ticket created"
            )
            recipients = await self._level_recipients(ticket, {actor.user_id}, actor)
            notification = self._notification(
                ticket,
                event,
                title="New general ticket" if is_general else "New ticket",
                message=f"{ticket.title} ({ticket.priority.value})",
                level=NotificationLevel.WARNING if priority is TicketPriority.CRITICAL else NotificationLevel.INFO,
            )
            stored = await self._repository.create_ticket(ticket, event, build_entries(notification, recipients))
            self._metrics.counter(TICKETS_CREATED, label_names=("level", "priority")).inc(
                labels={"level": ticket.level.value, "priority": ticket.priority.value}
            )
            self._after_commit("create", stored)
            logger.info("Ticket %s created by %s at level %s", ticket.id, actor.user_id, ticket.level.value)
            return ticket

    async def get_ticket(self, actor: Actor, ticket_id: str) -> TicketAggregate:
        with self._operation("get", ticket_id=ticket_id):
            self._require(actor, Permission.TICKETS_READ)
            ticket, _ = await self._load_visible(actor, ticket_id)
            scope = TicketScope.for_actor(actor)
            comments = await self._repository.list_comments(
                ticket_id, include_internal=scope.sees_internal_comments
            )
            events = await self._repository.list_events(ticket_id)
            if not scope.sees_internal_comments:
                events = [event for event in events if not event.metadata.get("is_internal")]
            return TicketAggregate(ticket=ticket, comments=comments, events=events)

    async def list_tickets(
        self,
        actor: Actor,
        *,
        query: str | None = None,
        status: TicketStatus | None = None,
        level: TicketLevel | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Ticket]:
        """Return one page ordered by latest activity; a full page means more may follow."""

        with self._operation("list"):
            self._require(actor, Permission.TICKETS_READ)
            if limit is None:
                limit = self._page_limit_default
            if limit < 1 or offset < 0:
                raise TicketValidationError("limit must be positive and offset non-negative")
            return await self._repository.list_tickets(
                TicketScope.for_actor(actor),
                query=(query or "").strip() or None,
                status=status,
                level=level,
                limit=min(limit, self._page_limit_max),
                offset=offset,
            )

    async def update_ticket(
        self,
        actor: Actor,
        ticket_id: str,
        *,
        title: str | None = None,
        description: str | None = None,
        priority: TicketPriority | None = None,
        tags: Sequence[str] | None = None,
    ) -> Ticket:
        with self._operation("update", ticket_id=ticket_id):
            if title is None and description is None and priority is None and tags is None:
                raise TicketValidationError("No fields to update")
            async with self._locks.hold(ticket_id):
                ticket, _ = await self._load_writable(actor, ticket_id)
                if ticket.status is TicketStatus.CLOSED:
                    raise InvalidTransitionError("Closed tickets cannot be edited")

                changes: dict[str, object] = {}
                if title is not None and self._clean_title(title) != ticket.title:
                    changes["title"] = self._clean_title(title)
                if description is not None and description.strip() != ticket.description:
                    changes["description"] = description.strip()
                if tags is not None and normalize_tags(tags) != ticket.tags:
                    changes["tags"] = normalize_tags(tags)
                if priority is not None and priority is not ticket.priority:
                    changes["priority"] = priority
                    if self._priority_change_policy is PriorityChangePolicy.RECOMPUTE:
                        deadlines = self._sla_policy.compute_deadlines(priority, ticket.created_at)
                        changes["sla_response_deadline"] = deadlines.response_deadline
                        changes["sla_resolution_deadline"] = deadlines.resolution_deadline
                if not changes:
                    return ticket

                now = self._clock()
                fields = sorted(name for name in changes if not name.startswith("sla_"))
                metadata: dict[str, object] = {
                    name: (value.value if isinstance(value, TicketPriority) else value)
                    for name, value in changes.items()
                    if name in {"title", "priority", "tags"}
                }
                if "description" in changes:
                    metadata["description_changed"] = True
                if "sla_response_deadline" in changes:
                    metadata["sla_recomputed"] = True
                updated, event = self._timeline.append_event(
                    replace(ticket, **changes),
                    TimelineEventType.UPDATED,
                    actor.user_id,
                    at=now,
                    message=f"Updated {', '.join(fields)}",
                    metadata=metadata,
                )
                await self._commit("update", ticket, updated, event)
                return updated

    async def add_comment(
        self,
        actor: Actor,
        ticket_id: str,
        body: str,
        *,
        is_internal: bool = False,
    ) -> Comment:
        with self._operation("comment", ticket_id=ticket_id):
            self._require(actor, Permission.TICKETS_WRITE)
            body = (body or "").strip()
            if not body:
                raise TicketValidationError("Comment body cannot be empty")
            if len(body) > MAX_COMMENT_LENGTH:
                raise TicketValidationError(f"Comment body exceeds {MAX_COMMENT_LENGTH} characters")
            async with self._locks.hold(ticket_id):
                ticket, participants = await self._load_visible(actor, ticket_id)
                if is_internal and not TicketScope.for_actor(actor).sees_internal_comments:
                    raise TicketForbiddenError("Only company staff can write internal comments")

                updated, comment, event = self._timeline.add_comment(
                    ticket, actor, body, at=self._clock(), is_internal=is_internal
                )
                recipients = await self._level_recipients(
                    updated, participants | {actor.user_id}, actor, internal_only=is_internal
                )
                notification = self._notification(
                    updated,
                    event,
                    title=f"New comment on {updated.title}",
                    message=_preview(body),
                    level=NotificationLevel.INFO,
                )
                await self._commit(
                    "comment", ticket, updated, event, comment=comment, notification=notification, recipients=recipients
                )
                return comment

    async def attach_file(
        self,
        actor: Actor,
        ticket_id: str,
        *,
        file_name: str,
        content: bytes,
        content_type: str | None = None,
    ) -> Attachment:
        """Upload ``content`` to the blob store and record it on the ticket."""

        if self._blob_store is None:
            raise RuntimeError("No blob store configured for attachments")
        file_name = (file_name or "").strip()
        self._check_attachment_fields(file_name, content_type)
        if not content:
            raise TicketValidationError("Attachment is empty")
        if len(content) > self._max_attachment_bytes:
            raise TicketValidationError(f"Attachment exceeds {self._max_attachment_bytes} bytes")
        self._require(actor, Permission.TICKETS_WRITE)
        await self._load_visible(actor, ticket_id)

        url = await self._blob_store.put(file_name, content, content_type)
        try:
            return await self.add_attachment(
                actor,
                ticket_id,
                url=url,
                file_name=file_name,
                size_bytes=len(content),
                content_type=content_type,
            )
        except Exception:
            if not await self._blob_store.delete(url):
                logger.warning("Orphaned attachment blob %s for ticket %s", url, ticket_id)
            raise

    async def add_attachment(
        self,
        actor: Actor,
        ticket_id: str,
        *,
        url: str,
        file_name: str,
        size_bytes: int,
        content_type: str | None = None,
    ) -> Attachment:
        with self._operation("attachment", ticket_id=ticket_id):
            self._require(actor, Permission.TICKETS_WRITE)
            if not url:
                raise TicketValidationError("Attachment url is required")
            if len(url) > MAX_URL_LENGTH:
                raise TicketValidationError(f"Attachment url exceeds {MAX_URL_LENGTH} characters")
            self._check_attachment_fields(file_name, content_type)
            if size_bytes < 0:
                raise TicketValidationError("Attachment size cannot be negative")
            async with self._locks.hold(ticket_id):
                ticket, _ = await self._load_visible(actor, ticket_id)
                updated, attachment, event = self._timeline.add_attachment(
                    ticket,
                    actor.user_id,
                    url=url,
                    file_name=file_name,
                    size_bytes=size_bytes,
                    content_type=content_type,
                    at=self._clock(),
                )
                await self._commit("attachment", ticket, updated, event, attachment=attachment)
                return attachment

    async def list_attachments(self, actor: Actor, ticket_id: str) -> list[Attachment]:
        self._require(actor, Permission.TICKETS_READ)
        await self._load_visible(actor, ticket_id)
        return await self._repository.list_attachments(ticket_id)

    async def set_status(self, actor: Actor, ticket_id: str, next_status: TicketStatus) -> Ticket:
        with self._operation("set_status", ticket_id=ticket_id):
            async with self._locks.hold(ticket_id):
                ticket, participants = await self._load_writable(actor, ticket_id)
                now = self._clock()
                moved = self._state_machine.apply(ticket, next_status, now)
                updated, event = self._timeline.append_event(
                    moved,
                    TimelineEventType.STATUS_CHANGED,
                    actor.user_id,
                    at=now,
                    message=f"{ticket.status.value} -> {next_status.value}",
                    metadata={"from_status": ticket.status.value, "to_status": next_status.value},
                )
                recipients = await self._level_recipients(updated, participants, actor)
                done = next_status in (TicketStatus.RESOLVED, TicketStatus.CLOSED)
                notification = self._notification(
                    updated,
                    event,
                    title=f"Ticket {next_status.value.replace('_', ' ')}",
                    message=f"{updated.title}: {ticket.status.value} -> {next_status.value}",
                    level=NotificationLevel.SUCCESS if done else NotificationLevel.INFO,
                )
                await self._commit(
                    "set_status", ticket, updated, event, notification=notification, recipients=recipients
                )
                return updated

    async def forward(self, actor: Actor, ticket_id: str, *, note: str | None = None) -> Ticket:
        with self._operation("forward", ticket_id=ticket_id):
            note = (note or "").strip() or None
            if note is not None and len(note) > MAX_FORWARD_NOTE_LENGTH:
                raise TicketValidationError(f"Forward note exceeds {MAX_FORWARD_NOTE_LENGTH} characters")
            async with self._locks.hold(ticket_id):
                ticket, _ = await self._load_visible(actor, ticket_id)
                self._escalation.authorize(actor, ticket)
                if not TicketScope.for_actor(actor).can_act_at_level(ticket):
                    raise TicketForbiddenError("Actor does not hold this ticket's tier")

                updated, event = self._escalation.forward(ticket, actor, at=self._clock(), note=note)
                members = await self._directory.tier_members(
                    updated.level, tenant_id=updated.tenant_id, plant_id=updated.plant_id
                )
                recipients = [member for member in members if member != actor.user_id]
                message = updated.title if note is None else f"{updated.title}: {_preview(note)}"
                notification = self._notification(
                    updated,
                    event,
                    title=f"Ticket escalated to {updated.level.value}",
                    message=message,
                    level=NotificationLevel.WARNING,
                )
                await self._commit("forward", ticket, updated, event, notification=notification, recipients=recipients)
                logger.info(
                    "Ticket %s forwarded %s -> %s by %s",
                    ticket.id,
                    ticket.level.value,
                    updated.level.value,
                    actor.user_id,
                )
                return updated

    def sla_status(self, ticket: Ticket) -> TicketSLAStatus:
        return evaluate_ticket(ticket, self._clock(), warning_threshold_percent=self._sla_warning_threshold)

    async def _load_visible(self, actor: Actor, ticket_id: str) -> tuple[Ticket, set[str]]:
        ticket = await self._repository.get_ticket(ticket_id)
        if ticket is None:
            raise TicketNotFoundError(ticket_id)
        participants = await self._repository.get_participants(ticket_id)
        if not TicketScope.for_actor(actor).can_view(ticket, participant=actor.user_id in participants):
            raise TicketNotFoundError(ticket_id)
        return ticket, participants

    async def _load_writable(self, actor: Actor, ticket_id: str) -> tuple[Ticket, set[str]]:
        self._require(actor, Permission.TICKETS_WRITE)
        ticket, participants = await self._load_visible(actor, ticket_id)
        if not TicketScope.for_actor(actor).can_act_at_level(ticket):
            raise TicketForbiddenError(f"Ticket is held at {ticket.level.value} level")
        return ticket, participants

    def _require(self, actor: Actor, permission: Permission) -> None:
        if not self._permissions.has_permission(actor, permission):
            raise TicketForbiddenError(f"Missing permission {permission.value}")

    @staticmethod
    def _clean_title(title: str | None) -> str:
        cleaned = (title or "").strip()
        if not cleaned:
            raise TicketValidationError("Title cannot be empty")
        if len(cleaned) > MAX_TITLE_LENGTH:
            raise TicketValidationError(f"Title exceeds {MAX_TITLE_LENGTH} characters")
        return cleaned

    @staticmethod
    def _check_attachment_fields(file_name: str, content_type: str | None) -> None:
        if not file_name:
            raise TicketValidationError("Attachment file name is required")
        if len(file_name) > MAX_FILE_NAME_LENGTH:
            raise TicketValidationError(f"Attachment file name exceeds {MAX_FILE_NAME_LENGTH} characters")
        if content_type is not None and len(content_type) > MAX_CONTENT_TYPE_LENGTH:
            raise TicketValidationError(f"Content type exceeds {MAX_CONTENT_TYPE_LENGTH} characters")

    @staticmethod
    def _resolve_tenant(actor: Actor, tenant_id: str | None) -> str:
        if actor.tier is TicketLevel.SUPERADMIN:
            tenant = (tenant_id or "").strip() or actor.tenant_id
            if not tenant:
                raise TicketValidationError("tenant_id is required")
            if len(tenant) > MAX_SCOPE_ID_LENGTH:
                raise TicketValidationError(f"tenant_id exceeds {MAX_SCOPE_ID_LENGTH} characters")
            return tenant
        if tenant_id is not None and tenant_id != actor.tenant_id:
            raise TicketForbiddenError("Actor cannot open tickets for another tenant")
        if not actor.tenant_id:
            raise TicketValidationError("Actor has no tenant")
        return actor.tenant_id

    async def _level_recipients(
        self,
        ticket: Ticket,
        participants: set[str],
        actor: Actor,
        *,
        internal_only: bool = False,
    ) -> list[str]:
        """Members of the ticket's current tier plus participants, minus the acting user."""

        members = await self._directory.tier_members(
            ticket.level, tenant_id=ticket.tenant_id, plant_id=ticket.plant_id
        )
        recipients: list[str] = []
        for user_id in dict.fromkeys([*members, *sorted(participants)]):
            if user_id == actor.user_id:
                continue
            if internal_only:
                member = await self._directory.lookup(user_id)
                if member is None or not TicketScope.for_actor(member).sees_internal_comments:
                    continue
            recipients.append(user_id)
        return recipients

    @staticmethod
    def _notification(
        ticket: Ticket,
        event: TimelineEvent,
        *,
        title: str,
        message: str,
        level: NotificationLevel,
    ) -> NotificationEvent:
        return NotificationEvent(
            event_id=event.id,
            ticket_id=ticket.id,
            event_type=event.event_type.value,
            title=_preview(title, MAX_NOTIFICATION_TITLE_LENGTH),
            message=message,
            level=level,
            created_at=event.created_at,
        )

    async def _commit(
        self,
        operation: str,
        before: Ticket,
        after: Ticket,
        event: TimelineEvent,
        *,
        comment: Comment | None = None,
        attachment: Attachment | None = None,
        notification: NotificationEvent | None = None,
        recipients: Sequence[str] = (),
    ) -> None:
        entries = build_entries(notification, recipients) if notification is not None else []
        stored = await self._repository.commit_mutation(
            after,
            expected_version=before.version,
            event=event,
            comment=comment,
            attachment=attachment,
            inbox_entries=entries,
        )
        self._after_commit(operation, stored)

    def _after_commit(self, operation: str, stored: Sequence[InboxEntry]) -> None:
        self._metrics.counter(TICKET_MUTATIONS, label_names=("operation",)).inc(labels={"operation": operation})
        self._fanout.record_stored(stored)
        self._fanout.publish(stored)

    @contextmanager
    def _operation(self, name: str, **attributes: str) -> Iterator[None]:
        with self._tracer.start_as_current_span(f"tickets.{name}") as span:
            for key, value in attributes.items():
                span.set_attribute(f"ticket.{key}", value)
            with self._metrics.timed(TICKET_OPERATION_SECONDS, labels={"operation": name}):
                try:
                    yield
                except TicketEngineError as exc:
                    self._metrics.counter(TICKET_REJECTIONS, label_names=("operation", "code")).inc(
                        labels={"operation": name, "code": exc.code}
                    )
                    span.set_attribute("ticket.rejected", exc.code)
                    raise
