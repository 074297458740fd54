"""Persistence helper wrapping tickets and their timeline tables."""

from __future__ import annotations

from typing import Sequence

from sqlalchemy import and_, false, or_, update
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlmodel import SQLModel, select

from plantdesk.core.errors import TicketConflictError
from plantdesk.db.models import (
    TicketAttachmentTable,
    TicketCommentTable,
    TicketEventTable,
    TicketTable,
    ensure_optional_utc,
    ensure_utc,
)
from plantdesk.notifications.models import InboxEntry
from plantdesk.notifications.repository import stage_inbox_entries

from .models import (
    Attachment,
    Comment,
    Ticket,
    TicketLevel,
    TicketPriority,
    TimelineEvent,
    TimelineEventType,
)
from .scope import TicketScope
from .state import TicketStatus

_FORWARD_EVENTS = (
    TimelineEventType.FORWARDED_TO_COMPANY.value,
    TimelineEventType.FORWARDED_TO_SUPERADMIN.value,
)


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class TicketRepository:
    """Store tickets, their timeline, comments and attachments.

    Every mutation goes through :meth:`create_ticket` or :meth:`commit_mutation`
    so the ticket row, its timeline event, any comment or attachment and the
    resulting inbox entries land in a single transaction.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        engine: AsyncEngine | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._engine: AsyncEngine | None = engine

    async def ensure_schema(self) -> None:
        if self._engine is None:
            raise RuntimeError("Session factory is not bound to an async engine")
        async with self._engine.begin() as connection:
            await connection.run_sync(SQLModel.metadata.create_all)

    async def create_ticket(
        self,
        ticket: Ticket,
        event: TimelineEvent,
        inbox_entries: Sequence[InboxEntry] = (),
    ) -> list[InboxEntry]:
        async with self._session_factory() as session:
            async with session.begin():
                session.add(self._ticket_to_table(ticket))
                session.add(self._event_to_table(event))
                return await stage_inbox_entries(session, inbox_entries)

    async def commit_mutation(
        self,
        ticket: Ticket,
        *,
        expected_version: int,
        event: TimelineEvent,
        comment: Comment | None = None,
        attachment: Attachment | None = None,
        inbox_entries: Sequence[InboxEntry] = (),
    ) -> list[InboxEntry]:
        """Persist one ticket mutation if nobody else committed since ``expected_version``."""

        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(TicketTable)
                    .where(TicketTable.id == ticket.id, TicketTable.version == expected_version)
                    .values(**self._mutable_columns(ticket))
                )
                if result.rowcount != 1:
                    raise TicketConflictError(
                        f"Ticket '{ticket.id}' changed concurrently; reload and retry"
                    )
                session.add(self._event_to_table(event))
                if comment is not None:
                    session.add(self._comment_to_table(comment))
                if attachment is not None:
                    session.add(self._attachment_to_table(attachment))
                return await stage_inbox_entries(session, inbox_entries)

    async def get_ticket(self, ticket_id: str) -> Ticket | None:
        async with self._session_factory() as session:
            row = await session.get(TicketTable, ticket_id)
            if row is None:
                return None
            return self._table_to_ticket(row)

    async def get_participants(self, ticket_id: str) -> set[str]:
        """Creator, every forwarder and every comment author of the ticket."""

        async with self._session_factory() as session:
            row = await session.get(TicketTable, ticket_id)
            if row is None:
                return set()
            authors = await session.execute(
                select(TicketCommentTable.author_id).where(TicketCommentTable.ticket_id == ticket_id).distinct()
            )
            forwarders = await session.execute(
                select(TicketEventTable.actor_id)
                .where(
                    TicketEventTable.ticket_id == ticket_id,
                    TicketEventTable.event_type.in_(_FORWARD_EVENTS),
                )
                .distinct()
            )
            return {row.created_by, *authors.scalars().all(), *forwarders.scalars().all()}

    async def list_tickets(
        self,
        scope: TicketScope,
        *,
        query: str | None = None,
        status: TicketStatus | None = None,
        level: TicketLevel | None = None,
        limit: int,
        offset: int = 0,
    ) -> list[Ticket]:
        statement = select(TicketTable)
        for condition in self._scope_conditions(scope):
            statement = statement.where(condition)
        if query:
            pattern = f"%{_escape_like(query.strip())}%"
            statement = statement.where(
                or_(
                    TicketTable.title.ilike(pattern, escape="\\"),
                    TicketTable.description.ilike(pattern, escape="\\"),
                )
            )
        if status is not None:
            statement = statement.where(TicketTable.status == status.value)
        if level is not None:
            statement = statement.where(TicketTable.level == level.value)
        statement = (
            statement.order_by(TicketTable.last_activity_at.desc(), TicketTable.id.desc())
            .offset(offset)
            .limit(limit)
        )
        async with self._session_factory() as session:
            result = await session.execute(statement)
            return [self._table_to_ticket(row) for row in result.scalars().all()]

    async def list_comments(self, ticket_id: str, *, include_internal: bool) -> list[Comment]:
        statement = select(TicketCommentTable).where(TicketCommentTable.ticket_id == ticket_id)
        if not include_internal:
            statement = statement.where(TicketCommentTable.is_internal.is_(False))
        statement = statement.order_by(TicketCommentTable.created_at.asc(), TicketCommentTable.id.asc())
        async with self._session_factory() as session:
            result = await session.execute(statement)
            return [self._table_to_comment(row) for row in result.scalars().all()]

    async def list_events(self, ticket_id: str) -> list[TimelineEvent]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(TicketEventTable)
                .where(TicketEventTable.ticket_id == ticket_id)
                .order_by(TicketEventTable.created_at.asc(), TicketEventTable.sequence.asc())
            )
            return [self._table_to_event(row) for row in result.scalars().all()]

    async def list_attachments(self, ticket_id: str) -> list[Attachment]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(TicketAttachmentTable)
                .where(TicketAttachmentTable.ticket_id == ticket_id)
                .order_by(TicketAttachmentTable.created_at.asc(), TicketAttachmentTable.id.asc())
            )
            return [self._table_to_attachment(row) for row in result.scalars().all()]

    @staticmethod
    def _scope_conditions(scope: TicketScope) -> list:
        if scope.unrestricted:
            return []
        participant = or_(
            TicketTable.created_by == scope.user_id,
            TicketTable.id.in_(
                select(TicketCommentTable.ticket_id).where(TicketCommentTable.author_id == scope.user_id)
            ),
            TicketTable.id.in_(
                select(TicketEventTable.ticket_id).where(
                    TicketEventTable.actor_id == scope.user_id,
                    TicketEventTable.event_type.in_(_FORWARD_EVENTS),
                )
            ),
        )
        if scope.tier is TicketLevel.COMPANY:
            queue = TicketTable.level.in_([TicketLevel.PLANT.value, TicketLevel.COMPANY.value])
        elif scope.sees_plant_queue and scope.plant_ids:
            queue = and_(
                TicketTable.level == TicketLevel.PLANT.value,
                TicketTable.plant_id.in_(sorted(scope.plant_ids)),
            )
        else:
            queue = false()
        return [TicketTable.tenant_id == scope.tenant_id, or_(queue, participant)]

    @staticmethod
    def _mutable_columns(ticket: Ticket) -> dict[str, object]:
        return {
            "title": ticket.title,
            "description": ticket.description,
            "level": ticket.level.value,
            "status": ticket.status.value,
            "priority": ticket.priority.value,
            "tags": list(ticket.tags),
            "last_activity_at": ticket.last_activity_at,
            "sla_response_deadline": ticket.sla_response_deadline,
            "sla_resolution_deadline": ticket.sla_resolution_deadline,
            "first_response_at": ticket.first_response_at,
            "resolved_at": ticket.resolved_at,
            "closed_at": ticket.closed_at,
            "forwarded_by": ticket.forwarded_by,
            "forwarded_at": ticket.forwarded_at,
            "forward_note": ticket.forward_note,
            "version": ticket.version,
        }

    @classmethod
    def _ticket_to_table(cls, ticket: Ticket) -> TicketTable:
        return TicketTable(
            id=ticket.id,
            tenant_id=ticket.tenant_id,
            plant_id=ticket.plant_id,
            is_general=ticket.is_general,
            created_by=ticket.created_by,
            creator_tier=ticket.creator_tier.value,
            created_at=ticket.created_at,
            **cls._mutable_columns(ticket),
        )

    @staticmethod
    def _event_to_table(event: TimelineEvent) -> TicketEventTable:
        return TicketEventTable(
            id=event.id,
            ticket_id=event.ticket_id,
            sequence=event.sequence,
            event_type=event.event_type.value,
            actor_id=event.actor_id,
            message=event.message,
            metadata_=dict(event.metadata),
            created_at=event.created_at,
        )

    @staticmethod
    def _comment_to_table(comment: Comment) -> TicketCommentTable:
        return TicketCommentTable(
            id=comment.id,
            ticket_id=comment.ticket_id,
            author_id=comment.author_id,
            body=comment.body,
            is_internal=comment.is_internal,
            created_at=comment.created_at,
        )

    @staticmethod
    def _attachment_to_table(attachment: Attachment) -> TicketAttachmentTable:
        return TicketAttachmentTable(
            id=attachment.id,
            ticket_id=attachment.ticket_id,
            uploaded_by=attachment.uploaded_by,
            file_name=attachment.file_name,
            url=attachment.url,
            size_bytes=attachment.size_bytes,
            content_type=attachment.content_type,
            created_at=attachment.created_at,
        )

    @staticmethod
    def _table_to_ticket(row: TicketTable) -> Ticket:
        return Ticket(
            id=row.id,
            tenant_id=row.tenant_id,
            plant_id=row.plant_id,
            title=row.title,
            description=row.description or "",
            is_general=bool(row.is_general),
            level=TicketLevel(row.level),
            status=TicketStatus(row.status),
            priority=TicketPriority(row.priority),
            tags=list(row.tags or []),
            created_by=row.created_by,
            creator_tier=TicketLevel(row.creator_tier),
            created_at=ensure_utc(row.created_at),
            last_activity_at=ensure_utc(row.last_activity_at),
            sla_response_deadline=ensure_utc(row.sla_response_deadline),
            sla_resolution_deadline=ensure_utc(row.sla_resolution_deadline),
            first_response_at=ensure_optional_utc(row.first_response_at),
            resolved_at=ensure_optional_utc(row.resolved_at),
            closed_at=ensure_optional_utc(row.closed_at),
            forwarded_by=row.forwarded_by,
            forwarded_at=ensure_optional_utc(row.forwarded_at),
            forward_note=row.forward_note,
            version=row.version,
        )

    @staticmethod
    def _table_to_event(row: TicketEventTable) -> TimelineEvent:
        return TimelineEvent(
            id=row.id,
            ticket_id=row.ticket_id,
            sequence=row.sequence,
            event_type=TimelineEventType(row.event_type),
            actor_id=row.actor_id,
            message=row.message,
            created_at=ensure_utc(row.created_at),
            metadata=dict(row.metadata_ or {}),
        )

    @staticmethod
    def _table_to_comment(row: TicketCommentTable) -> Comment:
        return Comment(
            id=row.id,
            ticket_id=row.ticket_id,
            author_id=row.author_id,
            body=row.body,
            is_internal=bool(row.is_internal),
            created_at=ensure_utc(row.created_at),
        )

    @staticmethod
    def _table_to_attachment(row: TicketAttachmentTable) -> Attachment:
        return Attachment(
            id=row.id,
            ticket_id=row.ticket_id,
            uploaded_by=row.uploaded_by,
            file_name=row.file_name,
            url=row.url,
            size_bytes=row.size_bytes,
            content_type=row.content_type,
            created_at=ensure_utc(row.created_at),
        )
