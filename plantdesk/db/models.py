"""SQLModel table definitions for tickets, their timeline and the notification inbox."""

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, JSON, String, Text
from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TicketTable(SQLModel, table=True):
    """Current state of a ticket."""

    __tablename__ = "tickets"
    __table_args__ = (
        Index("ix_tickets_tenant_activity", "tenant_id", "last_activity_at"),
        Index("ix_tickets_plant_level", "plant_id", "level"),
    )

    id: str = Field(primary_key=True, index=True)
    tenant_id: str = Field(sa_column=Column(String(64), nullable=False))
    plant_id: str = Field(sa_column=Column(String(64), nullable=False))
    title: str = Field(sa_column=Column(String(255), nullable=False))
    description: str = Field(default="", sa_column=Column(Text, nullable=False))
    is_general: bool = Field(default=False, sa_column=Column(Boolean, nullable=False))
    level: str = Field(sa_column=Column(String(20), nullable=False))
    status: str = Field(sa_column=Column(String(20), nullable=False))
    priority: str = Field(sa_column=Column(String(20), nullable=False))
    tags: list[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    created_by: str = Field(sa_column=Column(String(64), nullable=False))
    creator_tier: str = Field(sa_column=Column(String(20), nullable=False))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
    last_activity_at: datetime = Field(
        default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False)
    )
    sla_response_deadline: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    sla_resolution_deadline: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    first_response_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    resolved_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    closed_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    forwarded_by: str | None = Field(default=None, sa_column=Column(String(64), nullable=True))
    forwarded_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    forward_note: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    version: int = Field(default=1, sa_column=Column(Integer, nullable=False))


class TicketEventTable(SQLModel, table=True):
    """Append-only timeline entries of a ticket."""

    __tablename__ = "ticket_events"
    __table_args__ = (Index("ix_ticket_events_ticket_sequence", "ticket_id", "sequence", unique=True),)

    id: str = Field(primary_key=True, index=True)
    ticket_id: str = Field(
        sa_column=Column(String(36), ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False)
    )
    sequence: int = Field(sa_column=Column(Integer, nullable=False))
    event_type: str = Field(sa_column=Column(String(50), nullable=False))
    actor_id: str = Field(sa_column=Column(String(64), nullable=False))
    message: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    metadata_: dict[str, Any] = Field(
        default_factory=dict, sa_column=Column("metadata", JSON, nullable=False)
    )
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class TicketCommentTable(SQLModel, table=True):
    __tablename__ = "ticket_comments"

    id: str = Field(primary_key=True, index=True)
    ticket_id: str = Field(
        sa_column=Column(String(36), ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    )
    author_id: str = Field(sa_column=Column(String(64), nullable=False, index=True))
    body: str = Field(sa_column=Column(Text, nullable=False))
    is_internal: bool = Field(default=False, sa_column=Column(Boolean, nullable=False))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class TicketAttachmentTable(SQLModel, table=True):
    __tablename__ = "ticket_attachments"

    id: str = Field(primary_key=True, index=True)
    ticket_id: str = Field(
        sa_column=Column(String(36), ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    )
    uploaded_by: str = Field(sa_column=Column(String(64), nullable=False))
    file_name: str = Field(sa_column=Column(String(255), nullable=False))
    url: str = Field(sa_column=Column(String(1024), nullable=False))
    size_bytes: int = Field(sa_column=Column(Integer, nullable=False))
    content_type: str | None = Field(default=None, sa_column=Column(String(255), nullable=True))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class NotificationInboxTable(SQLModel, table=True):
    """Per-recipient durable notification entries.

    ``ticket_id`` is kept as a plain reference so entries outlive ticket removal.
    """

    __tablename__ = "notification_inbox"
    __table_args__ = (Index("ix_notification_inbox_recipient_created", "recipient_id", "created_at"),)

    id: str = Field(primary_key=True, index=True)
    recipient_id: str = Field(sa_column=Column(String(64), nullable=False))
    ticket_id: str = Field(sa_column=Column(String(36), nullable=False))
    event_id: str = Field(sa_column=Column(String(36), nullable=False))
    event_type: str = Field(sa_column=Column(String(50), nullable=False))
    title: str = Field(sa_column=Column(String(255), nullable=False))
    message: str = Field(sa_column=Column(Text, nullable=False))
    level: str = Field(sa_column=Column(String(20), nullable=False))
    is_read: bool = Field(default=False, sa_column=Column(Boolean, nullable=False))
    read_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


def ensure_utc(value: datetime | None) -> datetime:
    """Attach UTC to naive timestamps returned by drivers that drop the zone."""

    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    raise TypeError("Expected datetime value from database")


def ensure_optional_utc(value: datetime | None) -> datetime | None:
    return None if value is None else ensure_utc(value)
