"""Persistence of per-recipient notification inbox entries."""

from __future__ import annotations

from datetime import datetime
from typing import Sequence

from sqlalchemy import delete, func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from plantdesk.db.models import NotificationInboxTable, ensure_optional_utc, ensure_utc

from .models import InboxEntry, NotificationLevel


async def stage_inbox_entries(session: AsyncSession, entries: Sequence[InboxEntry]) -> list[InboxEntry]:
    """Add entries whose id is not stored yet to ``session``; return the ones added."""

    if not entries:
        return []
    result = await session.execute(
        select(NotificationInboxTable.id).where(NotificationInboxTable.id.in_([entry.id for entry in entries]))
    )
    existing = set(result.scalars().all())
    fresh = [entry for entry in entries if entry.id not in existing]
    session.add_all([_entry_to_table(entry) for entry in fresh])
    return fresh


class InboxRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def add_entries(self, entries: Sequence[InboxEntry]) -> list[InboxEntry]:
        """Insert entries idempotently; a concurrent duplicate insert is retried once."""

        try:
            return await self._add_entries_once(entries)
        except IntegrityError:
            return await self._add_entries_once(entries)

    async def _add_entries_once(self, entries: Sequence[InboxEntry]) -> list[InboxEntry]:
        async with self._session_factory() as session:
            async with session.begin():
                return await stage_inbox_entries(session, entries)

    async def list_entries(
        self,
        user_id: str,
        *,
        limit: int,
        offset: int = 0,
        unread_only: bool = False,
    ) -> list[InboxEntry]:
        statement = select(NotificationInboxTable).where(NotificationInboxTable.recipient_id == user_id)
        if unread_only:
            statement = statement.where(NotificationInboxTable.is_read.is_(False))
        statement = (
            statement.order_by(NotificationInboxTable.created_at.desc(), NotificationInboxTable.id.desc())
            .offset(offset)
            .limit(limit)
        )
        async with self._session_factory() as session:
            result = await session.execute(statement)
            return [_table_to_entry(row) for row in result.scalars().all()]

    async def count_unread(self, user_id: str) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                select(func.count())
                .select_from(NotificationInboxTable)
                .where(
                    NotificationInboxTable.recipient_id == user_id,
                    NotificationInboxTable.is_read.is_(False),
                )
            )
            return int(result.scalar_one())

    async def mark_read(self, user_id: str, entry_id: str, read_at: datetime) -> InboxEntry | None:
        async with self._session_factory() as session:
            row = await session.get(NotificationInboxTable, entry_id)
            if row is None or row.recipient_id != user_id:
                return None
            if not row.is_read:
                row.is_read = True
                row.read_at = read_at
                await session.commit()
                await session.refresh(row)
            return _table_to_entry(row)

    async def mark_all_read(self, user_id: str, read_at: datetime) -> int:
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(NotificationInboxTable)
                    .where(
                        NotificationInboxTable.recipient_id == user_id,
                        NotificationInboxTable.is_read.is_(False),
                    )
                    .values(is_read=True, read_at=read_at)
                )
            return int(result.rowcount or 0)

    async def clear(self, user_id: str) -> int:
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    delete(NotificationInboxTable).where(NotificationInboxTable.recipient_id == user_id)
                )
            return int(result.rowcount or 0)

    async def delete_entry(self, user_id: str, entry_id: str) -> bool:
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    delete(NotificationInboxTable).where(
                        NotificationInboxTable.id == entry_id,
                        NotificationInboxTable.recipient_id == user_id,
                    )
                )
            return bool(result.rowcount)


def _entry_to_table(entry: InboxEntry) -> NotificationInboxTable:
    return NotificationInboxTable(
        id=entry.id,
        recipient_id=entry.recipient_id,
        ticket_id=entry.ticket_id,
        event_id=entry.event_id,
        event_type=entry.event_type,
        title=entry.title,
        message=entry.message,
        level=entry.level.value,
        is_read=entry.read,
        read_at=entry.read_at,
        created_at=entry.created_at,
    )


def _table_to_entry(row: NotificationInboxTable) -> InboxEntry:
    return InboxEntry(
        id=row.id,
        recipient_id=row.recipient_id,
        ticket_id=row.ticket_id,
        event_id=row.event_id,
        event_type=row.event_type,
        title=row.title,
        message=row.message,
        level=NotificationLevel(row.level),
        read=bool(row.is_read),
        read_at=ensure_optional_utc(row.read_at),
        created_at=ensure_utc(row.created_at),
    )
